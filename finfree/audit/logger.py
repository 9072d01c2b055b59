"""
Audit Logger

DESIGN DECISION: Every ledger mutation and every sync step is logged.
This provides:
1. Complete traceability of what was pushed, dropped or tombstoned
2. Debugging capability when a cycle aborts
3. Evidence that failures were noticed rather than assumed away

The audit logger:
- Is async so it can sit on the same event loop as the reconciler
- Never raises (logging must not break a cycle)
- Supports correlation IDs to trace the events of one cycle
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from finfree.config import get_settings
from finfree.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity


def configure_logging(level: Optional[str] = None) -> None:
    """Configure stdlib logging and structlog for JSON output."""
    level = level or get_settings().app.log_level
    logging.basicConfig(format="%(message)s", level=getattr(logging, level))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Writes every AuditEvent to the structured log at the level matching
    its severity.
    """

    def __init__(self, logger_name: str = "finfree.audit"):
        self._logger = structlog.get_logger(logger_name)
        self.events: list[AuditEvent] = []
        self._keep_history = False

    def keep_history(self, enabled: bool = True) -> None:
        """Retain logged events in memory (used by diagnostics and tests)."""
        self._keep_history = enabled

    async def log(self, event: AuditEvent) -> None:
        """Log an audit event. Never raises."""
        log_dict = event.to_log_dict()
        try:
            if event.severity == AuditSeverity.ERROR:
                self._logger.error("audit_event", **log_dict)
            elif event.severity == AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            elif event.severity == AuditSeverity.DEBUG:
                self._logger.debug("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except Exception as e:
            logging.getLogger(__name__).error("audit logging failed: %s", e)

        if self._keep_history:
            self.events.append(event)

    async def log_entity_created(self, kind: str, entity_id: str, amount: Optional[int] = None) -> None:
        await self.log(AuditEventBuilder.entity_created(kind, entity_id, amount))

    async def log_entity_updated(self, kind: str, entity_id: str) -> None:
        await self.log(AuditEventBuilder.entity_updated(kind, entity_id))

    async def log_entity_deleted(self, kind: str, entity_id: str) -> None:
        await self.log(AuditEventBuilder.entity_deleted(kind, entity_id))

    async def log_validation_rejected(self, kind: str, issues: list[dict]) -> None:
        await self.log(AuditEventBuilder.validation_rejected(kind, issues))

    async def log_config_saved(self, sections: list[str]) -> None:
        await self.log(AuditEventBuilder.config_saved(sections))

    async def log_sync_started(self, trigger: str, mode: str, correlation_id: UUID) -> None:
        await self.log(AuditEventBuilder.sync_started(trigger, mode, correlation_id))

    async def log_sync_skipped(self, trigger: str, state: str) -> None:
        await self.log(AuditEventBuilder.sync_skipped(trigger, state))

    async def log_merge_applied(
        self,
        counts: dict[str, int],
        dropped: dict[str, int],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.merge_applied(counts, dropped, correlation_id))

    async def log_sync_completed(
        self,
        outcome: str,
        pushed: dict[str, int],
        push_failed: dict[str, int],
        correlation_id: UUID,
    ) -> None:
        await self.log(
            AuditEventBuilder.sync_completed(outcome, pushed, push_failed, correlation_id)
        )

    async def log_pull_failed(self, error_message: str, correlation_id: UUID) -> None:
        await self.log(AuditEventBuilder.pull_failed(error_message, correlation_id))

    async def log_push_failed(
        self,
        kind: str,
        count: int,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(
            AuditEventBuilder.push_failed(kind, count, error_message, correlation_id)
        )

    async def log_tombstone_failed(
        self,
        kind: str,
        entity_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(
            AuditEventBuilder.tombstone_failed(kind, entity_id, error_message, correlation_id)
        )

    async def log_remote_save_failed(self, section: str, error_message: str) -> None:
        await self.log(AuditEventBuilder.remote_save_failed(section, error_message))

    async def log_authorization_failed(
        self,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.authorization_failed(error_message, correlation_id))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    One per reconciliation cycle; passed through pull, merge and push.
    """
    return uuid4()
