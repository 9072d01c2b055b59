"""
Audit Models for FinFree

Every ledger mutation and every sync step produces an audit event.
This provides:
1. Traceability of what reached the remote copy and when
2. Debugging information when a cycle aborts
3. Evidence that a failed tombstone or push was not silently assumed done

DESIGN DECISION: Audit events are append-only. We never delete or modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from finfree.models.ledger import utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Ledger mutations
    ENTITY_CREATED = "entity_created"
    ENTITY_UPDATED = "entity_updated"
    ENTITY_DELETED = "entity_deleted"
    VALIDATION_REJECTED = "validation_rejected"
    CONFIG_SAVED = "config_saved"

    # Reconciliation cycle
    SYNC_STARTED = "sync_started"
    SYNC_SKIPPED = "sync_skipped"
    SYNC_COMPLETED = "sync_completed"
    PULL_FAILED = "pull_failed"
    MERGE_APPLIED = "merge_applied"
    PUSH_FAILED = "push_failed"
    TOMBSTONE_FAILED = "tombstone_failed"
    REMOTE_SAVE_FAILED = "remote_save_failed"
    AUTHORIZATION_FAILED = "authorization_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """A single audit event."""

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(default_factory=utc_now)

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Collection name (e.g., 'expenses', 'accounts', 'config')"
    )
    entity_id: Optional[str] = None

    # One id per reconciliation cycle or user action
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.entity_created("expenses", expense.id)
        event = AuditEventBuilder.pull_failed(error, correlation_id)
    """

    @staticmethod
    def entity_created(kind: str, entity_id: str, amount: Optional[int] = None) -> AuditEvent:
        details = {"amount": amount} if amount is not None else {}
        return AuditEvent(
            event_type=AuditEventType.ENTITY_CREATED,
            entity_type=kind,
            entity_id=entity_id,
            description=f"Created {kind} entry",
            details=details,
            is_user_action=True,
        )

    @staticmethod
    def entity_updated(kind: str, entity_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTITY_UPDATED,
            entity_type=kind,
            entity_id=entity_id,
            description=f"Updated {kind} entry; queued for re-push",
            is_user_action=True,
        )

    @staticmethod
    def entity_deleted(kind: str, entity_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTITY_DELETED,
            entity_type=kind,
            entity_id=entity_id,
            description=f"Deleted {kind} entry locally; tombstone requested",
            is_user_action=True,
        )

    @staticmethod
    def validation_rejected(kind: str, issues: list[dict]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type=kind,
            description=f"Rejected {kind} entry: {len(issues)} issue(s)",
            details={"issues": issues},
            is_user_action=True,
        )

    @staticmethod
    def config_saved(sections: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONFIG_SAVED,
            entity_type="config",
            description=f"Saved config: {', '.join(sections)}",
            details={"sections": sections},
            is_user_action=True,
        )

    @staticmethod
    def sync_started(trigger: str, mode: str, correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_STARTED,
            severity=AuditSeverity.DEBUG,
            correlation_id=correlation_id,
            description=f"Sync cycle started ({trigger})",
            details={"trigger": trigger, "mode": mode},
        )

    @staticmethod
    def sync_skipped(trigger: str, state: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_SKIPPED,
            severity=AuditSeverity.DEBUG,
            description=f"Sync trigger dropped: cycle already {state}",
            details={"trigger": trigger, "state": state},
        )

    @staticmethod
    def merge_applied(
        counts: dict[str, int],
        dropped: dict[str, int],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MERGE_APPLIED,
            correlation_id=correlation_id,
            description="Merged remote snapshot into local ledger",
            details={"counts": counts, "dropped": dropped},
        )

    @staticmethod
    def sync_completed(
        outcome: str,
        pushed: dict[str, int],
        push_failed: dict[str, int],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_COMPLETED,
            severity=AuditSeverity.INFO if not push_failed else AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description=f"Sync cycle finished: {outcome}",
            details={"outcome": outcome, "pushed": pushed, "push_failed": push_failed},
        )

    @staticmethod
    def pull_failed(error_message: str, correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PULL_FAILED,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description="Remote snapshot unavailable; cycle aborted",
            error_message=error_message,
        )

    @staticmethod
    def push_failed(
        kind: str,
        count: int,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PUSH_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type=kind,
            correlation_id=correlation_id,
            description=f"Push of {count} {kind} entr(ies) failed; will retry next cycle",
            details={"count": count},
            error_message=error_message,
        )

    @staticmethod
    def tombstone_failed(
        kind: str,
        entity_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TOMBSTONE_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type=kind,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description="Remote delete not confirmed; kept pending",
            error_message=error_message,
        )

    @staticmethod
    def remote_save_failed(section: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REMOTE_SAVE_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type=section,
            description=f"Could not save {section} to the remote copy",
            error_message=error_message,
        )

    @staticmethod
    def authorization_failed(
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AUTHORIZATION_FAILED,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description="Remote rejected credentials; re-authentication required",
            error_message=error_message,
        )
