"""
Sync Reconciler

Runs one reconciliation cycle at a time:

    IDLE -> PULLING -> MERGING -> PUSHING -> IDLE

A trigger that arrives while a cycle is in flight is dropped, not queued.
Local edits are already persisted, so the next trigger picks them up.

Failure handling:
- pull fails (transport): cycle aborts, local state untouched
- push fails (transport): merged state stays persisted, unpushed entities
  stay unsynced, the cycle stops there and reports PARTIAL
- authorization rejected at any step: logged and re-raised to the caller
"""

import asyncio
from typing import Awaitable, Callable, Optional

import structlog

from finfree.audit.logger import AuditLogger, create_correlation_id
from finfree.config import get_settings
from finfree.models.ledger import utc_now
from finfree.models.sync import (
    EntityKind,
    LedgerState,
    RemoteCredentials,
    SyncMode,
    SyncOutcome,
    SyncReport,
    SyncState,
    SyncTrigger,
    Tombstone,
)
from finfree.services.storage.interface import (
    AuthorizationError,
    LedgerStoreInterface,
    RemoteAdapterInterface,
    TransportError,
)
from finfree.sync.merge import MergeResult, merge_snapshot

logger = structlog.get_logger(__name__)


# Accounts first, so rows referencing an account land after it
PUSH_ORDER = (
    EntityKind.ACCOUNTS,
    EntityKind.EXPENSES,
    EntityKind.INCOME,
    EntityKind.TRANSFERS,
)


class _PushAborted(Exception):
    """Internal: stop the push phase after the first transport failure."""


class SyncReconciler:
    """
    Keeps the local store and the remote copy convergent.

    Credentials are passed into every cycle; the reconciler holds none.

    Args:
        store: the local replica
        adapters: remote transport per sync mode; a mode without one
            (or no adapters at all) means local-only
        audit_logger: optional audit logger
    """

    def __init__(
        self,
        store: LedgerStoreInterface,
        adapters: Optional[dict[SyncMode, RemoteAdapterInterface]] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._adapters = dict(adapters or {})
        self._audit_logger = audit_logger
        self._state = SyncState.IDLE
        self._tasks: set[asyncio.Task] = set()
        # (kind, id) of entities whose append is on its way to the remote
        self._in_flight: set[tuple[EntityKind, str]] = set()
        self.last_report: Optional[SyncReport] = None
        self.last_error: Optional[Exception] = None

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state != SyncState.IDLE

    def adapter_for(self, credentials: Optional[RemoteCredentials]) -> Optional[RemoteAdapterInterface]:
        if credentials is None or credentials.mode == SyncMode.LOCAL:
            return None
        return self._adapters.get(credentials.mode)

    async def close(self) -> None:
        for adapter in self._adapters.values():
            await adapter.close()

    # -------------------------------------------------------------------------
    # Cycle
    # -------------------------------------------------------------------------

    async def sync(
        self,
        credentials: Optional[RemoteCredentials],
        trigger: SyncTrigger = SyncTrigger.MANUAL,
    ) -> SyncReport:
        """
        Run one full cycle: pull, merge, persist, push.

        Returns:
            SyncReport describing the cycle

        Raises:
            AuthorizationError: The remote rejected the credentials
        """
        if self._state != SyncState.IDLE:
            if self._audit_logger:
                await self._audit_logger.log_sync_skipped(trigger.value, self._state.value)
            return SyncReport(trigger=trigger, outcome=SyncOutcome.SKIPPED, finished_at=utc_now())

        adapter = self.adapter_for(credentials)
        if adapter is None:
            return SyncReport(trigger=trigger, outcome=SyncOutcome.LOCAL_ONLY, finished_at=utc_now())

        # Claimed before the first await, so a concurrent trigger sees it
        self._state = SyncState.PULLING
        report = SyncReport(
            correlation_id=create_correlation_id(),
            trigger=trigger,
            outcome=SyncOutcome.COMPLETED,
        )

        try:
            if self._audit_logger:
                await self._audit_logger.log_sync_started(
                    trigger.value, credentials.mode.value, report.correlation_id
                )

            # PULL
            try:
                snapshot = await adapter.fetch_snapshot(credentials)
            except TransportError as e:
                report.outcome = SyncOutcome.ABORTED
                report.error_message = str(e)
                if self._audit_logger:
                    await self._audit_logger.log_pull_failed(str(e), report.correlation_id)
                else:
                    logger.warning("Pull failed, sync aborted", error=str(e))
                return report

            # MERGE + persist, under the store's lock
            self._state = SyncState.MERGING
            merged: list[MergeResult] = []

            def apply_merge(local: LedgerState) -> LedgerState:
                result = merge_snapshot(local, snapshot)
                merged.append(result)
                return result.state

            await self._store.apply(apply_merge)
            report.dropped = dict(merged[0].dropped)
            if self._audit_logger:
                await self._audit_logger.log_merge_applied(
                    merged[0].counts, merged[0].dropped, report.correlation_id
                )

            # PUSH
            self._state = SyncState.PUSHING
            try:
                await self._push_entities(adapter, credentials, report)
                await self._push_tombstones(adapter, credentials, report)
            except _PushAborted:
                pass

            if report.push_failed or report.tombstones_failed:
                report.outcome = SyncOutcome.PARTIAL
            if self._audit_logger:
                await self._audit_logger.log_sync_completed(
                    report.outcome.value,
                    report.pushed,
                    report.push_failed,
                    report.correlation_id,
                )
            return report

        except AuthorizationError as e:
            if self._audit_logger:
                await self._audit_logger.log_authorization_failed(str(e), report.correlation_id)
            raise

        finally:
            self._state = SyncState.IDLE
            report.finished_at = utc_now()
            self.last_report = report

    async def _push_entities(
        self,
        adapter: RemoteAdapterInterface,
        credentials: RemoteCredentials,
        report: SyncReport,
    ) -> None:
        state = await self._store.load()
        batch = {kind: state.unsynced(kind) for kind in PUSH_ORDER}
        # Registered before the first await, so a concurrent delete sees it
        in_flight = {(kind, entity.id) for kind, pending in batch.items() for entity in pending}
        self._in_flight |= in_flight

        try:
            for kind in PUSH_ORDER:
                pending = batch[kind]
                if not pending:
                    continue

                try:
                    acknowledged = set(
                        await adapter.append_entities(kind, credentials, pending)
                    )
                except TransportError as e:
                    report.push_failed[kind.value] = len(pending)
                    report.error_message = str(e)
                    if self._audit_logger:
                        await self._audit_logger.log_push_failed(
                            kind.value, len(pending), str(e), report.correlation_id
                        )
                    else:
                        logger.warning("Push failed", kind=kind.value, count=len(pending), error=str(e))
                    raise _PushAborted()

                sent = [entity for entity in pending if entity.id in acknowledged]
                await self._store.mark_synced(kind, sent)
                report.pushed[kind.value] = len(sent)
                if len(sent) < len(pending):
                    report.push_failed[kind.value] = len(pending) - len(sent)
        finally:
            self._in_flight -= in_flight

    async def _push_tombstones(
        self,
        adapter: RemoteAdapterInterface,
        credentials: RemoteCredentials,
        report: SyncReport,
    ) -> None:
        state = await self._store.load()

        for tombstone in state.pending_deletions:
            try:
                # False (no live row) also means the remote no longer has it
                await adapter.mark_deleted(tombstone.kind, credentials, tombstone.id)
            except TransportError as e:
                report.tombstones_failed = len(state.pending_deletions) - report.tombstones_confirmed
                report.error_message = str(e)
                if self._audit_logger:
                    await self._audit_logger.log_tombstone_failed(
                        tombstone.kind.value, tombstone.id, str(e), report.correlation_id
                    )
                else:
                    logger.warning(
                        "Tombstone push failed", kind=tombstone.kind.value, id=tombstone.id, error=str(e)
                    )
                raise _PushAborted()

            await self._store.clear_tombstones([tombstone])
            report.tombstones_confirmed += 1

    async def push_tombstone(
        self,
        credentials: Optional[RemoteCredentials],
        tombstone: Tombstone,
    ) -> bool:
        """
        Send one delete right away, outside any cycle.

        Failures are logged and leave the tombstone pending for the next
        cycle. Never raises for remote failures.

        A delete that overlaps the append of the same entity is never taken
        as confirmed: the append may land after it. The tombstone stays
        pending and the running cycle sends it again once its appends are done.

        Returns:
            True if the remote confirmed the delete
        """
        adapter = self.adapter_for(credentials)
        if adapter is None:
            return False

        key = (tombstone.kind, tombstone.id)
        racing = key in self._in_flight
        try:
            await adapter.mark_deleted(tombstone.kind, credentials, tombstone.id)
        except AuthorizationError as e:
            self.last_error = e
            if self._audit_logger:
                await self._audit_logger.log_authorization_failed(str(e))
            return False
        except TransportError as e:
            if self._audit_logger:
                await self._audit_logger.log_tombstone_failed(
                    tombstone.kind.value, tombstone.id, str(e)
                )
            else:
                logger.warning(
                    "Tombstone push failed", kind=tombstone.kind.value, id=tombstone.id, error=str(e)
                )
            return False

        if racing or key in self._in_flight:
            logger.debug(
                "Delete overlapped an append; kept pending", kind=tombstone.kind.value, id=tombstone.id
            )
            return False

        await self._store.clear_tombstones([tombstone])
        return True

    # -------------------------------------------------------------------------
    # Triggers
    # -------------------------------------------------------------------------

    def request_sync(
        self,
        credentials: Optional[RemoteCredentials],
        trigger: SyncTrigger,
    ) -> Optional[asyncio.Task]:
        """
        Non-blocking trigger: schedule a cycle on the running loop.

        Returns None when a cycle is already in flight (the trigger is
        dropped). Must be called from inside a running event loop.
        """
        if self.is_running:
            return None

        task = asyncio.get_running_loop().create_task(self.sync(credentials, trigger))
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def request_tombstone(
        self,
        credentials: Optional[RemoteCredentials],
        tombstone: Tombstone,
    ) -> Optional[asyncio.Task]:
        """Fire-and-forget delete. Returns None when there is no remote."""
        if self.adapter_for(credentials) is None:
            return None

        task = asyncio.get_running_loop().create_task(self.push_tombstone(credentials, tombstone))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        # Authorization failures were logged in sync(); kept for the caller to surface
        self.last_error = error

    async def run_periodic(
        self,
        credentials_provider: Callable[[], Awaitable[Optional[RemoteCredentials]]],
        stop_event: asyncio.Event,
        interval_seconds: Optional[float] = None,
    ) -> None:
        """
        Periodic trigger loop. Runs until `stop_event` is set.

        Credentials are re-read every tick, so a re-authentication takes
        effect on the next cycle. An authorization failure does not stop
        the loop; it is recorded in `last_error`.
        """
        interval = interval_seconds or get_settings().sync.periodic_interval_seconds

        while not stop_event.is_set():
            try:
                await self.sync(await credentials_provider(), SyncTrigger.PERIODIC)
                self.last_error = None
            except AuthorizationError as e:
                self.last_error = e

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    async def wait_idle(self) -> None:
        """Wait for every scheduled cycle to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
