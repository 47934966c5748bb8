"""Field AutoSave Scheduler — per-field debounced commits with cancel/replace semantics.

Invariants:
    - At most ONE PendingAutoSave per field; a new edit cancels the previous handle
      before scheduling (only the latest edit of a burst is ever committed)
    - previous_value is the last COMMITTED value of the field, never the last observed one
    - candidate_value is a deep-copied snapshot taken when the edit was scheduled
    - Commits of the same field never overlap: a fired commit waits for the field's
      in-flight commit first. Different fields commit independently
    - After close() or once the session token is set, nothing fires and no hook runs
    - Commit failures become AutoSaveError: logged, reported to the error hook, never raised

Design Decisions:
    - Scheduler callbacks run on the owning loop; each firing spawns one asyncio.Task
    - Superseded entries are detected by identity (self._pending[field] is pending)
      in addition to handle cancellation
    - Cancelled commits re-raise CancelledError inside their task; nothing awaits them
      except drain(), which gathers with return_exceptions
"""

import asyncio
import logging
from dataclasses import dataclass
from functools import partial
from typing import Any

from formkeeper.core.domain_types import FieldName, SessionId
from formkeeper.core.errors import AutoSaveError, ErrorContext
from formkeeper.core.field_config import FieldAutoSaveConfig
from formkeeper.core.protocols import (
    AutoSaveErrorHook,
    CommitHook,
    ScheduledHandle,
    Scheduler,
)
from formkeeper.core.record_access import snapshot
from formkeeper.infrastructure.schedulers import LoopScheduler
from formkeeper.services.form_hooks import invoke

logger = logging.getLogger(__name__)


@dataclass
class PendingAutoSave:
    """One scheduled commit of a field.

    previous_value starts as the baseline at scheduling time and is refreshed
    when the commit runs, so it always equals what the commit hook received.
    """
    field: FieldName
    previous_value: Any
    candidate_value: Any
    handle: ScheduledHandle | None = None


class FieldAutoSaveScheduler:
    """Owns every pending and in-flight autosave of one bound record."""

    def __init__(
        self,
        commit_hook: CommitHook,
        token: asyncio.Event,
        baseline: dict[str, Any] | None = None,
        scheduler: Scheduler | None = None,
        on_error: AutoSaveErrorHook | None = None,
        session_id: SessionId | None = None,
    ):
        self._commit_hook = commit_hook
        self._token = token
        self._baseline: dict[str, Any] = dict(baseline or {})
        self._scheduler = scheduler
        self._on_error = on_error
        self._session_id = session_id
        self._pending: dict[FieldName, PendingAutoSave] = {}
        self._in_flight: dict[FieldName, asyncio.Task] = {}
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    # --- Observable state -----------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_fields(self) -> frozenset[FieldName]:
        return frozenset(self._pending)

    @property
    def in_flight_fields(self) -> frozenset[FieldName]:
        return frozenset(self._in_flight)

    def pending(self, field: str) -> PendingAutoSave | None:
        return self._pending.get(FieldName(field))

    def last_committed(self, field: str) -> Any:
        return self._baseline.get(field)

    # --- Scheduling -----------------------------------------------------------

    def schedule(
        self, field: str, candidate_value: Any, config: FieldAutoSaveConfig,
    ) -> PendingAutoSave | None:
        """Debounce: replace any pending commit of field with one for candidate_value."""
        if self._closed or self._token.is_set():
            return None
        name = FieldName(field)
        self.cancel(name)
        pending = PendingAutoSave(
            field=name,
            previous_value=self._baseline.get(name),
            candidate_value=snapshot(candidate_value),
        )
        self._pending[name] = pending
        pending.handle = self._get_scheduler().schedule(
            config.delay_seconds, partial(self._fire, pending), self._token,
        )
        logger.debug(
            "Autosave scheduled",
            extra={
                "session_id": self._session_id, "field_name": name,
                "delay_ms": int(config.delay_seconds * 1000),
            },
        )
        return pending

    def cancel(self, field: str) -> bool:
        """Cancel the field's pending (not yet fired) commit. Returns whether one existed."""
        pending = self._pending.pop(FieldName(field), None)
        if pending is None:
            return False
        if pending.handle is not None:
            pending.handle.cancel()
        return True

    def cancel_all(self) -> None:
        for field in list(self._pending):
            self.cancel(field)

    def close(self) -> list[asyncio.Task]:
        """Cancel pending timers and in-flight commits. Idempotent.

        Returns the cancelled tasks so an owner can wait for them to settle.
        """
        if self._closed:
            return []
        self._closed = True
        self.cancel_all()
        tasks = [t for t in self._tasks if not t.done()]
        for task in tasks:
            task.cancel()
        return tasks

    async def drain(self) -> None:
        """Wait until no commit is in flight (pending timers are not forced)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --- Firing ---------------------------------------------------------------

    def _get_scheduler(self) -> Scheduler:
        if self._scheduler is None:
            self._scheduler = LoopScheduler()
        return self._scheduler

    def _fire(self, pending: PendingAutoSave) -> None:
        """Scheduler callback, on the owning loop."""
        if self._closed or self._token.is_set():
            return
        if self._pending.get(pending.field) is not pending:
            return  # superseded
        del self._pending[pending.field]
        predecessor = self._in_flight.get(pending.field)
        task = asyncio.get_running_loop().create_task(
            self._commit(pending, predecessor),
            name=f"autosave:{pending.field}",
        )
        self._in_flight[pending.field] = task
        self._tasks.add(task)
        task.add_done_callback(partial(self._on_done, pending.field))

    def _on_done(self, field: FieldName, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if self._in_flight.get(field) is task:
            del self._in_flight[field]

    async def _commit(
        self, pending: PendingAutoSave, predecessor: asyncio.Task | None,
    ) -> None:
        if predecessor is not None and not predecessor.done():
            await asyncio.wait({predecessor})
        if self._closed or self._token.is_set():
            return
        # Baseline may have moved since scheduling
        pending.previous_value = self._baseline.get(pending.field)

        extra = {"session_id": self._session_id, "field_name": pending.field}
        try:
            await invoke(
                self._commit_hook, pending.field, pending.previous_value,
                pending.candidate_value,
            )
        except asyncio.CancelledError:
            logger.debug("Autosave cancelled", extra=extra)
            raise
        except Exception as e:
            error = AutoSaveError(
                pending.field, e, ErrorContext(session_id=self._session_id),
            )
            error.__cause__ = e
            logger.warning(
                "Autosave failed: %s", e,
                extra={**extra, "error_code": error.code}, exc_info=error,
            )
            await self._report(pending.field, error)
            return

        self._baseline[pending.field] = pending.candidate_value
        logger.debug("Autosave committed", extra=extra)

    async def _report(self, field: FieldName, error: AutoSaveError) -> None:
        if self._on_error is None or self._token.is_set():
            return
        try:
            await invoke(self._on_error, field, error)
        except Exception as e:
            logger.error(
                "Autosave error hook failed: %s", e,
                extra={"session_id": self._session_id, "field_name": field},
                exc_info=True,
            )
