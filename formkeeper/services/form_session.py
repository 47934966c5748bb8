"""Form Session — owner of one editable record and every tracker attached to it.

Invariants:
    - The bound record is exclusively owned by the session; trackers are (re)built
      together whenever the record is replaced (initialize, reset, rebind to a new record)
    - notify_field_changed updates the change tracker BEFORE scheduling an autosave,
      synchronously, without awaiting anything
    - submit() walks Idle -> Validating -> GuardCheck -> PreSubmit -> Normalizing ->
      Committing -> PostSubmit -> Idle; every exit path returns to Idle
    - A failing submit hook runs on_after_submit(False), then raises SubmissionError
    - Teardown during Committing returns CANCELLED: has_changes kept, no on_after_submit.
      The cancel signal is re-checked after the submit hook returns
    - teardown() is idempotent; reset() and teardown() never raise
    - A render request follows every state-affecting operation except teardown

Design Decisions:
    - Composition over a base-class chain: tracker, guard, validator and autosave
      scheduler are separate objects assembled here
    - The submit hook runs in its own task so teardown can cancel it without
      cancelling the caller; the caller's own cancellation still propagates
    - ChangeSource callbacks may arrive on any thread; they are re-posted to the
      owning loop with call_soon_threadsafe before touching session state
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from typing import Any, Generic

from formkeeper.config import Settings, get_settings
from formkeeper.core.change_tracker import ChangeTracker
from formkeeper.core.domain_types import FieldName, SessionId, SubmissionPhase, SubmitOutcome
from formkeeper.core.errors import (
    ErrorContext,
    SessionClosedError,
    SessionNotInitializedError,
    SubmissionError,
)
from formkeeper.core.field_config import FieldConfigMap
from formkeeper.core.normalize import normalize_record
from formkeeper.core.protocols import ChangeSource, RecordFactory, RecordT, Scheduler
from formkeeper.core.record_access import snapshot_fields, write_field
from formkeeper.core.submission_guard import SubmissionGuard
from formkeeper.core.validation import ValidationMessage, ValidationMessageStore
from formkeeper.services.autosave_scheduler import FieldAutoSaveScheduler
from formkeeper.services.form_hooks import FormHooks, invoke
from formkeeper.services.validation_adapter import ValidationAdapter

logger = logging.getLogger(__name__)


class FormSession(Generic[RecordT]):
    """Autosave, change tracking and gated submission for one edit form."""

    def __init__(
        self,
        record_factory: RecordFactory,
        hooks: FormHooks | None = None,
        *,
        field_configs: FieldConfigMap | None = None,
        validator: ValidationAdapter | None = None,
        scheduler: Scheduler | None = None,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
        session_id: str | None = None,
    ):
        self.session_id = SessionId(session_id or uuid.uuid4().hex)
        self._record_factory = record_factory
        self._hooks = hooks or FormHooks()
        self._explicit_configs = field_configs
        self._validator = validator or ValidationAdapter()
        self._scheduler = scheduler
        self._settings = settings or get_settings()
        self._clock = clock

        self._record: RecordT | None = None
        self._configs = field_configs or FieldConfigMap()
        self._tracker = ChangeTracker(enabled=self._settings.track_changes)
        self._autosave: FieldAutoSaveScheduler | None = None
        self._messages = ValidationMessageStore()
        self._guard = SubmissionGuard(self._settings.duplicate_submission_threshold)

        self._phase = SubmissionPhase.IDLE
        self._submit_task: asyncio.Future | None = None
        self._cancel = asyncio.Event()
        self._closed = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._sources: list[ChangeSource] = []
        self._background: set[asyncio.Task] = set()

    # --- Observable state -----------------------------------------------------

    @property
    def record(self) -> RecordT:
        return self._require_record()

    @property
    def has_changes(self) -> bool:
        return self._tracker.has_changes

    @property
    def is_valid(self) -> bool:
        return not self._messages

    @property
    def processing(self) -> bool:
        return self._guard.state.processing

    @property
    def phase(self) -> SubmissionPhase:
        return self._phase

    @property
    def validation_messages(self) -> tuple[ValidationMessage, ...]:
        return self._messages.messages

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def field_configs(self) -> FieldConfigMap:
        return self._configs

    @property
    def pending_fields(self) -> frozenset[FieldName]:
        if self._autosave is None:
            return frozenset()
        return self._autosave.pending_fields

    def messages_for(self, field_name: str) -> list[str]:
        return self._messages.for_field(field_name)

    # --- Lifecycle ------------------------------------------------------------

    def initialize(self, record: RecordT | None = None) -> RecordT:
        """Bind record (or a fresh one from the factory) and build all trackers."""
        if self._closed:
            raise SessionClosedError("initialize", self._context())
        self._bind(record if record is not None else self._record_factory())
        logger.info("Form session initialized", extra={"session_id": self.session_id})
        self._request_render()
        return self._require_record()

    def rebind(self, record: RecordT) -> None:
        """Bind a different record instance. Same instance is a no-op."""
        if self._closed:
            raise SessionClosedError("rebind", self._context())
        if record is self._record:
            return
        self._bind(record)
        logger.info("Form session rebound", extra={"session_id": self.session_id})
        self._request_render()

    def reset(self) -> None:
        """Fresh default record, no messages, no pending autosaves, no changes."""
        if self._closed:
            return
        try:
            self._bind(self._record_factory())
        except Exception as e:
            logger.error(
                "Form reset failed: %s", e,
                extra={"session_id": self.session_id}, exc_info=True,
            )
            return
        logger.info("Form session reset", extra={"session_id": self.session_id})
        self._request_render()

    def teardown(self) -> None:
        """Cancel all pending work and detach from change sources. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._cancel.set()
        for source in self._sources:
            try:
                source.unsubscribe(self._on_source_changed)
            except Exception as e:
                logger.warning(
                    "Failed to detach change source: %s", e,
                    extra={"session_id": self.session_id},
                )
        self._sources.clear()
        if self._autosave is not None:
            self._adopt(self._autosave.close())
        if self._submit_task is not None and not self._submit_task.done():
            self._submit_task.cancel()
        for task in list(self._background):
            task.cancel()
        self._messages.clear()
        logger.info("Form session torn down", extra={"session_id": self.session_id})

    async def aclose(self) -> None:
        """teardown() and wait for the cancelled work to settle."""
        self.teardown()
        pending = [t for t in self._background if not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._background.clear()

    async def __aenter__(self) -> "FormSession[RecordT]":
        if self._record is None:
            self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def watch(self, source: ChangeSource) -> None:
        """Refresh (on_refresh hook + render) whenever source reports a change."""
        if self._closed:
            raise SessionClosedError("watch", self._context())
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        source.subscribe(self._on_source_changed)
        self._sources.append(source)

    # --- Editing --------------------------------------------------------------

    def notify_field_changed(self, field_name: str, new_value: Any) -> None:
        """Apply an edit from the page and react to it (tracking, autosave, render)."""
        if self._closed:
            logger.debug(
                "Edit ignored after teardown",
                extra={"session_id": self.session_id, "field_name": field_name},
            )
            return
        record = self._require_record()
        old_value = write_field(record, field_name, new_value)
        config = self._configs.get(field_name)
        self._tracker.notify_field_changed(field_name, old_value, new_value, config)
        if config is not None and config.enabled and self._autosave is not None:
            self._autosave.schedule(field_name, new_value, config)
        self._request_render()

    def mark_changed(self) -> None:
        self._tracker.mark_changed()
        self._request_render()

    def mark_unchanged(self) -> None:
        self._tracker.mark_unchanged()
        self._request_render()

    async def flush_autosaves(self) -> None:
        """Wait for every in-flight autosave commit to finish."""
        if self._autosave is not None:
            await self._autosave.drain()

    # --- Validation -----------------------------------------------------------

    def validate(self) -> bool:
        """Run the evaluator and swap in the new message set. Returns is_valid."""
        messages = self._validator.validate(self._require_record())
        self._messages.replace(messages)
        self._request_render()
        return not messages

    def add_validation_message(self, field_name: str, text: str) -> None:
        self._messages.add(field_name, text)
        self._request_render()

    def clear_validation_messages(self) -> None:
        self._messages.clear()
        self._request_render()

    # --- Submission -----------------------------------------------------------

    async def submit(self) -> SubmitOutcome:
        """Validate, de-duplicate, normalize and hand the record to the submit hook."""
        if self._closed:
            return SubmitOutcome.CANCELLED
        record = self._require_record()

        # Non-IDLE when another accepted attempt is still in flight
        resumed_phase = self._phase
        accepted = False
        try:
            self._phase = SubmissionPhase.VALIDATING
            if not self.validate():
                self._report_invalid()
                return self._finish(SubmitOutcome.VALIDATION_REJECTED)

            self._phase = SubmissionPhase.GUARD_CHECK
            if self._is_duplicate_attempt():
                return self._finish(SubmitOutcome.DUPLICATE_REJECTED)

            accepted = True
            self._guard.state.processing = True
            self._request_render()
            try:
                await self._run_accepted(record)
            except asyncio.CancelledError:
                task = asyncio.current_task()
                if task is not None and task.cancelling():
                    raise
                return self._finish(SubmitOutcome.CANCELLED)
            finally:
                self._guard.state.processing = False
                self._submit_task = None
            return self._finish(SubmitOutcome.SUCCEEDED)
        finally:
            self._phase = (
                resumed_phase if self._guard.state.processing else SubmissionPhase.IDLE
            )
            if accepted and not self._closed:
                self._request_render()

    async def _run_accepted(self, record: RecordT) -> None:
        try:
            self._phase = SubmissionPhase.PRE_SUBMIT
            if self._hooks.on_before_submit is not None:
                self._hooks.on_before_submit()

            self._phase = SubmissionPhase.NORMALIZING
            normalize_record(
                record,
                trim=self._settings.auto_trim_strings,
                collapse_whitespace=self._settings.auto_normalize_whitespace,
            )

            self._phase = SubmissionPhase.COMMITTING
            if self._hooks.submit is not None:
                self._submit_task = asyncio.ensure_future(
                    invoke(self._hooks.submit, record),
                )
                await self._submit_task
            # Teardown may land after the hook finished but before we resume
            if self._cancel.is_set():
                raise asyncio.CancelledError()
        except asyncio.CancelledError:
            logger.info(
                "Submission cancelled",
                extra={"session_id": self.session_id, "phase": self._phase.value},
            )
            raise
        except Exception as e:
            error = SubmissionError(e, self._context())
            error.__cause__ = e
            logger.error(
                "Submission failed: %s", e,
                extra={
                    "session_id": self.session_id, "error_code": error.code,
                    "outcome": error.outcome.value,
                },
                exc_info=error,
            )
            self._post_submit(False)
            raise error from e

        self._tracker.reset()
        self._post_submit(True)

    def _post_submit(self, success: bool) -> None:
        self._phase = SubmissionPhase.POST_SUBMIT
        if self._hooks.on_after_submit is not None:
            self._hooks.on_after_submit(success)

    def _is_duplicate_attempt(self) -> bool:
        if not self._settings.prevent_duplicate_submissions:
            return False
        if self._guard.state.processing:
            return True
        return not self._guard.should_accept(self._clock())

    def _report_invalid(self) -> None:
        if self._hooks.on_invalid_submit is None:
            return
        for message in self._messages:
            self._hooks.on_invalid_submit(message.text)

    def _finish(self, outcome: SubmitOutcome) -> SubmitOutcome:
        logger.info(
            "Submit finished: %s", outcome.value,
            extra={"session_id": self.session_id, "outcome": outcome.value},
        )
        return outcome

    # --- Internals ------------------------------------------------------------

    def _bind(self, record: RecordT) -> None:
        """(Re)build every tracker around record."""
        configs = self._explicit_configs
        if configs is None:
            configs = FieldConfigMap.from_model(
                type(record), self._settings.default_autosave_delay_ms,
            )
        baseline = snapshot_fields(record, configs.autosave_fields)

        if self._autosave is not None:
            self._adopt(self._autosave.close())

        self._record = record
        self._configs = configs
        self._tracker = ChangeTracker(enabled=self._settings.track_changes)
        self._messages.clear()
        self._autosave = None
        if self._hooks.commit is not None:
            self._autosave = FieldAutoSaveScheduler(
                self._hooks.commit,
                self._cancel,
                baseline=baseline,
                scheduler=self._scheduler,
                on_error=self._hooks.on_autosave_error,
                session_id=self.session_id,
            )

    def _adopt(self, tasks: list[asyncio.Task]) -> None:
        """Keep cancelled work reachable until it settles (aclose waits on it)."""
        for task in tasks:
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    def _require_record(self) -> RecordT:
        if self._record is None:
            raise SessionNotInitializedError(self._context())
        return self._record

    def _context(self) -> ErrorContext:
        return ErrorContext(session_id=self.session_id)

    def _request_render(self) -> None:
        if self._hooks.on_render is None:
            return
        try:
            self._hooks.on_render()
        except Exception as e:
            logger.error(
                "Render request failed: %s", e,
                extra={"session_id": self.session_id}, exc_info=True,
            )

    def _on_source_changed(self) -> None:
        """ChangeSource callback; may run on any thread."""
        if self._closed or self._loop is None:
            return
        try:
            self._loop.call_soon_threadsafe(self._start_refresh)
        except RuntimeError:
            logger.debug(
                "Change ignored: event loop closed",
                extra={"session_id": self.session_id},
            )

    def _start_refresh(self) -> None:
        if self._closed:
            return
        self._adopt([asyncio.get_running_loop().create_task(self._refresh())])

    async def _refresh(self) -> None:
        if self._hooks.on_refresh is not None:
            try:
                await invoke(self._hooks.on_refresh)
            except Exception as e:
                logger.error(
                    "Refresh after external change failed: %s", e,
                    extra={"session_id": self.session_id}, exc_info=True,
                )
        if self._cancel.is_set():
            return
        self._request_render()
