"""Boundary Protocols — contracts between the form session and its collaborators.

Invariants:
    - Core NEVER imports from services/ or infrastructure/ — dependency arrows point inward only
    - Every external collaborator (hooks, evaluator, translator, scheduler) is a Protocol
    - Implementations are supplied by the page layer when a FormSession is built

Design Decisions:
    - Protocol over ABC: structural subtyping, plain functions satisfy callable contracts
    - Hooks that may do IO are async; hooks that only touch UI state are sync
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel

from formkeeper.core.domain_types import FieldName
from formkeeper.core.errors import AutoSaveError

RecordT = TypeVar("RecordT", bound=BaseModel)


# ─── Scheduling ──────────────────────────────────────────────────

class ScheduledHandle(Protocol):
    """Cancellable handle returned by Scheduler.schedule (asyncio.TimerHandle fits)."""
    def cancel(self) -> None: ...
    def cancelled(self) -> bool: ...


class Scheduler(Protocol):
    """Delayed-callback source. Callbacks always run on the owning event loop."""
    def schedule(
        self, delay: float, callback: Callable[[], None],
        token: asyncio.Event,
    ) -> ScheduledHandle: ...


# ─── Hooks ──────────────────────────────────────────────────────

class CommitHook(Protocol):
    """Persists one field's change. May suspend on IO."""
    def __call__(
        self, field: FieldName, previous_value: Any, candidate_value: Any,
    ) -> Awaitable[None]: ...


class AutoSaveErrorHook(Protocol):
    def __call__(self, field: FieldName, error: AutoSaveError) -> Awaitable[None]: ...


class SubmitHook(Protocol):
    """Submits the whole record. Exceptions reach the caller of submit()."""
    def __call__(self, record: Any) -> Awaitable[None]: ...


RenderRequest = Callable[[], None]
BeforeSubmitHook = Callable[[], None]
AfterSubmitHook = Callable[[bool], None]
InvalidSubmitHook = Callable[[str], None]
RefreshHook = Callable[[], Awaitable[None]]
RecordFactory = Callable[[], Any]


# ─── Validation / Translation ───────────────────────────────────

class Translator(Protocol):
    """Renders a message key to display text. Core never inspects the result."""
    def __call__(self, key: str, args: Mapping[str, Any] | None = None) -> str: ...


class RuleEvaluator(Protocol):
    """Returns violations as RuleViolation objects or (field, key, args) tuples."""
    def __call__(self, record: Any) -> Iterable[Any]: ...


# ─── External change sources ────────────────────────────────────

class ChangeSource(Protocol):
    """Provider whose changes require the page to refresh (culture, workspace...)."""
    def subscribe(self, callback: Callable[[], None]) -> None: ...
    def unsubscribe(self, callback: Callable[[], None]) -> None: ...
