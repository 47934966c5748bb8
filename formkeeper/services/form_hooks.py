"""Form Hooks — the page layer's callbacks, assembled once per form page.

Invariants:
    - Every hook is optional; a missing hook is a no-op
    - commit / submit / on_autosave_error / on_refresh may be sync or async
    - on_render / on_before_submit / on_after_submit / on_invalid_submit are sync

Design Decisions:
    - One dataclass of callables instead of overridable methods on a base class:
      pages compose the capabilities they need
"""

import inspect
from dataclasses import dataclass
from typing import Any, Callable

from formkeeper.core.protocols import (
    AfterSubmitHook,
    AutoSaveErrorHook,
    BeforeSubmitHook,
    CommitHook,
    InvalidSubmitHook,
    RefreshHook,
    RenderRequest,
    SubmitHook,
)


@dataclass
class FormHooks:
    """Callbacks a FormSession invokes. All optional."""

    commit: CommitHook | None = None
    submit: SubmitHook | None = None
    on_autosave_error: AutoSaveErrorHook | None = None
    on_render: RenderRequest | None = None
    on_before_submit: BeforeSubmitHook | None = None
    on_after_submit: AfterSubmitHook | None = None
    on_invalid_submit: InvalidSubmitHook | None = None
    on_refresh: RefreshHook | None = None


async def invoke(hook: Callable[..., Any], *args: Any) -> Any:
    """Call a sync or async hook and return its result."""
    result = hook(*args)
    if inspect.isawaitable(result):
        return await result
    return result
