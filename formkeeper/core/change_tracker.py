"""Change Tracker — unsaved-modification flag for one bound record.

Invariants:
    - has_changes only becomes False through reset() or mark_unchanged()
    - A disabled tracker never changes has_changes (manual overrides included)
    - Fields whose config sets track_changes=False never set has_changes

Design Decisions:
    - Pure dataclass with no IO: the session decides when a submit counts as successful
"""

from dataclasses import dataclass
from typing import Any

from formkeeper.core.field_config import FieldAutoSaveConfig


@dataclass
class ChangeTracker:
    """Per-record dirty flag — pure dataclass, no IO."""

    enabled: bool = True
    has_changes: bool = False

    def notify_field_changed(
        self, field_name: str, old_value: Any, new_value: Any,
        config: FieldAutoSaveConfig | None = None,
    ) -> bool:
        """Record an accepted edit. Returns the resulting has_changes."""
        if self.enabled and (config is None or config.track_changes):
            self.has_changes = True
        return self.has_changes

    def mark_changed(self) -> None:
        if self.enabled:
            self.has_changes = True

    def mark_unchanged(self) -> None:
        if self.enabled:
            self.has_changes = False

    def reset(self) -> None:
        """Session boundary (reset / successful submit / rebind)."""
        self.has_changes = False
