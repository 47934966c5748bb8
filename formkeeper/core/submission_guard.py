"""Submission Guard — time-window duplicate-submission suppressor.

Invariants:
    - should_accept is the ONLY mutation: it records the attempt start when it accepts
    - A rejected attempt never moves the window
    - Time is supplied by the caller (monotonic seconds); no clock reads, no IO
"""

from dataclasses import dataclass
from datetime import timedelta

from formkeeper.core.domain_types import DEFAULT_DUPLICATE_SUBMISSION_THRESHOLD_MS


@dataclass
class SubmissionState:
    processing: bool = False
    last_attempt_started_at: float | None = None


class SubmissionGuard:
    """Rejects an attempt starting within `threshold` of the previous accepted one."""

    def __init__(
        self,
        threshold: timedelta = timedelta(
            milliseconds=DEFAULT_DUPLICATE_SUBMISSION_THRESHOLD_MS,
        ),
        state: SubmissionState | None = None,
    ):
        self.threshold = threshold
        self.state = state or SubmissionState()

    def is_duplicate(self, now: float) -> bool:
        last = self.state.last_attempt_started_at
        return last is not None and now - last < self.threshold.total_seconds()

    def should_accept(self, now: float) -> bool:
        if self.is_duplicate(now):
            return False
        self.state.last_attempt_started_at = now
        return True
