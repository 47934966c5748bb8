"""Domain Types — rich types that replace bare primitives across the codebase.

Invariants:
    - FieldName wraps str — a top-level field name or a dotted path ("address.city")
    - All valid states encoded as Enums — no raw string matching
    - Delays are expressed in milliseconds at the configuration boundary

Design Decisions:
    - NewType over dataclass wrappers: zero runtime cost, full type-checker support
    - str Enums: outcomes and phases serialize into log records without custom encoders
"""

from enum import Enum
from typing import NewType


# ─── Identity Types ──────────────────────────────────────────────

FieldName = NewType("FieldName", str)
SessionId = NewType("SessionId", str)


# ─── Defaults ────────────────────────────────────────────────────

DEFAULT_AUTOSAVE_DELAY_MS = 800
DEFAULT_DUPLICATE_SUBMISSION_THRESHOLD_MS = 1000


# ─── Enums ───────────────────────────────────────────────────────

class SubmitOutcome(str, Enum):
    """Result of a single submit() call."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"  # carried by SubmissionError, never returned
    VALIDATION_REJECTED = "validation_rejected"
    DUPLICATE_REJECTED = "duplicate_rejected"
    CANCELLED = "cancelled"


class SubmissionPhase(str, Enum):
    """Submission pipeline states. Every attempt starts and ends at IDLE."""
    IDLE = "idle"
    VALIDATING = "validating"
    GUARD_CHECK = "guard_check"
    PRE_SUBMIT = "pre_submit"
    NORMALIZING = "normalizing"
    COMMITTING = "committing"
    POST_SUBMIT = "post_submit"
