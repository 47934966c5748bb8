"""Error Hierarchy — typed, categorized exceptions for all formkeeper failure modes.

Invariants:
    - Every error has a code (str), category (ErrorCategory), severity (ErrorSeverity)
    - Validation failures are never raised — they become ValidationMessages
    - AutoSaveError is reported through hooks and logs, never raised into the caller
    - SubmissionError always reaches the caller of submit()
    - Cancellation is not an error and has no class here

Design Decisions:
    - Single hierarchy with FormKeeperError base: callers catch one type for all failures
    - ErrorContext as dataclass: rich observability without coupling to logging framework
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from datetime import datetime, timezone

from formkeeper.core.domain_types import SubmitOutcome


class ErrorSeverity(str, Enum):
    """Error severity for observability and caller handling."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    LIFECYCLE = "lifecycle"
    AUTOSAVE = "autosave"
    SUBMISSION = "submission"
    INTERNAL = "internal"


@dataclass
class ErrorContext:
    """Rich context for error observability and debugging."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    session_id: str | None = None
    field_name: str | None = None
    user_message: str | None = None
    debug_info: dict[str, Any] | None = None


class FormKeeperError(Exception):
    """Base exception for all formkeeper errors."""

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: ErrorContext | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()

    @property
    def recoverable(self) -> bool:
        return self.severity in (ErrorSeverity.INFO, ErrorSeverity.WARNING)

    def to_response(self) -> dict:
        """Convert to a JSON-safe error envelope for the page layer."""
        return {
            "error": {
                "code": self.code,
                "message": self.context.user_message or self.message,
                "category": self.category.value,
                "severity": self.severity.value,
                "recoverable": self.recoverable,
                "timestamp": self.context.timestamp.isoformat(),
                "context": {
                    "session_id": self.context.session_id,
                    "field_name": self.context.field_name,
                },
            }
        }


# ─── Caller Errors ──────────────────────────────────────────────

class FieldNotFoundError(FormKeeperError):
    """Field name does not resolve to a field of the bound record."""
    def __init__(self, field_name: str, context: ErrorContext | None = None):
        super().__init__(
            f"Field '{field_name}' does not exist on the bound record",
            "FIELD_NOT_FOUND", ErrorCategory.VALIDATION,
            ErrorSeverity.ERROR, context,
        )
        self.field_name = field_name


class FieldConfigError(FormKeeperError):
    """Field configuration declared against a schema is invalid."""
    def __init__(self, message: str, field_name: str, context: ErrorContext | None = None):
        super().__init__(
            message, "FIELD_CONFIG_INVALID", ErrorCategory.CONFIGURATION,
            ErrorSeverity.ERROR, context,
        )
        self.field_name = field_name


class SessionNotInitializedError(FormKeeperError):
    """Operation requires a bound record but initialize() was never called."""
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "Form session has no bound record. Call initialize() first.",
            "SESSION_NOT_INITIALIZED", ErrorCategory.LIFECYCLE,
            ErrorSeverity.ERROR, context,
        )


class SessionClosedError(FormKeeperError):
    """Operation attempted on a session that was already torn down."""
    def __init__(self, operation: str, context: ErrorContext | None = None):
        super().__init__(
            f"Cannot {operation}: form session is torn down",
            "SESSION_CLOSED", ErrorCategory.LIFECYCLE,
            ErrorSeverity.ERROR, context,
        )
        self.operation = operation


# ─── Hook Failures ──────────────────────────────────────────────

class AutoSaveError(FormKeeperError):
    """Commit hook failed for one field. Non-fatal; other fields unaffected."""
    def __init__(
        self, field_name: str, cause: BaseException,
        context: ErrorContext | None = None,
    ):
        ctx = context or ErrorContext()
        ctx.field_name = field_name
        super().__init__(
            f"Autosave of '{field_name}' failed: {cause}",
            "AUTOSAVE_FAILED", ErrorCategory.AUTOSAVE,
            ErrorSeverity.WARNING, ctx,
        )
        self.field_name = field_name
        self.cause = cause


class SubmissionError(FormKeeperError):
    """Submit hook failed. Fatal to this attempt, not to the session."""
    def __init__(self, cause: BaseException, context: ErrorContext | None = None):
        super().__init__(
            f"Submission failed: {cause}",
            "SUBMISSION_FAILED", ErrorCategory.SUBMISSION,
            ErrorSeverity.ERROR, context,
        )
        self.cause = cause
        self.outcome = SubmitOutcome.FAILED
