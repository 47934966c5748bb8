"""Validation Messages — field-scoped results of a validation pass.

Invariants:
    - ValidationMessage and RuleViolation are immutable
    - ValidationMessageStore exposes one tuple at a time: replace() swaps the whole
      set in a single assignment, so readers never see a mix of old and new messages
    - A message with field "" belongs to the record as a whole
"""

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from formkeeper.core.domain_types import FieldName

RECORD_LEVEL = FieldName("")


@dataclass(frozen=True)
class RuleViolation:
    """Raw evaluator output: untranslated message key plus format args."""
    field: FieldName
    message_key: str
    args: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ValidationMessage:
    field: FieldName
    text: str


def coerce_violation(raw: Any) -> RuleViolation:
    """Accept a RuleViolation or a (field, key[, args]) tuple."""
    if isinstance(raw, RuleViolation):
        return raw
    if isinstance(raw, tuple) and len(raw) in (2, 3):
        field_name, key = raw[0], raw[1]
        args = raw[2] if len(raw) == 3 and raw[2] is not None else {}
        return RuleViolation(FieldName(field_name or RECORD_LEVEL), str(key), dict(args))
    raise TypeError(
        f"Rule evaluator returned {type(raw).__name__}; "
        "expected RuleViolation or (field, message_key, args)",
    )


class ValidationMessageStore:
    """Active validation messages of one form session."""

    def __init__(self) -> None:
        self._messages: tuple[ValidationMessage, ...] = ()

    @property
    def messages(self) -> tuple[ValidationMessage, ...]:
        return self._messages

    def replace(self, messages: Iterable[ValidationMessage]) -> None:
        self._messages = tuple(messages)

    def add(self, field_name: str, text: str) -> None:
        self._messages = self._messages + (ValidationMessage(FieldName(field_name), text),)

    def clear(self) -> None:
        self._messages = ()

    def for_field(self, field_name: str) -> list[str]:
        return [m.text for m in self._messages if m.field == field_name]

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[ValidationMessage]:
        return iter(self._messages)

    def __bool__(self) -> bool:
        return bool(self._messages)
