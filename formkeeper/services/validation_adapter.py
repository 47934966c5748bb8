"""Validation Adapter — runs the rule evaluator and turns its output into messages.

Invariants:
    - Evaluator output is normalized to RuleViolation before translation
    - Every violation yields exactly one ValidationMessage, in evaluator order
    - A translator failure falls back to the untranslated key (logged), never aborts a pass
    - The adapter never stores messages: the session swaps them into its store in one step

Design Decisions:
    - Default evaluator re-validates the record against its own pydantic schema,
      the same constraints the page declared on the model
    - Error locations are mapped from input keys (aliases) back to field names,
      so messages always file under the dotted field path used by notify_field_changed
"""

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ValidationError

from formkeeper.core.domain_types import FieldName
from formkeeper.core.protocols import RuleEvaluator, Translator
from formkeeper.core.validation import (
    RECORD_LEVEL,
    RuleViolation,
    ValidationMessage,
    coerce_violation,
)

logger = logging.getLogger(__name__)


def default_translator(key: str, args: Mapping[str, Any] | None = None) -> str:
    """Identity translation; formats {placeholders} from args when they all resolve."""
    if not args:
        return key
    try:
        return key.format(**args)
    except (KeyError, IndexError, ValueError):
        return key


def _input_key(name: str, info: Any) -> str:
    if isinstance(info.validation_alias, str):
        return info.validation_alias
    return info.alias or name


def _validation_input(value: Any) -> Any:
    """Live attribute values keyed the way the model expects them on input.

    Excluded fields are included. Nested models become dicts, so their own
    constraints are checked again.
    """
    if isinstance(value, BaseModel):
        return {
            _input_key(name, info): _validation_input(getattr(value, name))
            for name, info in type(value).model_fields.items()
        }
    if isinstance(value, (list, tuple)):
        return [_validation_input(item) for item in value]
    if isinstance(value, dict):
        return {key: _validation_input(item) for key, item in value.items()}
    return value


def _field_path(record: BaseModel, loc: tuple) -> FieldName:
    """Translate an error location (input keys) back to a dotted field path."""
    parts: list[str] = []
    current: Any = record
    for part in loc:
        if isinstance(current, BaseModel) and isinstance(part, str):
            by_key = {
                _input_key(name, info): name
                for name, info in type(current).model_fields.items()
            }
            name = by_key.get(part, part)
            parts.append(name)
            current = getattr(current, name, None)
        elif isinstance(current, (list, tuple)) and isinstance(part, int):
            parts.append(str(part))
            current = current[part] if 0 <= part < len(current) else None
        else:
            parts.append(str(part))
            current = None
    return FieldName(".".join(parts) or RECORD_LEVEL)


def pydantic_rule_evaluator(record: BaseModel) -> list[RuleViolation]:
    """Validate the record's current values against its model's constraints."""
    try:
        type(record).model_validate(_validation_input(record))
    except ValidationError as exc:
        return [
            RuleViolation(
                _field_path(record, tuple(err["loc"])),
                err["msg"],
                dict(err.get("ctx") or {}),
            )
            for err in exc.errors()
        ]
    return []


class ValidationAdapter:
    """Evaluator + translator pair used by FormSession.validate()."""

    def __init__(
        self,
        evaluator: RuleEvaluator | None = None,
        translator: Translator | None = None,
    ):
        self._evaluator = evaluator or pydantic_rule_evaluator
        self._translator = translator or default_translator

    def evaluate(self, record: Any) -> list[RuleViolation]:
        return [coerce_violation(raw) for raw in self._evaluator(record) or ()]

    def validate(self, record: Any) -> list[ValidationMessage]:
        return [
            ValidationMessage(v.field, self._translate(v))
            for v in self.evaluate(record)
        ]

    def _translate(self, violation: RuleViolation) -> str:
        try:
            return self._translator(violation.message_key, violation.args)
        except Exception as e:
            logger.warning(
                "Translation failed for '%s': %s", violation.message_key, e,
                extra={"field_name": violation.field},
            )
            return violation.message_key
