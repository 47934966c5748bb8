"""Field Normalization — trim and whitespace collapse for string fields before submit.

Invariants:
    - Only str values are touched; every other type passes through unchanged
    - A field is written back only when its cleaned value differs from the current one
    - normalize_text is PURE; normalize_record mutates only the record it is given
"""

import re

from pydantic import BaseModel

_WHITESPACE_RUN = re.compile(r"\s+")


def normalize_text(value: str, trim: bool = True, collapse_whitespace: bool = True) -> str:
    """Trim, then replace every whitespace run with a single space."""
    if not value:
        return value
    cleaned = value.strip() if trim else value
    if collapse_whitespace:
        cleaned = _WHITESPACE_RUN.sub(" ", cleaned)
    return cleaned


def normalize_record(
    record: BaseModel, trim: bool = True, collapse_whitespace: bool = True,
) -> list[str]:
    """Normalize top-level string fields in place. Returns names of fields that changed."""
    if not (trim or collapse_whitespace):
        return []
    changed = []
    for name in type(record).model_fields:
        value = getattr(record, name)
        if not isinstance(value, str):
            continue
        cleaned = normalize_text(value, trim, collapse_whitespace)
        if cleaned != value:
            setattr(record, name, cleaned)
            changed.append(name)
    return changed
