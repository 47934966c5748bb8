"""Record Access — dotted-path reads, writes and snapshots on pydantic records.

Invariants:
    - Every path segment must name a declared field of the model it is resolved against
    - Snapshots are deep copies: later edits to the live record never leak into them
    - read and write need every parent on the path to be set; snapshot_fields reads
      a path below an unset (None) optional model as None
    - All functions are PURE apart from write_field, which mutates the given record only
"""

import copy
from typing import Any

from pydantic import BaseModel

from formkeeper.core.errors import FieldNotFoundError


def _split(path: str) -> list[str]:
    parts = path.split(".")
    if not path or any(not p for p in parts):
        raise FieldNotFoundError(path)
    return parts


def _resolve_parent(record: BaseModel, path: str) -> tuple[BaseModel, str]:
    """Walk to the model that owns the last segment of path."""
    parts = _split(path)
    target: Any = record
    for segment in parts[:-1]:
        if not isinstance(target, BaseModel) or segment not in type(target).model_fields:
            raise FieldNotFoundError(path)
        target = getattr(target, segment)
    if not isinstance(target, BaseModel) or parts[-1] not in type(target).model_fields:
        raise FieldNotFoundError(path)
    return target, parts[-1]


def has_field(record: BaseModel, path: str) -> bool:
    try:
        _resolve_parent(record, path)
    except FieldNotFoundError:
        return False
    return True


def read_field(record: BaseModel, path: str) -> Any:
    owner, name = _resolve_parent(record, path)
    return getattr(owner, name)


def write_field(record: BaseModel, path: str, value: Any) -> Any:
    """Assign value at path. Returns the value that was replaced."""
    owner, name = _resolve_parent(record, path)
    old = getattr(owner, name)
    setattr(owner, name, value)
    return old


def snapshot(value: Any) -> Any:
    return copy.deepcopy(value)


def _read_through_none(record: BaseModel, path: str) -> Any:
    target: Any = record
    for segment in _split(path):
        if target is None:
            return None
        if not isinstance(target, BaseModel) or segment not in type(target).model_fields:
            raise FieldNotFoundError(path)
        target = getattr(target, segment)
    return target


def snapshot_fields(record: BaseModel, paths) -> dict[str, Any]:
    """Deep-copied values for each path, keyed by path.

    A path under an optional nested model that is currently None snapshots as None.
    """
    return {path: snapshot(_read_through_none(record, path)) for path in paths}
