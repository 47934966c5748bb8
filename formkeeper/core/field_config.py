"""Field Configuration — statically declared per-field autosave and tracking settings.

Invariants:
    - A FieldConfigMap is built ONCE per record schema and never mutated afterwards
    - Every configured path resolves against the schema at build time (FieldConfigError otherwise)
    - Fields without an entry track changes and never autosave
    - A field marked for autosave without an explicit delay uses the map's default delay

Design Decisions:
    - Builder over attribute reflection at edit time: the edit path is a dict lookup
    - autosave() marker stored in pydantic json_schema_extra so schemas can declare
      autosave next to the field; from_model() reads the markers once and caches per class
    - Optional nested models (``Contact | None``) are walked like required ones; a
      union of two or more models is treated as a leaf
"""

from dataclasses import dataclass, field
from datetime import timedelta
from functools import lru_cache
from types import MappingProxyType, UnionType
from typing import Any, Mapping, Union, get_args, get_origin

from pydantic import BaseModel

from formkeeper.core.domain_types import DEFAULT_AUTOSAVE_DELAY_MS, FieldName
from formkeeper.core.errors import FieldConfigError

_MARKER_KEY = "formkeeper"


@dataclass(frozen=True)
class FieldAutoSaveConfig:
    """Per-field behaviour: autosave on/off, debounce delay, change tracking."""
    enabled: bool = False
    delay: timedelta = timedelta(milliseconds=DEFAULT_AUTOSAVE_DELAY_MS)
    track_changes: bool = True

    def __post_init__(self):
        if self.delay < timedelta(0):
            raise ValueError("autosave delay must be >= 0")

    @property
    def delay_seconds(self) -> float:
        return self.delay.total_seconds()


@dataclass(frozen=True)
class FieldConfigMap:
    """Immutable lookup of FieldAutoSaveConfig by field path."""
    entries: Mapping[str, FieldAutoSaveConfig] = field(
        default_factory=lambda: MappingProxyType({}),
    )
    default_delay: timedelta = timedelta(milliseconds=DEFAULT_AUTOSAVE_DELAY_MS)

    def get(self, field_name: str) -> FieldAutoSaveConfig | None:
        return self.entries.get(field_name)

    def autosave_enabled(self, field_name: str) -> bool:
        config = self.entries.get(field_name)
        return config is not None and config.enabled

    def tracks_changes(self, field_name: str) -> bool:
        config = self.entries.get(field_name)
        return config is None or config.track_changes

    @property
    def autosave_fields(self) -> tuple[FieldName, ...]:
        return tuple(
            FieldName(name) for name, cfg in self.entries.items() if cfg.enabled
        )

    @classmethod
    def from_model(
        cls, model_cls: type[BaseModel],
        default_delay_ms: int = DEFAULT_AUTOSAVE_DELAY_MS,
    ) -> "FieldConfigMap":
        """Build from autosave()/untracked() markers. Cached per (class, delay)."""
        return _map_from_model(model_cls, default_delay_ms)


class FieldConfigBuilder:
    """Fluent builder for a FieldConfigMap.

    Example:
        FieldConfigBuilder(Article).autosave("title", delay_ms=100).untracked("notes").build()
    """

    def __init__(
        self, record_type: type[BaseModel] | None = None,
        default_delay_ms: int = DEFAULT_AUTOSAVE_DELAY_MS,
    ):
        self._record_type = record_type
        self._default_delay = timedelta(milliseconds=default_delay_ms)
        self._entries: dict[str, FieldAutoSaveConfig] = {}

    def autosave(
        self, field_name: str, delay_ms: int | None = None,
        track_changes: bool = True,
    ) -> "FieldConfigBuilder":
        self._check_path(field_name)
        if delay_ms is not None and delay_ms < 0:
            raise FieldConfigError(
                f"Autosave delay for '{field_name}' must be >= 0 ms", field_name,
            )
        delay = (
            self._default_delay if delay_ms is None
            else timedelta(milliseconds=delay_ms)
        )
        self._entries[field_name] = FieldAutoSaveConfig(
            enabled=True, delay=delay, track_changes=track_changes,
        )
        return self

    def untracked(self, field_name: str) -> "FieldConfigBuilder":
        """Edits to this field never set has_changes."""
        self._check_path(field_name)
        current = self._entries.get(field_name, FieldAutoSaveConfig(delay=self._default_delay))
        self._entries[field_name] = FieldAutoSaveConfig(
            enabled=current.enabled, delay=current.delay, track_changes=False,
        )
        return self

    def build(self) -> FieldConfigMap:
        return FieldConfigMap(
            entries=MappingProxyType(dict(self._entries)),
            default_delay=self._default_delay,
        )

    def _check_path(self, field_name: str) -> None:
        if self._record_type is None:
            return
        if not _schema_has_path(self._record_type, field_name):
            raise FieldConfigError(
                f"'{field_name}' is not a field of {self._record_type.__name__}",
                field_name,
            )


# ─── Schema markers ──────────────────────────────────────────────

def autosave(delay_ms: int | None = None, track_changes: bool = True) -> dict:
    """json_schema_extra marker: ``title: str = Field("", json_schema_extra=autosave(300))``."""
    marker: dict[str, Any] = {"autosave": True, "track_changes": track_changes}
    if delay_ms is not None:
        marker["delay_ms"] = delay_ms
    return {_MARKER_KEY: marker}


def untracked() -> dict:
    """json_schema_extra marker for fields that never set has_changes."""
    return {_MARKER_KEY: {"autosave": False, "track_changes": False}}


def get_autosave_config(
    record_type: type[BaseModel], field_name: str,
    default_delay_ms: int = DEFAULT_AUTOSAVE_DELAY_MS,
) -> FieldAutoSaveConfig | None:
    """Field metadata provider: config declared on record_type for field_name."""
    return FieldConfigMap.from_model(record_type, default_delay_ms).get(field_name)


# ─── Internals ───────────────────────────────────────────────────

def _is_model(tp: Any) -> bool:
    return isinstance(tp, type) and get_origin(tp) is None and issubclass(tp, BaseModel)


def _nested_model(annotation: Any) -> type[BaseModel] | None:
    """The model behind annotation, looking through Optional and single-model unions."""
    if _is_model(annotation):
        return annotation
    if get_origin(annotation) in (Union, UnionType):
        models = [arg for arg in get_args(annotation) if _is_model(arg)]
        if len(models) == 1:
            return models[0]
    return None


def _schema_has_path(model_cls: type[BaseModel], path: str) -> bool:
    current: type[BaseModel] | None = model_cls
    for segment in path.split("."):
        if current is None or segment not in current.model_fields:
            return False
        current = _nested_model(current.model_fields[segment].annotation)
    return True


def _collect_markers(
    model_cls: type[BaseModel], prefix: str, builder: FieldConfigBuilder,
) -> None:
    for name, info in model_cls.model_fields.items():
        path = f"{prefix}{name}"
        extra = info.json_schema_extra
        marker = extra.get(_MARKER_KEY) if isinstance(extra, dict) else None
        if isinstance(marker, dict):
            if marker.get("autosave"):
                builder.autosave(
                    path, marker.get("delay_ms"),
                    track_changes=marker.get("track_changes", True),
                )
            elif marker.get("track_changes") is False:
                builder.untracked(path)
        nested = _nested_model(info.annotation)
        if nested is not None:
            _collect_markers(nested, f"{path}.", builder)


@lru_cache(maxsize=None)
def _map_from_model(model_cls: type[BaseModel], default_delay_ms: int) -> FieldConfigMap:
    builder = FieldConfigBuilder(model_cls, default_delay_ms)
    _collect_markers(model_cls, "", builder)
    return builder.build()
