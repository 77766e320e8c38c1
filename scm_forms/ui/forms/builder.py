"""Schema-driven form description and initial state construction."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Sequence

from scm_forms.ui.model.options import (
    Option,
    OptionsSource,
    RemoteOptions,
    StaticOptions,
    static_options,
)


class FieldKind(str, Enum):
    TEXT = "text"
    EMAIL = "email"
    PASSWORD = "password"
    NUMBER = "number"
    TEL = "tel"
    DATE = "date"
    SELECT = "select"
    TEXTAREA = "textarea"


DefaultFactory = Callable[["FieldDescriptor"], Any]


@dataclass(slots=True)
class FieldDescriptor:
    """Describe a single form field.

    ``source`` is the tagged option population path of a select field:
    :class:`StaticOptions`, :class:`RemoteOptions`, or ``None`` for an empty
    list.
    """

    name: str
    label: str
    kind: FieldKind = FieldKind.TEXT
    required: bool = False
    disabled: bool = False
    source: OptionsSource | None = None
    max_length: int | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Field descriptor requires a name")
        self.kind = FieldKind(self.kind)
        if self.source is not None and not isinstance(self.source, (StaticOptions, RemoteOptions)):
            raise ValueError(f"Unsupported option source for {self.name}: {self.source!r}")
        if self.max_length is not None:
            try:
                self.max_length = int(self.max_length)
            except (TypeError, ValueError):
                raise ValueError(f"Field {self.name} has invalid maxLength {self.max_length!r}") from None
            if self.max_length < 1:
                raise ValueError(f"Field {self.name} has invalid maxLength {self.max_length!r}")

    @property
    def is_select(self) -> bool:
        return self.kind is FieldKind.SELECT

    @property
    def static_choices(self) -> tuple[Option, ...]:
        if isinstance(self.source, StaticOptions):
            return self.source.options
        return ()

    @property
    def remote(self) -> RemoteOptions | None:
        return self.source if isinstance(self.source, RemoteOptions) else None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "FieldDescriptor":
        """Parse the screen-level field shape.

        Accepts ``name``, ``label``, ``type``, ``required``, ``disabled``,
        ``maxLength``, ``options``, ``optionsUrl``, ``optionsMethod`` and
        ``optionsQuery``.
        """
        name = str(raw.get("name") or "")
        options = raw.get("options")
        options_url = raw.get("optionsUrl")
        if options and options_url:
            raise ValueError(f"Field {name} declares both options and optionsUrl")
        source: OptionsSource | None = None
        if options:
            source = static_options(options)
        elif options_url:
            method = str(raw.get("optionsMethod") or "get").lower()
            if method not in ("get", "post"):
                raise ValueError(f"Field {name} has unsupported optionsMethod {method!r}")
            source = RemoteOptions(
                url=str(options_url),
                method=method,  # type: ignore[arg-type]
                query=dict(raw.get("optionsQuery") or {}),
            )
        try:
            kind = FieldKind(str(raw.get("type") or raw.get("kind") or FieldKind.TEXT.value))
        except ValueError as exc:
            raise ValueError(f"Field {name} has unsupported type {raw.get('type')!r}") from exc
        return cls(
            name=name,
            label=str(raw.get("label") or name),
            kind=kind,
            required=bool(raw.get("required", False)),
            disabled=bool(raw.get("disabled", False)),
            source=source,
            max_length=raw.get("maxLength"),
        )


def coerce_descriptors(schema: Iterable[FieldDescriptor | Mapping[str, Any]]) -> list[FieldDescriptor]:
    """Return descriptors, parsing mapping entries and rejecting duplicates."""
    descriptors: list[FieldDescriptor] = []
    seen: set[str] = set()
    for entry in schema:
        descriptor = entry if isinstance(entry, FieldDescriptor) else FieldDescriptor.from_mapping(entry)
        if descriptor.name in seen:
            raise ValueError(f"Duplicate field name: {descriptor.name}")
        seen.add(descriptor.name)
        descriptors.append(descriptor)
    return descriptors


class FormBuilder:
    """Build the default form state described by a list of descriptors."""

    def __init__(self, schema: Iterable[FieldDescriptor | Mapping[str, Any]]) -> None:
        self.descriptors: list[FieldDescriptor] = coerce_descriptors(schema)
        self._by_name = {d.name: d for d in self.descriptors}
        self._factories: dict[FieldKind, DefaultFactory] = {
            FieldKind.SELECT: self._select_default,
        }

    def get(self, name: str) -> FieldDescriptor | None:
        return self._by_name.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self):
        return iter(self.descriptors)

    @property
    def names(self) -> Sequence[str]:
        return [d.name for d in self.descriptors]

    @property
    def select_fields(self) -> list[FieldDescriptor]:
        return [d for d in self.descriptors if d.is_select]

    def build_state(self) -> dict[str, Any]:
        """Return a fresh state mapping with one default per descriptor."""
        return {d.name: self._default_for(d) for d in self.descriptors}

    # ---- factories -----------------------------------------------------
    def _default_for(self, descriptor: FieldDescriptor) -> Any:
        factory = self._factories.get(descriptor.kind, self._scalar_default)
        return factory(descriptor)

    @staticmethod
    def _scalar_default(_descriptor: FieldDescriptor) -> Any:
        return ""

    @staticmethod
    def _select_default(_descriptor: FieldDescriptor) -> Any:
        return None


__all__ = ["FieldKind", "FieldDescriptor", "FormBuilder", "coerce_descriptors"]
