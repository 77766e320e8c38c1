"""School → Class → Division cascading selection.

The selector never owns state.  It reads the current selection from the form
it is bound to and writes exclusively through that form's ``set_value``, so
the School→Class/Division reset declared in :mod:`scm_forms.ui.model.rules`
fires for selector writes exactly as for any other field change.

Filtering is a pure function (:func:`resolve`); :class:`CascadingSelector`
adds the teacher correction and display labels on top of it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Protocol, Sequence

from scm_forms.tools.data_source import DataSource, unwrap_payload
from scm_forms.ui.model.keys import (
    CLASS_ID_KEYS,
    CLASS_SCHOOL_KEYS,
    DIVISION_ID_KEYS,
    DIVISION_SCHOOL_KEYS,
    SCHOOL_ID_KEYS,
    entity_id,
    find_by_id,
    first_present,
    id_key,
)
from scm_forms.ui.model.options import normalize_options, substitute_placeholders
from scm_forms.ui.model.session import CurrentUser, SessionContext
from scm_forms.util.constants import (
    SCD_CLASS_FIELD,
    SCD_DIVISION_FIELD,
    SCD_SCHOOL_FIELD,
    FormSettings,
    get_form_settings,
)


class FieldBinding(Protocol):
    """What the selector needs from the form that owns the selection."""

    @property
    def values(self) -> Mapping[str, Any]: ...

    def set_value(self, name: str, value: Any) -> bool: ...


@dataclass(frozen=True)
class ReferenceCollections:
    """Read-only School/Class/Division lists shared by every selector."""

    schools: tuple[Mapping[str, Any], ...] = ()
    classes: tuple[Mapping[str, Any], ...] = ()
    divisions: tuple[Mapping[str, Any], ...] = ()
    loading: bool = False

    @classmethod
    def of(cls, schools=(), classes=(), divisions=(), loading: bool = False) -> "ReferenceCollections":
        """Build collections from arbitrary iterables, skipping non-mapping items."""
        return cls(
            schools=_mappings(schools),
            classes=_mappings(classes),
            divisions=_mappings(divisions),
            loading=loading,
        )


def _mappings(items: Any) -> tuple[Mapping[str, Any], ...]:
    if not isinstance(items, (list, tuple)):
        return ()
    return tuple(item for item in items if isinstance(item, Mapping))


@dataclass(frozen=True)
class SCDEndpoints:
    """List endpoints for the reference collections.

    URLs may carry ``{accountId}``.  ``method`` applies to all three.
    """

    schools_url: str
    classes_url: str
    divisions_url: str
    method: str = "post"


@dataclass(frozen=True)
class SCDResolution:
    filtered_classes: tuple[Mapping[str, Any], ...]
    filtered_divisions: tuple[Mapping[str, Any], ...]
    effective_school_id: Any
    division_enabled: bool


@dataclass(frozen=True)
class SCDSelection:
    school_id: Any = ""
    class_id: Any = ""
    division_id: Any = ""

    @classmethod
    def from_values(cls, values: Mapping[str, Any]) -> "SCDSelection":
        return cls(
            school_id=values.get(SCD_SCHOOL_FIELD, ""),
            class_id=values.get(SCD_CLASS_FIELD, ""),
            division_id=values.get(SCD_DIVISION_FIELD, ""),
        )


def _as_user(user: CurrentUser | SessionContext | None) -> CurrentUser | None:
    if isinstance(user, SessionContext):
        return user.user
    return user


def resolve(
    selection: SCDSelection | Mapping[str, Any],
    references: ReferenceCollections,
    user: CurrentUser | SessionContext | None = None,
) -> SCDResolution:
    """Filter the reference collections for *selection* as seen by *user*.

    Teachers with allocations see exactly their allocated classes and
    divisions.  Everyone else sees classes and divisions of the effective
    school; with no effective school every item passes.
    """
    if not isinstance(selection, SCDSelection):
        selection = SCDSelection.from_values(selection)
    current = _as_user(user)
    is_teacher = bool(current and current.is_teacher)
    effective_school = current.school_id if is_teacher else selection.school_id
    school_key = id_key(effective_school)

    allocations = current.allocated_classes if (is_teacher and current) else ()
    if allocations:
        class_ids = {id_key(a.class_id) for a in allocations if id_key(a.class_id)}
        division_ids = {id_key(a.division_id) for a in allocations if id_key(a.division_id)}
        classes = tuple(c for c in references.classes if entity_id(c, CLASS_ID_KEYS) in class_ids)
        divisions = tuple(d for d in references.divisions if entity_id(d, DIVISION_ID_KEYS) in division_ids)
    elif school_key:
        classes = tuple(
            c for c in references.classes if id_key(first_present(c, CLASS_SCHOOL_KEYS)) == school_key
        )
        # Divisions not tagged with a school stay visible.
        divisions = tuple(
            d
            for d in references.divisions
            if not id_key(first_present(d, DIVISION_SCHOOL_KEYS))
            or id_key(first_present(d, DIVISION_SCHOOL_KEYS)) == school_key
        )
    else:
        classes = references.classes
        divisions = references.divisions

    division_enabled = not references.loading and (
        is_teacher or bool(id_key(selection.school_id)) or bool(id_key(selection.class_id))
    )
    return SCDResolution(
        filtered_classes=classes,
        filtered_divisions=divisions,
        effective_school_id=effective_school,
        division_enabled=division_enabled,
    )


async def _fetch_collection(
    source: DataSource,
    url: str,
    method: str,
    session: SessionContext | None,
    settings: FormSettings,
    label: str,
) -> list[Mapping[str, Any]]:
    try:
        target = substitute_placeholders(url, session)
        if method.lower() == "post":
            response = await source.post(target, settings.page_request())
        else:
            response = await source.get(target)
    except Exception:
        logging.warning("Failed to load %s reference list", label, exc_info=True)
        return []
    items = unwrap_payload(unwrap_payload(response))
    if not isinstance(items, list):
        logging.debug("%s reference payload is not a list; using empty collection", label)
        return []
    return [item for item in items if isinstance(item, Mapping)]


async def load_reference_collections(
    source: DataSource,
    endpoints: SCDEndpoints,
    session: SessionContext | None,
    settings: FormSettings | None = None,
) -> ReferenceCollections:
    """Fetch schools, classes and divisions concurrently.

    A failing list is logged and comes back empty; the other two are kept.
    """
    settings = settings or get_form_settings()
    schools, classes, divisions = await asyncio.gather(
        _fetch_collection(source, endpoints.schools_url, endpoints.method, session, settings, "school"),
        _fetch_collection(source, endpoints.classes_url, endpoints.method, session, settings, "class"),
        _fetch_collection(source, endpoints.divisions_url, endpoints.method, session, settings, "division"),
    )
    return ReferenceCollections.of(schools, classes, divisions)


@dataclass
class CascadingSelector:
    """Bind the reference collections to one form's School/Class/Division."""

    binding: FieldBinding
    references: ReferenceCollections = field(default_factory=ReferenceCollections)
    session: SessionContext | None = None

    @property
    def user(self) -> CurrentUser | None:
        return self.session.user if self.session is not None else None

    @property
    def is_teacher(self) -> bool:
        return bool(self.session and self.session.is_teacher)

    def selection(self) -> SCDSelection:
        return SCDSelection.from_values(self.binding.values)

    def sync(self) -> bool:
        """Pin a teacher's school; return ``True`` when the selection changed.

        The correction only goes one way: the stored school is overwritten
        with the teacher's and the dependent picks are cleared.
        """
        if not self.is_teacher or self.session is None:
            return False
        pinned = self.session.teacher_school_id
        if pinned is None:
            return False
        if id_key(self.binding.values.get(SCD_SCHOOL_FIELD)) == id_key(pinned):
            return False
        if not self.binding.set_value(SCD_SCHOOL_FIELD, pinned):
            logging.debug("Form refused teacher school %s; selection left as is", pinned)
            return False
        self.binding.set_value(SCD_CLASS_FIELD, "")
        self.binding.set_value(SCD_DIVISION_FIELD, "")
        logging.debug("Pinned teacher school %s", pinned)
        return True

    def resolve(self) -> SCDResolution:
        self.sync()
        return resolve(self.selection(), self.references, self.user)

    def set_references(self, references: ReferenceCollections) -> None:
        self.references = references

    # ---- selection -----------------------------------------------------
    def select_school(self, school: Any) -> bool:
        if self.is_teacher and self.session is not None and self.session.teacher_school_id is not None:
            logging.debug("Teacher school is fixed; ignoring pick %r", school)
            self.sync()
            return False
        return self.binding.set_value(SCD_SCHOOL_FIELD, self._pick_id(school, SCHOOL_ID_KEYS))

    def select_class(self, klass: Any) -> bool:
        return self.binding.set_value(SCD_CLASS_FIELD, self._pick_id(klass, CLASS_ID_KEYS))

    def select_division(self, division: Any) -> bool:
        if not self.resolve().division_enabled:
            logging.debug("Division picker is disabled; ignoring pick %r", division)
            return False
        return self.binding.set_value(SCD_DIVISION_FIELD, self._pick_id(division, DIVISION_ID_KEYS))

    @staticmethod
    def _pick_id(item: Any, keys: Sequence[str]) -> Any:
        if isinstance(item, Mapping):
            value = first_present(item, keys)
            return "" if value is None else value
        return "" if item is None else item

    # ---- display -------------------------------------------------------
    def school_label(self) -> str:
        found = find_by_id(self.references.schools, self.binding.values.get(SCD_SCHOOL_FIELD), SCHOOL_ID_KEYS)
        return _name_or(found, "Select school")

    def class_label(self) -> str:
        resolution = self.resolve()
        found = find_by_id(resolution.filtered_classes, self.binding.values.get(SCD_CLASS_FIELD), CLASS_ID_KEYS)
        return _name_or(found, "Select class")

    def division_label(self) -> str:
        resolution = self.resolve()
        found = find_by_id(
            resolution.filtered_divisions, self.binding.values.get(SCD_DIVISION_FIELD), DIVISION_ID_KEYS
        )
        return _name_or(found, "Select division")

    def class_options(self) -> List[Any]:
        return normalize_options(
            [{"id": entity_id(c, CLASS_ID_KEYS), "name": c.get("name") or ""} for c in self.resolve().filtered_classes]
        )

    def division_options(self) -> List[Any]:
        return normalize_options(
            [
                {"id": entity_id(d, DIVISION_ID_KEYS), "name": d.get("name") or ""}
                for d in self.resolve().filtered_divisions
            ]
        )


def _name_or(item: Mapping[str, Any] | None, placeholder: str) -> str:
    if item is not None and item.get("name") is not None:
        return str(item["name"])
    return placeholder


__all__ = [
    "CascadingSelector",
    "FieldBinding",
    "ReferenceCollections",
    "SCDEndpoints",
    "SCDResolution",
    "SCDSelection",
    "load_reference_collections",
    "resolve",
]
