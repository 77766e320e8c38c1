"""Identifier lookup for reference entities with inconsistent key names.

Schools, classes and divisions come from several backend endpoints that do
not agree on field names (``id`` vs ``schoolClassId`` vs ``classId`` and so
on).  Every lookup goes through :func:`first_present` with one of the
ordered candidate lists below; ids are always compared as strings.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

SCHOOL_ID_KEYS: tuple[str, ...] = ("id", "schoolbranchId", "schoolId")
CLASS_ID_KEYS: tuple[str, ...] = ("id", "schoolClassId", "classId")
DIVISION_ID_KEYS: tuple[str, ...] = ("id", "divisionId")

CLASS_SCHOOL_KEYS: tuple[str, ...] = ("schoolbranchId", "schoolBranchId", "schoolId", "branchId")
DIVISION_SCHOOL_KEYS: tuple[str, ...] = ("schoolId", "schoolBranchId", "schoolbranchId")


def first_present(item: Any, keys: Sequence[str]) -> Any:
    """Return the first non-``None`` value of *keys* in *item*, else ``None``."""
    if not isinstance(item, Mapping):
        return None
    for key in keys:
        value = item.get(key)
        if value is not None:
            return value
    return None


def id_key(value: Any) -> str:
    """Canonical string form used for every id comparison."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def entity_id(item: Any, keys: Sequence[str]) -> str:
    """Return the canonical id of *item* using the *keys* precedence."""
    return id_key(first_present(item, keys))


def find_by_id(items: Iterable[Any], target: Any, keys: Sequence[str]) -> Any:
    """Return the first item whose id matches *target*, or ``None``.

    An empty *target* never matches, so an unset selection cannot pick up an
    entity that happens to lack an id.
    """
    wanted = id_key(target)
    if not wanted:
        return None
    for item in items:
        if entity_id(item, keys) == wanted:
            return item
    return None


__all__ = [
    "SCHOOL_ID_KEYS",
    "CLASS_ID_KEYS",
    "DIVISION_ID_KEYS",
    "CLASS_SCHOOL_KEYS",
    "DIVISION_SCHOOL_KEYS",
    "first_present",
    "id_key",
    "entity_id",
    "find_by_id",
]
