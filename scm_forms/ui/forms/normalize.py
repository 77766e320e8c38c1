"""Normalisation of fetched records before they enter the form state."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Iterable, Mapping

from scm_forms.ui.forms.builder import FieldDescriptor, FieldKind
from scm_forms.util.constants import DATE_FIELD_ALIASES, IDENTIFIER_FIELDS

_DATE_FORMAT = "%Y-%m-%d"


def parse_date(value: Any) -> date | None:
    """Best-effort conversion of a record value into a :class:`date`.

    Accepts ``date``/``datetime`` objects, ISO-8601 strings (with or without a
    time part, ``Z`` suffix included) and epoch milliseconds.  The calendar
    date is taken as written; no timezone shifting is applied to strings.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc).date()
        except (OverflowError, OSError, ValueError):
            return None
    text = str(value).strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def normalize_date(value: Any) -> str:
    """Return *value* as ``YYYY-MM-DD``, or ``""`` when it is not a date."""
    parsed = parse_date(value)
    if parsed is None:
        if value not in (None, ""):
            logging.debug("Discarding unparseable date value %r", value)
        return ""
    return parsed.strftime(_DATE_FORMAT)


def normalize_identifier(value: Any) -> str:
    """String form of a numeric-looking identifier; ``None``/``""`` become ``""``."""
    if value is None or value == "":
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def normalize_record(
    raw: Mapping[str, Any] | None,
    descriptors: Iterable[FieldDescriptor],
    *,
    identifier_fields: Iterable[str] = IDENTIFIER_FIELDS,
) -> dict[str, Any]:
    """Return a copy of *raw* ready to replace the form state.

    - ``date`` fields (and ``dob``, also read from ``date_of_birth``) become
      ``YYYY-MM-DD`` strings or ``""``.
    - ``classId``, ``divisionId``, ``schoolId`` and ``rollNo`` become strings.
    - password fields are blanked so stored credentials never reach the form.
    """
    record: dict[str, Any] = dict(raw or {})
    descriptor_list = list(descriptors)
    descriptor_names = {d.name for d in descriptor_list}

    date_fields = {d.name for d in descriptor_list if d.kind is FieldKind.DATE}
    date_fields.update(DATE_FIELD_ALIASES.keys())
    for name in date_fields:
        aliases = DATE_FIELD_ALIASES.get(name, (name,))
        source_value = None
        for alias in aliases:
            candidate = record.get(alias)
            if candidate not in (None, ""):
                source_value = candidate
                break
        if name in record or name in descriptor_names or source_value is not None:
            record[name] = normalize_date(source_value)

    for name in identifier_fields:
        record[name] = normalize_identifier(record.get(name))

    for descriptor in descriptor_list:
        if descriptor.kind is FieldKind.PASSWORD:
            record[descriptor.name] = ""

    return record


__all__ = ["normalize_date", "normalize_identifier", "normalize_record", "parse_date"]
