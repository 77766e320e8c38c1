"""Option sources for select-type form fields.

This module belongs to the *model* layer.  A select field is populated
either from a static list (:class:`StaticOptions`) or from a remote list
endpoint (:class:`RemoteOptions`).  Remote payloads come in several shapes,
so every item is normalised into an :class:`Option` before it reaches the
form state.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Literal, Mapping, Sequence, Union

from scm_forms.tools.data_source import DataSource, append_query, unwrap_payload
from scm_forms.ui.model.keys import id_key
from scm_forms.ui.model.session import SessionContext
from scm_forms.util.constants import ACCOUNT_ID_PLACEHOLDER, FormSettings

_PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")

OptionsMethod = Literal["get", "post"]


@dataclass(frozen=True, slots=True)
class Option:
    """A single ``(label, value)`` entry of a select field."""

    label: str
    value: Any

    def as_dict(self) -> dict[str, Any]:
        return {"label": self.label, "value": self.value}


@dataclass(frozen=True, slots=True)
class StaticOptions:
    """Options supplied inline with the field descriptor."""

    options: tuple[Option, ...] = ()


@dataclass(frozen=True, slots=True)
class RemoteOptions:
    """Options fetched from a list endpoint.

    ``url`` may contain ``{accountId}`` (replaced with the session account)
    and ``{id}`` (replaced with the entity being edited).  ``query`` is only
    used for GET sources; POST sources always send the paging body.
    """

    url: str
    method: OptionsMethod = "get"
    query: Mapping[str, Any] = field(default_factory=dict)


OptionsSource = Union[StaticOptions, RemoteOptions]


def normalize_option(item: Any) -> Option:
    """Coerce one raw list item into an :class:`Option`.

    Precedence: ``{label, value}`` passes through, ``{id, name}`` maps to
    ``Option(name, id)``, other mappings use whatever of ``name``/``label``
    and ``id``/``value`` they carry, and scalars use their string form as
    the label.
    """
    if isinstance(item, Option):
        return item
    if isinstance(item, Mapping):
        if "label" in item and "value" in item:
            return Option(label=str(item["label"]), value=item["value"])
        if "id" in item and "name" in item:
            return Option(label=str(item["name"]), value=item["id"])
        label = item.get("name") or item.get("label") or str(dict(item))
        value = item.get("id")
        if value is None:
            value = item.get("value")
        if value is None:
            value = str(dict(item))
        return Option(label=str(label), value=value)
    return Option(label=str(item), value=item)


def normalize_options(payload: Any) -> list[Option]:
    """Unwrap a list response and normalise each item.

    Anything that is not a list after unwrapping yields an empty list.
    """
    items = payload
    # Paged endpoints may nest the list one level deeper: {"data": {"content": [...]}}
    for _ in range(2):
        if isinstance(items, Mapping):
            items = unwrap_payload(items)
    if not isinstance(items, (list, tuple)):
        if items is not None:
            logging.debug("Option payload is not a list: %s", type(items).__name__)
        return []
    return [normalize_option(item) for item in items]


def static_options(options: Iterable[Any] | None) -> StaticOptions:
    """Build a :class:`StaticOptions` from raw items."""
    return StaticOptions(tuple(normalize_option(item) for item in options or ()))


def substitute_placeholders(
    template: str,
    session: SessionContext | None,
    extra: Mapping[str, Any] | None = None,
) -> str:
    """Replace ``{accountId}`` and any *extra* tokens in *template*.

    Tokens without a known value are left in place so the failure is visible
    in the request log instead of silently hitting another endpoint.
    """
    values: dict[str, Any] = {}
    if session is not None and session.account_id is not None:
        values[ACCOUNT_ID_PLACEHOLDER.strip("{}")] = session.account_id
    for key, value in (extra or {}).items():
        if value is not None and value != "":
            values[str(key)] = value

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in values:
            return str(values[name])
        logging.debug("No value for placeholder %s in %s", name, template)
        return match.group(0)

    return _PLACEHOLDER_RE.sub(_replace, template)


async def fetch_remote_options(
    source: DataSource,
    remote: RemoteOptions,
    session: SessionContext | None,
    settings: FormSettings,
    extra: Mapping[str, Any] | None = None,
) -> list[Option]:
    """Fetch and normalise the option list described by *remote*.

    Errors propagate; callers decide how a failed field degrades.
    """
    url = substitute_placeholders(remote.url, session, extra)
    if str(remote.method).lower() == "post":
        response = await source.post(url, settings.page_request())
    else:
        response = await source.get(append_query(url, remote.query))
    return normalize_options(response)


def option_label(options: Sequence[Option], value: Any) -> str | None:
    """Return the label of the option matching *value* (string compared)."""
    if isinstance(value, Mapping):
        value = value.get("id") if value.get("id") is not None else value.get("value")
    wanted = id_key(value)
    if not wanted:
        return None
    for option in options:
        if id_key(option.value) == wanted:
            return option.label
    return None


__all__ = [
    "Option",
    "OptionsMethod",
    "OptionsSource",
    "RemoteOptions",
    "StaticOptions",
    "fetch_remote_options",
    "normalize_option",
    "normalize_options",
    "option_label",
    "static_options",
    "substitute_placeholders",
]
