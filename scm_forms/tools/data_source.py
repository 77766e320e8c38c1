"""Abstract data-source capability consumed by the form engine.

The engine never talks to a transport directly.  Screens inject an object
implementing :class:`DataSource` (usually a thin wrapper around the app's
HTTP client) and the engine issues ``get``/``post``/``put`` calls with
caller-supplied URLs.  Transport failures are reported as
:class:`DataSourceError` so the engine can surface the server message.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol
from urllib.parse import urlencode


class DataSourceError(RuntimeError):
    """Raised by a data source when a request fails.

    ``payload`` carries the decoded error body when the server sent one; its
    ``message`` key (if any) is what the user gets to see.
    """

    def __init__(self, message: str = "", *, status: int | None = None, payload: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.payload = payload

    @property
    def server_message(self) -> str:
        """Return the message supplied by the server, or ``""``."""
        if isinstance(self.payload, Mapping):
            text = self.payload.get("message")
            if isinstance(text, str) and text.strip():
                return text.strip()
        return ""


class DataSource(Protocol):
    """Transport-agnostic request capability."""

    async def get(self, url: str) -> Any:
        ...

    async def post(self, url: str, body: Any) -> Any:
        ...

    async def put(self, url: str, body: Any) -> Any:
        ...


def server_message(error: BaseException) -> str:
    """Return the most specific server-provided message carried by *error*."""
    if isinstance(error, DataSourceError):
        return error.server_message
    payload = getattr(error, "payload", None)
    if isinstance(payload, Mapping):
        text = payload.get("message")
        if isinstance(text, str) and text.strip():
            return text.strip()
    return ""


def unwrap_payload(payload: Any, keys: tuple[str, ...] = ("data", "content")) -> Any:
    """Strip one response envelope level.

    The backend wraps results as ``{"data": ...}`` for single records and
    ``{"content": [...]}`` for paged lists.  The first present key in *keys*
    wins; anything else is returned unchanged.
    """
    if isinstance(payload, Mapping):
        for key in keys:
            inner = payload.get(key)
            if inner is not None:
                return inner
    return payload


def append_query(url: str, params: Mapping[str, Any] | None) -> str:
    """Append URL-encoded *params* to *url*, honouring an existing query string."""
    if not params:
        return url
    query = urlencode({str(k): "" if v is None else str(v) for k, v in params.items()})
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{query}"


async def fetch_record(source: DataSource, fetch_url: str, identifier: str) -> Any:
    """Fetch one record by id, trying ``{url}/{id}`` before ``{url}?id={id}``.

    The path-style error is re-raised when both styles fail so the caller sees
    the failure of the preferred endpoint form.
    """
    base = fetch_url.rstrip("/")
    try:
        response = await source.get(f"{base}/{identifier}")
    except Exception as first_error:
        logging.debug("Path-style fetch failed for %s; retrying with query id", base, exc_info=True)
        try:
            response = await source.get(append_query(base, {"id": identifier}))
        except Exception:
            raise first_error
    return unwrap_payload(response, ("data",))


__all__ = [
    "DataSource",
    "DataSourceError",
    "append_query",
    "fetch_record",
    "server_message",
    "unwrap_payload",
]
