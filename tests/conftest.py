import asyncio
import sys
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from scm_forms.tools.data_source import DataSourceError


class FakeDataSource:
    """In-memory data source keyed by ``(method, url)``.

    A route maps to a response, an exception instance (raised), or a callable
    receiving the request body.  ``gates`` hold a route until the matching
    :class:`asyncio.Event` is set; ``entered`` fires when a gated call starts.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls: list[tuple[str, str, object]] = []
        self.gates: dict[tuple[str, str], asyncio.Event] = {}
        self.entered: dict[tuple[str, str], asyncio.Event] = {}

    def gate(self, method: str, url: str) -> tuple[asyncio.Event, asyncio.Event]:
        key = (method, url)
        self.gates[key] = asyncio.Event()
        self.entered[key] = asyncio.Event()
        return self.gates[key], self.entered[key]

    async def _handle(self, method, url, body=None):
        key = (method, url)
        self.calls.append((method, url, body))
        if key in self.entered:
            self.entered[key].set()
        if key in self.gates:
            await self.gates[key].wait()
        await asyncio.sleep(0)
        if key not in self.routes:
            raise DataSourceError(f"no route for {method} {url}", status=404)
        result = self.routes[key]
        if isinstance(result, BaseException):
            raise result
        if callable(result):
            return result(body)
        return result

    async def get(self, url):
        return await self._handle("get", url)

    async def post(self, url, body):
        return await self._handle("post", url, body)

    async def put(self, url, body):
        return await self._handle("put", url, body)

    def urls(self, method=None):
        return [url for m, url, _ in self.calls if method is None or m == method]


@pytest.fixture()
def fake_source():
    return FakeDataSource


@pytest.fixture()
def page_request():
    return {"page": 0, "size": 1000, "sortBy": "id", "sortDir": "asc", "search": ""}
