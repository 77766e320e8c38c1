"""Structured cancellation for fetches owned by a mounted form.

Every asynchronous fetch started by a form is wrapped in a
:class:`FetchHandle` registered with the form's :class:`Lifetime`.  The
result is handed to the ``apply`` callback only while the lifetime is open;
closing the lifetime cancels whatever is still pending, and results that
race past cancellation are dropped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

ApplyCallback = Callable[[Any], None]
ErrorCallback = Callable[[BaseException], None]


class FetchHandle:
    """Cancellable handle for one in-flight fetch."""

    def __init__(self, label: str, task: "asyncio.Task[Any]") -> None:
        self.label = label
        self._task = task

    def cancel(self) -> bool:
        return self._task.cancel()

    def done(self) -> bool:
        return self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled()

    async def wait(self) -> None:
        """Wait for completion; cancellation is not re-raised."""
        try:
            await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else ("done" if self.done() else "pending")
        return f"<FetchHandle {self.label} {state}>"


class Lifetime:
    """Owner of the fetch handles started by one mounted component."""

    def __init__(self, name: str = "form") -> None:
        self.name = name
        self._alive = True
        self._handles: list[FetchHandle] = []

    @property
    def alive(self) -> bool:
        return self._alive

    def spawn(
        self,
        label: str,
        factory: Callable[[], Awaitable[Any]],
        apply: ApplyCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> FetchHandle:
        """Start ``factory()`` on the running loop and return its handle.

        ``apply`` receives the result only if the lifetime is still open when
        the fetch completes.  Exceptions go to ``on_error`` under the same
        condition; without ``on_error`` they are logged.
        """
        if not self._alive:
            raise RuntimeError(f"Lifetime {self.name} is closed; cannot start {label}")

        async def _run() -> None:
            try:
                result = await factory()
            except asyncio.CancelledError:
                logging.debug("%s: fetch %s cancelled", self.name, label)
                raise
            except Exception as exc:
                if not self._alive:
                    logging.debug("%s: dropping error from %s after teardown", self.name, label)
                    return
                if on_error is None:
                    logging.warning("%s: fetch %s failed", self.name, label, exc_info=True)
                    return
                on_error(exc)
                return
            if not self._alive:
                logging.debug("%s: discarding stale result of %s", self.name, label)
                return
            apply(result)

        task = asyncio.get_running_loop().create_task(_run(), name=f"{self.name}:{label}")
        handle = FetchHandle(label, task)
        self._handles.append(handle)
        task.add_done_callback(lambda _t, h=handle: self._forget(h))
        return handle

    def _forget(self, handle: FetchHandle) -> None:
        if handle in self._handles:
            self._handles.remove(handle)

    @property
    def pending(self) -> list[FetchHandle]:
        return [h for h in self._handles if not h.done()]

    async def wait(self) -> None:
        """Wait until every handle spawned so far has settled."""
        while True:
            pending = self.pending
            if not pending:
                return
            for handle in pending:
                await handle.wait()

    def close(self) -> None:
        """Cancel pending fetches and refuse further results."""
        if not self._alive:
            return
        self._alive = False
        for handle in list(self._handles):
            handle.cancel()
        logging.debug("%s: lifetime closed", self.name)


__all__ = ["FetchHandle", "Lifetime"]
