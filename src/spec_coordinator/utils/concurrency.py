"""Async cancellation primitives shared by the runner and the orchestrator."""

from __future__ import annotations

import asyncio
from contextlib import suppress
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

__all__ = ["CancellationToken", "sleep_unless_cancelled"]


class CancellationToken:
    """Cooperative cancellation token backed by ``asyncio.Event``.

    Callbacks registered with :meth:`on_cancel` run synchronously, once, when
    the token is first cancelled; a callback added after cancellation runs
    immediately.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []

    def cancel(self) -> None:
        if self._event.is_set():
            return
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register ``callback``; returns a function that unregisters it."""

        if self._event.is_set():
            callback()
            return lambda: None
        self._callbacks.append(callback)

        def remove() -> None:
            with suppress(ValueError):
                self._callbacks.remove(callback)

        return remove

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError("operation cancelled")


async def sleep_unless_cancelled(seconds: float, token: CancellationToken | None) -> bool:
    """Sleep for ``seconds``; return ``False`` if ``token`` fired first."""

    if seconds <= 0:
        return not (token is not None and token.is_cancelled)
    if token is None:
        await asyncio.sleep(seconds)
        return True
    if token.is_cancelled:
        return False
    try:
        await asyncio.wait_for(token.wait(), timeout=seconds)
    except TimeoutError:
        return True
    return False
