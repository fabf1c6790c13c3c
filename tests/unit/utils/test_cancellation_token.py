"""Unit tests for the cooperative cancellation primitives."""

from __future__ import annotations

import asyncio

import pytest

from spec_coordinator.utils.concurrency import CancellationToken, sleep_unless_cancelled


@pytest.mark.unit
@pytest.mark.asyncio
async def test_callbacks_run_once_on_first_cancel() -> None:
    token = CancellationToken()
    calls: list[str] = []
    token.on_cancel(lambda: calls.append("a"))
    remove = token.on_cancel(lambda: calls.append("b"))
    remove()

    token.cancel()
    token.cancel()

    assert token.is_cancelled
    assert calls == ["a"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_callback_added_after_cancel_runs_immediately() -> None:
    token = CancellationToken()
    token.cancel()
    calls: list[int] = []

    remove = token.on_cancel(lambda: calls.append(1))
    remove()

    assert calls == [1]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_raise_if_cancelled() -> None:
    token = CancellationToken()
    token.raise_if_cancelled()

    token.cancel()

    with pytest.raises(asyncio.CancelledError):
        token.raise_if_cancelled()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_sleep_completes_without_cancellation() -> None:
    assert await sleep_unless_cancelled(0.01, CancellationToken()) is True
    assert await sleep_unless_cancelled(0.01, None) is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_sleep_returns_early_when_token_fires() -> None:
    token = CancellationToken()
    loop = asyncio.get_running_loop()
    loop.call_later(0.01, token.cancel)

    started = loop.time()
    completed = await sleep_unless_cancelled(30, token)

    assert completed is False
    assert loop.time() - started < 5


@pytest.mark.unit
@pytest.mark.asyncio
async def test_zero_sleep_reports_token_state() -> None:
    token = CancellationToken()
    assert await sleep_unless_cancelled(0, token) is True

    token.cancel()

    assert await sleep_unless_cancelled(0, token) is False
    assert await sleep_unless_cancelled(5, token) is False
