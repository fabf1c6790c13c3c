"""
spec-coordinator - per-run process context

Purpose
- Own every piece of process-scoped mutable state for one orchestrator run:
  the interrupt token, in-flight child processes, kill-escalation timers,
  heartbeat handles, signal handlers and the invocation throttle.
- Provide one teardown routine that every exit path calls.

Interrupt semantics
- The first ``SIGINT``/``SIGTERM`` cancels the run token, asks each live child
  to terminate, and schedules a forced kill after ``grace_seconds``.
- No new process starts once the token is cancelled.
"""

from __future__ import annotations

import asyncio
import signal
import time
from contextlib import suppress
from typing import TYPE_CHECKING, Any, Final

import structlog

from spec_coordinator.utils.concurrency import CancellationToken, sleep_unless_cancelled

if TYPE_CHECKING:
    from collections.abc import Callable

DEFAULT_GRACE_SECONDS: Final[float] = 2.0
_HANDLED_SIGNALS: Final[tuple[signal.Signals, ...]] = (signal.SIGINT, signal.SIGTERM)


class Heartbeat:
    """Handle for the periodic "still running" record of one process."""

    __slots__ = ("_task",)

    def __init__(self, task: asyncio.Task[None] | None = None) -> None:
        self._task = task

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()


class RunContext:
    """Process-scoped state threaded explicitly through one orchestrator run."""

    def __init__(
        self,
        *,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        throttle_seconds: float = 0.0,
        heartbeat_seconds: float = 0.0,
        logger: Any | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if grace_seconds < 0:
            raise ValueError("grace_seconds must be >= 0")
        self.cancel_token = CancellationToken()
        self._grace_seconds = grace_seconds
        self._throttle_seconds = max(0.0, throttle_seconds)
        self._heartbeat_seconds = max(0.0, heartbeat_seconds)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._clock = clock
        self._processes: set[asyncio.subprocess.Process] = set()
        self._kill_timers: list[asyncio.TimerHandle] = []
        self._heartbeats: set[Heartbeat] = set()
        self._throttle_lock = asyncio.Lock()
        self._last_start: float | None = None
        self._installed_signals: list[signal.Signals] = []
        self._interrupt_reason: str | None = None

    @property
    def interrupted(self) -> bool:
        return self.cancel_token.is_cancelled

    @property
    def interrupt_reason(self) -> str | None:
        return self._interrupt_reason

    @property
    def active_processes(self) -> int:
        return sum(1 for proc in self._processes if proc.returncode is None)

    def request_interrupt(self, reason: str = "interrupt") -> None:
        if self.cancel_token.is_cancelled:
            return
        self._interrupt_reason = reason
        self._logger.warning(
            "run_interrupt_requested", reason=reason, in_flight=self.active_processes
        )
        self.cancel_token.cancel()
        for proc in list(self._processes):
            self._terminate(proc)

    def register_process(self, proc: asyncio.subprocess.Process) -> None:
        self._processes.add(proc)
        if self.interrupted:
            self._terminate(proc)

    def release_process(self, proc: asyncio.subprocess.Process) -> None:
        self._processes.discard(proc)

    async def throttle(self) -> None:
        """Space successive process starts by at least ``throttle_seconds``."""

        if self._throttle_seconds <= 0:
            return
        async with self._throttle_lock:
            if self._last_start is not None:
                remaining = self._last_start + self._throttle_seconds - self._clock()
                if remaining > 0:
                    await sleep_unless_cancelled(remaining, self.cancel_token)
            self._last_start = self._clock()

    async def cooldown(self, seconds: float) -> bool:
        """Wait out a rate-limit cooldown; ``False`` if interrupted meanwhile."""

        return await sleep_unless_cancelled(seconds, self.cancel_token)

    def start_heartbeat(self, *, tool: str, role: str) -> Heartbeat:
        if self._heartbeat_seconds <= 0:
            return Heartbeat()
        task = asyncio.get_running_loop().create_task(self._beat(tool=tool, role=role))
        heartbeat = Heartbeat(task)
        self._heartbeats.add(heartbeat)
        task.add_done_callback(lambda _: self._heartbeats.discard(heartbeat))
        return heartbeat

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in _HANDLED_SIGNALS:
            try:
                loop.add_signal_handler(signum, self.request_interrupt, signum.name)
            except (NotImplementedError, RuntimeError, ValueError):
                # Non-main threads and some platforms cannot install handlers.
                continue
            self._installed_signals.append(signum)

    async def teardown(self) -> None:
        """Release everything this context owns; safe to call more than once."""

        if self._installed_signals:
            loop = asyncio.get_running_loop()
            for signum in self._installed_signals:
                with suppress(NotImplementedError, RuntimeError, ValueError):
                    loop.remove_signal_handler(signum)
            self._installed_signals.clear()

        for heartbeat in list(self._heartbeats):
            heartbeat.cancel()
        self._heartbeats.clear()

        for proc in list(self._processes):
            if proc.returncode is None:
                with suppress(ProcessLookupError):
                    proc.kill()
                with suppress(ProcessLookupError):
                    await proc.wait()
        self._processes.clear()

        for timer in self._kill_timers:
            timer.cancel()
        self._kill_timers.clear()

    def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        with suppress(ProcessLookupError):
            proc.terminate()
        timer = asyncio.get_running_loop().call_later(self._grace_seconds, self._force_kill, proc)
        self._kill_timers.append(timer)

    def _force_kill(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        self._logger.warning("process_force_killed", pid=proc.pid, grace_seconds=self._grace_seconds)
        with suppress(ProcessLookupError):
            proc.kill()

    async def _beat(self, *, tool: str, role: str) -> None:
        started = self._clock()
        while True:
            await asyncio.sleep(self._heartbeat_seconds)
            self._logger.info(
                "process_heartbeat",
                tool=tool,
                role=role,
                elapsed_seconds=round(self._clock() - started, 1),
            )


__all__ = ["DEFAULT_GRACE_SECONDS", "Heartbeat", "RunContext"]
