"""Scheduler service — named, cancellable timers for the detection cadences.

Architecture
~~~~~~~~~~~~
Every recurring or delayed piece of work runs as an ``asyncio.Task``
wrapped in a :class:`TaskHandle` and registered under a name:

* ``status-check``      — foreground evaluation, every ~2 minutes.
* ``background-check``  — slower heartbeat while the app is backgrounded.
* ``dwell-likely`` / ``dwell-confirmed`` — one-shot foreground dwell timers.

Scheduling a name that is already registered cancels the previous task
first, so there is never more than one task per name.  ``stop()`` cancels
and awaits everything; ``emergency_shutdown()`` is the synchronous
variant used when the process is being torn down and nothing may raise.
A stopped scheduler rejects new tasks until ``resume()`` is called.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)

TaskFactory = Callable[[], Awaitable[Any]]


@dataclass(slots=True)
class TaskHandle:
    """A named task owned by the scheduler."""

    name: str
    task: asyncio.Task
    interval_seconds: float | None = None  # None for one-shot timers
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def done(self) -> bool:
        return self.task.done()

    def cancel(self) -> None:
        if not self.task.done():
            self.task.cancel()


class MonitoringScheduler:
    """Registry of named periodic loops and one-shot timers.

    Integration::

        scheduler = MonitoringScheduler()
        scheduler.every("status-check", 120, controller.check_status)
        scheduler.call_later("dwell-likely", 10, pipeline.check_foreground_dwell)
        ...
        await scheduler.stop()
    """

    def __init__(self) -> None:
        self._handles: dict[str, TaskHandle] = {}
        self._running = True
        self._stats: dict[str, Any] = {
            "total_runs": 0,
            "total_errors": 0,
            "last_run": None,
        }

    # ── Scheduling ────────────────────────────────────────────

    def every(self, name: str, interval_seconds: float, fn: TaskFactory) -> TaskHandle:
        """Run *fn* every *interval_seconds* until cancelled.

        The first run happens after one full interval.
        """
        return self._register(
            name, self._run_loop(name, interval_seconds, fn), interval_seconds,
        )

    def call_later(self, name: str, delay_seconds: float, fn: TaskFactory) -> TaskHandle:
        """Run *fn* once after *delay_seconds*."""
        return self._register(name, self._run_once(name, delay_seconds, fn), None)

    def cancel(self, name: str) -> bool:
        """Cancel the task registered under *name*. Return ``True`` if one was live."""
        handle = self._handles.pop(name, None)
        if handle is None:
            return False
        live = not handle.done
        handle.cancel()
        if live:
            logger.debug("scheduler.cancelled", name=name)
        return live

    def _register(self, name: str, coro: Awaitable[Any], interval: float | None) -> TaskHandle:
        if not self._running:
            # Close the coroutine so it is not reported as never awaited.
            coro.close()  # type: ignore[attr-defined]
            raise RuntimeError("scheduler is stopped")
        self.cancel(name)
        handle = TaskHandle(
            name=name,
            task=asyncio.get_running_loop().create_task(coro, name=name),
            interval_seconds=interval,
        )
        self._handles[name] = handle
        logger.debug("scheduler.scheduled", name=name, interval_seconds=interval)
        return handle

    # ── Task bodies ───────────────────────────────────────────

    async def _run_loop(self, name: str, interval: float, fn: TaskFactory) -> None:
        while True:
            await asyncio.sleep(interval)
            await self._invoke(name, fn)

    async def _run_once(self, name: str, delay: float, fn: TaskFactory) -> None:
        await asyncio.sleep(delay)
        # Drop the registration before running so a re-arm inside fn
        # doesn't cancel the task that is currently executing.
        handle = self._handles.get(name)
        if handle is not None and handle.task is asyncio.current_task():
            del self._handles[name]
        await self._invoke(name, fn)

    async def _invoke(self, name: str, fn: TaskFactory) -> None:
        self._stats["total_runs"] += 1
        self._stats["last_run"] = datetime.now(UTC).isoformat()
        try:
            await fn()
        except Exception:
            self._stats["total_errors"] += 1
            logger.exception("scheduler.run_error", name=name)

    # ── Lifecycle ─────────────────────────────────────────────

    def resume(self) -> None:
        """Accept new tasks again after :meth:`stop` or :meth:`emergency_shutdown`."""
        if not self._running:
            self._running = True
            logger.info("scheduler.resumed")

    async def stop(self) -> None:
        """Cancel every task and wait for them to finish."""
        self._running = False
        handles = list(self._handles.values())
        self._handles.clear()
        for handle in handles:
            handle.cancel()
        for handle in handles:
            with contextlib.suppress(asyncio.CancelledError):
                await handle.task
        logger.info("scheduler.stopped", cancelled=len(handles))

    def emergency_shutdown(self) -> None:
        """Cancel every task without awaiting. Never raises."""
        self._running = False
        handles = list(self._handles.values())
        self._handles.clear()
        for handle in handles:
            try:
                handle.cancel()
            except Exception:
                logger.exception("scheduler.emergency_cancel_failed", name=handle.name)
        logger.warning("scheduler.emergency_shutdown", cancelled=len(handles))

    # ── Introspection ─────────────────────────────────────────

    @property
    def handles(self) -> dict[str, TaskHandle]:
        return dict(self._handles)

    def is_scheduled(self, name: str) -> bool:
        handle = self._handles.get(name)
        return handle is not None and not handle.done

    @property
    def stats(self) -> dict[str, Any]:
        return {**self._stats, "scheduled": sorted(self._handles)}

    @property
    def is_running(self) -> bool:
        return self._running
