"""Health check scheduler — runs every check at its own interval, forever.

Each check gets one asyncio task that ticks on a fixed cadence. A tick hands
the checker to a thread pool and moves on without waiting, so a slow check
never delays its own next tick. Consecutive runs of the same check may
therefore overlap.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from concurrent.futures import Executor

from .engine import CheckResult, ScheduleEntry, invoke, validate_entries

logger = logging.getLogger(__name__)

CancelFunc = Callable[[], None]


def _log_outcome(fut: asyncio.Future[CheckResult]) -> None:
    if fut.cancelled():
        return
    result = fut.result()
    if result.ok:
        logger.debug("Check %s: ok (%.1fms)", result.name, result.latency_ms)
    else:
        # Reporting failures is the checker's job
        logger.debug("Check %s: failed (%.1fms): %s", result.name, result.latency_ms, result.error)


async def _tick_loop(
    entry: ScheduleEntry,
    executor: Executor | None,
    max_in_flight: int,
) -> None:
    loop = asyncio.get_running_loop()
    in_flight: set[asyncio.Future[CheckResult]] = set()
    next_tick = loop.time() + entry.interval

    while True:
        await asyncio.sleep(max(0.0, next_tick - loop.time()))
        next_tick += entry.interval
        now = loop.time()
        if next_tick <= now:
            # Fell behind; drop the missed ticks
            next_tick = now + entry.interval

        if max_in_flight and len(in_flight) >= max_in_flight:
            logger.warning(
                "Skipping tick for %s: %d runs still in flight", entry.name, len(in_flight),
            )
            continue

        fut = loop.run_in_executor(executor, invoke, entry.checker)
        in_flight.add(fut)
        fut.add_done_callback(in_flight.discard)
        fut.add_done_callback(_log_outcome)


def _spawn(
    entry: ScheduleEntry, executor: Executor | None, max_in_flight: int,
) -> asyncio.Task[None]:
    return asyncio.get_running_loop().create_task(
        _tick_loop(entry, executor, max_in_flight),
        name=f"health-{entry.name}",
    )


def run_check_forever(
    entry: ScheduleEntry,
    executor: Executor | None = None,
    max_in_flight: int = 0,
) -> CancelFunc:
    """Start running ``entry`` every interval. Returns an idempotent cancel func.

    Must be called from within a running event loop.
    """
    task = _spawn(entry, executor, max_in_flight)

    def cancel() -> None:
        task.cancel()

    return cancel


def run_checks_forever(
    entries: Sequence[ScheduleEntry],
    executor: Executor | None = None,
    max_in_flight: int = 0,
) -> CancelFunc:
    """Start a scheduler per entry. Returns one func that cancels them all."""
    cancels = [run_check_forever(e, executor, max_in_flight) for e in entries]

    def cancel_all() -> None:
        for cancel in cancels:
            cancel()

    return cancel_all


class HealthScheduler:
    """Owns the background check loops for the lifetime of the server."""

    def __init__(
        self,
        entries: Sequence[ScheduleEntry],
        executor: Executor | None = None,
        max_in_flight: int = 0,
    ) -> None:
        validate_entries(entries)
        self.entries = list(entries)
        self._executor = executor
        self._max_in_flight = max_in_flight
        self._tasks: list[asyncio.Task[None]] = []
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start one loop per configured check."""
        if self._running:
            return
        self._running = True

        if not self.entries:
            logger.info("No health checks configured — scheduler idle")
            return

        for entry in self.entries:
            self._tasks.append(_spawn(entry, self._executor, self._max_in_flight))

        logger.info(
            "Health scheduler started: %s",
            ", ".join(f"{e.name} every {e.interval:g}s" for e in self.entries),
        )

    def cancel(self) -> None:
        """Stop scheduling new runs. Safe to call more than once."""
        self._running = False
        for task in self._tasks:
            task.cancel()

    async def stop(self) -> None:
        """Cancel all loops and wait for them to unwind."""
        self.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Health scheduler stopped")
