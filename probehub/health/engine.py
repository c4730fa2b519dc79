"""Health check engine — the Checker contract and the aggregate runner.

A Checker is any object with a ``name`` and a blocking ``check()`` that
raises on failure. ``run_checks`` fans a set of ScheduleEntries out to a
thread executor and fans the results back in within one shared deadline.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Iterable, Sequence
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

TIMEOUT_REASON = "check timed out"


class CheckError(Exception):
    """Raised by a Checker when its probe failed."""


@runtime_checkable
class Checker(Protocol):
    @property
    def name(self) -> str: ...

    def check(self) -> None: ...


# ── Models ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ScheduleEntry:
    """A Checker bound to an execution interval and a per-run timeout (seconds)."""

    checker: Checker
    interval: float
    timeout: float

    def __post_init__(self) -> None:
        if self.interval <= 0:
            raise ValueError(f"{self.name}: interval must be positive, got {self.interval}")
        if self.timeout <= 0:
            raise ValueError(f"{self.name}: timeout must be positive, got {self.timeout}")

    @property
    def name(self) -> str:
        return self.checker.name


@dataclass
class CheckResult:
    """Outcome of a single check invocation."""

    name: str
    ok: bool
    error: str = ""
    timed_out: bool = False
    latency_ms: float = 0.0

    def to_dict(self) -> dict[str, object]:
        return {"ok": self.ok, "error": self.error}


def longest_timeout(entries: Iterable[ScheduleEntry]) -> float:
    return max((e.timeout for e in entries), default=0.0)


def validate_entries(entries: Iterable[ScheduleEntry]) -> None:
    """Reject entry sets where two checks share a name."""
    seen: set[str] = set()
    for entry in entries:
        if entry.name in seen:
            raise ValueError(f"Duplicate check name: {entry.name}")
        seen.add(entry.name)


# ── Invocation ───────────────────────────────────────────────────────────────


def invoke(checker: Checker) -> CheckResult:
    """Run a checker once, converting any exception into a failed result."""
    t0 = time.perf_counter()
    try:
        checker.check()
    except Exception as e:
        latency = (time.perf_counter() - t0) * 1000
        return CheckResult(
            name=checker.name, ok=False,
            error=str(e) or type(e).__name__,
            latency_ms=round(latency, 1),
        )
    latency = (time.perf_counter() - t0) * 1000
    return CheckResult(name=checker.name, ok=True, latency_ms=round(latency, 1))


def _timed_out(name: str, detail: str, elapsed: float) -> CheckResult:
    return CheckResult(
        name=name, ok=False, timed_out=True,
        error=f"{TIMEOUT_REASON}: {detail}",
        latency_ms=round(elapsed * 1000, 1),
    )


# ── In-flight accounting ─────────────────────────────────────────────────────


class InFlight:
    """Counts unfinished on-demand invocations per check name.

    An invocation holds a slot from submission until it either finishes or is
    dropped from the executor queue before starting. ``limit`` of 0 means no
    cap.
    """

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self._lock = threading.Lock()
        self._counts: dict[str, int] = {}

    def count(self, name: str) -> int:
        with self._lock:
            return self._counts.get(name, 0)

    def acquire(self, name: str) -> Ticket | None:
        """Reserve a slot for ``name``, or return None when it is at its cap."""
        with self._lock:
            held = self._counts.get(name, 0)
            if self.limit and held >= self.limit:
                return None
            self._counts[name] = held + 1
        return Ticket(self, name)

    def _release(self, name: str) -> None:
        remaining = self._counts[name] - 1
        if remaining:
            self._counts[name] = remaining
        else:
            del self._counts[name]


class Ticket:
    """One slot in an InFlight; released exactly once."""

    QUEUED, RUNNING, RELEASED = "queued", "running", "released"

    def __init__(self, owner: InFlight, name: str) -> None:
        self._owner = owner
        self._name = name
        self._state = self.QUEUED

    def start(self) -> bool:
        """Mark the invocation as running; False if it was already abandoned."""
        with self._owner._lock:
            if self._state != self.QUEUED:
                return False
            self._state = self.RUNNING
            return True

    def finish(self) -> None:
        with self._owner._lock:
            if self._state == self.RUNNING:
                self._state = self.RELEASED
                self._owner._release(self._name)

    def abandon(self) -> None:
        """Give the slot back if the invocation never started."""
        with self._owner._lock:
            if self._state == self.QUEUED:
                self._state = self.RELEASED
                self._owner._release(self._name)


def _invoke_tracked(checker: Checker, ticket: Ticket) -> CheckResult | None:
    if not ticket.start():
        return None
    try:
        return invoke(checker)
    finally:
        ticket.finish()


# ── Aggregate runner ─────────────────────────────────────────────────────────


async def run_checks(
    entries: Sequence[ScheduleEntry],
    executor: Executor | None = None,
    cancel: asyncio.Event | None = None,
    in_flight: InFlight | None = None,
) -> dict[str, CheckResult]:
    """Run every entry's checker concurrently and collect a result snapshot.

    Waits until every invocation finished, the longest configured timeout
    elapsed, or ``cancel`` was set. Entries still running at that point are
    reported as timed out; their invocations are abandoned, not killed.

    With ``in_flight``, a check whose earlier invocations are still stuck at
    the tracker's limit is not submitted again and is reported as timed out
    straight away, so hung checks cannot use up the executor's workers.
    """
    if not entries:
        return {}

    loop = asyncio.get_running_loop()
    budget = longest_timeout(entries)
    started = loop.time()
    deadline = started + budget

    results: dict[str, CheckResult] = {}
    futures: dict[asyncio.Future[CheckResult | None], ScheduleEntry] = {}
    tickets: dict[asyncio.Future[CheckResult | None], Ticket] = {}
    for entry in entries:
        if in_flight is None:
            futures[loop.run_in_executor(executor, invoke, entry.checker)] = entry
            continue
        ticket = in_flight.acquire(entry.name)
        if ticket is None:
            logger.warning(
                "Not running %s: %d earlier runs still in flight", entry.name, in_flight.limit,
            )
            results[entry.name] = _timed_out(entry.name, "earlier run still in flight", 0.0)
            continue
        fut = loop.run_in_executor(executor, _invoke_tracked, entry.checker, ticket)
        futures[fut] = entry
        tickets[fut] = ticket

    stop = asyncio.ensure_future(cancel.wait()) if cancel is not None else None

    pending = set(futures)
    cancelled = False
    try:
        while pending:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            waiting = (pending | {stop}) if stop is not None else pending
            done, _ = await asyncio.wait(
                waiting, timeout=remaining, return_when=asyncio.FIRST_COMPLETED,
            )
            pending -= done
            if stop is not None and stop in done:
                cancelled = True
                break
    finally:
        if stop is not None:
            stop.cancel()

    elapsed = loop.time() - started
    detail = "cancelled" if cancelled else f"deadline exceeded after {budget:g}s"
    unfinished: list[str] = []
    for fut, entry in futures.items():
        if fut.done() and not fut.cancelled() and fut.result() is not None:
            results[entry.name] = fut.result()
            continue
        # Never-started invocations are dropped from the executor queue
        fut.cancel()
        if fut in tickets:
            tickets[fut].abandon()
        results[entry.name] = _timed_out(entry.name, detail, elapsed)
        unfinished.append(entry.name)

    if unfinished:
        logger.warning(
            "%d of %d checks did not finish: %s",
            len(unfinished), len(entries), ", ".join(sorted(unfinished)),
        )
    return {entry.name: results[entry.name] for entry in entries}
