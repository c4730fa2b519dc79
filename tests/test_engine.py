"""Tests for the aggregate runner and the Checker contract."""

from __future__ import annotations

import asyncio
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest

from probehub.health.engine import (
    TIMEOUT_REASON,
    Checker,
    CheckResult,
    InFlight,
    ScheduleEntry,
    invoke,
    longest_timeout,
    run_checks,
    validate_entries,
)
from tests.conftest import PredictableChecker


# ── Models ───────────────────────────────────────────────────────────────────


class TestScheduleEntry:
    def test_name_comes_from_checker(self, make_entry) -> None:
        assert make_entry("db").name == "db"

    def test_predictable_checker_satisfies_protocol(self) -> None:
        assert isinstance(PredictableChecker("x"), Checker)

    @pytest.mark.parametrize("interval,timeout", [(0, 1), (1, 0), (-1, 1)])
    def test_rejects_non_positive_durations(self, interval, timeout) -> None:
        with pytest.raises(ValueError):
            ScheduleEntry(PredictableChecker("x"), interval=interval, timeout=timeout)

    def test_longest_timeout(self, make_entry) -> None:
        entries = [make_entry("a", timeout=0.1), make_entry("b", timeout=0.3)]
        assert longest_timeout(entries) == 0.3
        assert longest_timeout([]) == 0.0

    def test_duplicate_names_rejected(self, make_entry) -> None:
        with pytest.raises(ValueError, match="Duplicate check name: dup"):
            validate_entries([make_entry("dup"), make_entry("other"), make_entry("dup")])

    def test_to_dict_shape(self) -> None:
        r = CheckResult(name="x", ok=False, error="nope", latency_ms=3.0)
        assert r.to_dict() == {"ok": False, "error": "nope"}


class TestInvoke:
    def test_success(self) -> None:
        result = invoke(PredictableChecker("fine"))
        assert result.ok
        assert result.error == ""
        assert result.latency_ms >= 0

    def test_failure_reason_verbatim(self) -> None:
        result = invoke(PredictableChecker("broken", error="boom!"))
        assert not result.ok
        assert result.error == "boom!"
        assert not result.timed_out

    def test_empty_exception_uses_type_name(self) -> None:
        class Silent:
            name = "silent"

            def check(self) -> None:
                raise RuntimeError()

        result = invoke(Silent())
        assert result.error == "RuntimeError"


# ── Aggregate runner ─────────────────────────────────────────────────────────


class TestRunChecks:
    def test_all_pass(self, make_entry, executor) -> None:
        entries = [make_entry("pass", timeout=0.1), make_entry("passmore", timeout=0.2)]
        results = asyncio.run(run_checks(entries, executor))
        assert set(results) == {"pass", "passmore"}
        assert all(r.ok for r in results.values())

    def test_failure_does_not_affect_others(self, make_entry, executor) -> None:
        entries = [
            make_entry("verypass", timeout=2.0),
            make_entry("failfailfail", timeout=2.0, error="Boom!"),
        ]
        results = asyncio.run(run_checks(entries, executor))
        assert results["verypass"].ok
        assert not results["failfailfail"].ok
        assert "Boom!" in results["failfailfail"].error

    def test_slow_check_times_out_at_longest_timeout(self, make_entry, executor) -> None:
        entries = [
            make_entry("slow", timeout=0.1, delay=0.3),
            make_entry("fast", timeout=0.2),
        ]
        t0 = time.perf_counter()
        results = asyncio.run(run_checks(entries, executor))
        elapsed = time.perf_counter() - t0

        assert 0.15 <= elapsed < 0.3
        assert results["fast"].ok
        slow = results["slow"]
        assert not slow.ok
        assert slow.timed_out
        assert slow.error.startswith(TIMEOUT_REASON)

    def test_timeout_distinguishable_from_failure(self, make_entry, executor, release) -> None:
        entries = [
            make_entry("hung", timeout=0.05, block=release),
            make_entry("says-no", timeout=0.05, error="check failed"),
        ]
        results = asyncio.run(run_checks(entries, executor))
        assert results["hung"].timed_out
        assert not results["says-no"].timed_out
        assert results["hung"].error != results["says-no"].error
        assert not results["says-no"].error.startswith(TIMEOUT_REASON)

    def test_hanging_checks_still_reported(self, make_entry, executor, release) -> None:
        entries = [make_entry(f"hang-{i}", timeout=0.05, block=release) for i in range(3)]
        entries.append(make_entry("ok", timeout=0.05))
        results = asyncio.run(run_checks(entries, executor))
        assert sorted(results) == ["hang-0", "hang-1", "hang-2", "ok"]
        assert results["ok"].ok
        assert all(results[f"hang-{i}"].timed_out for i in range(3))

    def test_empty_entry_set(self, executor) -> None:
        assert asyncio.run(run_checks([], executor)) == {}

    def test_single_invocation_per_call(self, make_entry, executor) -> None:
        entry = make_entry("once", error="nope")
        asyncio.run(run_checks([entry], executor))
        assert entry.checker.runs == 1

    def test_cancel_event_substitutes_timeouts(self, make_entry, executor, release) -> None:
        entries = [make_entry("hung", timeout=5.0, block=release), make_entry("quick", timeout=5.0)]

        async def scenario():
            cancel = asyncio.Event()
            asyncio.get_running_loop().call_later(0.05, cancel.set)
            return await run_checks(entries, executor, cancel=cancel)

        t0 = time.perf_counter()
        results = asyncio.run(scenario())
        assert time.perf_counter() - t0 < 1.0
        assert results["quick"].ok
        assert results["hung"].timed_out
        assert results["hung"].error == f"{TIMEOUT_REASON}: cancelled"

    def test_repeated_runs_same_classification(self, make_entry, executor, release) -> None:
        entries = [
            make_entry("good"),
            make_entry("bad", error="boom!"),
            make_entry("hung", block=release),
        ]
        first = asyncio.run(run_checks(entries, executor))
        second = asyncio.run(run_checks(entries, executor))

        def shape(rs):
            return {n: (r.ok, r.timed_out, bool(r.error)) for n, r in rs.items()}

        assert shape(first) == shape(second)


class TestThreadBound:
    def test_chronic_timeouts_do_not_grow_threads(self, make_entry, release) -> None:
        """Hung invocations are capped by the executor's worker count."""
        workers = 4
        pool = ThreadPoolExecutor(max_workers=workers)
        entry = make_entry("hung", timeout=0.02, block=release)
        baseline = threading.active_count()
        try:
            for _ in range(25):
                results = asyncio.run(run_checks([entry], pool))
                assert results["hung"].timed_out
            assert threading.active_count() <= baseline + workers
        finally:
            release.set()
            pool.shutdown(wait=True, cancel_futures=True)


# ── In-flight accounting ─────────────────────────────────────────────────────


class TestInFlight:
    def test_cap_and_release(self) -> None:
        tracker = InFlight(limit=1)
        ticket = tracker.acquire("a")
        assert ticket is not None
        assert tracker.acquire("a") is None
        assert tracker.acquire("b") is not None  # caps are per check

        assert ticket.start()
        ticket.finish()
        assert tracker.count("a") == 0
        assert tracker.acquire("a") is not None

    def test_abandon_only_frees_queued(self) -> None:
        tracker = InFlight(limit=2)
        queued, running = tracker.acquire("a"), tracker.acquire("a")
        running.start()

        queued.abandon()
        running.abandon()
        assert tracker.count("a") == 1
        assert not queued.start()  # dropped invocations never run

        running.finish()
        running.finish()
        assert tracker.count("a") == 0

    def test_unlimited(self) -> None:
        tracker = InFlight(limit=0)
        assert all(tracker.acquire("a") is not None for _ in range(50))
        assert tracker.count("a") == 50

    def test_hung_check_does_not_starve_others(self, make_entry, release) -> None:
        pool = ThreadPoolExecutor(max_workers=2)
        tracker = InFlight(limit=1)
        hung = make_entry("hung", timeout=0.05, block=release)
        fine = make_entry("fine", timeout=0.05)
        try:
            snapshots = [
                asyncio.run(run_checks([hung, fine], pool, in_flight=tracker))
                for _ in range(6)
            ]
        finally:
            release.set()
            pool.shutdown(wait=True, cancel_futures=True)

        assert all(s["fine"].ok for s in snapshots)
        assert all(s["hung"].timed_out for s in snapshots)
        assert snapshots[-1]["hung"].error == f"{TIMEOUT_REASON}: earlier run still in flight"
        assert hung.checker.peak == 1
        assert tracker.count("fine") == 0


class TestDeadlineClassification:
    def test_finished_at_deadline_is_not_timed_out(self, make_entry, executor) -> None:
        """A check that completed while the runner was waiting keeps its result."""
        real_sleep = asyncio.sleep

        async def late_wait(fs, timeout=None, return_when=None):
            await real_sleep(timeout + 0.05)
            return set(), set(fs)

        entry = make_entry("quick", timeout=0.05)
        with patch("probehub.health.engine.asyncio.wait", new=late_wait):
            results = asyncio.run(run_checks([entry], executor))
        assert results["quick"].ok
        assert not results["quick"].timed_out
