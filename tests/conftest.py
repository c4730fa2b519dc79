"""Shared test fixtures."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Generator
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import pytest

from probehub.health.engine import CheckError, ScheduleEntry


class PredictableChecker:
    """Checker whose outcome, duration and run count are controlled by the test."""

    def __init__(
        self,
        name: str,
        error: str | None = None,
        delay: float = 0.0,
        block: threading.Event | None = None,
    ) -> None:
        self._name = name
        self.error = error
        self.delay = delay
        self.block = block
        self._lock = threading.Lock()
        self._runs = 0
        self._active = 0
        self.peak = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def runs(self) -> int:
        with self._lock:
            return self._runs

    def check(self) -> None:
        with self._lock:
            self._active += 1
            self.peak = max(self.peak, self._active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if self.block is not None:
                self.block.wait()
        finally:
            with self._lock:
                self._active -= 1
                self._runs += 1
        if self.error is not None:
            raise CheckError(self.error)


@pytest.fixture
def release() -> Generator[threading.Event, None, None]:
    """Event that blocked checkers wait on; set at teardown so threads exit."""
    event = threading.Event()
    yield event
    event.set()


@pytest.fixture
def make_entry() -> Callable[..., ScheduleEntry]:
    def _make(
        name: str,
        timeout: float = 0.1,
        interval: float = 0.1,
        **checker_kwargs: Any,
    ) -> ScheduleEntry:
        return ScheduleEntry(
            PredictableChecker(name, **checker_kwargs), interval=interval, timeout=timeout,
        )

    return _make


@pytest.fixture
def executor(release: threading.Event) -> Generator[ThreadPoolExecutor, None, None]:
    pool = ThreadPoolExecutor(max_workers=8)
    yield pool
    release.set()
    pool.shutdown(wait=True, cancel_futures=True)
