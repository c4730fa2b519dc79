"""Operator-triggered shutdown: stop every scheduler, then end the process."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)


def terminate_process(kill_after: float) -> Callable[[], None]:
    """Return a terminator that asks the server to drain and exit.

    SIGTERM lets uvicorn stop accepting connections and finish in-flight
    responses. If the process is still alive ``kill_after`` seconds later it
    is hard-exited.
    """

    def terminate() -> None:
        killer = threading.Timer(kill_after, os._exit, args=(1,))
        killer.daemon = True
        killer.start()
        logger.info("Sending SIGTERM to self (hard exit in %gs)", kill_after)
        os.kill(os.getpid(), signal.SIGTERM)

    return terminate


class ShutdownControl:
    """Cancels all background checks and terminates the process. One-way."""

    def __init__(
        self,
        cancel_all: Callable[[], None],
        terminate: Callable[[], None],
        stopping: asyncio.Event | None = None,
    ) -> None:
        self._cancel_all = cancel_all
        self._terminate = terminate
        self._stopping = stopping
        self._lock = threading.Lock()
        self._triggered = False

    @property
    def triggered(self) -> bool:
        return self._triggered

    def trigger(self) -> None:
        with self._lock:
            if self._triggered:
                return
            self._triggered = True

        logger.warning("Shutdown requested — cancelling health checks")
        if self._stopping is not None:
            self._stopping.set()
        self._cancel_all()
        self._terminate()
