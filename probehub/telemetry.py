"""Stats sink handed to checkers. Backed by statsd, or a no-op when disabled."""

from __future__ import annotations

import logging
from typing import Protocol

from statsd import StatsClient

logger = logging.getLogger(__name__)


class Stats(Protocol):
    def gauge(self, stat: str, value: float) -> None: ...

    def incr(self, stat: str, count: int = 1) -> None: ...

    def scoped(self, prefix: str) -> Stats: ...


class StatsdStats:
    """Emits to a statsd daemon over UDP. ``scoped`` adds a name segment."""

    def __init__(self, client: StatsClient, scope: str = "") -> None:
        self._client = client
        self._scope = scope

    def _key(self, stat: str) -> str:
        return f"{self._scope}.{stat}" if self._scope else stat

    def gauge(self, stat: str, value: float) -> None:
        self._client.gauge(self._key(stat), value)

    def incr(self, stat: str, count: int = 1) -> None:
        self._client.incr(self._key(stat), count)

    def scoped(self, prefix: str) -> StatsdStats:
        return StatsdStats(self._client, self._key(prefix))


class NoopStats:
    def gauge(self, stat: str, value: float) -> None:
        pass

    def incr(self, stat: str, count: int = 1) -> None:
        pass

    def scoped(self, prefix: str) -> NoopStats:
        return self


def parse_address(address: str, default_port: int = 8125) -> tuple[str, int]:
    """Split ``host:port``; a bare host uses the statsd default port."""
    host, sep, port = address.rpartition(":")
    if not sep:
        return address, default_port
    if not port.isdigit():
        raise ValueError(f"Invalid statsd address: {address!r}")
    return host or "127.0.0.1", int(port)


def make_stats(address: str, prefix: str, enabled: bool = True) -> Stats:
    if not enabled:
        logger.info("Stats disabled — using no-op sink")
        return NoopStats()
    host, port = parse_address(address)
    logger.info("Sending stats to statsd at %s:%d (prefix=%s)", host, port, prefix)
    return StatsdStats(StatsClient(host=host, port=port, prefix=prefix))
