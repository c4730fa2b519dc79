"""HTTP(S) check — expects a given status code from a URL."""

from __future__ import annotations

import logging
from collections.abc import Mapping

import httpx

from ..health.engine import CheckError
from ..telemetry import Stats
from .config import check_config_from_env

logger = logging.getLogger(__name__)

METRIC_REACHABLE = "reachable"

DEFAULTS = {
    "URL": "",
    "METHOD": "GET",
    "EXPECTED_STATUS": "200",
    "TIMEOUT": "5",
}


class HTTPCheck:
    def __init__(
        self,
        name: str,
        stats: Stats,
        client: httpx.Client | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        cfg = check_config_from_env(name, DEFAULTS, environ)
        if not cfg["URL"]:
            raise ValueError(f"{name}: no URL configured")
        self._name = name
        self._stats = stats.scoped(name)
        self.url = cfg["URL"]
        self.method = cfg["METHOD"].upper()
        self.expected_status = int(cfg["EXPECTED_STATUS"])
        self._client = client or httpx.Client(
            timeout=float(cfg["TIMEOUT"]), follow_redirects=True,
        )

    @property
    def name(self) -> str:
        return self._name

    def _fail(self, message: str) -> CheckError:
        self._stats.gauge(METRIC_REACHABLE, 0)
        logger.error("HTTP check failed: check=%s url=%s: %s", self._name, self.url, message)
        return CheckError(f"{self._name} http check failed, url={self.url}: {message}")

    def check(self) -> None:
        try:
            resp = self._client.request(self.method, self.url)
        except httpx.TimeoutException as e:
            raise self._fail(f"timed out: {e}") from e
        except httpx.HTTPError as e:
            raise self._fail(f"{type(e).__name__}: {e}") from e

        if resp.status_code != self.expected_status:
            raise self._fail(f"expected {self.expected_status}, got {resp.status_code}")

        self._stats.gauge(METRIC_REACHABLE, 1)
        logger.debug("HTTP check succeeded: check=%s status=%d", self._name, resp.status_code)
