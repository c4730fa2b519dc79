"""Check registry — which checks run, how often, and with what timeout.

Checks are listed in a YAML file::

    checks:
      - name: s3
        type: s3
        interval_seconds: 3
        timeout_seconds: 2
      - name: api
        type: http
        interval_seconds: 10
        timeout_seconds: 5

Without a file the built-in default set (a single S3 check) is used.
Check-specific options come from the environment, see ``checks.config``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from ..health.engine import Checker, ScheduleEntry, validate_entries
from ..telemetry import Stats
from .http import HTTPCheck
from .s3 import S3Check

logger = logging.getLogger(__name__)


@dataclass
class CheckDef:
    """Definition of a single check from the registry."""

    name: str
    type: str  # s3 | http
    interval_seconds: float = 3.0
    timeout_seconds: float = 2.0


DEFAULT_CHECKS = [CheckDef(name="s3", type="s3", interval_seconds=3.0, timeout_seconds=2.0)]

CheckFactory = Callable[[str, Stats, Mapping[str, str] | None], Checker]

CHECK_FACTORIES: dict[str, CheckFactory] = {
    "s3": lambda name, stats, environ: S3Check(name, stats, environ=environ),
    "http": lambda name, stats, environ: HTTPCheck(name, stats, environ=environ),
}


def _parse_check(raw: dict[str, Any]) -> CheckDef:
    if "name" not in raw:
        raise ValueError(f"Check entry has no name: {raw!r}")
    return CheckDef(
        name=str(raw["name"]),
        type=str(raw.get("type", raw["name"])),
        interval_seconds=float(raw.get("interval_seconds", 3.0)),
        timeout_seconds=float(raw.get("timeout_seconds", 2.0)),
    )


def load_check_defs(path: Path | None) -> list[CheckDef]:
    """Parse the checks file, or return the default set when no path is given."""
    if path is None:
        return list(DEFAULT_CHECKS)

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ValueError(f"Cannot read checks file {path}: {e}") from e

    defs = [_parse_check(c) for c in raw.get("checks") or []]
    logger.info("Loaded %d check definitions from %s", len(defs), path)
    return defs


def setup_checks(
    defs: list[CheckDef],
    stats: Stats,
    environ: Mapping[str, str] | None = None,
) -> list[ScheduleEntry]:
    """Build the schedule entries for every defined check."""
    entries = []
    for d in defs:
        factory = CHECK_FACTORIES.get(d.type)
        if factory is None:
            raise ValueError(f"Unknown check type for {d.name}: {d.type}")
        checker = factory(d.name, stats, environ)
        entries.append(ScheduleEntry(checker, interval=d.interval_seconds, timeout=d.timeout_seconds))

    validate_entries(entries)
    return entries
