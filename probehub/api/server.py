"""FastAPI server exposing the health probe."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from probehub.api.health_routes import health_router
from probehub.checks.registry import load_check_defs, setup_checks
from probehub.config import Settings, settings
from probehub.health.engine import InFlight, ScheduleEntry, validate_entries
from probehub.health.scheduler import HealthScheduler
from probehub.health.shutdown import ShutdownControl, terminate_process
from probehub.telemetry import make_stats

logger = logging.getLogger(__name__)


# ── Request logging ──────────────────────────────────────────────────────────


class RequestLogMiddleware(BaseHTTPMiddleware):
    """Log method, URL and client address of every request."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        client = request.client
        logger.info(
            "request method=%s url=%s addr=%s",
            request.method, request.url, f"{client.host}:{client.port}" if client else "-",
        )
        return await call_next(request)


# ── Lifespan ─────────────────────────────────────────────────────────────────


def pool_size(workers: int, checks: int, per_check: int) -> int:
    """Grow ``workers`` so every check can hold ``per_check`` threads at once."""
    if not per_check:
        return workers
    return max(workers, checks * per_check)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start background checks on startup; stop them and the pools on exit."""
    cfg: Settings = app.state.settings

    checks = len(app.state.entries)
    tick_pool = ThreadPoolExecutor(
        max_workers=pool_size(cfg.scheduler_workers, checks, cfg.max_in_flight),
        thread_name_prefix="probehub-tick",
    )
    # One stuck slot per check plus one fresh run per check
    request_slots = cfg.request_max_in_flight + 1 if cfg.request_max_in_flight else 0
    request_pool = ThreadPoolExecutor(
        max_workers=pool_size(cfg.request_workers, checks, request_slots),
        thread_name_prefix="probehub-run",
    )
    app.state.request_executor = request_pool
    app.state.in_flight = InFlight(cfg.request_max_in_flight)
    app.state.stopping = asyncio.Event()

    scheduler = HealthScheduler(app.state.entries, tick_pool, cfg.max_in_flight)
    app.state.health_scheduler = scheduler
    app.state.shutdown = ShutdownControl(
        cancel_all=scheduler.cancel,
        terminate=app.state.terminate,
        stopping=app.state.stopping,
    )

    await scheduler.start()

    yield

    # Shutdown
    app.state.stopping.set()
    await scheduler.stop()
    tick_pool.shutdown(wait=False, cancel_futures=True)
    request_pool.shutdown(wait=False, cancel_futures=True)


# ── App factory ──────────────────────────────────────────────────────────────


def build_entries(cfg: Settings) -> list[ScheduleEntry]:
    """Construct the configured checks with their stats sink."""
    stats = make_stats(cfg.statsd_address, cfg.stats_prefix, enabled=not cfg.no_stats)
    defs = load_check_defs(Path(cfg.checks_file) if cfg.checks_file else None)
    return setup_checks(defs, stats)


def create_app(
    entries: Sequence[ScheduleEntry] | None = None,
    terminate: Callable[[], None] | None = None,
    cfg: Settings | None = None,
) -> FastAPI:
    """Create the probe application.

    ``entries`` defaults to the checks described by the settings.
    ``terminate`` is what shutdown calls once checks are cancelled; it
    defaults to signalling this process.
    """
    cfg = cfg or settings
    if entries is None:
        entries = build_entries(cfg)
    validate_entries(entries)

    app = FastAPI(
        title="probehub",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = cfg
    app.state.entries = list(entries)
    app.state.entries_by_name = {e.name: e for e in entries}
    app.state.terminate = terminate or terminate_process(cfg.kill_after)

    app.add_middleware(RequestLogMiddleware)
    app.include_router(health_router)

    return app
