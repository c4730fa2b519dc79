"""Health probe routes.

Endpoints:
  GET  /health          — run every check now; 200 if all ok, else 503
  GET  /health/{name}   — run one check now; 200 / 503, 404 if unknown
  POST /shutdown        — stop all checks and exit the process
  GET  /quitquitquit    — same as POST /shutdown, for preStop hooks
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Request, Response
from fastapi.responses import PlainTextResponse

from probehub.health.engine import CheckResult, run_checks

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json; charset=utf-8"

health_router = APIRouter()


def render(payload: Any, healthy: bool, status_code: int | None = None) -> Response:
    """Encode ``payload`` as JSON; 200 when healthy, 503 otherwise.

    An encoding failure is the only path that yields a 500.
    """
    try:
        body = json.dumps(payload)
    except (TypeError, ValueError) as e:
        logger.error("Cannot encode check results: %s", e)
        return PlainTextResponse(f"cannot encode check results: {e}", status_code=500)

    if status_code is None:
        status_code = 200 if healthy else 503
    return Response(content=body, status_code=status_code, media_type=JSON_CONTENT_TYPE)


def render_snapshot(results: dict[str, CheckResult]) -> Response:
    healthy = all(r.ok for r in results.values())
    return render({name: r.to_dict() for name, r in results.items()}, healthy)


# ── Check endpoints ──────────────────────────────────────────────────────────


@health_router.get("/health")
async def all_checks(request: Request) -> Response:
    """Run all configured checks concurrently and report each one."""
    state = request.app.state
    results = await run_checks(
        state.entries, executor=state.request_executor,
        cancel=state.stopping, in_flight=state.in_flight,
    )
    return render_snapshot(results)


@health_router.get("/health/{name}")
async def one_check(name: str, request: Request) -> Response:
    """Run a single named check."""
    state = request.app.state
    entry = state.entries_by_name.get(name)
    if entry is None:
        return render({"ok": False, "error": f"unknown check: {name}"}, False, status_code=404)

    results = await run_checks(
        [entry], executor=state.request_executor,
        cancel=state.stopping, in_flight=state.in_flight,
    )
    result = results[name]
    return render(result.to_dict(), result.ok)


# ── Shutdown ─────────────────────────────────────────────────────────────────


@health_router.post("/shutdown")
@health_router.get("/quitquitquit")
async def shutdown(request: Request) -> Response:
    """Cancel all background checks and terminate. There is no way back."""
    request.app.state.shutdown.trigger()
    return Response(status_code=202)
