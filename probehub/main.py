"""Entry point for probehub — `probehub` console script."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from concurrent.futures import ThreadPoolExecutor

import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from probehub.api.server import build_entries, create_app
from probehub.config import Settings, settings
from probehub.health.engine import ScheduleEntry, run_checks

console = Console()


def parse_listen(listen: str) -> tuple[str, int]:
    """Split ``[host]:port`` into host and port; an empty host binds all."""
    host, sep, port = listen.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"Invalid listen address: {listen!r}")
    return host or "0.0.0.0", int(port)


def apply_args(cfg: Settings, args: argparse.Namespace) -> Settings:
    """Overlay command line flags on the environment settings."""
    overrides: dict[str, object] = {}
    if getattr(args, "listen", None):
        overrides["listen_host"], overrides["listen_port"] = parse_listen(args.listen)
    if getattr(args, "statsd", None):
        overrides["statsd_address"] = args.statsd
    if getattr(args, "no_stats", False):
        overrides["no_stats"] = True
    if getattr(args, "debug", False):
        overrides["debug"] = True
        overrides["log_level"] = "DEBUG"
    if getattr(args, "close_after", None) is not None:
        overrides["close_after"] = args.close_after
    if getattr(args, "kill_after", None) is not None:
        overrides["kill_after"] = args.kill_after
    if getattr(args, "checks_file", None):
        overrides["checks_file"] = args.checks_file
    return cfg.model_copy(update=overrides)


def configure_logging(cfg: Settings) -> None:
    level = logging.DEBUG if cfg.debug else getattr(logging, cfg.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )


def run_server(cfg: Settings) -> None:
    """Start the background checks and the HTTP probe."""
    app = create_app(cfg=cfg)

    console.print(
        Panel.fit(
            f"[bold]probehub[/bold]\n"
            f"Listen: {cfg.listen_host}:{cfg.listen_port}\n"
            f"Stats:  {'disabled' if cfg.no_stats else cfg.statsd_address}\n"
            f"Checks: {', '.join(e.name for e in app.state.entries) or 'none'}",
            border_style="green",
        )
    )

    uvicorn.run(
        app,
        host=cfg.listen_host,
        port=cfg.listen_port,
        log_level=cfg.log_level.lower(),
        timeout_graceful_shutdown=int(cfg.close_after),
    )


def run_once(cfg: Settings, names: list[str]) -> int:
    """Run the configured checks a single time and print a table."""
    entries: list[ScheduleEntry] = build_entries(cfg)
    if names:
        unknown = set(names) - {e.name for e in entries}
        if unknown:
            console.print(f"[red]Unknown checks: {', '.join(sorted(unknown))}[/red]")
            return 2
        entries = [e for e in entries if e.name in names]

    pool = ThreadPoolExecutor(max_workers=max(len(entries), 1))
    try:
        results = asyncio.run(run_checks(entries, executor=pool))
    finally:
        pool.shutdown(wait=False, cancel_futures=True)

    table = Table(title="Health checks")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Latency", justify="right")
    table.add_column("Error")
    for name in sorted(results):
        r = results[name]
        status = "[green]ok[/green]" if r.ok else ("[yellow]timeout[/yellow]" if r.timed_out else "[red]fail[/red]")
        table.add_row(name, status, f"{r.latency_ms:.1f}ms", r.error)
    console.print(table)

    return 0 if all(r.ok for r in results.values()) else 1


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--statsd", help="Address to which to send statsd metrics")
    p.add_argument("--no-stats", action="store_true", help="Don't send statsd stats")
    p.add_argument("-d", "--debug", action="store_true", help="Run with debug logging")
    p.add_argument("--checks-file", help="YAML file listing the checks to run")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Runs health checks and serves their status over HTTP")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run checks forever and serve /health")
    _add_common(serve)
    serve.add_argument("--listen", help="Address at which to expose HTTP health checks, e.g. :10002")
    serve.add_argument(
        "--close-after", type=float,
        help="Seconds to wait at shutdown before closing HTTP connections",
    )
    serve.add_argument("--kill-after", type=float, help="Seconds to wait at shutdown before exiting")

    check = sub.add_parser("check", help="Run checks once and print the results")
    _add_common(check)
    check.add_argument("names", nargs="*", help="Only run these checks")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        cfg = apply_args(settings, args)
    except ValueError as e:
        parser.error(str(e))
    configure_logging(cfg)

    try:
        if args.command == "serve":
            run_server(cfg)
        else:
            rc = run_once(cfg, args.names)
            # Timed-out checks leave pool threads behind that would hold up interpreter exit
            sys.stdout.flush()
            sys.stderr.flush()
            os._exit(rc)
    except ValueError as e:
        console.print(f"[red]Cannot set up checks: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
