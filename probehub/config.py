from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {
        "env_prefix": "PROBEHUB_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    # HTTP health surface
    listen_host: str = "0.0.0.0"
    listen_port: int = 10002

    # statsd
    statsd_address: str = "127.0.0.1:8125"
    stats_prefix: str = "probehub"
    no_stats: bool = False

    # Shutdown: drain HTTP connections for close_after, hard exit at kill_after
    close_after: float = 60.0
    kill_after: float = 120.0

    # Checks (YAML file; empty = built-in default set)
    checks_file: str = ""

    # Thread pools for background ticks and on-demand runs
    scheduler_workers: int = 32
    request_workers: int = 32
    max_in_flight: int = 8  # per check, background runs only; 0 = unlimited
    request_max_in_flight: int = 1  # per check, on-demand runs; 0 = unlimited

    # Logging
    debug: bool = False
    log_level: str = "INFO"


settings = Settings()
