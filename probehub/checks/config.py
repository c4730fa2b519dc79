"""Per-check options read from environment variables.

A check named ``s3`` with option ``BUCKET`` is configured by
``PROBEHUB_S3_BUCKET``. Options not present in the environment keep the
default the check passed in.
"""

from __future__ import annotations

import os
from collections.abc import Mapping

CHECK_CONFIG_ENV_PREFIX = "PROBEHUB_"


def check_env_key(name: str, option: str) -> str:
    return f"{CHECK_CONFIG_ENV_PREFIX}{name}_{option}".upper()


def check_config_from_env(
    name: str,
    defaults: Mapping[str, str],
    environ: Mapping[str, str] | None = None,
) -> dict[str, str]:
    env = os.environ if environ is None else environ
    return {key: env.get(check_env_key(name, key), value) for key, value in defaults.items()}
