"""S3 check — verifies a known object can be downloaded from a bucket.

Options (see ``checks.config``): BUCKET, KEY, REGION, ENDPOINT. Set
ENDPOINT to target an S3-compatible store instead of AWS.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..health.engine import CheckError
from ..telemetry import Stats
from .config import check_config_from_env

logger = logging.getLogger(__name__)

METRIC_DOWNLOAD = "download"

DEFAULTS = {
    "BUCKET": "probehub",
    "KEY": "check",
    "REGION": "us-east-1",
    "ENDPOINT": "",
}


def _new_client(region: str, endpoint: str) -> Any:
    # Path-style addressing is what most S3-compatible stores expect
    kwargs: dict[str, Any] = {"region_name": region}
    if endpoint:
        kwargs["endpoint_url"] = endpoint
        kwargs["config"] = Config(s3={"addressing_style": "path"})
    return boto3.client("s3", **kwargs)


class S3Check:
    """Checker that downloads ``s3://BUCKET/KEY`` on every run."""

    def __init__(
        self,
        name: str,
        stats: Stats,
        client: Any | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        cfg = check_config_from_env(name, DEFAULTS, environ)
        self._name = name
        self._stats = stats.scoped(name)
        self.bucket = cfg["BUCKET"]
        self.key = cfg["KEY"]
        self._client = client or _new_client(cfg["REGION"], cfg["ENDPOINT"])

    @property
    def name(self) -> str:
        return self._name

    def check(self) -> None:
        try:
            resp = self._client.get_object(Bucket=self.bucket, Key=self.key)
            resp["Body"].read()
        except (BotoCoreError, ClientError) as e:
            self._stats.gauge(METRIC_DOWNLOAD, 0)
            logger.error(
                "Download check failed: check=%s bucket=%s key=%s: %s",
                self._name, self.bucket, self.key, e,
            )
            raise CheckError(
                f"{self._name} download check failed, bucket={self.bucket}, key={self.key}: {e}"
            ) from e

        self._stats.gauge(METRIC_DOWNLOAD, 1)
        logger.debug("Download check succeeded: check=%s bucket=%s key=%s", self._name, self.bucket, self.key)
