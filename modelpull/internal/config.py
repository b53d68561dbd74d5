"""
Runtime configuration for modelpull.

Values come from the environment; the CLI overrides individual fields from
its flags.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from modelpull.internal import paths
from modelpull.internal.constants import (
    API_TIMEOUT_SECONDS,
    CONNECT_TIMEOUT_SECONDS,
    DEFAULT_MODEL_ENDPOINT,
    MAX_DOWNLOAD_ATTEMPTS,
    READ_TIMEOUT_SECONDS,
    RETRY_BASE_SECONDS,
)

_TRUTHY = {"1", "true", "yes", "on"}


def get_model_endpoint() -> str:
    """
    Base URL of the model hub, always ending with a slash.
    """
    endpoint = (
        os.environ.get("MODEL_ENDPOINT")
        or os.environ.get("HF_ENDPOINT")
        or DEFAULT_MODEL_ENDPOINT
    )
    if not endpoint.endswith("/"):
        endpoint += "/"
    return endpoint


@dataclass
class PullConfig:
    """Settings shared by the resolvers and the download engine."""

    cache_dir: Path = field(default_factory=paths.get_cache_dir)
    model_endpoint: str = field(default_factory=get_model_endpoint)
    token: Optional[str] = None
    offline: bool = False

    connect_timeout: float = CONNECT_TIMEOUT_SECONDS
    read_timeout: float = READ_TIMEOUT_SECONDS
    api_timeout: float = API_TIMEOUT_SECONDS

    max_attempts: int = MAX_DOWNLOAD_ATTEMPTS
    retry_base_seconds: float = RETRY_BASE_SECONDS

    @property
    def transfer_timeout(self) -> tuple[float, float]:
        return (self.connect_timeout, self.read_timeout)

    @classmethod
    def from_env(cls) -> "PullConfig":
        """Load configuration from environment variables."""
        config = cls()

        config.token = os.environ.get("HF_TOKEN") or None
        config.offline = os.environ.get("MODELPULL_OFFLINE", "").strip().lower() in _TRUTHY

        if "MODELPULL_TIMEOUT" in os.environ:
            try:
                config.read_timeout = float(os.environ["MODELPULL_TIMEOUT"])
            except ValueError:
                raise ValueError(
                    f"MODELPULL_TIMEOUT must be a number of seconds, got {os.environ['MODELPULL_TIMEOUT']!r}"
                )

        return config
