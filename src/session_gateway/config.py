"""Gateway settings and their environment variable mapping."""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict

ENV_PREFIX = "SESSION_GATEWAY_"

DEFAULT_MIROMIND_API_URL = "https://dr.miromind.ai/api/chat/stream"
DEFAULT_TRAE_HOST = "https://api-sg-central.trae.ai"


class GatewaySettings(BaseModel):
    """Endpoints, proxy and timeout used by the executors."""

    model_config = ConfigDict(frozen=True)

    miromind_api_url: str = DEFAULT_MIROMIND_API_URL
    # None means "use the host stored with the Trae credential".
    trae_api_url: str | None = None
    proxy_url: str | None = None
    # Connect/write/pool timeout; stream reads are never timed out here.
    timeout_s: float = 60.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> GatewaySettings:
        """Build settings from ``SESSION_GATEWAY_*`` variables.

        Unset or blank variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        for name in ("miromind_api_url", "trae_api_url", "proxy_url"):
            raw = env.get(ENV_PREFIX + name.upper(), "").strip()
            if raw:
                values[name] = raw
        timeout = env.get(ENV_PREFIX + "TIMEOUT_S", "").strip()
        if timeout:
            try:
                values["timeout_s"] = float(timeout)
            except ValueError as exc:
                raise ValueError(f"{ENV_PREFIX}TIMEOUT_S must be a number, got {timeout!r}") from exc
        return cls(**values)
