"""MiroMind provider: browser-session web API with a multiplexed event stream."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Any

import httpx

from session_gateway.auth import Auth, MiroMindTokenStorage, resolve_secret
from session_gateway.errors import TransportError
from session_gateway.providers.base import BaseExecutor, ChunkStream
from session_gateway.providers.miromind_decoder import MiroMindStreamDecoder
from session_gateway.types import ChatCompletionChunk, ChatRequest
from session_gateway.usage import UsageReporter

MIROMIND_ORIGIN = "https://dr.miromind.ai"
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

DEFAULT_MODE = "pro"
FAST_MODE = "fast"
_MODEL_PREFIX = "miromind-"
# "miromind-chat" names the provider's generic model, not a mode.
_NO_MODE_VARIANT = "chat"


def base_model_name(model: str) -> str:
    """Drop a trailing thinking-budget suffix such as ``"(high)"``."""
    model = model.strip()
    if model.endswith(")"):
        idx = model.rfind("(")
        if idx > 0:
            return model[:idx]
    return model


def resolve_mode(model: str) -> str:
    """Pick the MiroMind execution mode from a model identifier."""
    name = base_model_name(model)
    mode = DEFAULT_MODE
    if FAST_MODE in name.lower():
        mode = FAST_MODE
    if name.startswith(_MODEL_PREFIX):
        parts = name.split("-")
        if len(parts) > 1 and parts[1] and parts[1] != _NO_MODE_VARIANT:
            mode = parts[1]
    return mode


def build_miromind_request(req: ChatRequest) -> dict[str, Any]:
    """Translate a canonical request into the MiroMind chat body."""
    return {
        "messages": [{"role": m.role, "content": m.text()} for m in req.messages],
        "debug": False,
        "mode": resolve_mode(req.model),
    }


class MiroMindExecutor(BaseExecutor):
    """Executes canonical chat requests against MiroMind's web chat stream."""

    name = "miromind"
    _logger = logging.getLogger(__name__)

    def credentials(self, auth: Auth | None) -> tuple[str, str]:
        """Return ``(session_token, email)`` for ``auth``."""
        return resolve_secret(
            auth,
            self.name,
            MiroMindTokenStorage,
            secret_fields=("session_token",),
            metadata_keys=("session_token",),
        )

    def prepare_request(self, request: httpx.Request, auth: Auth | None) -> None:
        token, _ = self.credentials(auth)
        # The token is a browser session artifact, so present as that browser.
        request.headers["User-Agent"] = BROWSER_USER_AGENT
        request.headers["Origin"] = MIROMIND_ORIGIN
        request.headers["Referer"] = MIROMIND_ORIGIN + "/"
        request.headers["Accept"] = "*/*"
        request.headers["Authorization"] = f"Bearer {token}"
        # Upstream rejects a cookie sent alongside the bearer token.
        request.headers.pop("Cookie", None)

    async def execute_stream(self, auth: Auth | None, req: ChatRequest) -> ChunkStream:
        model = base_model_name(req.model)
        reporter = self._new_reporter(model, auth)
        with reporter.tracking_failures():
            body = build_miromind_request(req)
            request = httpx.Request(
                "POST",
                self._settings.miromind_api_url,
                json=body,
                headers={"Content-Type": "application/json"},
            )
            response = await self.http_request(auth, request)
            await self._raise_for_status(response)

        decoder = MiroMindStreamDecoder(model)
        return ChunkStream(self._decode(response, decoder, reporter), response)

    async def _decode(
        self,
        response: httpx.Response,
        decoder: MiroMindStreamDecoder,
        reporter: UsageReporter,
    ) -> AsyncGenerator[ChatCompletionChunk, None]:
        try:
            yield decoder.initial_chunk()
            try:
                async for line in response.aiter_lines():
                    chunk = decoder.feed(line)
                    if chunk is not None:
                        yield chunk
                    if decoder.finished:
                        break
            except httpx.HTTPError as exc:
                raise TransportError(self.name, f"stream read failed: {exc}") from exc
            reporter.publish(decoder.usage())
            yield decoder.final_chunk()
        finally:
            # No-op when already published above; covers cancellation and read errors.
            reporter.publish(decoder.usage())
            await response.aclose()
