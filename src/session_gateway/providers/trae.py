"""Trae provider: near-canonical chat completions behind app/user tokens."""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncGenerator, Mapping
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from session_gateway.auth import Auth, TraeTokenStorage, resolve_secret
from session_gateway.config import DEFAULT_TRAE_HOST
from session_gateway.errors import ProviderError, TransportError
from session_gateway.providers.base import BaseExecutor, ChunkStream
from session_gateway.types import (
    AssistantMessage,
    ChatCompletionChunk,
    ChatCompletionResponse,
    ChatRequest,
    ResponseChoice,
    Usage,
    UsageDetail,
    make_chunk,
    new_completion_id,
)
from session_gateway.usage import UsageReporter

TRAE_CHAT_PATH = "/v1/chat/completions"
_ID_PREFIX = "trae"


class _TraeText(BaseModel):
    content: str | None = None


class _TraeChoice(BaseModel):
    delta: _TraeText | None = None
    message: _TraeText | None = None


class TraeUsage(BaseModel):
    model_config = ConfigDict(extra="allow")

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def to_detail(self) -> UsageDetail:
        if self.total_tokens and self.total_tokens != self.prompt_tokens + self.completion_tokens:
            # Upstream counts extra token kinds in the total; keep only the total.
            return UsageDetail(total_tokens=self.total_tokens)
        return UsageDetail(input_tokens=self.prompt_tokens, output_tokens=self.completion_tokens)


class TraePayload(BaseModel):
    """The parts of a Trae response or stream chunk we read."""

    choices: list[_TraeChoice] | None = None
    usage: TraeUsage | None = None


def parse_trae_payload(raw: bytes | str | Mapping[str, Any] | TraePayload) -> TraePayload | None:
    """Validate ``raw``; returns None when it is not a usable JSON object."""
    if isinstance(raw, TraePayload):
        return raw
    try:
        if isinstance(raw, (bytes, str)):
            return TraePayload.model_validate_json(raw)
        return TraePayload.model_validate(raw)
    except ValidationError:
        return None


def convert_request_to_trae(model: str, req: ChatRequest) -> dict[str, Any]:
    """Build a Trae request body.

    Sampling fields are copied only when the caller set them so upstream
    defaults stay in effect.
    """
    body: dict[str, Any] = {
        "model": model,
        "messages": [{"role": m.role, "content": m.text()} for m in req.messages],
        "stream": False,
    }
    if req.stream:
        body["stream"] = True
    if req.temperature is not None:
        body["temperature"] = req.temperature
    if req.top_p is not None:
        body["top_p"] = req.top_p
    if req.max_tokens is not None:
        body["max_tokens"] = req.max_tokens
    return body


def convert_trae_chunk(
    raw: bytes | str | Mapping[str, Any] | TraePayload,
    model: str,
    *,
    chunk_id: str | None = None,
    created: int | None = None,
) -> ChatCompletionChunk | None:
    """Map one Trae stream chunk onto a canonical chunk.

    Id and timestamp are freshly stamped unless the caller pins them.
    """
    payload = parse_trae_payload(raw)
    if payload is None:
        return None
    content = None
    if payload.choices and payload.choices[0].delta is not None:
        content = payload.choices[0].delta.content
    return make_chunk(
        chunk_id or new_completion_id(_ID_PREFIX),
        created if created is not None else int(time.time()),
        model,
        content=content,
    )


def convert_trae_response(
    raw: bytes | str | Mapping[str, Any] | TraePayload, model: str
) -> ChatCompletionResponse | None:
    """Map a buffered Trae response; absent fields keep template defaults."""
    payload = parse_trae_payload(raw)
    if payload is None:
        return None
    message = AssistantMessage()
    if payload.choices and payload.choices[0].message is not None:
        message = AssistantMessage(content=payload.choices[0].message.content or "")
    usage = Usage()
    if payload.usage is not None:
        usage = Usage(
            prompt_tokens=payload.usage.prompt_tokens,
            completion_tokens=payload.usage.completion_tokens,
            total_tokens=payload.usage.total_tokens,
        )
    return ChatCompletionResponse(
        id=new_completion_id(_ID_PREFIX),
        created=int(time.time()),
        model=model,
        choices=[ResponseChoice(message=message, finish_reason="stop")],
        usage=usage,
    )


class TraeExecutor(BaseExecutor):
    """Executes canonical chat requests against Trae's chat completions API."""

    name = "trae"
    _logger = logging.getLogger(__name__)

    def credentials(self, auth: Auth | None) -> tuple[str, str]:
        """Return ``(bearer_token, email)``; the user JWT is preferred over the app token."""
        return resolve_secret(
            auth,
            self.name,
            TraeTokenStorage,
            secret_fields=("user_token", "app_token"),
            metadata_keys=("user_token", "app_token"),
        )

    def prepare_request(self, request: httpx.Request, auth: Auth | None) -> None:
        token, _ = self.credentials(auth)
        request.headers["Authorization"] = f"Bearer {token}"
        app_token = self._stored(auth, "app_token")
        if app_token:
            request.headers["App-Token"] = app_token
        request.headers.pop("Cookie", None)

    def endpoint(self, auth: Auth | None) -> str:
        host = self._settings.trae_api_url or self._stored(auth, "host") or DEFAULT_TRAE_HOST
        return host.rstrip("/") + TRAE_CHAT_PATH

    async def execute_stream(self, auth: Auth | None, req: ChatRequest) -> ChunkStream:
        reporter = self._new_reporter(req.model, auth)
        with reporter.tracking_failures():
            body = convert_request_to_trae(req.model, req)
            body["stream"] = True
            response = await self.http_request(auth, self._build(auth, body))
            await self._raise_for_status(response)
        return ChunkStream(self._relay(response, req.model, reporter), response)

    async def execute(self, auth: Auth | None, req: ChatRequest) -> ChatCompletionResponse:
        reporter = self._new_reporter(req.model, auth)
        with reporter.tracking_failures():
            body = convert_request_to_trae(req.model, req)
            body["stream"] = False
            response = await self.http_request(auth, self._build(auth, body))
            await self._raise_for_status(response)
            try:
                raw = await response.aread()
            except httpx.HTTPError as exc:
                raise TransportError(self.name, f"reading response failed: {exc}") from exc
            finally:
                await response.aclose()
            result = convert_trae_response(raw, req.model)
            if result is None:
                raise ProviderError(self.name, "upstream returned a non-JSON response", response.status_code)

        payload = parse_trae_payload(raw)
        if payload is not None and payload.usage is not None:
            reporter.publish(payload.usage.to_detail())
        return result

    def _build(self, auth: Auth | None, body: dict[str, Any]) -> httpx.Request:
        return httpx.Request(
            "POST",
            self.endpoint(auth),
            json=body,
            headers={"Content-Type": "application/json"},
        )

    async def _relay(
        self,
        response: httpx.Response,
        model: str,
        reporter: UsageReporter,
    ) -> AsyncGenerator[ChatCompletionChunk, None]:
        chunk_id = new_completion_id(_ID_PREFIX)
        created = int(time.time())
        last_usage: UsageDetail | None = None
        try:
            yield make_chunk(chunk_id, created, model, role="assistant")
            try:
                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line.startswith("data:"):
                        continue
                    data_str = line[len("data:") :].strip()
                    if data_str == "[DONE]":
                        break
                    payload = parse_trae_payload(data_str)
                    if payload is None:
                        self._logger.debug("Skipping non-JSON streaming chunk: %s", data_str)
                        continue
                    if payload.usage is not None:
                        last_usage = payload.usage.to_detail()
                    chunk = convert_trae_chunk(payload, model, chunk_id=chunk_id, created=created)
                    if chunk is not None and chunk.delta.content:
                        yield chunk
            except httpx.HTTPError as exc:
                raise TransportError(self.name, f"stream read failed: {exc}") from exc
            reporter.publish(last_usage)
            yield make_chunk(chunk_id, created, model, finish_reason="stop")
        finally:
            reporter.publish(last_usage)
            await response.aclose()

    @staticmethod
    def _stored(auth: Auth | None, name: str) -> str:
        if auth is None:
            return ""
        if isinstance(auth.storage, TraeTokenStorage):
            value = getattr(auth.storage, name, "")
            if value:
                return value
        value = auth.metadata.get(name)
        return value if isinstance(value, str) else ""
