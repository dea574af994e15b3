"""Provider-agnostic executor interface and helpers."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator
from types import TracebackType

import httpx

from session_gateway.auth import Auth
from session_gateway.config import GatewaySettings
from session_gateway.errors import TransportError, upstream_error_from_body
from session_gateway.transport import ClientPool
from session_gateway.types import (
    AssistantMessage,
    ChatCompletionChunk,
    ChatCompletionResponse,
    ChatRequest,
    ResponseChoice,
    new_completion_id,
)
from session_gateway.usage import LoggingUsageSink, UsageReporter, UsageSink


class ChunkStream:
    """Finite, non-restartable async sequence of canonical chunks.

    Owns the upstream response from the moment ``execute_stream`` returns.
    The body is released when iteration ends or fails, or on ``aclose()``,
    whichever comes first.
    """

    def __init__(
        self,
        chunks: AsyncGenerator[ChatCompletionChunk, None],
        response: httpx.Response,
    ) -> None:
        self._chunks = chunks
        self._response = response

    @property
    def response(self) -> httpx.Response:
        return self._response

    def __aiter__(self) -> ChunkStream:
        return self

    async def __anext__(self) -> ChatCompletionChunk:
        return await self._chunks.__anext__()

    async def aclose(self) -> None:
        await self._chunks.aclose()
        if not self._response.is_closed:
            await self._response.aclose()

    async def __aenter__(self) -> ChunkStream:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()


class BaseExecutor(ABC):
    """Abstract base class for provider executors."""

    name: str
    _logger = logging.getLogger(__name__)

    def __init__(
        self,
        *,
        settings: GatewaySettings | None = None,
        usage_sink: UsageSink | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or GatewaySettings()
        self._usage_sink: UsageSink = usage_sink or LoggingUsageSink()
        self._clients = ClientPool(
            timeout_s=self._settings.timeout_s,
            proxy_url=self._settings.proxy_url,
            transport=transport,
        )

    def identifier(self) -> str:
        """Constant provider tag used for routing and logging."""
        return self.name

    async def aclose(self) -> None:
        """Close the underlying HTTP clients."""
        await self._clients.aclose()

    async def refresh(self, auth: Auth) -> Auth:
        """Return ``auth`` unchanged.

        Session secrets handled here are long-lived browser artifacts with no
        refresh protocol; this is intentionally a no-op.
        """
        return auth

    @abstractmethod
    def prepare_request(self, request: httpx.Request, auth: Auth | None) -> None:
        """Inject credentials and provider headers into an outgoing request."""
        raise NotImplementedError

    async def http_request(self, auth: Auth | None, request: httpx.Request) -> httpx.Response:
        """Prepare and send ``request``; the caller owns the returned response."""
        self.prepare_request(request, auth)
        client = self._clients.get(auth.proxy_url if auth is not None else None)
        self._logger.debug(
            "upstream request provider=%s method=%s url=%s auth=%s",
            self.name,
            request.method,
            request.url,
            auth.id if auth is not None else None,
        )
        try:
            return await client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise TransportError(self.name, f"http call failed: {exc}") from exc

    @abstractmethod
    async def execute_stream(self, auth: Auth | None, req: ChatRequest) -> ChunkStream:
        """Start a streaming call; raises synchronously on setup or status failure."""
        raise NotImplementedError

    async def execute(self, auth: Auth | None, req: ChatRequest) -> ChatCompletionResponse:
        """Drain ``execute_stream`` and fold its content deltas into one message."""
        parts: list[str] = []
        finish_reason = "stop"
        async with await self.execute_stream(auth, req) as stream:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                if chunk.delta.content:
                    parts.append(chunk.delta.content)
                if chunk.finish_reason:
                    finish_reason = chunk.finish_reason

        return ChatCompletionResponse(
            id=new_completion_id(),
            created=int(time.time()),
            model=req.model,
            choices=[
                ResponseChoice(
                    message=AssistantMessage(content="".join(parts)),
                    finish_reason=finish_reason,
                )
            ],
        )

    def count_tokens(self, req: ChatRequest) -> int:
        """Rough token estimate: serialized payload length / 4.

        No tokenizer endpoint is available upstream, so this is never exact.
        """
        return len(req.model_dump_json(exclude_none=True)) // 4

    def _new_reporter(self, model: str, auth: Auth | None) -> UsageReporter:
        return UsageReporter(self._usage_sink, self.name, model, auth)

    async def _raise_for_status(self, response: httpx.Response) -> None:
        """Turn a non-2xx response into an ``UpstreamError``, releasing the body."""
        if response.is_success:
            return
        try:
            body = await response.aread()
        except httpx.HTTPError as exc:
            raise TransportError(self.name, f"reading error body failed: {exc}") from exc
        finally:
            await response.aclose()
        err = upstream_error_from_body(self.name, response.status_code, body, response.reason_phrase)
        self._logger.warning("upstream error provider=%s status=%s: %s", self.name, err.status_code, err.message)
        raise err
