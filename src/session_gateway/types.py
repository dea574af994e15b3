"""Canonical OpenAI-shaped request/response models shared by all providers."""

from __future__ import annotations

import json
import time
from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from session_gateway.errors import InvalidRequestError

SSE_DONE = "data: [DONE]"


def new_completion_id(prefix: str = "chatcmpl") -> str:
    return f"{prefix}-{time.time_ns()}"


class ContentPart(BaseModel):
    """One typed part of a multi-part message content."""

    model_config = ConfigDict(extra="allow")

    type: str
    text: str | None = None


class Message(BaseModel):
    """Single chat message."""

    role: str
    content: str | list[ContentPart] | None = None

    def text(self) -> str:
        """Return the message content as plain text.

        Only ``text`` parts contribute; image and other parts are dropped.
        """
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        return "".join(part.text or "" for part in self.content if part.type == "text")


class ChatRequest(BaseModel):
    """Normalized request shared by all providers."""

    model_config = ConfigDict(frozen=True)

    model: str
    messages: list[Message]
    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int | None = None
    stream: bool = False


def parse_chat_request(payload: bytes | str | Mapping[str, Any]) -> ChatRequest:
    """Validate a raw OpenAI chat payload into a :class:`ChatRequest`."""
    if isinstance(payload, (bytes, str)):
        try:
            payload = json.loads(payload)
        except ValueError as exc:
            raise InvalidRequestError(f"request body is not valid JSON: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise InvalidRequestError("request body must be a JSON object")
    if not isinstance(payload.get("messages"), list):
        raise InvalidRequestError("invalid messages in request payload")
    try:
        return ChatRequest.model_validate(payload)
    except ValidationError as exc:
        raise InvalidRequestError(str(exc)) from exc


class UsageDetail(BaseModel):
    """Token counts observed for one request."""

    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None

    @model_validator(mode="after")
    def _check_total(self) -> UsageDetail:
        if self.input_tokens is None or self.output_tokens is None:
            return self
        expected = self.input_tokens + self.output_tokens
        if self.total_tokens is None:
            self.total_tokens = expected
        elif self.total_tokens != expected:
            raise ValueError(f"total_tokens {self.total_tokens} != input + output ({expected})")
        return self

    def is_empty(self) -> bool:
        return not (self.input_tokens or self.output_tokens or self.total_tokens)


class Usage(BaseModel):
    """OpenAI ``usage`` block."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChunkDelta(BaseModel):
    role: Literal["assistant"] | None = None
    content: str | None = None
    reasoning_content: str | None = None


class ChunkChoice(BaseModel):
    index: int = 0
    delta: ChunkDelta = Field(default_factory=ChunkDelta)
    finish_reason: str | None = None


class ChatCompletionChunk(BaseModel):
    """One streamed increment in ``chat.completion.chunk`` shape."""

    id: str
    object: Literal["chat.completion.chunk"] = "chat.completion.chunk"
    created: int
    model: str
    choices: list[ChunkChoice] = Field(default_factory=lambda: [ChunkChoice()])

    @model_validator(mode="after")
    def _role_or_finish(self) -> ChatCompletionChunk:
        for choice in self.choices:
            if choice.delta.role is not None and choice.finish_reason is not None:
                raise ValueError("a chunk cannot carry both the role marker and a finish reason")
        return self

    @property
    def delta(self) -> ChunkDelta:
        return self.choices[0].delta

    @property
    def finish_reason(self) -> str | None:
        return self.choices[0].finish_reason

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump()
        for choice in data["choices"]:
            choice["delta"] = {k: v for k, v in choice["delta"].items() if v is not None}
        return data

    def to_sse(self) -> str:
        """Render as a single SSE ``data:`` line (no trailing blank line)."""
        return "data: " + json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))


def make_chunk(
    chunk_id: str,
    created: int,
    model: str,
    *,
    role: Literal["assistant"] | None = None,
    content: str | None = None,
    reasoning: str | None = None,
    finish_reason: str | None = None,
) -> ChatCompletionChunk:
    """Build a single-choice chunk; empty strings are treated as absent."""
    delta = ChunkDelta(role=role, content=content or None, reasoning_content=reasoning or None)
    return ChatCompletionChunk(
        id=chunk_id,
        created=created,
        model=model,
        choices=[ChunkChoice(delta=delta, finish_reason=finish_reason)],
    )


class AssistantMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: str = ""


class ResponseChoice(BaseModel):
    index: int = 0
    message: AssistantMessage = Field(default_factory=AssistantMessage)
    finish_reason: str | None = "stop"


class ChatCompletionResponse(BaseModel):
    """Buffered ``chat.completion`` response."""

    id: str
    object: Literal["chat.completion"] = "chat.completion"
    created: int
    model: str
    choices: list[ResponseChoice] = Field(default_factory=lambda: [ResponseChoice()])
    usage: Usage | None = None

    @property
    def text(self) -> str:
        return self.choices[0].message.content if self.choices else ""
