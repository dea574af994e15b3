"""Decoder for the MiroMind multiplexed ``event:``/``data:`` stream.

The upstream interleaves several event kinds on one SSE stream. The event
type line is sticky: it applies to every following ``data:`` line until the
next ``event:`` line. Visible answer text arrives on ``message`` events;
the research agent's ``show_text`` tool calls carry text that mixes visible
output with ``<think>...</think>`` reasoning, which is routed to
``reasoning_content``.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field

from pydantic import BaseModel, ValidationError

from session_gateway.types import ChatCompletionChunk, UsageDetail, make_chunk, new_completion_id

OPEN_MARKER = "<think>"
CLOSE_MARKER = "</think>"

EVENT_MESSAGE = "message"
EVENT_TOOL_CALL = "tool_call"
EVENT_USAGE_INFO = "usage_info"
TERMINAL_EVENTS = frozenset({"done", "end_of_workflow"})

SHOW_TEXT_TOOL = "show_text"
USAGE_SCENES = frozenset({"main_agent_end", "summary_llm_end"})


class ThinkTagSplitter:
    """Splits incremental text into (content, reasoning) around think markers.

    ``in_reasoning`` carries over between fragments of the same stream, so a
    reasoning segment may span many deltas. A marker cut in half by a
    fragment boundary (``"<thi"`` + ``"nk>"``) is not recognised and passes
    through as plain text.
    """

    def __init__(self) -> None:
        self.in_reasoning = False

    def split(self, fragment: str) -> tuple[str, str]:
        content: list[str] = []
        reasoning: list[str] = []
        remaining = fragment
        while remaining:
            if not self.in_reasoning:
                idx = remaining.find(OPEN_MARKER)
                if idx < 0:
                    content.append(remaining)
                    break
                content.append(remaining[:idx])
                remaining = remaining[idx + len(OPEN_MARKER) :]
                if remaining.startswith("\n"):
                    remaining = remaining[1:]
                self.in_reasoning = True
            else:
                idx = remaining.find(CLOSE_MARKER)
                if idx < 0:
                    reasoning.append(remaining)
                    break
                reasoning.append(remaining[:idx])
                remaining = remaining[idx + len(CLOSE_MARKER) :]
                self.in_reasoning = False
        return "".join(content), "".join(reasoning)


# Partial schemas for the event payloads we read. Missing fields are fine.


class _MessageDelta(BaseModel):
    content: str | None = None


class MessageEvent(BaseModel):
    delta: _MessageDelta | None = None


class _ToolInput(BaseModel):
    text: str | None = None


class ToolCallEvent(BaseModel):
    tool_name: str | None = None
    delta_input: _ToolInput | None = None


class _UsageCounts(BaseModel):
    total_prompt_tokens: int | None = None
    total_completion_tokens: int | None = None


class UsageInfoEvent(BaseModel):
    scene: str | None = None
    usage: _UsageCounts | None = None


@dataclass
class DecoderState:
    """Mutable state for exactly one stream."""

    event: str = ""
    splitter: ThinkTagSplitter = field(default_factory=ThinkTagSplitter)
    input_tokens: int = 0
    output_tokens: int = 0
    finished: bool = False


class MiroMindStreamDecoder:
    """Turns upstream lines into canonical chunks for one stream."""

    _logger = logging.getLogger(__name__)

    def __init__(self, model: str, *, chunk_id: str | None = None, created: int | None = None) -> None:
        self.model = model
        self.chunk_id = chunk_id or new_completion_id()
        self.created = created if created is not None else int(time.time())
        self.state = DecoderState()

    @property
    def finished(self) -> bool:
        return self.state.finished

    def initial_chunk(self) -> ChatCompletionChunk:
        return make_chunk(self.chunk_id, self.created, self.model, role="assistant")

    def final_chunk(self) -> ChatCompletionChunk:
        return make_chunk(self.chunk_id, self.created, self.model, finish_reason="stop")

    def usage(self) -> UsageDetail | None:
        """Accumulated usage, or None when the upstream reported nothing."""
        state = self.state
        if state.input_tokens <= 0 and state.output_tokens <= 0:
            return None
        return UsageDetail(input_tokens=state.input_tokens, output_tokens=state.output_tokens)

    def feed(self, line: str) -> ChatCompletionChunk | None:
        """Consume one line; returns a chunk when the line produced output."""
        if self.state.finished:
            return None
        if line.startswith("event:"):
            self.state.event = line[len("event:") :].strip()
            return None
        if not line.startswith("data:"):
            return None

        data_str = line[len("data:") :].strip()
        try:
            data = json.loads(data_str)
        except ValueError:
            self._logger.debug("Skipping non-JSON data line for event %r: %s", self.state.event, data_str)
            return None

        try:
            return self._dispatch(data)
        except ValidationError as exc:
            self._logger.debug("Skipping malformed %r event: %s", self.state.event, exc)
            return None

    def _dispatch(self, data: object) -> ChatCompletionChunk | None:
        event = self.state.event
        if event == EVENT_MESSAGE:
            message = MessageEvent.model_validate(data)
            content = message.delta.content if message.delta else None
            if content:
                return make_chunk(self.chunk_id, self.created, self.model, content=content)
        elif event == EVENT_TOOL_CALL:
            return self._on_tool_call(ToolCallEvent.model_validate(data))
        elif event == EVENT_USAGE_INFO:
            self._on_usage(UsageInfoEvent.model_validate(data))
        elif event in TERMINAL_EVENTS:
            self.state.finished = True
        # ping, heartbeat, history, start_of_agent, end_of_agent: nothing to do
        return None

    def _on_tool_call(self, call: ToolCallEvent) -> ChatCompletionChunk | None:
        if call.tool_name != SHOW_TEXT_TOOL or call.delta_input is None:
            return None
        text = call.delta_input.text
        if not text:
            return None
        content, reasoning = self.state.splitter.split(text)
        if not content and not reasoning:
            return None
        return make_chunk(self.chunk_id, self.created, self.model, content=content, reasoning=reasoning)

    def _on_usage(self, info: UsageInfoEvent) -> None:
        if info.scene not in USAGE_SCENES or info.usage is None:
            return
        self.state.input_tokens += info.usage.total_prompt_tokens or 0
        self.state.output_tokens += info.usage.total_completion_tokens or 0
