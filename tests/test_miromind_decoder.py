import json
import unittest

from session_gateway.providers.miromind_decoder import MiroMindStreamDecoder
from session_gateway.types import SSE_DONE, ChatCompletionChunk, UsageDetail

STREAM = [
    "event: start_of_agent",
    'data: {"agent": "main"}',
    "",
    "event: heartbeat",
    "data: {}",
    "",
    "event: tool_call",
    'data: {"tool_name": "show_text", "delta_input": {"text": "Intro <think>\\nweighing"}}',
    'data: {"tool_name": "show_text", "delta_input": {"text": " options</think>Result"}}',
    'data: {"tool_name": "web_search", "delta_input": {"text": "ignored"}}',
    "",
    "event: message",
    'data: {"delta": {"content": "Hel"}}',
    ": comment line",
    'data: {"delta": {"content": "lo"}}',
    "data: not json",
    'data: {"delta": {"content": ""}}',
    "",
    "event: usage_info",
    'data: {"scene": "main_agent_end", "usage": {"total_prompt_tokens": 5, "total_completion_tokens": 10}}',
    'data: {"scene": "sub_agent_end", "usage": {"total_prompt_tokens": 100, "total_completion_tokens": 100}}',
    'data: {"scene": "summary_llm_end", "usage": {"total_prompt_tokens": 3, "total_completion_tokens": 2}}',
    "",
    "event: done",
    "data: {}",
    "event: message",
    'data: {"delta": {"content": "after done"}}',
]


def _decoder() -> MiroMindStreamDecoder:
    return MiroMindStreamDecoder("miromind-pro", chunk_id="chatcmpl-1", created=1700000000)


def _feed_all(decoder: MiroMindStreamDecoder, lines: list[str]) -> list[ChatCompletionChunk]:
    chunks = []
    for line in lines:
        chunk = decoder.feed(line)
        if chunk is not None:
            chunks.append(chunk)
    return chunks


class DecoderTests(unittest.TestCase):
    def test_full_stream(self) -> None:
        decoder = _decoder()
        chunks = [decoder.initial_chunk(), *_feed_all(decoder, STREAM), decoder.final_chunk()]

        self.assertEqual(chunks[0].delta.role, "assistant")
        self.assertIsNone(chunks[0].delta.content)
        self.assertIsNone(chunks[0].finish_reason)

        middle = [(c.delta.content, c.delta.reasoning_content) for c in chunks[1:-1]]
        self.assertEqual(
            middle,
            [
                ("Intro ", "weighing"),
                ("Result", " options"),
                ("Hel", None),
                ("lo", None),
            ],
        )

        last = chunks[-1]
        self.assertEqual(last.finish_reason, "stop")
        self.assertIsNone(last.delta.content)
        self.assertIsNone(last.delta.role)

        self.assertEqual({c.id for c in chunks}, {"chatcmpl-1"})
        self.assertEqual({c.created for c in chunks}, {1700000000})

    def test_usage_accumulates_terminal_scenes_only(self) -> None:
        decoder = _decoder()
        _feed_all(decoder, STREAM)
        self.assertEqual(decoder.usage(), UsageDetail(input_tokens=8, output_tokens=12, total_tokens=20))

    def test_usage_absent_when_nothing_reported(self) -> None:
        decoder = _decoder()
        _feed_all(decoder, ["event: message", 'data: {"delta": {"content": "x"}}'])
        self.assertIsNone(decoder.usage())

    def test_done_stops_processing(self) -> None:
        decoder = _decoder()
        chunks = _feed_all(decoder, STREAM)
        self.assertTrue(decoder.finished)
        self.assertNotIn("after done", [c.delta.content for c in chunks])
        self.assertIsNone(decoder.feed('data: {"delta": {"content": "late"}}'))

    def test_end_of_workflow_also_terminates(self) -> None:
        decoder = _decoder()
        decoder.feed("event: end_of_workflow")
        decoder.feed("data: {}")
        self.assertTrue(decoder.finished)

    def test_event_type_is_sticky(self) -> None:
        decoder = _decoder()
        decoder.feed("event: message")
        first = decoder.feed('data: {"delta": {"content": "a"}}')
        second = decoder.feed('data: {"delta": {"content": "b"}}')
        self.assertEqual((first.delta.content, second.delta.content), ("a", "b"))

    def test_malformed_payloads_are_skipped(self) -> None:
        decoder = _decoder()
        decoder.feed("event: message")
        self.assertIsNone(decoder.feed("data: {broken"))
        self.assertIsNone(decoder.feed('data: {"delta": "not an object"}'))
        self.assertIsNone(decoder.feed("data: [1, 2]"))
        chunk = decoder.feed('data: {"delta": {"content": "ok"}}')
        self.assertEqual(chunk.delta.content, "ok")

    def test_fresh_decoders_agree(self) -> None:
        first = [c.to_sse() for c in _feed_all(_decoder(), STREAM)]
        second = [c.to_sse() for c in _feed_all(_decoder(), STREAM)]
        self.assertEqual(first, second)

    def test_sse_rendering(self) -> None:
        decoder = _decoder()
        role_line = decoder.initial_chunk().to_sse()
        self.assertTrue(role_line.startswith("data: "))
        body = json.loads(role_line[len("data: ") :])
        self.assertEqual(body["object"], "chat.completion.chunk")
        self.assertEqual(body["choices"][0]["delta"], {"role": "assistant"})
        self.assertIsNone(body["choices"][0]["finish_reason"])

        stop = json.loads(decoder.final_chunk().to_sse()[len("data: ") :])
        self.assertEqual(stop["choices"][0], {"index": 0, "delta": {}, "finish_reason": "stop"})
        self.assertEqual(SSE_DONE, "data: [DONE]")

    def test_markup_is_not_html_escaped(self) -> None:
        decoder = _decoder()
        decoder.feed("event: message")
        chunk = decoder.feed('data: {"delta": {"content": "a < b & c"}}')
        self.assertIn("a < b & c", chunk.to_sse())


if __name__ == "__main__":
    unittest.main()
