import asyncio
import unittest
from collections.abc import AsyncIterator

import httpx

from session_gateway.auth import Auth
from session_gateway.providers import BaseExecutor, ChunkStream, MiroMindExecutor, TraeExecutor
from session_gateway.types import ChatCompletionChunk, ChatRequest, Message, make_chunk
from session_gateway.usage import InMemoryUsageSink


class DummyExecutor(BaseExecutor):
    name = "dummy"

    def prepare_request(self, request: httpx.Request, auth: Auth | None) -> None:
        request.headers["Authorization"] = "Bearer dummy"

    async def execute_stream(self, auth: Auth | None, req: ChatRequest) -> ChunkStream:
        response = httpx.Response(200, content=b"")

        async def _gen() -> AsyncIterator[ChatCompletionChunk]:
            yield make_chunk("c-1", 1, req.model, role="assistant")
            yield make_chunk("c-1", 1, req.model, content="chunk")
            yield make_chunk("c-1", 1, req.model, finish_reason="stop")

        return ChunkStream(_gen(), response)


class ExecutorSanityTests(unittest.TestCase):
    def setUp(self) -> None:
        self.req = ChatRequest(model="toy", messages=[Message(role="user", content="hi")])

    def test_identifiers(self) -> None:
        self.assertEqual(MiroMindExecutor().identifier(), "miromind")
        self.assertEqual(TraeExecutor().identifier(), "trae")
        self.assertEqual(DummyExecutor().identifier(), "dummy")

    def test_stream_is_async_iterator(self) -> None:
        executor = DummyExecutor(usage_sink=InMemoryUsageSink())
        stream = asyncio.run(executor.execute_stream(None, self.req))
        self.assertIsInstance(stream, AsyncIterator)
        chunks = asyncio.run(_collect(stream))
        self.assertEqual([c.delta.content for c in chunks], [None, "chunk", None])

    def test_execute_drains_stream(self) -> None:
        resp = asyncio.run(DummyExecutor().execute(None, self.req))
        self.assertEqual(resp.text, "chunk")
        self.assertEqual(resp.model, "toy")
        self.assertTrue(resp.id.startswith("chatcmpl-"))


async def _collect(stream: ChunkStream) -> list[ChatCompletionChunk]:
    chunks: list[ChatCompletionChunk] = []
    async for chunk in stream:
        chunks.append(chunk)
    return chunks


if __name__ == "__main__":
    unittest.main()
