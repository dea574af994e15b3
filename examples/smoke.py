import asyncio
import logging
import sys

from session_gateway.auth import Auth, load_auth_file
from session_gateway.config import GatewaySettings
from session_gateway.errors import GatewayError
from session_gateway.providers.miromind import MiroMindExecutor
from session_gateway.types import SSE_DONE, ChatRequest, Message


async def main() -> None:
    logging.basicConfig(level=logging.INFO)
    executor = MiroMindExecutor(settings=GatewaySettings.from_env())

    # Pass a stored credential file to stream a real answer; without one the
    # call fails fast with MissingCredentialError.
    auth = load_auth_file(sys.argv[1]) if len(sys.argv) > 1 else Auth()
    req = ChatRequest(
        model="miromind-fast",
        messages=[Message(role="user", content="Summarize the latest news on fusion power.")],
        stream=True,
    )

    try:
        async with await executor.execute_stream(auth, req) as stream:
            async for chunk in stream:
                print(chunk.to_sse(), end="\n\n")
        print(SSE_DONE)
    except GatewayError as e:
        print("Expected error:", type(e).__name__, e)
    finally:
        await executor.aclose()


if __name__ == "__main__":
    asyncio.run(main())
