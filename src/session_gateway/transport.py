"""Proxy-aware HTTP clients shared by an executor."""

from __future__ import annotations

import httpx


class ClientPool:
    """Keeps one ``httpx.AsyncClient`` per proxy URL.

    ``timeout_s`` bounds connect, write and pool waits only. Reads are
    unbounded: research streams may go quiet for minutes, and overall
    deadlines belong to the caller (``asyncio.timeout``, task cancellation).
    """

    def __init__(
        self,
        *,
        timeout_s: float = 60.0,
        proxy_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout_s = timeout_s
        self._default_proxy = proxy_url
        self._transport = transport
        self._clients: dict[str | None, httpx.AsyncClient] = {}

    def get(self, proxy_url: str | None = None) -> httpx.AsyncClient:
        """Return the client for ``proxy_url``, falling back to the pool default."""
        proxy = proxy_url or self._default_proxy
        if self._transport is not None:
            # An explicit transport replaces proxy routing entirely.
            proxy = None
        client = self._clients.get(proxy)
        if client is None:
            client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout_s, read=None),
                proxy=proxy,
                transport=self._transport,
            )
            self._clients[proxy] = client
        return client

    async def aclose(self) -> None:
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.aclose()
