# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/auth_broker/transport.py

import logging
from typing import Callable, Dict, List, Optional, Protocol, Union

import aiohttp

lib_logger = logging.getLogger("auth_broker")

COLAB_RUNTIME_PROXY_TOKEN_HEADER = "X-Colab-Runtime-Proxy-Token"
COLAB_CLIENT_AGENT_HEADER = ("X-Colab-Client-Agent", "vscode")

Frame = Union[str, bytes]
FrameHandler = Callable[[Frame], None]


class MessageTransport(Protocol):
    """An already-connected duplex frame channel."""

    async def send(self, data: Frame) -> None:
        ...

    def on_message(self, handler: FrameHandler) -> Callable[[], None]:
        """Register ``handler`` for inbound frames; returns an unsubscribe callable."""
        ...

    async def close(self) -> None:
        ...


class FrameDispatcher:
    """Ordered list of inbound frame handlers."""

    def __init__(self):
        self._handlers: List[FrameHandler] = []

    def add(self, handler: FrameHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def remove() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return remove

    def dispatch(self, data: Frame) -> None:
        for handler in list(self._handlers):
            handler(data)

    def clear(self) -> None:
        self._handlers.clear()


class AiohttpWebSocketTransport:
    """:class:`MessageTransport` over an aiohttp client WebSocket."""

    def __init__(self, ws: aiohttp.ClientWebSocketResponse):
        self.ws = ws
        self._dispatcher = FrameDispatcher()

    def on_message(self, handler: FrameHandler) -> Callable[[], None]:
        return self._dispatcher.add(handler)

    async def send(self, data: Frame) -> None:
        if isinstance(data, bytes):
            await self.ws.send_bytes(data)
        else:
            await self.ws.send_str(data)

    async def run(self) -> None:
        """Deliver inbound frames in arrival order until the socket closes."""
        async for msg in self.ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                self._dispatcher.dispatch(msg.data)
            elif msg.type == aiohttp.WSMsgType.BINARY:
                self._dispatcher.dispatch(msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                lib_logger.error(f"Kernel channel error: {self.ws.exception()}")
                break
        lib_logger.debug("Kernel channel closed")

    async def close(self) -> None:
        self._dispatcher.clear()
        await self.ws.close()


def colab_channel_headers(
    proxy_token: Optional[str], headers: Optional[Dict[str, str]] = None
) -> Dict[str, str]:
    """Handshake headers required by Colab's runtime proxy."""
    merged = dict(headers or {})
    if proxy_token:
        merged[COLAB_RUNTIME_PROXY_TOKEN_HEADER] = proxy_token
    merged[COLAB_CLIENT_AGENT_HEADER[0]] = COLAB_CLIENT_AGENT_HEADER[1]
    return merged


async def connect_kernel_channel(
    session: aiohttp.ClientSession,
    url: str,
    proxy_token: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
) -> AiohttpWebSocketTransport:
    ws = await session.ws_connect(url, headers=colab_channel_headers(proxy_token, headers))
    lib_logger.info(f"Connected to kernel channel {url}")
    return AiohttpWebSocketTransport(ws)
