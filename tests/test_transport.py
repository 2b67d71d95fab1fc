import asyncio

import aiohttp
import pytest
from aiohttp import web

from auth_broker.transport import (
    COLAB_RUNTIME_PROXY_TOKEN_HEADER,
    FrameDispatcher,
    colab_channel_headers,
    connect_kernel_channel,
)


def test_channel_headers_include_proxy_token_and_agent():
    headers = colab_channel_headers("proxy-tok", {"X-Extra": "1"})
    assert headers == {
        "X-Extra": "1",
        COLAB_RUNTIME_PROXY_TOKEN_HEADER: "proxy-tok",
        "X-Colab-Client-Agent": "vscode",
    }
    assert COLAB_RUNTIME_PROXY_TOKEN_HEADER not in colab_channel_headers(None)


def test_frame_dispatcher_unsubscribe():
    dispatcher = FrameDispatcher()
    seen = []
    remove = dispatcher.add(seen.append)

    dispatcher.dispatch("a")
    remove()
    dispatcher.dispatch("b")

    assert seen == ["a"]


@pytest.mark.asyncio
async def test_websocket_transport_round_trip():
    handshakes = []
    received = []

    async def kernel_channel(request):
        handshakes.append(request.headers.copy())
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        await ws.send_str('{"header": {"msg_type": "status"}}')
        await ws.send_bytes(b"\x00binary")
        async for msg in ws:
            received.append(msg.data)
            if len(received) == 2:
                break
        await ws.close()
        return ws

    app = web.Application()
    app.router.add_get("/api/kernels/k1/channels", kernel_channel)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    port = runner.addresses[0][1]

    try:
        async with aiohttp.ClientSession() as session:
            transport = await connect_kernel_channel(
                session,
                f"http://127.0.0.1:{port}/api/kernels/k1/channels",
                proxy_token="proxy-tok",
            )
            frames = []
            transport.on_message(frames.append)

            await transport.send('{"header": {"msg_type": "execute_request"}}')
            await transport.send(b"\x01out")
            await asyncio.wait_for(transport.run(), timeout=5)
            await transport.close()
    finally:
        await runner.cleanup()

    assert handshakes[0][COLAB_RUNTIME_PROXY_TOKEN_HEADER] == "proxy-tok"
    assert handshakes[0]["x-colab-client-agent"] == "vscode"
    assert frames == ['{"header": {"msg_type": "status"}}', b"\x00binary"]
    assert received == ['{"header": {"msg_type": "execute_request"}}', b"\x01out"]
