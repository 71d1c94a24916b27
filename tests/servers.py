"""In-process aiohttp endpoints used by the transfer and latency tests."""

import asyncio
import time

from aiohttp import WSMsgType, web
from aiohttp.test_utils import TestServer

STREAM_CHUNK = b"\x00" * 16384


async def _stream(request):
    """Endless body, throttled a little so the loop stays responsive."""
    resp = web.StreamResponse()
    resp.content_type = "application/octet-stream"
    await resp.prepare(request)
    try:
        while True:
            await resp.write(STREAM_CHUNK)
            await asyncio.sleep(0.001)
    except (ConnectionResetError, RuntimeError):
        pass
    return resp


async def _finite(request):
    return web.Response(body=b"\x01" * 100_000)


async def _fail(request):
    return web.Response(status=500, text="boom")


async def _upload(request):
    total = 0
    async for data in request.content.iter_chunked(65536):
        total += len(data)
    return web.json_response({"received": total})


async def _reject(request):
    return web.Response(status=413)


async def _ping(request):
    return web.Response(status=204)


async def _ws(request):
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    async for msg in ws:
        if msg.type == WSMsgType.TEXT and msg.data.startswith("PING"):
            await ws.send_str(f"PONG {int(time.time() * 1000)}")
        elif msg.type == WSMsgType.TEXT:
            await ws.send_str("NOPE")
    return ws


def make_app() -> web.Application:
    app = web.Application()
    app.router.add_get("/down", _stream)
    app.router.add_get("/finite", _finite)
    app.router.add_get("/fail", _fail)
    app.router.add_post("/up", _upload)
    app.router.add_post("/reject", _reject)
    app.router.add_route("HEAD", "/ping", _ping)
    app.router.add_get("/ws", _ws)
    return app


async def start_server() -> TestServer:
    server = TestServer(make_app())
    await server.start_server()
    return server


def url(server: TestServer, path: str) -> str:
    return str(server.make_url(path))


def ws_url(server: TestServer, path: str = "/ws") -> str:
    return url(server, path).replace("http://", "ws://", 1)


# Nothing listens here; connecting is refused immediately.
REFUSED_URL = "http://127.0.0.1:1/"
