"""
Upload transports.

A transport takes an async byte source and pushes it to an endpoint.  The
upload sampler does all metering through the byte source, so it does not
care which transport is underneath:

* ``http``   -- ``aiohttp`` POST with the byte source as a streamed body.
* ``socket`` -- raw HTTP/1.1 request written over ``asyncio`` streams with a
  fixed ``Content-Length``.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import ssl
from typing import AsyncIterable, Dict, Optional, Protocol, Type
from urllib.parse import urlsplit

import aiohttp

from .connection import client_session
from .constants import CONNECT_TIMEOUT, READ_TIMEOUT, USER_AGENT
from .errors import ErrorKind, PhaseConnectionError, PhaseProtocolError, PhaseTimeoutError

logger = logging.getLogger(__name__)


class UploadTransport(Protocol):
    """Anything that can push a byte source to *url*."""

    name: str

    async def send(self, url: str, body: AsyncIterable[bytes], size: int) -> Optional[int]:
        """Send *body* and return the HTTP status, or None if no response was read."""
        ...


# ---------------------------------------------------------------------------
# aiohttp POST
# ---------------------------------------------------------------------------

class HttpPostTransport:
    """Streams the body as a chunked ``aiohttp`` POST."""

    name = "http"

    def __init__(self, session: Optional[aiohttp.ClientSession] = None) -> None:
        self.session = session

    async def send(self, url: str, body: AsyncIterable[bytes], size: int) -> Optional[int]:
        # No sock_read limit: the server is silent until the body ends.
        timeout = aiohttp.ClientTimeout(total=None, connect=CONNECT_TIMEOUT, sock_read=None)
        headers = {"Content-Type": "application/octet-stream"}
        async with client_session(self.session, headers) as session:
            async with session.post(url, data=body, timeout=timeout, headers=headers) as resp:
                await resp.read()
                return resp.status


# ---------------------------------------------------------------------------
# Raw socket
# ---------------------------------------------------------------------------

class SocketUploadTransport:
    """
    Writes the request by hand over an ``asyncio`` stream.

    The declared ``Content-Length`` is the full payload size.  When the
    byte source stops early (cap reached or cancelled) the connection is
    closed without waiting for a response.
    """

    name = "socket"

    def __init__(self, ssl_context: Optional[ssl.SSLContext] = None) -> None:
        self.ssl_context = ssl_context

    async def send(self, url: str, body: AsyncIterable[bytes], size: int) -> Optional[int]:
        parts = urlsplit(url)
        secure = parts.scheme == "https"
        host = parts.hostname
        if not host:
            raise PhaseConnectionError(f"Invalid upload URL: {url}")
        port = parts.port or (443 if secure else 80)
        path = parts.path or "/"
        if parts.query:
            path = f"{path}?{parts.query}"

        ssl_ctx = None
        if secure:
            ssl_ctx = self.ssl_context or ssl.create_default_context()

        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port, ssl=ssl_ctx),
                timeout=CONNECT_TIMEOUT,
            )
        except asyncio.TimeoutError:
            raise PhaseTimeoutError(f"Timed out connecting to {host}:{port}") from None

        try:
            writer.write(_request_head(host, parts.port, path, size))
            sent = 0
            async for chunk in body:
                writer.write(chunk)
                await writer.drain()
                sent += len(chunk)

            if sent < size:
                logger.debug("Socket upload stopped at %d of %d bytes", sent, size)
                return None

            try:
                line = await asyncio.wait_for(reader.readline(), timeout=READ_TIMEOUT)
            except asyncio.TimeoutError:
                raise PhaseTimeoutError("No response to upload") from None
            return parse_status_line(line)
        finally:
            writer.close()
            with contextlib.suppress(OSError):
                await writer.wait_closed()


def _request_head(host: str, port: Optional[int], path: str, size: int) -> bytes:
    host_header = f"{host}:{port}" if port else host
    lines = [
        f"POST {path} HTTP/1.1",
        f"Host: {host_header}",
        f"User-Agent: {USER_AGENT}",
        "Content-Type: application/octet-stream",
        f"Content-Length: {size}",
        "Connection: close",
        "",
        "",
    ]
    return "\r\n".join(lines).encode("ascii")


def parse_status_line(line: bytes) -> int:
    """Extract the status code from an HTTP/1.x status line."""
    parts = line.decode("latin-1").split()
    if len(parts) < 2 or not parts[0].startswith("HTTP/") or not parts[1].isdigit():
        raise PhaseProtocolError(0, ErrorKind.UPLOAD_REJECTED)
    return int(parts[1])


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

TRANSPORTS: Dict[str, Type] = {
    HttpPostTransport.name: HttpPostTransport,
    SocketUploadTransport.name: SocketUploadTransport,
}


def make_transport(name: str, session: Optional[aiohttp.ClientSession] = None) -> UploadTransport:
    """Build a transport by name (``http`` or ``socket``)."""
    if name == HttpPostTransport.name:
        return HttpPostTransport(session)
    if name == SocketUploadTransport.name:
        return SocketUploadTransport()
    raise ValueError(f"Unknown upload transport {name!r}; choose from {sorted(TRANSPORTS)}")
