"""
HTTP session factory shared by every phase.

Phases accept an optional caller-owned ``aiohttp.ClientSession``; when none
is given they open a short-lived one configured here.
"""
from __future__ import annotations

import asyncio
import contextlib
from typing import AsyncIterator, Dict, Optional

import aiohttp

from .constants import COMMON_HEADERS, CONNECT_TIMEOUT, READ_TIMEOUT

# Exceptions a transfer can raise that are reported, not propagated.
TRANSFER_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


def default_timeout() -> aiohttp.ClientTimeout:
    return aiohttp.ClientTimeout(total=None, connect=CONNECT_TIMEOUT, sock_read=READ_TIMEOUT)


@contextlib.asynccontextmanager
async def client_session(
    session: Optional[aiohttp.ClientSession] = None,
    headers: Optional[Dict[str, str]] = None,
) -> AsyncIterator[aiohttp.ClientSession]:
    """Yield *session* untouched, or a fresh one that is closed on exit."""
    if session is not None:
        yield session
        return

    connector = aiohttp.TCPConnector(
        limit=1,
        force_close=False,
    )
    async with aiohttp.ClientSession(
        headers={**COMMON_HEADERS, **(headers or {})},
        connector=connector,
        timeout=default_timeout(),
    ) as owned:
        yield owned
