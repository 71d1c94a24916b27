"""
Error taxonomy for the measurement engine.

Every I/O fault is caught at the sampler boundary and translated into a
single :class:`ErrorKind`.  The exception classes exist for code paths that
prefer raising (the latency prober, the socket uploader) and carry the kind
they map to.
"""
from __future__ import annotations

import asyncio
import enum
import socket
import ssl
from typing import Optional

import aiohttp


class ErrorCategory(enum.Enum):
    CONNECTION = "connection"
    PROTOCOL = "protocol"
    TIMEOUT = "timeout"
    HANG = "hang"
    IO = "io"


class ErrorKind(enum.Enum):
    """Distinct failure causes, each with a user-facing message."""

    DNS_FAILURE = ("dns", ErrorCategory.CONNECTION, "Could not resolve server address")
    CONNECTION_FAILED = ("connect", ErrorCategory.CONNECTION, "Could not connect to server")
    TLS_FAILURE = ("tls", ErrorCategory.CONNECTION, "Secure connection failed")
    HTTP_STATUS = ("http", ErrorCategory.PROTOCOL, "Server returned an error status")
    TIMEOUT = ("timeout", ErrorCategory.TIMEOUT, "Connection timed out")
    TRANSPORT_HANG = ("hang", ErrorCategory.HANG, "Upload did not finish in time; partial result used")
    IO_ERROR = ("io", ErrorCategory.IO, "Transfer failed: check connection")
    UPLOAD_CONNECTION_RESET = ("reset", ErrorCategory.CONNECTION, "Upload failed: connection lost")
    UPLOAD_REJECTED = ("rejected", ErrorCategory.PROTOCOL, "Upload rejected by server")
    NO_PROBES = ("no-probes", ErrorCategory.CONNECTION, "No latency probes succeeded")

    def __init__(self, code: str, category: ErrorCategory, message: str) -> None:
        self.code = code
        self.category = category
        self.message = message


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class MeasurementError(Exception):
    """Base class for engine failures."""

    default_kind = ErrorKind.IO_ERROR

    def __init__(self, message: str = "", kind: Optional[ErrorKind] = None) -> None:
        self.kind = kind or self.default_kind
        super().__init__(message or self.kind.message)


class PhaseConnectionError(MeasurementError):
    default_kind = ErrorKind.CONNECTION_FAILED


class PhaseProtocolError(MeasurementError):
    default_kind = ErrorKind.HTTP_STATUS

    def __init__(self, status: int, kind: Optional[ErrorKind] = None) -> None:
        self.status = status
        super().__init__(f"HTTP {status}", kind)


class PhaseTimeoutError(MeasurementError):
    default_kind = ErrorKind.TIMEOUT


class TransportHangError(MeasurementError):
    """The upload transport outlived the cap plus grace and was abandoned."""

    default_kind = ErrorKind.TRANSPORT_HANG


class AllProbesFailedError(MeasurementError):
    default_kind = ErrorKind.NO_PROBES

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"All {attempts} latency probes failed")


class CancelledByUser(Exception):
    """
    Unwinds a sequence after ``cancel()``.

    Not a :class:`MeasurementError`; never reported through ``on_error``.
    """

    def __init__(self, phase: str = "") -> None:
        self.phase = phase
        super().__init__(f"Cancelled during {phase}" if phase else "Cancelled")


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def _is_dns_failure(exc: BaseException) -> bool:
    if isinstance(exc, socket.gaierror):
        return True
    os_error = getattr(exc, "os_error", None)
    return isinstance(os_error, socket.gaierror)


def classify_error(exc: BaseException, upload: bool = False) -> ErrorKind:
    """Map a transport exception to the :class:`ErrorKind` reported for it."""
    if isinstance(exc, MeasurementError):
        return exc.kind
    if isinstance(exc, (aiohttp.ClientSSLError, ssl.SSLError)):
        return ErrorKind.TLS_FAILURE
    if _is_dns_failure(exc):
        return ErrorKind.DNS_FAILURE
    if isinstance(exc, asyncio.TimeoutError):
        return ErrorKind.TIMEOUT
    if isinstance(exc, aiohttp.ClientResponseError):
        return ErrorKind.UPLOAD_REJECTED if upload else ErrorKind.HTTP_STATUS
    if isinstance(exc, (aiohttp.ClientConnectorError, ConnectionRefusedError)):
        return ErrorKind.CONNECTION_FAILED
    if upload and isinstance(
        exc,
        (aiohttp.ServerDisconnectedError, ConnectionResetError, BrokenPipeError),
    ):
        return ErrorKind.UPLOAD_CONNECTION_RESET
    return ErrorKind.IO_ERROR
