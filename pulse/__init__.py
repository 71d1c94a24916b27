"""Netpulse measurement engine -- throughput, latency, and sequencing."""

from .config import EngineConfig, load_config, load_engine_config, save_config
from .download import DownloadSampler
from .engine import SequenceRunning, SpeedTestEngine
from .errors import (
    AllProbesFailedError,
    CancelledByUser,
    ErrorKind,
    MeasurementError,
    PhaseConnectionError,
    PhaseProtocolError,
    PhaseTimeoutError,
    TransportHangError,
    classify_error,
)
from .feedback import speed_feedback
from .history import JsonlResultRepository, MemoryResultRepository, ResultRepository
from .latency import HeadProbe, LatencyProber, LatencyResult, WebSocketProbe
from .monitor import BackgroundMonitor
from .sampling import IntervalMeter, PhaseOutcome, PhaseStatus
from .session import CancelToken, SessionPhase, TestResult, TestSession
from .stats import Sample, WindowedAverager, format_latency, format_speed
from .transport import HttpPostTransport, SocketUploadTransport, UploadTransport
from .upload import UploadSampler

__all__ = [
    "AllProbesFailedError",
    "BackgroundMonitor",
    "CancelToken",
    "CancelledByUser",
    "DownloadSampler",
    "EngineConfig",
    "ErrorKind",
    "HeadProbe",
    "HttpPostTransport",
    "IntervalMeter",
    "JsonlResultRepository",
    "LatencyProber",
    "LatencyResult",
    "MeasurementError",
    "MemoryResultRepository",
    "PhaseConnectionError",
    "PhaseOutcome",
    "PhaseProtocolError",
    "PhaseStatus",
    "PhaseTimeoutError",
    "ResultRepository",
    "Sample",
    "SequenceRunning",
    "SessionPhase",
    "SocketUploadTransport",
    "SpeedTestEngine",
    "TestResult",
    "TestSession",
    "TransportHangError",
    "UploadSampler",
    "UploadTransport",
    "WebSocketProbe",
    "WindowedAverager",
    "classify_error",
    "format_latency",
    "format_speed",
    "load_config",
    "load_engine_config",
    "save_config",
    "speed_feedback",
]
