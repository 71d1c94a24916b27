"""
Shared constants used across the measurement engine.

Centralises endpoints, default headers, and tunables so they live in
exactly one place.
"""

# ---------------------------------------------------------------------------
# HTTP headers
# ---------------------------------------------------------------------------

USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/144.0.0.0 Safari/537.36 netpulse/1.0"
)

COMMON_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.9",
}

# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

DOWNLOAD_BYTES = 1_000_000_000   # far more than fits in the cap
DOWNLOAD_URL = f"https://speed.cloudflare.com/__down?bytes={DOWNLOAD_BYTES}"
UPLOAD_URL = "https://speed.cloudflare.com/__up"
LATENCY_URL = "https://1.1.1.1"

# ---------------------------------------------------------------------------
# Timing (milliseconds)
# ---------------------------------------------------------------------------

DEFAULT_DURATION_MS = 7000       # wall-clock cap per transfer phase
SAMPLE_INTERVAL_MS = 200         # ~5 instant updates per second
UPLOAD_WARMUP_MS = 1500          # upload samples before this are dropped
WATCHDOG_GRACE_MS = 1500         # beyond the cap before the watchdog fires
MIN_DURATION_MS = 500
MAX_DURATION_MS = 300_000
MIN_INTERVAL_MS = 10

CONNECT_TIMEOUT = 5.0            # seconds
READ_TIMEOUT = 5.0               # seconds, per socket read
READ_POLL = 0.5                  # seconds; bounds cancellation latency
PROBE_TIMEOUT = 3.0              # seconds, per latency probe

# ---------------------------------------------------------------------------
# Latency
# ---------------------------------------------------------------------------

DEFAULT_PROBE_COUNT = 5
MIN_PROBE_COUNT = 1
MAX_PROBE_COUNT = 100

# ---------------------------------------------------------------------------
# Data transfer
# ---------------------------------------------------------------------------

CHUNK_SIZE = 32 * 1024           # bytes per read / write
UPLOAD_PAYLOAD_BYTES = 300_000_000
UPLOAD_BUFFER_SIZE = 1024 * 1024 # 1 MB pre-generated random buffer

# ---------------------------------------------------------------------------
# Smoothing
# ---------------------------------------------------------------------------

WINDOW_SIZE = 10                 # samples in the live moving average

# ---------------------------------------------------------------------------
# Background monitor
# ---------------------------------------------------------------------------

DEFAULT_MONITOR_MINUTES = 15
