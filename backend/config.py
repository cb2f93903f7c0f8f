"""
Centralised configuration: all tunables in one place.
Override via environment variables where noted.
"""

import os
from pathlib import Path

# ── Network ────────────────────────────────────────────────────────
BACKEND_HOST = os.getenv("BACKEND_HOST", "127.0.0.1")
BACKEND_PORT = int(os.getenv("BACKEND_PORT", "8000"))
# Optional upstream proxy for attack traffic, e.g. "http://127.0.0.1:8080"
UPSTREAM_PROXY = os.getenv("UPSTREAM_PROXY") or None

# ── Storage ────────────────────────────────────────────────────────
DB_PATH = Path(os.getenv("DB_PATH", str(Path(__file__).parent / "storage" / "intruder.db")))
RESULT_TEXT_CAP = 50_000       # max chars stored per request/response text

# ── Dispatch ───────────────────────────────────────────────────────
DISPATCH_TIMEOUT = float(os.getenv("DISPATCH_TIMEOUT", "15.0"))   # seconds per request

# Headers httpx computes itself; sending them alongside its own values
# produces duplicates
DISPATCH_DROP_HEADERS = frozenset({"content-length", "transfer-encoding", "connection"})

# ── Attack defaults ────────────────────────────────────────────────
ATTACK_DEFAULT_THREADS = 10    # reserved, dispatch is sequential
ATTACK_DEFAULT_DELAY_MS = 0
ATTACK_PAUSE_POLL = 0.5        # seconds between control checks while paused

# ── Numeric payload defaults ───────────────────────────────────────
NUMERIC_DEFAULT_FROM = 0
NUMERIC_DEFAULT_TO = 100
NUMERIC_DEFAULT_STEP = 1
NUMERIC_DEFAULT_MIN_DIGITS = 1

# ── New session template ───────────────────────────────────────────
DEFAULT_SESSION_NAME = "Attack"
DEFAULT_TEMPLATE = {
    "method": "GET",
    "url": "https://example.com/api/test",
    "headers": "User-Agent: Intruder/1.0\nContent-Type: application/json",
    "body": "",
}
