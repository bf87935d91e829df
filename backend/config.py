"""
Relay server configuration.

Every value can be overridden through the environment (or backend/.env,
loaded by main.py before this module is imported):
  PORT=3001
  SESSION_IDLE_TIMEOUT_SECONDS=3600
"""

import os


def _int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


# ---------- Service ----------

SERVICE_NAME = os.environ.get("SERVICE_NAME", "Companion Relay")
SERVICE_VERSION = "0.1.0"

HOST = os.environ.get("HOST", "0.0.0.0")
PORT = _int("PORT", 3001)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("CORS_ORIGINS", "*").split(",")
    if origin.strip()
]

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()


# ---------- Pairing codes ----------

# Excludes 0/O and 1/I
CODE_ALPHABET = os.environ.get("CODE_ALPHABET", "ABCDEFGHJKLMNPQRSTUVWXYZ23456789")
CODE_LENGTH = _int("CODE_LENGTH", 6)
CODE_MAX_ATTEMPTS = _int("CODE_MAX_ATTEMPTS", 1000)


# ---------- Relay ----------

MAX_PAYLOAD_CHARS = _int("MAX_PAYLOAD_CHARS", 1_000_000)

# 0 disables the sweep: sessions then live until the producer disconnects
SESSION_IDLE_TIMEOUT_SECONDS = _float("SESSION_IDLE_TIMEOUT_SECONDS", 0)
SESSION_SWEEP_INTERVAL_SECONDS = _float("SESSION_SWEEP_INTERVAL_SECONDS", 60)

# Per-connection backlog of unsent messages; a peer that falls this far
# behind is disconnected
OUTBOX_MAX_MESSAGES = _int("OUTBOX_MAX_MESSAGES", 256)
