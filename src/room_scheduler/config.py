from __future__ import annotations

import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


TABLE_NAME = os.environ.get("TABLE_NAME", "bookings")
ROOMS_TABLE_NAME = os.environ.get("ROOMS_TABLE_NAME", "rooms")
EVENT_BUS_NAME = os.environ.get("EVENT_BUS_NAME", "default")

# "dynamodb" in deployed stacks, "memory" for local runs
STORAGE_BACKEND = os.environ.get("STORAGE_BACKEND", "dynamodb")

BUSINESS_HOURS_START = int(os.environ.get("BUSINESS_HOURS_START", "8"))
BUSINESS_HOURS_END = int(os.environ.get("BUSINESS_HOURS_END", "16"))
# IANA name, e.g. "Europe/London"; unset means the offset carried by each timestamp
BUSINESS_TIMEZONE = os.environ.get("BUSINESS_TIMEZONE") or None

BOOKING_AUTO_CONFIRM = _env_bool("BOOKING_AUTO_CONFIRM", False)

LOCK_TIMEOUT_SECONDS = float(os.environ.get("LOCK_TIMEOUT_SECONDS", "5"))
PERSISTENCE_MAX_ATTEMPTS = int(os.environ.get("PERSISTENCE_MAX_ATTEMPTS", "3"))
PERSISTENCE_RETRY_DELAY_SECONDS = float(os.environ.get("PERSISTENCE_RETRY_DELAY_SECONDS", "0.05"))

BROADCAST_WORKERS = int(os.environ.get("BROADCAST_WORKERS", "4"))
