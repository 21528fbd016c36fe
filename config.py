"""Configuration for the tournament orchestrator and API."""
from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _parse_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Database
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{Path(__file__).parent / 'tourney.db'}",
)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Orchestrator cadence (seconds)
TICK_INTERVAL_SECONDS = _parse_int(os.getenv("TICK_INTERVAL_SECONDS"), 15)
WARMUP_DELAY_SECONDS = _parse_int(os.getenv("WARMUP_DELAY_SECONDS"), 5)
BOT_FILL_DELAY_SECONDS = _parse_int(os.getenv("BOT_FILL_DELAY_SECONDS"), 600)

# Bot fill
BOT_ID_PREFIX = "BOT_"
BOT_NAME_ATTEMPTS = _parse_int(os.getenv("BOT_NAME_ATTEMPTS"), 20)

# Error containment: failing ticks logged with traceback before going quiet
ERROR_LOG_LIMIT = _parse_int(os.getenv("ERROR_LOG_LIMIT"), 3)
# Catch errors per tournament so one bad record cannot stall the others
ISOLATE_TOURNAMENT_ERRORS = _parse_bool(os.getenv("ISOLATE_TOURNAMENT_ERRORS"), True)
# Create Game Engine matches for pending bracket pairings on every tick
AUTO_DISPATCH_MATCHES = _parse_bool(os.getenv("AUTO_DISPATCH_MATCHES"), True)
# Run the orchestrator inside the API process
ORCHESTRATOR_ENABLED = _parse_bool(os.getenv("ORCHESTRATOR_ENABLED"), True)

# Web auth (JWT secret, initial admin bootstrap)
JWT_SECRET = os.getenv("JWT_SECRET", "change-me-in-production-use-long-random-string")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_DAYS = 7
INITIAL_ADMIN_USERNAME = os.getenv("INITIAL_ADMIN_USERNAME", "admin")
INITIAL_ADMIN_PASSWORD = os.getenv("INITIAL_ADMIN_PASSWORD", "")  # Set to bootstrap first admin
