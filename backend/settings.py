"""
Runtime configuration for the ASICS B2B inventory scraper.

Values come from environment variables, optionally loaded from
backend/.env. Every module reads its settings from here so the CLI,
the batch runner and the API agree on delays, timeouts and credentials.
"""

import os
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv


# Load .env from backend directory
BACKEND_DIR = Path(__file__).parent
load_dotenv(BACKEND_DIR / ".env")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        print(f"  Warning: invalid {name}={value!r}, using {default}", flush=True)
        return default


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, default))


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# =============================================================================
# Portal
# =============================================================================

BASE_URL = os.getenv("ASICS_BASE_URL", "https://b2b.asics.com").rstrip("/")
LOGIN_URL = os.getenv("ASICS_LOGIN_URL", f"{BASE_URL}/login")

# Browserless CDP endpoint (e.g. ws://browserless:3000). Local launch when unset.
BROWSERLESS_ENDPOINT = os.getenv("BROWSERLESS_ENDPOINT") or None
HEADLESS = _env_bool("HEADLESS", True)

# =============================================================================
# Timing
# =============================================================================

PAGE_DELAY = _env_float("PAGE_DELAY", 5.0)        # Seconds between pages
BATCH_DELAY = _env_float("BATCH_DELAY", 30.0)     # Seconds between mini-batches
BATCH_SIZE = max(1, _env_int("BATCH_SIZE", 10))   # URLs per browser session

NAVIGATION_TIMEOUT_MS = _env_int("NAVIGATION_TIMEOUT_MS", 60000)
SELECTOR_TIMEOUT_MS = _env_int("SELECTOR_TIMEOUT_MS", 15000)
SETTLE_DELAY = _env_float("SETTLE_DELAY", 3.0)    # Fixed wait when matrix never appears

# =============================================================================
# Storage
# =============================================================================

DATABASE_FILE = os.getenv("DATABASE_FILE", str(BACKEND_DIR / "inventory.db"))  # SQLite fallback
USE_POSTGRES = _env_bool("USE_POSTGRES", True)
OUTPUT_DIR = BACKEND_DIR / "output"


def get_database_url() -> Optional[str]:
    """Get the PostgreSQL database URL from environment variables."""
    return os.getenv("DATABASE_URL")


def get_credentials() -> Tuple[Optional[str], Optional[str]]:
    """Get portal credentials. Either value may be None; the login flow reports it."""
    return os.getenv("ASICS_USERNAME"), os.getenv("ASICS_PASSWORD")


def browserless_http_url() -> Optional[str]:
    """HTTP base of the Browserless service, derived from its ws:// endpoint."""
    if not BROWSERLESS_ENDPOINT:
        return None
    url = BROWSERLESS_ENDPOINT
    if url.startswith("wss://"):
        url = "https://" + url[len("wss://"):]
    elif url.startswith("ws://"):
        url = "http://" + url[len("ws://"):]
    return url.split("?", 1)[0].rstrip("/")
