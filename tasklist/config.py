"""
Runtime configuration, read once from environment variables.

All settings are prefixed with TASKLIST_ so they can live next to other
services in the same environment.
"""

import os


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


DATABASE_URL = os.getenv("TASKLIST_DATABASE_URL", "sqlite:///./tasklist.db")
LOG_LEVEL = os.getenv("TASKLIST_LOG_LEVEL", "INFO").upper()

# Optional shared secret for the HTTP API (X-API-Key header). Unset disables the check.
API_KEY = os.getenv("TASKLIST_API_KEY") or None

HOST = os.getenv("TASKLIST_HOST", "0.0.0.0")
PORT = _int_env("TASKLIST_PORT", 8000)

# Where the MCP server finds the HTTP API
API_URL = os.getenv("TASKLIST_API_URL", "http://localhost:8000")

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "TASKLIST_CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"
    ).split(",")
    if origin.strip()
]

DEFAULT_PAGE_SIZE = _int_env("TASKLIST_DEFAULT_PAGE_SIZE", 50)
MAX_PAGE_SIZE = _int_env("TASKLIST_MAX_PAGE_SIZE", 500)
MAX_SEARCH_RESULTS = _int_env("TASKLIST_MAX_SEARCH_RESULTS", 100)

# Deepest allowed list level below a root (root = 0)
MAX_LIST_DEPTH = _int_env("TASKLIST_MAX_LIST_DEPTH", 5)

# Hard stop for any parent-chain walk; only reached on corrupted data
HIERARCHY_WALK_LIMIT = 256
