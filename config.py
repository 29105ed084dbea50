"""
config.py
---------
Central configuration module. Loads all environment variables
from the .env file and exposes them as typed constants.

Database connection settings are resolved separately by
``db.connection.resolve_config`` because they must be validated as a
complete set (URL or every discrete field).
"""

import os
from dotenv import load_dotenv

load_dotenv()


# ── Logging ───────────────────────────────────────────────
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# ── Migrations ────────────────────────────────────────────
# Optional explicit path; falls back to the package's db/sql folder.
MIGRATIONS_DIR: str = os.getenv("MIGRATIONS_DIR", "")

# ── Connection pool defaults ──────────────────────────────
DEFAULT_POOL_MAX: int = 20
DEFAULT_POOL_MIN: int = 1
DEFAULT_CONNECT_TIMEOUT_SECONDS: float = 30.0
DEFAULT_IDLE_TIMEOUT_SECONDS: float = 10.0

# ── Maintenance database (used by init-db / setup) ────────
MAINTENANCE_DB: str = os.getenv("DB_MAINTENANCE_NAME", "postgres")
