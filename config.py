"""Settings, read once from the environment.

Defaults target local development against a SQLite file next to the process.
Point DATABASE_URL at PostgreSQL (``postgresql+asyncpg://...``) in deployment.
"""

from __future__ import annotations

import os

# --- Database ----------------------------------------------------------------
# Async SQLAlchemy URL. The driver part must be an asyncio driver.
DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///purchases.sqlite")

# Echo every SQL statement through the "sqlalchemy.engine" logger.
DB_ECHO: bool = os.getenv("DB_ECHO", "false").lower() in ("1", "true", "yes")

# How long (seconds) a SQLite writer waits for the database lock before failing.
SQLITE_BUSY_TIMEOUT: float = float(os.getenv("SQLITE_BUSY_TIMEOUT", "5"))

# --- Logging -----------------------------------------------------------------
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
