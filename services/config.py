# services/config.py
from __future__ import annotations
import os

# ------------------------------------------------------------------------------
# Helper: get env var with fallback
# ------------------------------------------------------------------------------
def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return v if v is not None and v != "" else default

# If you use python-dotenv, uncomment these two lines:
# from dotenv import load_dotenv
# load_dotenv()  # loads values from a local .env file if present

# ------------------------------------------------------------------------------
# Database
# ------------------------------------------------------------------------------
DB_URL: str = _env("DB_URL", "sqlite://./db.sqlite3")

# ------------------------------------------------------------------------------
# Auth
# ------------------------------------------------------------------------------
SECRET_KEY: str = _env("SECRET_KEY", "change-me-access")
REFRESH_SECRET: str = _env("REFRESH_SECRET", "change-me-refresh")
ALGORITHM: str = _env("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_SECONDS: int = int(_env("ACCESS_TOKEN_SECONDS", str(15 * 60)))
REFRESH_TOKEN_SECONDS: int = int(_env("REFRESH_TOKEN_SECONDS", str(7 * 24 * 3600)))

# Seeded on first start when the users table has no admin
ADMIN_USERNAME: str = _env("ADMIN_USERNAME", "admin")
ADMIN_EMAIL: str = _env("ADMIN_EMAIL", "admin@example.com")
ADMIN_PASSWORD: str = _env("ADMIN_PASSWORD", "password123")

# ------------------------------------------------------------------------------
# Billing
# ------------------------------------------------------------------------------
# Month keys ("YYYY-MM") and "current month" are resolved in this timezone
BILLING_TZ: str = _env("BILLING_TZ", "Europe/Madrid")

# Panels recalculated concurrently when a whole month is (re)built
RECALC_BATCH_SIZE: int = int(_env("RECALC_BATCH_SIZE", "50"))

# Standard yearly rates seeded when the rates table is empty.
# Format: "2024:36.50,2025:37.70"
DEFAULT_RATES: dict[int, str] = {
    int(y.strip()): v.strip()
    for y, v in (
        pair.split(":", 1)
        for pair in _env("DEFAULT_RATES", "2024:36.50,2025:37.70,2026:39.00").split(",")
        if ":" in pair
    )
}

# ------------------------------------------------------------------------------
# HTTP / logging
# ------------------------------------------------------------------------------
CORS_ORIGINS: list[str] = [
    o.strip() for o in _env("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",") if o.strip()
]
LOG_LEVEL: str = _env("LOG_LEVEL", "INFO").upper()
