# backend/shopledger/config.py
from __future__ import annotations
import os


def _env_list(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/shopledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///shopledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Upper bound for any single storage call (lock wait / pool checkout)
    DB_TIMEOUT_SECONDS = float(os.environ.get("DB_TIMEOUT_SECONDS", "10"))

    # Seed values for draft sessions opened over HTTP
    DEFAULT_TAX_TYPE = os.environ.get("DEFAULT_TAX_TYPE", "CGST_SGST")
    DEFAULT_TAX_PERCENT = os.environ.get("DEFAULT_TAX_PERCENT", "18")

    CORS_ALLOWED_ORIGINS = _env_list(
        "CORS_ALLOWED_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
    )
