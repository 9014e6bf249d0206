"""Configuration constants for the RidersOS web service."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}.") from exc


SQLITE_FILE_NAME = os.environ.get("RIDERSOS_SQLITE", "ridersos.db")
DATABASE_URL = os.environ.get("RIDERSOS_DATABASE_URL", f"sqlite:///{SQLITE_FILE_NAME}")

SMTP_HOST = os.environ.get("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = _int_env("SMTP_PORT", 587)
SMTP_USER = os.environ.get("SMTP_USER", "")
SMTP_PASS = os.environ.get("SMTP_PASS", "")
SMTP_FROM = os.environ.get("SMTP_FROM", "") or SMTP_USER
FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:5173")

BILLING_WINDOW_DAYS = _int_env("BILLING_WINDOW_DAYS", 5)
BILLING_JOB_INTERVAL_SECONDS = _int_env("BILLING_JOB_INTERVAL_SECONDS", 3600)

_LOG_PATH = os.environ.get("RIDERSOS_LOG_PATH", "").strip()
LOG_PATH: Optional[Path] = Path(_LOG_PATH) if _LOG_PATH else None

USER_HEADER = "X-User-Email"


def email_enabled() -> bool:
    return bool(SMTP_USER and SMTP_PASS)


__all__ = [
    "BILLING_JOB_INTERVAL_SECONDS",
    "BILLING_WINDOW_DAYS",
    "DATABASE_URL",
    "FRONTEND_URL",
    "LOG_PATH",
    "SMTP_FROM",
    "SMTP_HOST",
    "SMTP_PASS",
    "SMTP_PORT",
    "SMTP_USER",
    "SQLITE_FILE_NAME",
    "USER_HEADER",
    "email_enabled",
]
