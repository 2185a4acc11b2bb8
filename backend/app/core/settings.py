# app/core/settings.py

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

BACKEND_ROOT = Path(__file__).resolve().parents[2]  # .../backend

# backend/.env (works no matter where uvicorn is launched from)
load_dotenv(BACKEND_ROOT / ".env")


def _env_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, str(default))).strip())
    except Exception:
        return int(default)


def _env_float(name: str, default: float) -> float:
    try:
        return float(str(os.getenv(name, str(default))).strip())
    except Exception:
        return float(default)


def _env_csv(name: str) -> list[str]:
    raw = (os.getenv(name, "") or "").strip()
    if not raw:
        return []
    return [x.strip() for x in raw.split(",") if x.strip()]


def _env_choice(name: str, default: str, choices: tuple[str, ...]) -> str:
    v = (os.getenv(name, "") or "").strip().lower()
    return v if v in choices else default


def _strip_slash(url: str) -> str:
    return (url or "").strip().rstrip("/")


# -----------------------------
# App / Environment
# -----------------------------
ENV = (os.getenv("ENV", os.getenv("APP_ENV", "dev")) or "dev").strip().lower()
PORT = _env_int("PORT", 10000)
LOG_LEVEL = (os.getenv("LOG_LEVEL", "INFO") or "INFO").strip().upper()

# -----------------------------
# CORS
# -----------------------------
# CLIENT_URL is the older single-origin name; ALLOWED_ORIGINS wins when both are set
ALLOWED_ORIGINS = (
    os.getenv("ALLOWED_ORIGINS", "") or os.getenv("CLIENT_URL", "") or "https://jeenglish.com"
).strip()
ALLOWED_ORIGIN_REGEX = (os.getenv("ALLOWED_ORIGIN_REGEX", "") or "").strip() or None
CORS_ALLOW_METHODS = _env_csv("CORS_ALLOW_METHODS") or ["GET", "POST"]

# -----------------------------
# OpenAI (Whisper + chat feedback)
# -----------------------------
OPENAI_API_KEY = (os.getenv("OPENAI_API_KEY", "") or "").strip()
OPENAI_BASE_URL = _strip_slash(os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1"))

WHISPER_MODEL = (os.getenv("WHISPER_MODEL", "whisper-1") or "whisper-1").strip()
FEEDBACK_MODEL = (os.getenv("FEEDBACK_MODEL", "gpt-4o-mini") or "gpt-4o-mini").strip()
FEEDBACK_TEMPERATURE = _env_float("FEEDBACK_TEMPERATURE", 0.5)

# "empty": missing sections are "" / "raw": unlabelled text lands in fluency
FEEDBACK_EXTRACT_FALLBACK = _env_choice("FEEDBACK_EXTRACT_FALLBACK", "empty", ("empty", "raw"))

# Upper bound for each call to Whisper / chat completions
UPSTREAM_TIMEOUT_SECONDS = _env_float("UPSTREAM_TIMEOUT_SECONDS", 30.0)

# Retries the openai client makes on 429 / 5xx / connection errors
OPENAI_MAX_RETRIES = max(0, _env_int("OPENAI_MAX_RETRIES", 2))

# -----------------------------
# Speech-to-text
# -----------------------------
STT_PROVIDER = _env_choice("STT_PROVIDER", "openai", ("openai",))
STT_LANGUAGE = (os.getenv("STT_LANGUAGE", "en") or "en").strip()

# Whisper rejects uploads above 25 MB
MAX_AUDIO_BYTES = _env_int("MAX_AUDIO_BYTES", 25 * 1024 * 1024)

# -----------------------------
# Usage ledger
# -----------------------------
MONTHLY_LIMIT = max(1, _env_int("MONTHLY_LIMIT", 30))
DEFAULT_USER_EMAIL = (
    os.getenv("DEFAULT_USER_EMAIL", "anonymous@example.com") or "anonymous@example.com"
).strip().lower()

# jsonbin | sql | memory
LEDGER_BACKEND = _env_choice("LEDGER_BACKEND", "jsonbin", ("jsonbin", "sql", "memory"))

JSONBIN_URL = (os.getenv("JSONBIN_URL", "") or "").strip()
JSONBIN_KEY = (os.getenv("JSONBIN_KEY", "") or "").strip()

# Upper bound for each ledger read / write round-trip
LEDGER_TIMEOUT_SECONDS = _env_float("LEDGER_TIMEOUT_SECONDS", 30.0)

# inline: write before responding (bounded) / background: write after the response is sent
LEDGER_WRITE_MODE = _env_choice("LEDGER_WRITE_MODE", "inline", ("inline", "background"))

# none: plain read-modify-write (concurrent requests of one user may undercount)
# per_user: serialize each user's requests inside this process
LEDGER_CONCURRENCY = _env_choice("LEDGER_CONCURRENCY", "none", ("none", "per_user"))

# Only used by LEDGER_BACKEND=sql
DATABASE_URL: Optional[str] = (
    os.getenv("DATABASE_URL", "") or os.getenv("SQLALCHEMY_DATABASE_URL", "")
).strip() or None
