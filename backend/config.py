"""
Runtime configuration.
Uses environment variables (optionally from backend/.env) with sensible defaults.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent / ".env")

_raw_url = os.getenv("DATABASE_URL", "sqlite:///./companies.db")
DATABASE_URL = _raw_url.replace("sqlite:///", "sqlite+aiosqlite:///")

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
CHAT_API_URL = os.getenv("CHAT_API_URL", "http://localhost:8000/api/chat")

# Language model
CHAT_MODEL = os.getenv("CHAT_MODEL", "claude-sonnet-4-6")
QUERY_MAX_TOKENS = int(os.getenv("QUERY_MAX_TOKENS", "1000"))
ANSWER_MAX_TOKENS = int(os.getenv("ANSWER_MAX_TOKENS", "300"))
CHAT_TEMPERATURE = float(os.getenv("CHAT_TEMPERATURE", "0.1"))

_timeout = os.getenv("CALL_TIMEOUT_SECONDS")
CALL_TIMEOUT_SECONDS: float | None = float(_timeout) if _timeout else None

_PLACEHOLDER_KEYS = {"", "your_anthropic_api_key_here"}


def anthropic_key_configured() -> bool:
    """True when a real-looking ANTHROPIC_API_KEY is present."""
    return os.getenv("ANTHROPIC_API_KEY", "").strip() not in _PLACEHOLDER_KEYS


def get_config_summary() -> dict:
    """Return a summary of current configuration (no secrets)."""
    return {
        "DATABASE_URL": DATABASE_URL,
        "CHAT_MODEL": CHAT_MODEL,
        "QUERY_MAX_TOKENS": QUERY_MAX_TOKENS,
        "ANSWER_MAX_TOKENS": ANSWER_MAX_TOKENS,
        "CHAT_TEMPERATURE": CHAT_TEMPERATURE,
        "CALL_TIMEOUT_SECONDS": CALL_TIMEOUT_SECONDS,
        "anthropic_key_configured": anthropic_key_configured(),
    }
