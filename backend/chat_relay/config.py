"""
Environment-driven gateway settings.

Values come from the process environment, with backend/.env loaded first
(existing variables win over the file).
"""
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

backend_dir = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=backend_dir / ".env", override=False)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TEMPERATURE = 0.4


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default


@dataclass(frozen=True)
class Settings:
    """Gateway configuration snapshot."""
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    default_model: str = DEFAULT_MODEL
    cors_origin: str = "http://localhost:4200"
    host: str = "127.0.0.1"
    port: int = 5050
    rate_limit_max: int = 60
    rate_limit_window_seconds: float = 60.0
    upstream_timeout_seconds: float = 60.0
    stream_max_seconds: float = 300.0
    stream_keepalive_seconds: float = 15.0
    max_body_bytes: int = 1024 * 1024
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            openai_api_key=(os.getenv("OPENAI_API_KEY") or "").strip() or None,
            openai_base_url=(os.getenv("OPENAI_BASE_URL") or "").strip() or None,
            default_model=os.getenv("OPENAI_MODEL") or DEFAULT_MODEL,
            cors_origin=os.getenv("CORS_ORIGIN") or "http://localhost:4200",
            host=os.getenv("HOST") or "127.0.0.1",
            port=_env_int("PORT", 5050),
            rate_limit_max=_env_int("RATE_LIMIT_MAX", 60),
            rate_limit_window_seconds=_env_float("RATE_LIMIT_WINDOW_SECONDS", 60.0),
            upstream_timeout_seconds=_env_float("UPSTREAM_TIMEOUT_SECONDS", 60.0),
            stream_max_seconds=_env_float("STREAM_MAX_SECONDS", 300.0),
            stream_keepalive_seconds=_env_float("STREAM_KEEPALIVE_SECONDS", 15.0),
            max_body_bytes=_env_int("MAX_BODY_BYTES", 1024 * 1024),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()
