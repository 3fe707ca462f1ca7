from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_list(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [s.strip().upper() for s in raw.split(",") if s.strip()]


@dataclass(slots=True)
class Settings:
    sentiment_api_url: str = "http://localhost:3000"
    binance_api_url: str = "https://api.binance.com"
    symbols: list[str] = field(default_factory=lambda: ["BTC", "ETH", "SOL"])
    refresh_interval_s: float = 30.0
    fetch_timeout_s: float = 30.0
    redis_url: Optional[str] = None        # None -> in-memory storage
    openai_api_key: Optional[str] = None   # None -> rule-based summaries only
    openai_model: str = "gpt-4o-mini"
    summary_timeout_s: float = 10.0
    log_level: str = "INFO"
    display_tz: str = "UTC"


def settings_from_env() -> Settings:
    """Read Settings from the process environment (call load_dotenv() first)."""
    return Settings(
        sentiment_api_url=os.getenv("SENTIMENT_API_URL", "http://localhost:3000"),
        binance_api_url=os.getenv("BINANCE_API_URL", "https://api.binance.com"),
        symbols=_env_list("SYMBOLS", "BTC,ETH,SOL"),
        refresh_interval_s=_env_float("REFRESH_INTERVAL_S", 30.0),
        fetch_timeout_s=_env_float("FETCH_TIMEOUT_S", 30.0),
        redis_url=os.getenv("REDIS_URL") or None,
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        summary_timeout_s=_env_float("SUMMARY_TIMEOUT_S", 10.0),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        display_tz=os.getenv("DISPLAY_TZ", "UTC"),
    )
