import pytest

from coinguard.config import settings_from_env

_VARS = (
    "SENTIMENT_API_URL", "BINANCE_API_URL", "SYMBOLS", "REFRESH_INTERVAL_S", "FETCH_TIMEOUT_S",
    "REDIS_URL", "OPENAI_API_KEY", "OPENAI_MODEL", "SUMMARY_TIMEOUT_S", "LOG_LEVEL", "DISPLAY_TZ",
)


@pytest.fixture
def clean_env(monkeypatch):
    for v in _VARS:
        monkeypatch.delenv(v, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    s = settings_from_env()
    assert s.symbols == ["BTC", "ETH", "SOL"]
    assert s.refresh_interval_s == 30.0
    assert s.fetch_timeout_s == 30.0
    assert s.redis_url is None
    assert s.openai_api_key is None
    assert s.log_level == "INFO"


def test_overrides(clean_env):
    clean_env.setenv("SYMBOLS", " btc, doge ,,")
    clean_env.setenv("REFRESH_INTERVAL_S", "5")
    clean_env.setenv("REDIS_URL", "redis://localhost:6379/1")
    clean_env.setenv("OPENAI_API_KEY", "")
    clean_env.setenv("LOG_LEVEL", "debug")
    s = settings_from_env()
    assert s.symbols == ["BTC", "DOGE"]
    assert s.refresh_interval_s == 5.0
    assert s.redis_url == "redis://localhost:6379/1"
    assert s.openai_api_key is None
    assert s.log_level == "DEBUG"


def test_bad_number(clean_env):
    clean_env.setenv("FETCH_TIMEOUT_S", "soon")
    with pytest.raises(ValueError):
        settings_from_env()
