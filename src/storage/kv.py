# src/storage/kv.py
from __future__ import annotations

import json
from typing import Any, Optional, Protocol

import structlog
from redis.asyncio import Redis

log = structlog.get_logger("storage")

RULES_KEY = "coinguard:watch_rules"
NOTIFICATIONS_KEY = "coinguard:watch_notifications"


class KeyValueStore(Protocol):
    """String key -> string value. Adapters may raise on I/O errors."""
    async def get(self, key: str) -> Optional[str]: ...
    async def set(self, key: str, value: str) -> None: ...
    async def delete(self, key: str) -> None: ...


class MemoryKV:
    """Process-local store; the default when no REDIS_URL is configured."""
    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


class RedisKV:
    def __init__(self, r: Redis):
        self._r = r

    @classmethod
    def from_url(cls, url: str) -> "RedisKV":
        return cls(Redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Optional[str]:
        val = await self._r.get(key)
        if isinstance(val, (bytes, bytearray)):
            return val.decode("utf-8")
        return val

    async def set(self, key: str, value: str) -> None:
        await self._r.set(key, value)

    async def delete(self, key: str) -> None:
        await self._r.delete(key)

    async def close(self) -> None:
        await self._r.aclose()


async def load_json(store: KeyValueStore, key: str, default: Any) -> Any:
    """
    Read and decode a JSON value. Missing keys, I/O errors and corrupt JSON all
    return `default` (logged), never raise.
    """
    try:
        raw = await store.get(key)
    except Exception as e:
        log.warning("kv_read_failed", key=key, err=str(e))
        return default
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        log.warning("kv_decode_failed", key=key, err=str(e))
        return default


async def save_json(store: KeyValueStore, key: str, value: Any) -> bool:
    """Encode and write. Returns False (logged) on failure."""
    try:
        await store.set(key, json.dumps(value, separators=(",", ":")))
        return True
    except Exception as e:
        log.warning("kv_write_failed", key=key, err=str(e))
        return False
