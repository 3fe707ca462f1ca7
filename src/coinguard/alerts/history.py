from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import structlog

from coinguard.alerts.rules import new_id
from coinguard.utils.time import iso_utc, parse_iso_s, utc_now_s
from storage.kv import NOTIFICATIONS_KEY, KeyValueStore, load_json, save_json

log = structlog.get_logger("notifications")

HISTORY_CAPACITY = 100


@dataclass(slots=True)
class Notification:
    id: str
    rule_id: str
    rule_name: str
    symbol: str
    asset_name: str
    message: str
    triggered_at: float
    read: bool = False

    @classmethod
    def create(cls, *, rule_id: str, rule_name: str, symbol: str, asset_name: str,
               message: str, triggered_at: Optional[float] = None) -> "Notification":
        return cls(
            id=new_id("notif"),
            rule_id=rule_id,
            rule_name=rule_name,
            symbol=symbol,
            asset_name=asset_name,
            message=message,
            triggered_at=utc_now_s() if triggered_at is None else triggered_at,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "watchRuleId": self.rule_id,
            "watchRuleName": self.rule_name,
            "coinSymbol": self.symbol,
            "coinName": self.asset_name,
            "message": self.message,
            "triggeredAt": iso_utc(self.triggered_at),
            "read": self.read,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Notification":
        return cls(
            id=str(d["id"]),
            rule_id=str(d["watchRuleId"]),
            rule_name=str(d.get("watchRuleName", "")),
            symbol=str(d["coinSymbol"]),
            asset_name=str(d.get("coinName", d["coinSymbol"])),
            message=str(d.get("message", "")),
            triggered_at=parse_iso_s(d["triggeredAt"]),
            read=bool(d.get("read", False)),
        )


class NotificationHistory:
    """
    Newest-first, capacity-bounded notification log (oldest evicted).
    Read state is tracked per entry and persisted with the list.
    """
    def __init__(self, kv: KeyValueStore, key: str = NOTIFICATIONS_KEY,
                 capacity: int = HISTORY_CAPACITY):
        if capacity <= 0:
            raise ValueError("capacity must be >= 1")
        self._kv = kv
        self._key = key
        self.capacity = capacity
        self._items: list[Notification] = []

    @property
    def items(self) -> list[Notification]:
        return list(self._items)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._items if not n.read)

    def __len__(self) -> int:
        return len(self._items)

    async def load(self) -> list[Notification]:
        raw = await load_json(self._kv, self._key, default=[])
        out: list[Notification] = []
        for item in raw if isinstance(raw, list) else []:
            try:
                out.append(Notification.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                log.warning("notification_skipped_invalid", err=str(e))
        self._items = out[: self.capacity]
        return self.items

    async def append(self, n: Notification) -> None:
        self._items.insert(0, n)
        del self._items[self.capacity:]
        await self._save()

    async def mark_read(self, notification_id: str) -> bool:
        for n in self._items:
            if n.id == notification_id:
                if not n.read:
                    n.read = True
                    await self._save()
                return True
        return False

    async def mark_all_read(self) -> int:
        changed = 0
        for n in self._items:
            if not n.read:
                n.read = True
                changed += 1
        if changed:
            await self._save()
        return changed

    async def delete(self, notification_id: str) -> bool:
        before = len(self._items)
        self._items = [n for n in self._items if n.id != notification_id]
        if len(self._items) == before:
            return False
        await self._save()
        return True

    async def _save(self) -> None:
        await save_json(self._kv, self._key, [n.to_dict() for n in self._items])
