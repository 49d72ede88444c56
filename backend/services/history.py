"""
Append-only price change history and admin activity log
"""
import logging
import threading
from typing import Any, Dict, Iterable, List, Optional
from models.bom_models import ActivityEntry, PriceHistoryEntry
from database.local_store import LocalStore, PRICE_HISTORY_KEY, ACTIVITY_LOG_KEY

logger = logging.getLogger(__name__)

HISTORY_CAP_PER_PART = 100
ACTIVITY_LOG_CAP = 1000

REASON_CREATED = "created"
REASON_UPDATED = "updated"
REASON_DELETED = "deleted"


def reason_for(from_price: float, to_price: float) -> str:
    if not to_price or to_price <= 0:
        return REASON_DELETED
    if not from_price or from_price <= 0:
        return REASON_CREATED
    return REASON_UPDATED


class HistoryLedger:
    """
    Price change events, newest first, at most HISTORY_CAP_PER_PART per part.
    Entries are frozen; there is no rollback, a past price is re-entered by hand.
    """

    def __init__(self, local_store: LocalStore, cap_per_part: int = HISTORY_CAP_PER_PART):
        self.local = local_store
        self.cap_per_part = cap_per_part
        self._lock = threading.RLock()
        self._entries: List[PriceHistoryEntry] = self._load()

    def _load(self) -> List[PriceHistoryEntry]:
        raw = self.local.get_json(PRICE_HISTORY_KEY, [])
        if not isinstance(raw, list):
            logger.warning("HISTORY: Stored history is not a list, starting empty")
            return []
        return [PriceHistoryEntry.from_dict(item) for item in raw if isinstance(item, dict)]

    def _persist(self):
        self.local.set_json(PRICE_HISTORY_KEY, [e.to_dict() for e in self._entries])

    def _apply_cap(self, entries: Iterable[PriceHistoryEntry]) -> List[PriceHistoryEntry]:
        counts: Dict[str, int] = {}
        kept = []
        for entry in entries:
            seen = counts.get(entry.part_id, 0)
            if seen >= self.cap_per_part:
                continue
            counts[entry.part_id] = seen + 1
            kept.append(entry)
        return kept

    def append(self, entry: PriceHistoryEntry) -> PriceHistoryEntry:
        with self._lock:
            self._entries = self._apply_cap([entry] + self._entries)
            self._persist()
        logger.debug(f"HISTORY: {entry.part_id} {entry.from_price} -> {entry.to_price}")
        return entry

    def record_change(self, part_id: str, from_price: float, to_price: float,
                      actor: str = "admin", part_name: str = "",
                      reason_tag: Optional[str] = None) -> PriceHistoryEntry:
        return self.append(PriceHistoryEntry(
            part_id=part_id,
            from_price=float(from_price or 0),
            to_price=float(to_price or 0),
            actor=actor,
            reason_tag=reason_tag or reason_for(from_price, to_price),
            part_name=part_name
        ))

    def for_part(self, part_id: str) -> List[PriceHistoryEntry]:
        with self._lock:
            return [e for e in self._entries if e.part_id == part_id]

    def all(self) -> List[PriceHistoryEntry]:
        with self._lock:
            return list(self._entries)

    def to_document(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [e.to_dict() for e in self._entries]

    def merge_remote(self, items) -> int:
        """Union with a remote history document by entry id; returns new entries"""
        if not isinstance(items, list):
            return 0
        with self._lock:
            known = {e.id for e in self._entries}
            incoming = [PriceHistoryEntry.from_dict(i) for i in items
                        if isinstance(i, dict) and i.get("id")]
            added = [e for e in incoming if e.id not in known]
            if not added:
                return 0
            combined = sorted(self._entries + added, key=lambda e: e.timestamp, reverse=True)
            self._entries = self._apply_cap(combined)
            self._persist()
        return len(added)


class ActivityLog:
    """Admin activity log, newest first, capped at ACTIVITY_LOG_CAP entries"""

    def __init__(self, local_store: LocalStore, cap: int = ACTIVITY_LOG_CAP):
        self.local = local_store
        self.cap = cap
        self._lock = threading.RLock()
        raw = self.local.get_json(ACTIVITY_LOG_KEY, [])
        raw = raw if isinstance(raw, list) else []
        self._entries = [ActivityEntry.from_dict(i) for i in raw if isinstance(i, dict)]

    def append(self, action: str, actor: str = "admin",
               details: Optional[Dict[str, Any]] = None) -> ActivityEntry:
        return self.add(ActivityEntry(action=action, actor=actor, details=dict(details or {})))

    def add(self, entry: ActivityEntry) -> ActivityEntry:
        with self._lock:
            self._entries = ([entry] + self._entries)[:self.cap]
            self.local.set_json(ACTIVITY_LOG_KEY, [e.to_dict() for e in self._entries])
        return entry

    def all(self) -> List[ActivityEntry]:
        with self._lock:
            return list(self._entries)

    def to_document(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [e.to_dict() for e in self._entries]

    def merge_remote(self, items) -> int:
        if not isinstance(items, list):
            return 0
        with self._lock:
            known = {e.id for e in self._entries}
            added = [ActivityEntry.from_dict(i) for i in items
                     if isinstance(i, dict) and i.get("id") and str(i.get("id")) not in known]
            if not added:
                return 0
            combined = sorted(self._entries + added, key=lambda e: e.timestamp, reverse=True)
            self._entries = combined[:self.cap]
            self.local.set_json(ACTIVITY_LOG_KEY, [e.to_dict() for e in self._entries])
        return len(added)
