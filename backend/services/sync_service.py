import logging
import re
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple
from config import SyncSettings
from database.remote_store import (
    RemoteStore, RemoteStoreError, RemoteRateLimitError,
    INVENTORY_FILE, ADMIN_PRICES_FILE, PRICE_HISTORY_FILE, ACTIVITY_LOG_FILE, LAST_UPDATED_FILE
)
from models.bom_models import (
    ActivityEntry, InventoryRecord, PriceOverrideRecord, SyncResult, SyncState, now_iso
)
from services.history import ActivityLog, HistoryLedger
from services.override_store import (
    OverrideStore, EventType, StoreEvent, ORIGIN_LOCAL, ORIGIN_REMOTE, PRICE_NAMESPACE, INVENTORY_NAMESPACE
)

logger = logging.getLogger(__name__)

SYNC_ACTION = "data_sync"

EPOCH_PATTERN = re.compile(r"^\d+(\.\d+)?$")


def parse_timestamp(value) -> float:
    """ISO-8601 (or epoch) timestamp to epoch seconds; missing or unreadable sorts first"""
    if value in (None, ""):
        return float("-inf")
    text = str(value).strip()
    if EPOCH_PATTERN.match(text):
        number = float(text)
        # Millisecond epochs
        return number / 1000 if number > 1e11 else number
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return float("-inf")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def merge_records(local: Dict[str, Any], remote: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, SyncState]]:
    """
    Per-key last-write-wins merge of two record maps.

    Records expose updated_at and to_dict(). Keys present on one side only
    are adopted as they are; on equal timestamps the local record is kept.
    Returns the merged map and, per key, which side the value came from:
    SYNCED when both sides already agree, LOCAL_ONLY when the local value
    still has to reach the remote, REMOTE_NEWER when the remote value won.
    """
    merged = {}
    states = {}
    for key in set(local) | set(remote):
        mine = local.get(key)
        theirs = remote.get(key)
        if theirs is None:
            merged[key] = mine
            states[key] = SyncState.LOCAL_ONLY
        elif mine is None:
            merged[key] = theirs
            states[key] = SyncState.REMOTE_NEWER
        elif parse_timestamp(theirs.updated_at) > parse_timestamp(mine.updated_at):
            merged[key] = theirs
            states[key] = SyncState.REMOTE_NEWER
        else:
            merged[key] = mine
            states[key] = SyncState.SYNCED if mine.to_dict() == theirs.to_dict() else SyncState.LOCAL_ONLY
    return merged, states


def _price_records(document) -> Dict[str, PriceOverrideRecord]:
    if not isinstance(document, dict):
        return {}
    records = {k: PriceOverrideRecord.from_dict(k, v) for k, v in document.items()}
    return {k: r for k, r in records.items() if r.price > 0}


def _inventory_records(document) -> Dict[str, InventoryRecord]:
    if not isinstance(document, dict):
        return {}
    return {k: InventoryRecord.from_dict(k, v) for k, v in document.items()}


def _entry_ids(items) -> set:
    if not isinstance(items, list):
        return set()
    return {str(i.get("id")) for i in items if isinstance(i, dict) and i.get("id")}


class SyncService:
    """
    Mirrors the override store to the shared remote document.

    Local writes are coalesced and pushed debounce_seconds after the last
    mutation; the remote is polled every poll_seconds while nothing is
    pending. Remote failures never reach callers: they are retried, or
    block the service for a backoff window when the remote rate-limits.
    """

    def __init__(self, store: OverrideStore, ledger: HistoryLedger, activity: ActivityLog,
                 remote: Optional[RemoteStore] = None, settings: Optional[SyncSettings] = None,
                 clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], None] = time.sleep,
                 actor: str = "system"):
        self.store = store
        self.ledger = ledger
        self.activity = activity
        self.remote = remote
        self.settings = settings or SyncSettings()
        self.clock = clock
        self.sleep = sleep
        self.actor = actor

        self._lock = threading.RLock()
        self._io_lock = threading.RLock()
        self._push_due_at: Optional[float] = None
        self._blocked_until: Optional[float] = None
        self._rate_limit_count = 0
        self._last_poll_at: Optional[float] = None
        self._last_result: Optional[SyncResult] = None

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._subscription = store.subscribe(self._on_store_event)

        mode = "remote" if remote is not None else "local-only"
        logger.info(f"Sync Service initialized ({mode})")

    # ================================================================
    # Lifecycle
    # ================================================================
    def start(self):
        """Start the background loop; the first tick loads and merges the remote"""
        if self.remote is None:
            logger.info("SYNC: No remote configured, running local-only")
            return
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="override-sync", daemon=True)
        self._thread.start()
        logger.info("SYNC: Background loop started")

    def stop(self, flush: bool = True):
        """Stop the loop; pending writes are pushed once unless the service is blocked"""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=max(5.0, self.settings.tick_seconds * 2))
            self._thread = None
        if flush and self.has_pending_push() and not self.is_blocked():
            self.flush()
        logger.info("SYNC: Background loop stopped")

    def close(self):
        self.stop()
        self._subscription.unsubscribe()

    def _run(self):
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception as e:
                logger.error(f"SYNC: Tick failed - {e}", exc_info=True)
            self._stop_event.wait(self.settings.tick_seconds)

    # ================================================================
    # Scheduling
    # ================================================================
    def _on_store_event(self, event: StoreEvent):
        if event.origin != ORIGIN_LOCAL:
            return
        if event.type not in (EventType.OVERRIDE_CHANGED, EventType.INVENTORY_CHANGED):
            return
        # Extra option prices stay on this machine
        if "extra_option_id" in event.payload:
            return
        self.schedule_push()

    def schedule_push(self, now: Optional[float] = None):
        """Queue a push debounce_seconds from now, replacing any earlier deadline"""
        if self.remote is None:
            return
        now = self.clock() if now is None else now
        with self._lock:
            self._push_due_at = now + self.settings.debounce_seconds
        logger.debug(f"PUSH: Scheduled in {self.settings.debounce_seconds}s")

    def has_pending_push(self) -> bool:
        with self._lock:
            return self._push_due_at is not None

    def is_blocked(self, now: Optional[float] = None) -> bool:
        now = self.clock() if now is None else now
        with self._lock:
            return self._blocked_until is not None and now < self._blocked_until

    def tick(self, now: Optional[float] = None) -> Optional[SyncResult]:
        """Run whatever is due at `now`: a debounced push, else a periodic poll"""
        if self.remote is None:
            return None
        now = self.clock() if now is None else now
        with self._lock:
            if self._blocked_until is not None:
                if now < self._blocked_until:
                    return None
                self._blocked_until = None
                logger.info("SYNC: Rate-limit window over, resuming")
            push_due = self._push_due_at is not None and now >= self._push_due_at
            poll_due = self._push_due_at is None and (
                self._last_poll_at is None or now - self._last_poll_at >= self.settings.poll_seconds
            )
        if push_due:
            return self.flush(now)
        if poll_due:
            return self.load_and_merge(now)
        return None

    # ================================================================
    # Remote operations
    # ================================================================
    def load_and_merge(self, now: Optional[float] = None) -> SyncResult:
        """
        Pull the shared document and merge it into the local store.
        A push is scheduled when the local side holds anything the remote lacks.
        """
        now = self.clock() if now is None else now
        early = self._precheck("pull", now)
        if early:
            return early

        with self._io_lock:
            with self._lock:
                self._last_poll_at = now
            logger.info("PULL: Loading shared document...")
            result, files = self._with_retries("pull", self.remote.get, now)
            if result.status != "completed":
                return self._finish(result)

            files = files or {}
            merged_prices, price_states = merge_records(
                self.store.price_records(), _price_records(files.get(ADMIN_PRICES_FILE))
            )
            merged_inventory, inventory_states = merge_records(
                self.store.inventory_records(), _inventory_records(files.get(INVENTORY_FILE))
            )

            states = {}
            for namespace, per_key in ((PRICE_NAMESPACE, price_states), (INVENTORY_NAMESPACE, inventory_states)):
                for key, state in per_key.items():
                    # Remote values are applied right away
                    states[f"{namespace}:{key}"] = SyncState.SYNCED if state == SyncState.REMOTE_NEWER else state
            self.store.apply_merged(merged_prices, merged_inventory, states)

            history_added = self.ledger.merge_remote(files.get(PRICE_HISTORY_FILE))
            activity_added = self.activity.merge_remote(files.get(ACTIVITY_LOG_FILE))

            adopted = sum(1 for s in list(price_states.values()) + list(inventory_states.values())
                          if s == SyncState.REMOTE_NEWER)
            result.merged = adopted + history_added + activity_added
            logger.info(f"MERGE: Adopted {adopted} remote records, "
                        f"{history_added} history and {activity_added} activity entries")

            local_ahead = SyncState.LOCAL_ONLY in states.values()
            local_ahead = local_ahead or bool(
                {e["id"] for e in self.ledger.to_document()} - _entry_ids(files.get(PRICE_HISTORY_FILE))
            )
            if local_ahead:
                logger.info("MERGE: Local changes not on remote yet, scheduling push")
                self.schedule_push(now)

        return self._finish(result)

    def flush(self, now: Optional[float] = None) -> SyncResult:
        """Push local state now, without waiting for the debounce deadline"""
        now = self.clock() if now is None else now
        early = self._precheck("push", now)
        if early:
            return early

        with self._io_lock:
            with self._lock:
                self._push_due_at = None

            prices = self.store.price_records()
            inventory = self.store.inventory_records()
            entry = ActivityEntry(
                action=SYNC_ACTION, actor=self.actor,
                details={"prices": len(prices), "inventory": len(inventory)}
            )
            activity_document = ([entry.to_dict()] + self.activity.to_document())[:self.activity.cap]
            files = {
                INVENTORY_FILE: {k: r.to_dict() for k, r in inventory.items()},
                ADMIN_PRICES_FILE: {k: r.to_dict() for k, r in prices.items()},
                PRICE_HISTORY_FILE: self.ledger.to_document(),
                ACTIVITY_LOG_FILE: activity_document,
                LAST_UPDATED_FILE: now_iso()
            }

            logger.info(f"PUSH: Writing {len(prices)} prices, {len(inventory)} inventory rows...")
            result, _ = self._with_retries("push", lambda: self.remote.patch(files), now)

            if result.status == "completed":
                result.pushed = len(prices) + len(inventory)
                self.activity.add(entry)
                self.store.mark_synced(prices, inventory)
            else:
                with self._lock:
                    # Keep the write queued
                    if self._push_due_at is None:
                        if self._blocked_until is not None:
                            self._push_due_at = self._blocked_until
                        else:
                            self._push_due_at = now + self.settings.debounce_seconds

        return self._finish(result)

    def force_sync(self, now: Optional[float] = None) -> SyncResult:
        """Push queued writes, load-merge, then push the merged state"""
        now = self.clock() if now is None else now
        logger.info("SYNC: Forced synchronization")
        pushed = None
        if self.has_pending_push():
            # Queued writes go out first so the pull cannot resurrect deleted keys
            pushed = self.flush(now)
            if pushed.status != "completed":
                return pushed
        pulled = self.load_and_merge(now)
        if pulled.status != "completed":
            return pulled
        self.store.request_reload(origin=ORIGIN_REMOTE)
        if pushed is None or self.has_pending_push():
            pushed = self.flush(now)
        pushed.merged = pulled.merged
        return self._finish(pushed)

    def status(self) -> Dict[str, Any]:
        now = self.clock()
        with self._lock:
            blocked_until = self._blocked_until if self._blocked_until and now < self._blocked_until else None
            return {
                "remote_configured": self.remote is not None,
                "running": bool(self._thread and self._thread.is_alive()),
                "blocked": blocked_until is not None,
                "retry_after": round(blocked_until - now, 3) if blocked_until else None,
                "unblock_at": _iso(blocked_until) if blocked_until else None,
                "pending_push": self._push_due_at is not None,
                "push_due_at": _iso(self._push_due_at) if self._push_due_at else None,
                "last_result": self._last_result.to_dict() if self._last_result else None
            }

    # ================================================================
    # Helpers
    # ================================================================
    def _precheck(self, direction: str, now: float) -> Optional[SyncResult]:
        if self.remote is None:
            logger.debug(f"SYNC: {direction} skipped, no remote configured")
            return SyncResult(direction=direction, status="skipped")
        with self._lock:
            if self._blocked_until is not None and now < self._blocked_until:
                remaining = self._blocked_until - now
                logger.debug(f"SYNC: {direction} deferred, blocked for {remaining:.0f}s")
                return SyncResult(direction=direction, status="blocked", retry_after=remaining)
        return None

    def _with_retries(self, direction: str, operation: Callable[[], Any], now: float):
        """
        Run a remote call. Transient failures are retried max_retries times
        with a linearly growing delay; a rate-limit response stops at once
        and blocks the service.
        """
        started = self.clock()
        result = SyncResult(direction=direction)
        attempt = 0
        value = None
        while True:
            try:
                value = operation()
                result.status = "completed"
                with self._lock:
                    self._rate_limit_count = 0
                break
            except RemoteRateLimitError as e:
                result.errors += 1
                result.error_messages.append(str(e))
                result.status = "blocked"
                result.retry_after = self._block(now, e.retry_after)
                break
            except RemoteStoreError as e:
                result.errors += 1
                result.error_messages.append(str(e))
                attempt += 1
                if attempt > self.settings.max_retries:
                    logger.error(f"SYNC: {direction} failed after {self.settings.max_retries} retries - {e}")
                    result.status = "failed"
                    break
                delay = self.settings.retry_delay_seconds * attempt
                logger.warning(f"SYNC: {direction} attempt {attempt} failed, retrying in {delay}s - {e}")
                self.sleep(delay)
        result.duration_seconds = max(0.0, self.clock() - started)
        return result, value

    def _block(self, now: float, retry_after: Optional[float]) -> float:
        settings = self.settings
        with self._lock:
            self._rate_limit_count += 1
            delay = min(settings.backoff_base_seconds * 2 ** (self._rate_limit_count - 1),
                        settings.backoff_max_seconds)
            if retry_after:
                delay = min(max(delay, float(retry_after)), settings.backoff_max_seconds)
            self._blocked_until = now + delay
            unblock_at = _iso(self._blocked_until)

        logger.warning(f"SYNC: Remote rate limit hit, blocked for {delay:.0f}s (until {unblock_at})")
        self.store.publish(StoreEvent(
            type=EventType.SYNC_BLOCKED,
            payload={"retry_after": delay, "unblock_at": unblock_at}
        ))
        return delay

    def _finish(self, result: SyncResult) -> SyncResult:
        with self._lock:
            self._last_result = result
        if result.status == "completed":
            logger.info(f"SYNC: {result.direction} completed in {result.duration_seconds:.3f}s")
        return result


def _iso(epoch: float) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).isoformat()
