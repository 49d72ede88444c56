"""
Admin override store: price overrides, inventory counts and extra-option
prices, persisted in the local key-value store and observable through a
typed publish/subscribe bus
"""
import logging
import threading
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from models.bom_models import (
    InventoryRecord, PriceOverrideRecord, SyncState, now_iso
)
from database.local_store import (
    LocalStore, ADMIN_PRICES_KEY, INVENTORY_KEY, EXTRA_OPTIONS_PRICES_KEY
)

logger = logging.getLogger(__name__)

ORIGIN_LOCAL = "local"
ORIGIN_REMOTE = "remote"
ORIGIN_BROADCAST = "broadcast"

PRICE_NAMESPACE = "price"
INVENTORY_NAMESPACE = "inventory"


class EventType(str, Enum):
    OVERRIDE_CHANGED = "override-changed"
    INVENTORY_CHANGED = "inventory-changed"
    FORCE_RELOAD = "force-reload"
    SYNC_BLOCKED = "sync-blocked"


@dataclass(frozen=True)
class StoreEvent:
    type: EventType
    payload: Dict[str, Any] = field(default_factory=dict)
    origin: str = ORIGIN_LOCAL


Handler = Callable[[StoreEvent], None]


class Subscription:
    """Handle returned by EventBus.subscribe"""

    def __init__(self, bus: "EventBus", handler: Handler, event_type: Optional[EventType]):
        self._bus = bus
        self.handler = handler
        self.event_type = event_type
        self.active = True

    def unsubscribe(self):
        if self.active:
            self._bus._remove(self)
            self.active = False


class EventBus:
    """Synchronous observer registry; handlers run on the publishing thread"""

    def __init__(self):
        self._subscriptions: List[Subscription] = []
        self._lock = threading.RLock()

    def subscribe(self, handler: Handler, event_type: Optional[EventType] = None) -> Subscription:
        subscription = Subscription(self, handler, event_type)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription):
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def publish(self, event: StoreEvent):
        with self._lock:
            targets = [s for s in self._subscriptions
                       if s.event_type is None or s.event_type == event.type]
        for subscription in targets:
            try:
                subscription.handler(event)
            except Exception as e:
                # One failing consumer must not stop the rest from re-rendering
                logger.error(f"EVENT: Handler failed for {event.type.value} - {e}", exc_info=True)


class BroadcastChannel:
    """
    In-process message channel between sessions on the same machine.
    Sessions sharing a channel see each other's writes without a network
    round trip.
    """

    def __init__(self, name: str = "admin-sync"):
        self.name = name
        self._listeners: List[Callable[[Dict[str, Any]], None]] = []
        self._lock = threading.RLock()

    def attach(self, listener: Callable[[Dict[str, Any]], None]) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def detach():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
        return detach

    def post(self, message: Dict[str, Any]):
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(message)


class OverrideStore:
    """
    Local map of admin overrides.

    Mutations are synchronous: the local copy and persistence are updated
    and an event is published before the call returns. Remote mirroring
    is left to SyncService, which subscribes to these events.
    """

    def __init__(self, local_store: LocalStore,
                 channel: Optional[BroadcastChannel] = None,
                 instance_id: Optional[str] = None):
        self.local = local_store
        self.events = EventBus()
        self.instance_id = instance_id or uuid.uuid4().hex
        self._lock = threading.RLock()
        self._prices: Dict[str, PriceOverrideRecord] = {}
        self._inventory: Dict[str, InventoryRecord] = {}
        self._extra_prices: Dict[str, float] = {}
        self._sync_states: Dict[str, SyncState] = {}
        self.channel = channel
        self._detach = channel.attach(self._on_broadcast) if channel else None
        self.reload()

    # ================================================================
    # Persistence
    # ================================================================
    def reload(self):
        """Re-read every map from local persistence"""
        raw_prices = self.local.get_json(ADMIN_PRICES_KEY, {}) or {}
        raw_inventory = self.local.get_json(INVENTORY_KEY, {}) or {}
        raw_extra = self.local.get_json(EXTRA_OPTIONS_PRICES_KEY, {}) or {}

        prices = {}
        for part_id, data in raw_prices.items():
            record = PriceOverrideRecord.from_dict(part_id, data)
            if record.price > 0:
                prices[part_id] = record
        inventory = {k: InventoryRecord.from_dict(k, v) for k, v in raw_inventory.items()}
        extra = {}
        for option_id, data in raw_extra.items():
            value = data.get("price") if isinstance(data, dict) else data
            try:
                extra[option_id] = float(value)
            except (TypeError, ValueError):
                logger.warning(f"STORE: Ignoring malformed extra option price for {option_id}")

        with self._lock:
            self._prices = prices
            self._inventory = inventory
            self._extra_prices = extra
        logger.debug(f"STORE: Loaded {len(prices)} price overrides, {len(inventory)} inventory rows")

    def _persist_prices(self):
        self.local.set_json(ADMIN_PRICES_KEY, {k: r.to_dict() for k, r in self._prices.items()})

    def _persist_inventory(self):
        self.local.set_json(INVENTORY_KEY, {k: r.to_dict() for k, r in self._inventory.items()})

    def _persist_extra_prices(self):
        self.local.set_json(EXTRA_OPTIONS_PRICES_KEY, dict(self._extra_prices))

    # ================================================================
    # Price overrides
    # ================================================================
    def load_admin_prices(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {k: r.to_dict() for k, r in self._prices.items()}

    def get_override(self, part_id: str) -> Optional[PriceOverrideRecord]:
        with self._lock:
            record = self._prices.get(part_id)
        return record if record and record.price > 0 else None

    def override_price(self, part_id: str) -> float:
        record = self.get_override(part_id)
        return record.price if record else 0.0

    def set_price(self, part_id: str, price, actor: str = "admin",
                  context: Optional[Dict[str, Any]] = None) -> Optional[PriceOverrideRecord]:
        """
        Save an admin price. A price of 0 or less removes the override so
        the catalog price applies again.
        """
        price = float(price or 0)
        with self._lock:
            if price > 0:
                record = PriceOverrideRecord(
                    part_id=part_id, price=price, updated_at=now_iso(),
                    actor=actor, context=dict(context or {})
                )
                self._prices[part_id] = record
            else:
                record = None
                self._prices.pop(part_id, None)
            self._sync_states[f"{PRICE_NAMESPACE}:{part_id}"] = SyncState.LOCAL_ONLY
            self._persist_prices()

        logger.info(f"PRICE: {'Set' if record else 'Cleared'} override {part_id} by {actor}")
        self._emit(EventType.OVERRIDE_CHANGED, {"part_id": part_id, "price": price})
        return record

    # ================================================================
    # Inventory
    # ================================================================
    def load_inventory(self) -> Dict[str, int]:
        with self._lock:
            return {k: r.quantity for k, r in self._inventory.items()}

    def inventory_quantity(self, stock_id: str) -> int:
        with self._lock:
            record = self._inventory.get(stock_id)
        return record.quantity if record else 0

    def set_inventory(self, stock_id: str, quantity) -> InventoryRecord:
        record = InventoryRecord(part_id=stock_id, quantity=max(0, int(quantity or 0)))
        with self._lock:
            self._inventory[stock_id] = record
            self._sync_states[f"{INVENTORY_NAMESPACE}:{stock_id}"] = SyncState.LOCAL_ONLY
            self._persist_inventory()

        logger.info(f"STOCK: {stock_id} = {record.quantity}")
        self._emit(EventType.INVENTORY_CHANGED, {"part_id": stock_id, "quantity": record.quantity})
        return record

    # ================================================================
    # Extra option prices (local only)
    # ================================================================
    def extra_option_price(self, option_id: str) -> float:
        with self._lock:
            return self._extra_prices.get(str(option_id), 0.0)

    def set_extra_option_price(self, option_id: str, price):
        price = float(price or 0)
        with self._lock:
            if price > 0:
                self._extra_prices[str(option_id)] = price
            else:
                self._extra_prices.pop(str(option_id), None)
            self._persist_extra_prices()
        self._emit(EventType.OVERRIDE_CHANGED, {"extra_option_id": str(option_id), "price": price})

    # ================================================================
    # Sync support
    # ================================================================
    def price_records(self) -> Dict[str, PriceOverrideRecord]:
        with self._lock:
            return dict(self._prices)

    def inventory_records(self) -> Dict[str, InventoryRecord]:
        with self._lock:
            return dict(self._inventory)

    def apply_merged(self, prices: Dict[str, PriceOverrideRecord],
                     inventory: Dict[str, InventoryRecord],
                     states: Optional[Dict[str, SyncState]] = None):
        """Replace local maps with the merge result and notify consumers"""
        prices = {k: r for k, r in prices.items() if r.price > 0}
        with self._lock:
            prices_changed = _records_differ(self._prices, prices)
            inventory_changed = _records_differ(self._inventory, inventory)
            self._prices = dict(prices)
            self._inventory = dict(inventory)
            self._sync_states.update(states or {})
            self._persist_prices()
            self._persist_inventory()

        if prices_changed:
            self._emit(EventType.OVERRIDE_CHANGED, {"count": len(prices)}, origin=ORIGIN_REMOTE)
        if inventory_changed:
            self._emit(EventType.INVENTORY_CHANGED, {"count": len(inventory)}, origin=ORIGIN_REMOTE)

    def mark_synced(self, prices: Dict[str, PriceOverrideRecord],
                    inventory: Dict[str, InventoryRecord]):
        """Mark the pushed snapshot synced; keys rewritten since keep their state"""
        with self._lock:
            for namespace, pushed, current in ((PRICE_NAMESPACE, prices, self._prices),
                                               (INVENTORY_NAMESPACE, inventory, self._inventory)):
                for key, record in pushed.items():
                    if current.get(key) == record:
                        self._sync_states[f"{namespace}:{key}"] = SyncState.SYNCED
                prefix = f"{namespace}:"
                for state_key in [k for k in self._sync_states if k.startswith(prefix)]:
                    key = state_key[len(prefix):]
                    if key not in current and key not in pushed:
                        del self._sync_states[state_key]

    def sync_state(self, namespace: str, key: str) -> SyncState:
        with self._lock:
            return self._sync_states.get(f"{namespace}:{key}", SyncState.ABSENT)

    def request_reload(self, origin: str = ORIGIN_LOCAL):
        self.reload()
        self._emit(EventType.FORCE_RELOAD, {}, origin=origin)

    # ================================================================
    # Events
    # ================================================================
    def subscribe(self, handler: Handler, event_type: Optional[EventType] = None) -> Subscription:
        return self.events.subscribe(handler, event_type)

    def publish(self, event: StoreEvent):
        self.events.publish(event)

    def _emit(self, event_type: EventType, payload: Dict[str, Any], origin: str = ORIGIN_LOCAL):
        self.events.publish(StoreEvent(type=event_type, payload=payload, origin=origin))
        if self.channel and origin != ORIGIN_BROADCAST:
            self.channel.post({
                "type": event_type.value,
                "payload": payload,
                "source": self.instance_id
            })

    def _on_broadcast(self, message: Dict[str, Any]):
        if message.get("source") == self.instance_id:
            return
        try:
            event_type = EventType(message.get("type"))
        except ValueError:
            logger.warning(f"EVENT: Unknown broadcast type {message.get('type')}")
            return
        if event_type == EventType.SYNC_BLOCKED:
            return
        self.reload()
        self.events.publish(StoreEvent(
            type=event_type, payload=dict(message.get("payload") or {}), origin=ORIGIN_BROADCAST
        ))

    def close(self):
        if self._detach:
            self._detach()
            self._detach = None


def _records_differ(current: Dict[str, Any], incoming: Dict[str, Any]) -> bool:
    if current.keys() != incoming.keys():
        return True
    return any(current[k].to_dict() != incoming[k].to_dict() for k in current)
