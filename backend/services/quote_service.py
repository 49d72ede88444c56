import logging
import threading
import time
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Union
from config import Config, SyncSettings
from database.local_store import LocalStore
from database.remote_store import RemoteStore
from database.supabase_client import SupabaseRemoteStore
from models.bom_models import (
    CartItem, InventoryRecord, OptionSelection, Part, PriceOverrideRecord, ProductFamily,
    ShortageLine, family_label, new_entry_id
)
from services.bom_synthesizer import BOMSynthesizer
from services.catalog import Catalog
from services.history import ActivityLog, HistoryLedger
from services.identity import price_id, rack_config_id, stock_key
from services.override_store import BroadcastChannel, OverrideStore
from services.pricing import PriceResolver
from services.rack_options import RackOptionRegistry
from services.sync_service import SyncService

logger = logging.getLogger(__name__)

PartRef = Union[Part, str]


class CartItemNotFound(KeyError):
    """No cart line with the given id"""


class QuoteService:
    """
    Rack quoting facade

    Key responsibilities:
    1. Synthesize the BOM and price for an option selection
    2. Keep the cart of configured lines and its merged BOM
    3. Save admin price overrides and inventory counts, with history
    4. Own the background mirror of overrides to the shared remote document
    5. Remember which configurations use which parts, for price edits
    """

    def __init__(self, catalog: Optional[Catalog] = None,
                 local_store: Optional[LocalStore] = None,
                 remote: Optional[RemoteStore] = None,
                 settings: Optional[SyncSettings] = None,
                 channel: Optional[BroadcastChannel] = None,
                 clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], None] = time.sleep):
        self.catalog = catalog or Catalog.from_directory(Config.CATALOG_DIR)
        self.local = local_store or LocalStore(Config.LOCAL_DB_PATH)
        self.store = OverrideStore(self.local, channel=channel)
        self.ledger = HistoryLedger(self.local)
        self.activity = ActivityLog(self.local)
        self.registry = RackOptionRegistry(self.local)
        self.synthesizer = BOMSynthesizer(self.catalog, extra_price_lookup=self.store.extra_option_price)
        self.pricing = PriceResolver(self.store, self.catalog)
        self.sync = SyncService(
            self.store, self.ledger, self.activity, remote,
            settings or Config.sync_settings(), clock=clock, sleep=sleep
        )
        self._cart: List[CartItem] = []
        self._cart_lock = threading.RLock()
        logger.info("Quote Service initialized")

    @classmethod
    def from_config(cls) -> "QuoteService":
        """Service wired from environment settings; remote sync only when credentials exist"""
        remote = None
        if Config.remote_configured():
            remote = SupabaseRemoteStore()
        else:
            logger.warning("Supabase credentials missing, overrides stay local-only")
        return cls(remote=remote)

    def start(self):
        self.sync.start()

    def stop(self):
        self.sync.close()
        self.store.close()
        self.local.close()

    # ================================================================
    # Quoting
    # ================================================================
    def bom_line(self, part: Part) -> Dict[str, Any]:
        """Part with its identifiers and currently effective price"""
        unit = self.pricing.effective_price(part)
        line = part.to_dict()
        line.update({
            "price_id": price_id(part),
            "stock_id": stock_key(part),
            "effective_price": unit,
            "effective_total": unit * int(part.quantity or 0)
        })
        return line

    def quote(self, selection: OptionSelection) -> Dict[str, Any]:
        """BOM and price for one selection; incomplete selections quote empty"""
        bom = self.synthesizer.synthesize(selection)
        if bom:
            self.registry.register(selection, bom)
        price = self.pricing.order_price(selection, bom)
        logger.info(f"PRICE: {selection.display_name() or 'incomplete selection'} = {price}")
        return {
            "selection": selection.to_dict(),
            "display_name": selection.display_name(),
            "config_id": rack_config_id(
                selection.product_family, selection.size, selection.height,
                selection.level, selection.form_type, selection.color
            ),
            "complete": selection.is_complete(),
            "bom": [self.bom_line(p) for p in bom],
            "price": price
        }

    def extra_options(self, family) -> List[Dict[str, Any]]:
        options = []
        for option in self.catalog.extra_options_for(family):
            data = option.to_dict()
            override = self.store.extra_option_price(option.id)
            data["effective_price"] = override if override > 0 else option.price
            options.append(data)
        return options

    # ================================================================
    # Admin overrides
    # ================================================================
    def save_admin_price(self, part: PartRef, price, actor: str = "admin",
                         context: Optional[Dict[str, Any]] = None) -> Optional[PriceOverrideRecord]:
        """
        Save an override for a part (or a raw price identifier) and record
        the change. A price of 0 or less reverts to the catalog price.
        """
        if isinstance(part, Part):
            part_id = price_id(part)
            part_name = part.name
            context = context or {
                "rackType": family_label(part.product_family),
                "name": part.name,
                "specification": part.specification
            }
        else:
            part_id = str(part)
            part_name = str((context or {}).get("name", ""))

        previous = self.store.override_price(part_id)
        new_price = max(0.0, float(price or 0))
        record = self.store.set_price(part_id, new_price, actor=actor, context=context)

        if previous != new_price:
            entry = self.ledger.record_change(part_id, previous, new_price, actor=actor, part_name=part_name)
            self.activity.append("price_change", actor, {
                "part_id": part_id,
                "from_price": previous,
                "to_price": new_price,
                "reason": entry.reason_tag
            })
        return record

    def set_inventory(self, part: PartRef, quantity, actor: str = "admin") -> InventoryRecord:
        stock = stock_key(part) if isinstance(part, Part) else str(part)
        record = self.store.set_inventory(stock, quantity)
        self.activity.append("inventory_change", actor, {"part_id": stock, "quantity": record.quantity})
        return record

    def set_extra_option_price(self, option_id: str, price):
        self.store.set_extra_option_price(option_id, price)

    def load_admin_prices(self) -> Dict[str, Dict[str, Any]]:
        return self.store.load_admin_prices()

    def load_inventory(self) -> Dict[str, int]:
        return self.store.load_inventory()

    def price_history(self, part_id: Optional[str] = None) -> List[Dict[str, Any]]:
        entries = self.ledger.for_part(part_id) if part_id else self.ledger.all()
        return [e.to_dict() for e in entries]

    def activity_log(self, limit: int = 100) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self.activity.all()[:limit]]

    def material_prices(self, family=None, search: str = "") -> List[Dict[str, Any]]:
        """Material master rows with their override and effective price"""
        label = family_label(ProductFamily.parse(family) or family) if family else ""
        needle = (search or "").strip().lower()
        rows = []
        for material in self.catalog.materials.values():
            if label and material.product_family != label:
                continue
            text = f"{material.name} {material.specification} {material.display_name}".lower()
            if needle and needle not in text:
                continue
            part = Part(
                product_family=ProductFamily.parse(material.product_family) or material.product_family,
                name=material.name, specification=material.specification,
                unit_price=material.unit_price
            )
            override = self.store.override_price(material.part_id)
            rows.append({
                "part_id": material.part_id,
                "product_family": material.product_family,
                "name": material.name,
                "specification": material.specification,
                "display_name": material.display_name,
                "category": material.category,
                "note": material.note,
                "unit_price": material.unit_price,
                "override_price": override if override > 0 else None,
                "effective_price": self.pricing.effective_price(part),
                "used_by": len(self.registry.options_using_part(material.part_id))
            })
        return rows

    def rack_options_using_part(self, part_id: str) -> List[Dict[str, Any]]:
        return self.registry.options_using_part(part_id)

    def rack_option(self, config_id: str) -> Optional[Dict[str, Any]]:
        return self.registry.get(config_id)

    # ================================================================
    # Cart
    # ================================================================
    def add_to_cart(self, selection: OptionSelection) -> Optional[CartItem]:
        """Snapshot a complete selection into the cart; incomplete ones are ignored"""
        if not selection.is_complete():
            logger.debug("CART: Ignoring incomplete selection")
            return None
        bom = self.synthesizer.synthesize(selection)
        self.registry.register(selection, bom)
        item = CartItem(
            id=new_entry_id(),
            selection=selection,
            bom=bom,
            price=self.pricing.order_price(selection, bom),
            display_name=selection.display_name()
        )
        with self._cart_lock:
            self._cart.append(item)
        logger.info(f"CART: Added {item.display_name} x{selection.quantity}")
        return item

    def _find(self, item_id: str) -> int:
        for index, item in enumerate(self._cart):
            if item.id == item_id:
                return index
        raise CartItemNotFound(item_id)

    def remove_from_cart(self, item_id: str) -> CartItem:
        with self._cart_lock:
            item = self._cart.pop(self._find(item_id))
        logger.info(f"CART: Removed {item.display_name}")
        return item

    def update_cart_item_quantity(self, item_id: str, quantity: int) -> CartItem:
        """Change the order quantity; the BOM is rebuilt for the new quantity"""
        if int(quantity) <= 0:
            raise ValueError("Quantity must be positive")
        with self._cart_lock:
            index = self._find(item_id)
            item = self._cart[index]
            selection = replace(item.selection, quantity=int(quantity))
            bom = self.synthesizer.synthesize(selection)
            updated = replace(item, selection=selection, bom=bom,
                              price=self.pricing.order_price(selection, bom))
            self._cart[index] = updated
        return updated

    def update_cart_item_price(self, item_id: str, manual_price) -> CartItem:
        """Set a manual line price; 0 returns the line to computed pricing"""
        with self._cart_lock:
            index = self._find(item_id)
            item = self._cart[index]
            selection = replace(item.selection, manual_price=max(0.0, float(manual_price or 0)))
            updated = replace(item, selection=selection,
                              price=self.pricing.order_price(selection, item.bom))
            self._cart[index] = updated
        return updated

    def cart_items(self) -> List[CartItem]:
        with self._cart_lock:
            return list(self._cart)

    def clear_cart(self):
        with self._cart_lock:
            self._cart = []

    def cart_view(self) -> Dict[str, Any]:
        """Cart lines repriced with current overrides, plus the merged cart BOM"""
        with self._cart_lock:
            for index, item in enumerate(self._cart):
                self._cart[index] = replace(item, price=self.pricing.item_price(item))
            items = list(self._cart)
        bom = self.pricing.cart_bom(items)
        return {
            "items": [item.to_dict() for item in items],
            "bom": [self.bom_line(p) for p in bom],
            "total": self.pricing.cart_total(items),
            "bom_total": self.pricing.cart_bom_total(items),
            "count": len(items)
        }

    def shortages(self, selection: Optional[OptionSelection] = None) -> List[ShortageLine]:
        """Stock shortfalls for a selection, or for the whole cart when none is given"""
        if selection is not None:
            bom = self.synthesizer.synthesize(selection)
        else:
            bom = self.pricing.cart_bom(self.cart_items())
        return self.pricing.shortages(bom)
