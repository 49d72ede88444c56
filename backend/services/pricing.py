"""
Price resolution and aggregation

Unit prices are resolved through the override store on every call and
never read back from stored line totals, so an admin override changes
every displayed price as soon as consumers recompute.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List
from models.bom_models import (
    CartItem, OptionSelection, Part, ProductFamily, ShortageLine
)
from services.bom_synthesizer import merge_parts
from services.catalog import Catalog
from services.identity import price_id, stock_key
from services.material_sort import sort_bom_by_material_rule
from services.override_store import OverrideStore

logger = logging.getLogger(__name__)


def round_won(amount: float) -> int:
    """Round half up to whole currency units"""
    return int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PriceResolver:
    """Resolves effective unit prices and aggregates order/cart totals"""

    def __init__(self, store: OverrideStore, catalog: Catalog):
        self.store = store
        self.catalog = catalog

    def effective_price(self, part: Part) -> float:
        """Admin override (> 0) for the part's price identifier, else its catalog unit price"""
        if part.is_custom:
            return float(part.unit_price or 0)
        override = self.store.override_price(price_id(part))
        if override > 0:
            return override
        return float(part.unit_price or 0)

    def line_aggregate(self, bom: Iterable[Part]) -> float:
        """Sum of effective price x quantity over catalog parts"""
        return sum(
            self.effective_price(p) * int(p.quantity or 0)
            for p in bom
            if not p.is_custom
        )

    @staticmethod
    def custom_total(bom: Iterable[Part]) -> float:
        return sum(float(p.unit_price or 0) * int(p.quantity or 0) for p in bom if p.is_custom)

    def order_price(self, selection: OptionSelection, bom: List[Part]) -> int:
        """
        Price of one configured line.

        1. a manual price entered for the line, scaled by the apply rate
        2. the BOM aggregate, scaled by the apply rate; part quantities
           already include the order quantity so it is not applied again
        3. the catalog base price x quantity, only when the BOM prices to zero
        Light-duty custom items are added flat before the rate applies.
        """
        if not selection.is_complete():
            return 0

        rate = float(selection.apply_rate_percent if selection.apply_rate_percent is not None else 100) / 100
        if float(selection.manual_price or 0) > 0:
            return round_won(float(selection.manual_price) * rate)

        base = self.line_aggregate(bom)
        if base <= 0:
            basic = self.catalog.lookup_base_price(selection.product_family, selection)
            if basic:
                base = basic * int(selection.quantity)
                logger.debug(f"PRICE: Base price fallback for {selection.display_name()}")

        custom = self.custom_total(bom) if selection.product_family == ProductFamily.LIGHT_DUTY else 0
        return round_won((base + custom) * rate)

    def item_price(self, item: CartItem) -> int:
        """Cart line price recomputed from its BOM snapshot"""
        return self.order_price(item.selection, item.bom)

    def cart_total(self, cart: Iterable[CartItem]) -> int:
        return sum(self.item_price(item) for item in cart)

    def cart_bom(self, cart: Iterable[CartItem]) -> List[Part]:
        merged = merge_parts(part for item in cart for part in item.bom)
        return sort_bom_by_material_rule(merged)

    def cart_bom_total(self, cart: Iterable[CartItem]) -> int:
        bom = self.cart_bom(cart)
        return round_won(self.line_aggregate(bom) + self.custom_total(bom))

    def shortages(self, bom: Iterable[Part]) -> List[ShortageLine]:
        """BOM lines whose required quantity exceeds recorded stock"""
        lines = []
        for part in bom:
            if part.is_custom:
                continue
            key = stock_key(part)
            line = ShortageLine(
                part=part,
                stock_id=key,
                required=int(part.quantity or 0),
                available=self.store.inventory_quantity(key)
            )
            if line.shortage > 0:
                lines.append(line)
        return lines
