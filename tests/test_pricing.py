import pytest

from models.bom_models import CartItem, CustomMaterial, OptionSelection, Part, ProductFamily
from services.bom_synthesizer import BOMSynthesizer
from services.catalog import Catalog
from services.identity import price_id, stock_key
from services.override_store import OverrideStore
from services.pricing import PriceResolver, round_won


@pytest.fixture
def resolver(override_store, catalog):
    return PriceResolver(override_store, catalog)


@pytest.fixture
def synthesizer(catalog):
    return BOMSynthesizer(catalog)


def pallet_selection(**overrides):
    values = dict(product_family="파렛트랙", size="2080x1000", height="H1500",
                  level="4단", form_type="독립형", quantity=1)
    values.update(overrides)
    return OptionSelection(**values)


def test_round_won_half_up():
    assert round_won(2.5) == 3
    assert round_won(1.4) == 1
    assert round_won(104999.5) == 105000


def test_override_wins_and_zero_reverts(resolver, override_store):
    part = Part(product_family=ProductFamily.PALLET_RACK, name="앙카볼트", quantity=1, unit_price=3000)
    assert resolver.effective_price(part) == 3000

    override_store.set_price(price_id(part), 5000)
    assert resolver.effective_price(part) == 5000

    override_store.set_price(price_id(part), 0)
    assert resolver.effective_price(part) == 3000
    assert override_store.get_override(price_id(part)) is None


def test_override_round_trip_through_persistence(local_store, catalog):
    part = Part(product_family=ProductFamily.PALLET_RACK, name="로드빔(2080)", specification="2080")
    OverrideStore(local_store).set_price(price_id(part), 12345)

    reopened = OverrideStore(local_store)
    assert PriceResolver(reopened, catalog).effective_price(part) == 12345


def test_high_rack_colors_share_override(resolver, override_store):
    gray = Part(product_family=ProductFamily.HIGH_RACK, name="선반(45) 그레이", specification="사이즈 45x150")
    blue = Part(product_family=ProductFamily.HIGH_RACK, name="선반(45) 블루", specification="사이즈 45x150")

    override_store.set_price(price_id(gray), 8800)

    assert resolver.effective_price(blue) == 8800


def test_order_price_does_not_multiply_quantity_twice(resolver, synthesizer):
    sel = pallet_selection(quantity=3)
    bom = synthesizer.synthesize(sel)
    expected = sum(p.unit_price * p.quantity for p in bom)

    assert expected > 0
    assert resolver.order_price(sel, bom) == round_won(expected)


def test_order_price_applies_rate(resolver, synthesizer):
    sel = pallet_selection(apply_rate_percent=90)
    bom = synthesizer.synthesize(sel)
    expected = sum(p.unit_price * p.quantity for p in bom) * 0.9

    assert resolver.order_price(sel, bom) == round_won(expected)


def test_override_changes_order_price(resolver, synthesizer, override_store):
    sel = pallet_selection()
    bom = synthesizer.synthesize(sel)
    before = resolver.order_price(sel, bom)

    posts = next(p for p in bom if p.name == "기둥(H1500)")
    override_store.set_price(price_id(posts), 50000)

    assert resolver.order_price(sel, bom) == before + (50000 - 42000) * 4


def test_manual_price_takes_priority(resolver, synthesizer):
    sel = pallet_selection(manual_price=100000, apply_rate_percent=50)
    bom = synthesizer.synthesize(sel)
    assert resolver.order_price(sel, bom) == 50000


def test_base_price_fallback_when_bom_prices_to_zero(resolver, synthesizer):
    sel = OptionSelection(product_family="경량랙", size="W900xD450", height="H750",
                          level="3단", form_type="독립형", quantity=2)
    bom = synthesizer.synthesize(sel)

    assert bom
    assert resolver.order_price(sel, bom) == 52000 * 2


def test_light_duty_custom_items_added_flat(resolver, synthesizer):
    sel = OptionSelection(product_family="경량랙", size="W900xD450", height="H750",
                          level="3단", form_type="독립형", quantity=2,
                          custom_materials=[CustomMaterial(name="도어", price=20000)])
    bom = synthesizer.synthesize(sel)
    assert resolver.order_price(sel, bom) == 52000 * 2 + 20000


def test_custom_items_ignore_overrides(resolver, override_store):
    part = Part(product_family=ProductFamily.LIGHT_DUTY, name="도어", quantity=1,
                unit_price=20000, is_custom=True)
    override_store.set_price(price_id(part), 1)
    assert resolver.effective_price(part) == 20000


def test_incomplete_selection_prices_to_zero(resolver):
    assert resolver.order_price(pallet_selection(size=""), []) == 0


def test_no_price_anywhere_is_zero(override_store):
    resolver = PriceResolver(override_store, Catalog())
    sel = pallet_selection()
    bom = BOMSynthesizer(Catalog()).synthesize(sel)
    assert resolver.order_price(sel, bom) == 0


def test_cart_totals(resolver, synthesizer):
    items = []
    for quantity in (1, 2):
        sel = pallet_selection(quantity=quantity)
        bom = synthesizer.synthesize(sel)
        items.append(CartItem(id=str(quantity), selection=sel, bom=bom,
                              price=0, display_name=sel.display_name()))

    cart_bom = resolver.cart_bom(items)
    posts = next(p for p in cart_bom if p.name == "기둥(H1500)")

    assert posts.quantity == 12
    assert resolver.cart_total(items) == resolver.item_price(items[0]) + resolver.item_price(items[1])
    assert resolver.cart_bom_total(items) == resolver.cart_total(items)


def test_shortages_compare_against_stock(resolver, synthesizer, override_store):
    bom = synthesizer.synthesize(pallet_selection())
    posts = next(p for p in bom if p.name == "기둥(H1500)")
    override_store.set_inventory(stock_key(posts), 1)
    for part in bom:
        if part is not posts:
            override_store.set_inventory(stock_key(part), part.quantity)

    lines = resolver.shortages(bom)

    assert len(lines) == 1
    assert lines[0].part.name == "기둥(H1500)"
    assert lines[0].shortage == 3
