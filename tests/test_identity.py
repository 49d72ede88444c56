import logging

import pytest

from models.bom_models import Part, ProductFamily
from services.identity import (
    UNKNOWN_PART_ID, parse_dimensions, parse_height_mm, parse_level, price_id,
    price_key, rack_config_id, stock_id, stock_key
)


def test_price_id_is_deterministic():
    part = Part(product_family=ProductFamily.PALLET_RACK, name="기둥(H1500)", specification="높이 H1500")
    same = Part(product_family=ProductFamily.PALLET_RACK, name="기둥(H1500)", specification="높이 H1500")

    assert price_id(part) == price_id(same)
    assert price_id(part) == "파렛트랙-기둥h1500-높이h1500"


def test_price_id_normalizes_name_and_spec():
    part = Part(product_family=ProductFamily.LIGHT_DUTY, name="선반 (900*450)", specification="")
    assert price_id(part) == "경량랙-선반900x450-"


def test_price_id_keeps_trailing_dash_for_empty_spec():
    part = Part(product_family=ProductFamily.PALLET_RACK, name="앙카볼트")
    assert price_id(part) == "파렛트랙-앙카볼트-"


def test_high_rack_colors_share_price_but_not_stock():
    gray = Part(product_family=ProductFamily.HIGH_RACK, name="선반(108) 그레이", specification="사이즈 45x108")
    blue = Part(product_family=ProductFamily.HIGH_RACK, name="선반(108) 블루", specification="사이즈 45x108")

    assert price_id(gray) == price_id(blue)
    assert stock_id(gray) != stock_id(blue)


def test_matte_gray_token_removed_whole():
    part = Part(product_family=ProductFamily.HIGH_RACK, name="기둥(H1500) 메트그레이", specification="높이 H1500")
    assert "메트" not in price_id(part)


def test_color_tokens_kept_for_other_families():
    part = Part(product_family=ProductFamily.LIGHT_DUTY, name="선반 블루")
    assert "블루" in price_id(part)


def test_high_rack_keys_carry_weight_class():
    part = Part(product_family=ProductFamily.HIGH_RACK, name="기둥(H1500) 270kg", specification="높이 H1500")
    assert price_key(part).endswith("270kg")
    assert stock_key(part).endswith("270kg")
    assert price_key(part) != price_id(part)


def test_keys_match_ids_outside_high_rack():
    part = Part(product_family=ProductFamily.PALLET_RACK, name="로드빔(2080)", specification="2080")
    assert price_key(part) == price_id(part)
    assert stock_key(part) == stock_id(part)


def test_missing_part_degrades_to_sentinel(caplog):
    with caplog.at_level(logging.WARNING):
        assert price_id(None) == UNKNOWN_PART_ID
        assert stock_id(None) == UNKNOWN_PART_ID
    assert "without a part" in caplog.text


@pytest.mark.parametrize("size, expected", [
    ("2080x1000", (2080, 1000)),
    ("W900xD450", (900, 450)),
    ("45 x 150", (45, 150)),
    ("1200X600", (1200, 600)),
])
def test_parse_dimensions(size, expected):
    assert tuple(parse_dimensions(size)) == expected


@pytest.mark.parametrize("size", ["", None, "W900", "abc", "x450", "900 by 450"])
def test_parse_dimensions_malformed(size):
    dims = parse_dimensions(size)
    assert dims.width is None
    assert dims.depth is None


def test_parse_level_and_height():
    assert parse_level("4단") == 4
    assert parse_level("L3", ProductFamily.PALLET_RACK_STEEL_PLATE) == 3
    assert parse_level("") == 1
    assert parse_height_mm("H1500") == 1500
    assert parse_height_mm(None) == 0


def test_rack_config_id():
    config_id = rack_config_id(ProductFamily.PALLET_RACK, "2080x1000", "H1500", "4단", "독립형")
    assert config_id == "파렛트랙-독립형-2080x1000-h1500-4단"
    assert rack_config_id(ProductFamily.PALLET_RACK_STEEL_PLATE, "2080x1000").startswith("파렛트랙철판형-")
