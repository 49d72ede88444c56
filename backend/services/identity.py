"""
Part identity and dimension parsing

Price identifiers are color-insensitive for high racks so one admin price
covers every color of the same shape; stock identifiers keep the color so
physical stock is counted per variant.
"""
import logging
import re
from typing import NamedTuple, Optional
from models.bom_models import Part, ProductFamily, family_label

logger = logging.getLogger(__name__)

UNKNOWN_PART_ID = "unknown-part"

# Longest first so "메트그레이" is not left as "메트" after "그레이" is removed
HIGH_RACK_COLOR_TOKENS = ("메트그레이", "매트그레이", "그레이", "오렌지", "블루")

DIMENSION_PATTERN = re.compile(r"W?(\d+)\s*[xX]\s*D?(\d+)")
WEIGHT_PATTERN = re.compile(r"(\d+kg)", re.IGNORECASE)
WEIGHT_CLASS_PATTERN = re.compile(r"(\d{2,4}kg)")
CONFIG_ID_STRIP = re.compile(r"[^\w가-힣-]")


class Dimensions(NamedTuple):
    width: Optional[int]
    depth: Optional[int]


def parse_dimensions(size) -> Dimensions:
    """
    Parse "2080x1000", "W900xD450" or "45 x 150" into (width, depth).
    Anything without two numbers around an x returns (None, None).
    """
    compact = re.sub(r"\s+", "", str(size or ""))
    match = DIMENSION_PATTERN.search(compact)
    if not match:
        return Dimensions(None, None)
    return Dimensions(int(match.group(1)), int(match.group(2)))


def parse_height_mm(height) -> int:
    digits = re.sub(r"[^\d]", "", str(height or ""))
    return int(digits) if digits else 0


def parse_level(level, family=None) -> int:
    """Level count from "4단" or "L4"; missing values count as one level"""
    if not level:
        return 1
    pattern = r"L?(\d+)" if family == ProductFamily.PALLET_RACK_STEEL_PLATE else r"(\d+)"
    match = re.search(pattern, str(level))
    return int(match.group(1)) if match else 1


def extract_weight(color) -> str:
    match = WEIGHT_CLASS_PATTERN.search(str(color or ""))
    return match.group(1) if match else ""


def normalize_part_name(name) -> str:
    return str(name or "").replace("브레싱고무", "브러싱고무")


def _clean_name(name) -> str:
    text = re.sub(r"[()]", "", str(name or ""))
    text = re.sub(r"\s+", "", text)
    return text.replace("*", "x")


def _clean_spec(specification) -> str:
    text = re.sub(r"[()]", "", str(specification or ""))
    text = re.sub(r"\s+", "", text)
    return text.replace("*", "x").lower()


def _compose(family: str, name: str, specification) -> str:
    spec = _clean_spec(specification)
    return f"{family}-{name}-{spec}" if spec else f"{family}-{name}-"


def _is_high_rack(family) -> bool:
    return family_label(family) == ProductFamily.HIGH_RACK.value


def price_id(part: Optional[Part]) -> str:
    """Pricing identifier; strips color tokens from high-rack names"""
    if part is None:
        logger.warning("IDENTITY: price_id called without a part")
        return UNKNOWN_PART_ID

    name = _clean_name(part.name)
    if _is_high_rack(part.product_family):
        for token in HIGH_RACK_COLOR_TOKENS:
            name = name.replace(token, "")
    return _compose(family_label(part.product_family), name.lower(), part.specification)


def stock_id(part: Optional[Part]) -> str:
    """Inventory identifier; keeps color so stock is counted per variant"""
    if part is None:
        logger.warning("IDENTITY: stock_id called without a part")
        return UNKNOWN_PART_ID

    name = _clean_name(part.name).lower()
    return _compose(family_label(part.product_family), name, part.specification)


def _weight_suffix(part: Part) -> str:
    match = WEIGHT_PATTERN.search(str(part.name or ""))
    return match.group(1).lower() if match else ""


def price_key(part: Optional[Part]) -> str:
    if part is None or not _is_high_rack(part.product_family):
        return price_id(part)
    return f"{price_id(part)}{_weight_suffix(part)}"


def stock_key(part: Optional[Part]) -> str:
    if part is None or not _is_high_rack(part.product_family):
        return stock_id(part)
    return f"{stock_id(part)}{_weight_suffix(part)}"


def rack_config_id(family, size="", height="", level="", form_type="", color="") -> str:
    fields = [family_label(family), form_type, size, height, level, color]
    joined = "-".join(str(f) for f in fields if f)
    return CONFIG_ID_STRIP.sub("", joined).lower()
