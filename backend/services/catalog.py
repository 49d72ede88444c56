"""
Catalog lookups: BOM templates, base aggregate prices, extra options
and the material master list
"""
import csv
import json
import logging
import os
import re
from typing import Any, Dict, List, Optional
from models.bom_models import (
    ExtraOption, Material, OptionSelection, Part, ProductFamily, family_label
)
from services.identity import price_id

logger = logging.getLogger(__name__)

TEMPLATES_FILE = "bom_data.json"
BASE_PRICES_FILE = "data.json"
EXTRA_OPTIONS_FILE = "extra_options.json"
MATERIALS_FILE = "all_materials_list_v1.csv"

BASE_PRICE_KEY = "기본가격"

# Material master CSV headers
CSV_FAMILY = "랙타입"
CSV_NAME = "부품명"
CSV_SPEC = "규격"
CSV_PRICE = "단가"
CSV_DISPLAY = "표시명"
CSV_SOURCE = "출처"
CSV_NOTE = "비고"
CSV_CATEGORY = "카테고리"


def _dig(table, *keys):
    node = table
    for key in keys:
        if not isinstance(node, dict) or key not in node:
            return None
        node = node[key]
    return node


def _as_price(value) -> Optional[float]:
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    return price if price > 0 else None


def _read_json(path: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        logger.warning(f"CATALOG: {os.path.basename(path)} not found, using empty table")
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


class Catalog:
    """Read-only catalog tables keyed by family label"""

    def __init__(self, templates: Optional[Dict] = None,
                 base_prices: Optional[Dict] = None,
                 extra_options: Optional[Dict] = None,
                 materials: Optional[List[Material]] = None):
        self.templates = templates or {}
        self.base_prices = base_prices or {}
        self.extra_options = extra_options or {}
        self.materials: Dict[str, Material] = {m.part_id: m for m in (materials or [])}

    @classmethod
    def from_directory(cls, directory: str) -> "Catalog":
        templates = _read_json(os.path.join(directory, TEMPLATES_FILE))
        base_prices = _read_json(os.path.join(directory, BASE_PRICES_FILE))
        extra_options = _read_json(os.path.join(directory, EXTRA_OPTIONS_FILE))
        materials_path = os.path.join(directory, MATERIALS_FILE)
        materials = load_materials(materials_path) if os.path.exists(materials_path) else []
        logger.info(
            f"CATALOG: Loaded {len(templates)} template families, "
            f"{len(base_prices)} price families, {len(materials)} materials"
        )
        return cls(templates, base_prices, extra_options, materials)

    # ----------------------------------------------------------------
    # Templates
    # ----------------------------------------------------------------
    def lookup_template(self, family, size, height, level, form_type) -> Optional[Dict]:
        """
        Pre-enumerated component template for an exact option tuple.
        The catalog is sparse: any missing key returns None.
        """
        record = _dig(self.templates, family_label(family), size, height, level, form_type)
        if isinstance(record, dict) and isinstance(record.get("components"), list):
            return record
        return None

    def template_keys(self, family, *path) -> List[str]:
        node = _dig(self.templates, family_label(family), *path)
        return list(node.keys()) if isinstance(node, dict) else []

    # ----------------------------------------------------------------
    # Base aggregate prices
    # ----------------------------------------------------------------
    def lookup_base_price(self, family, selection: OptionSelection) -> Optional[float]:
        """Last-resort aggregate unit price for a whole rack configuration"""
        family = ProductFamily.parse(family)
        if family is None:
            return None
        table = _dig(self.base_prices, family.value, BASE_PRICE_KEY)
        if not isinstance(table, dict):
            return None

        size, height = selection.size, selection.height
        level, form = selection.level, selection.form_type

        if family == ProductFamily.PALLET_RACK_STEEL_PLATE:
            h_key = re.sub(r"^H", "", str(height or ""), flags=re.IGNORECASE)
            level_digits = re.sub(r"^L", "", str(level or ""), flags=re.IGNORECASE)
            level_digits = re.sub(r"단$", "", level_digits.strip()) or "0"
            l_key = f"{level_digits}단"
            return _as_price(_dig(table, form, size, h_key, l_key))

        if family == ProductFamily.HIGH_RACK:
            return _as_price(_dig(table, selection.color, size, height, level))

        if family == ProductFamily.STAINLESS_RACK:
            return _as_price(_dig(table, size, height, level))

        if family == ProductFamily.LIGHT_DUTY and height == "H750":
            height = "H900"
        return _as_price(_dig(table, size, height, level, form))

    # ----------------------------------------------------------------
    # Extra options
    # ----------------------------------------------------------------
    def extra_options_for(self, family) -> List[ExtraOption]:
        categories = self.extra_options.get(family_label(family)) or {}
        options: List[ExtraOption] = []
        seen = set()
        for category, rows in categories.items():
            if not isinstance(rows, list):
                continue
            for row in rows:
                option_id = str(row.get("id", ""))
                if not option_id:
                    continue
                if option_id in seen:
                    logger.warning(f"CATALOG: Duplicate extra option id '{option_id}' skipped")
                    continue
                seen.add(option_id)
                options.append(ExtraOption(
                    id=option_id,
                    name=str(row.get("name", "")),
                    price=float(row.get("price") or 0),
                    specification=str(row.get("specification") or ""),
                    quantity=int(row.get("quantity") or 1),
                    note=str(row.get("note") or ""),
                    category=category,
                    bom=list(row.get("bom") or [])
                ))
        return options

    # ----------------------------------------------------------------
    # Material master
    # ----------------------------------------------------------------
    def material_price(self, part: Part) -> float:
        material = self.materials.get(price_id(part))
        return material.unit_price if material else 0.0


def load_materials(csv_path: str) -> List[Material]:
    """
    Load the material master CSV.
    Rows without family or name are skipped; duplicate identifiers keep
    the first row and log the rest.
    """
    materials: Dict[str, Material] = {}
    skipped = 0

    with open(csv_path, "r", encoding="utf-8-sig", newline="") as f:
        reader = csv.DictReader(f)
        for index, row in enumerate(reader):
            row = {str(k).strip(): (v or "").strip() for k, v in row.items() if k is not None}
            family = row.get(CSV_FAMILY, "")
            name = row.get(CSV_NAME, "")
            specification = row.get(CSV_SPEC, "")

            if not family or not name:
                skipped += 1
                continue

            part_id = price_id(Part(product_family=family, name=name, specification=specification))
            if part_id in materials:
                logger.warning(f"CATALOG: Duplicate material {part_id} (row {index + 2}) skipped")
                continue

            try:
                unit_price = float(row.get(CSV_PRICE) or 0)
            except ValueError:
                unit_price = 0.0

            materials[part_id] = Material(
                part_id=part_id,
                product_family=family,
                name=name,
                specification=specification,
                unit_price=unit_price,
                display_name=row.get(CSV_DISPLAY) or f"{family} {name} {specification}".strip(),
                source=row.get(CSV_SOURCE) or "csv",
                note=row.get(CSV_NOTE, ""),
                category=row.get(CSV_CATEGORY, "")
            )

    logger.info(f"CATALOG: {len(materials)} materials loaded, {skipped} rows skipped")
    return list(materials.values())
