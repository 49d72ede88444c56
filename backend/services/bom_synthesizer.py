"""
BOM synthesis for every rack family

One entry point, `BOMSynthesizer.synthesize`, dispatches to a per-family
strategy. Strategies either adopt a catalog template (relabeling generic
names with the selected dimensions) or derive the parts from fixed
formulas driven by level count, height and connection form.
"""
import logging
import re
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional
from models.bom_models import (
    PALLET_FAMILIES, OptionSelection, Part, ProductFamily, family_label
)
from services.catalog import Catalog
from services.identity import (
    Dimensions, extract_weight, normalize_part_name, parse_dimensions,
    parse_height_mm, parse_level
)
from services.material_sort import sort_bom_by_material_rule

logger = logging.getLogger(__name__)

BASE_HEIGHT_MM = 1500
HEIGHT_STEP_MM = 500

POST = "기둥"
LOAD_BEAM = "로드빔"
TIE_BEAM = "타이빔"
SHELF = "선반"
SUPPORT = "받침"
CONNECTOR = "연결대"
SAFETY_SEAT = "안전좌"
SAFETY_PIN = "안전핀"
STEEL_PLATE = "철판"
BASE_BOLT = "베이스볼트"
BASE_PART = "베이스"

PALLET_SAFETY_PIN = "안전핀(파렛트랙)"
PALLET_SAFETY_PIN_SPEC = "안전핀"

HORIZONTAL_BRACE = "수평브레싱"
DIAGONAL_BRACE = "경사브레싱"
ANCHOR_BOLT = "앙카볼트"
BRACE_BOLT = "브레싱볼트"
RUBBER_BUSHING = "브러싱고무"

# Template rows re-derived by formula instead of copied
TEMPLATE_HARDWARE_NAMES = {
    "수평브레싱", "수평브래싱", "경사브레싱", "경사브래싱", "앙카볼트",
    "브레싱볼트", "브러싱고무", "브레싱고무", "안전핀", "베이스(안전좌)",
}

STEEL_PLATE_SHELVES_BY_WIDTH = {1380: 2, 2080: 3, 2580: 4}
HIGH_RACK_SHELVES_BY_DEPTH = {108: 1, 150: 2, 200: 2}

LIGHT_RACK_SPECIAL_HEIGHT = "H750"


def steel_plate_shelves_per_level(size) -> int:
    return STEEL_PLATE_SHELVES_BY_WIDTH.get(parse_dimensions(size).width, 1)


def high_rack_shelves_per_level(size) -> int:
    return HIGH_RACK_SHELVES_BY_DEPTH.get(parse_dimensions(size).depth, 1)


def merge_parts(parts: Iterable[Part]) -> List[Part]:
    """
    Collapse lines sharing (family, size, name, specification).
    Quantities and line totals add up; the first unit price is kept.
    """
    merged: Dict[tuple, Part] = {}
    for part in parts:
        key = (
            family_label(part.product_family),
            part.size or "",
            part.name,
            part.specification or "",
        )
        if key in merged:
            existing = merged[key]
            existing.quantity += part.quantity
            existing.line_total += part.line_total
        else:
            merged[key] = replace(part)
    return list(merged.values())


def append_hardware_if_missing(parts: List[Part], selection: OptionSelection) -> List[Part]:
    """
    Add pallet-rack bracing hardware whose name is not already present.
    Running it again on its own output adds nothing.
    """
    result = list(parts)
    if selection.product_family not in PALLET_FAMILIES:
        return result

    names = {normalize_part_name(p.name) for p in result}
    qty = int(selection.quantity or 1)
    connected = selection.is_connected

    post_qty = (2 if connected else 4) * qty
    steps = max(0, (parse_height_mm(selection.height) - BASE_HEIGHT_MM) // HEIGHT_STEP_MM)
    diagonal = ((2 if connected else 4) + (1 if connected else 2) * steps) * qty
    horizontal = (2 if connected else 4) * qty
    anchor = horizontal
    brace_bolt = horizontal + diagonal
    rubber = post_qty

    depth = parse_dimensions(selection.size).depth
    brace_spec = str(depth) if depth else ""

    hardware = [
        (HORIZONTAL_BRACE, brace_spec, horizontal),
        (DIAGONAL_BRACE, brace_spec, diagonal),
        (ANCHOR_BOLT, "", anchor),
        (BRACE_BOLT, "", brace_bolt),
        (RUBBER_BUSHING, "", rubber),
    ]
    for name, spec, quantity in hardware:
        if normalize_part_name(name) in names:
            continue
        result.append(Part(
            product_family=selection.product_family,
            name=name,
            specification=spec,
            quantity=quantity,
            size=selection.size or "",
        ))
        names.add(name)
    return result


class BOMSynthesizer:
    """Derives the flat parts list for an option selection"""

    def __init__(self, catalog: Catalog,
                 extra_price_lookup: Optional[Callable[[str], float]] = None,
                 sorter: Callable[[List[Part]], List[Part]] = sort_bom_by_material_rule):
        self.catalog = catalog
        self.extra_price_lookup = extra_price_lookup
        self.sorter = sorter
        self._strategies: Dict[ProductFamily, Callable[[OptionSelection], List[Part]]] = {
            ProductFamily.PALLET_RACK: self._pallet_rack,
            ProductFamily.PALLET_RACK_STEEL_PLATE: self._pallet_rack,
            ProductFamily.HIGH_RACK: self._high_rack,
            ProductFamily.STAINLESS_RACK: self._stainless_rack,
            ProductFamily.LIGHT_DUTY: self._shelf_rack,
            ProductFamily.HEAVY_DUTY: self._shelf_rack,
        }

    def synthesize(self, selection: OptionSelection) -> List[Part]:
        """
        Build the BOM for a selection.

        Incomplete selections produce an empty list. The result never
        contains zero-quantity lines or base bolts, is merged on
        (family, size, name, specification) and sorted by material group.
        """
        if not selection.is_complete():
            logger.debug(f"BOM: Incomplete selection for {family_label(selection.product_family)}")
            return []

        strategy = self._strategies[selection.product_family]
        parts = strategy(selection)
        parts.extend(self.extra_option_parts(selection))
        if selection.product_family == ProductFamily.LIGHT_DUTY:
            parts.extend(self.custom_parts(selection))

        parts = [p for p in parts if BASE_BOLT not in (p.name or "")]
        if selection.product_family == ProductFamily.HIGH_RACK:
            parts = [p for p in parts
                     if SAFETY_SEAT not in (p.name or "") and BASE_PART not in (p.name or "")]
        parts = [p for p in parts if (p.quantity or 0) > 0]
        parts = [self._with_catalog_price(p) for p in merge_parts(parts)]

        logger.debug(f"BOM: {selection.display_name()} -> {len(parts)} lines")
        return self.sorter(parts)

    # ----------------------------------------------------------------
    # Shared pieces
    # ----------------------------------------------------------------
    def extra_option_parts(self, selection: OptionSelection) -> List[Part]:
        """
        Parts for the selected add-ons. An add-on with its own BOM
        contributes its sub-parts; its flat price only fills in the unit
        price when that BOM has a single unpriced line.
        """
        selected = {str(i) for i in selection.extra_option_ids}
        if not selected:
            return []

        parts = []
        for option in self.catalog.extra_options_for(selection.product_family):
            if option.id not in selected:
                continue
            override = self.extra_price_lookup(option.id) if self.extra_price_lookup else 0
            flat_price = float(override or option.price or 0)

            if option.bom:
                for line in option.bom:
                    unit = float(line.get("unit_price") or line.get("price") or 0)
                    if not unit and len(option.bom) == 1:
                        unit = flat_price
                    quantity = int(line.get("quantity") or 1)
                    parts.append(Part(
                        product_family=selection.product_family,
                        name=str(line.get("name", option.name)),
                        specification=str(line.get("specification") or ""),
                        quantity=quantity,
                        unit_price=unit,
                        line_total=unit * quantity,
                        note=str(line.get("note") or option.note),
                        size=selection.size or "",
                    ))
            else:
                parts.append(Part(
                    product_family=selection.product_family,
                    name=option.name,
                    specification=option.specification,
                    quantity=option.quantity,
                    unit_price=flat_price,
                    line_total=flat_price * option.quantity,
                    note=option.note,
                    size=selection.size or "",
                ))
        return parts

    def custom_parts(self, selection: OptionSelection) -> List[Part]:
        return [
            Part(
                product_family=selection.product_family,
                name=m.name,
                quantity=1,
                unit_price=float(m.price),
                line_total=float(m.price),
                note="custom",
                size=selection.size or "",
                is_custom=True,
            )
            for m in selection.custom_materials
            if str(m.name).strip() and float(m.price or 0) > 0
        ]

    def _with_catalog_price(self, part: Part) -> Part:
        if part.unit_price or part.is_custom:
            return part
        unit = self.catalog.material_price(part)
        if unit:
            return replace(part, unit_price=unit, line_total=unit * part.quantity)
        return part

    def _part(self, selection: OptionSelection, name: str, specification: str,
              quantity: int, unit_price: float = 0.0, line_total: Optional[float] = None,
              note: str = "") -> Part:
        return Part(
            product_family=selection.product_family,
            name=name,
            specification=specification,
            quantity=int(quantity),
            unit_price=unit_price,
            line_total=unit_price * quantity if line_total is None else line_total,
            note=note,
            size=selection.size or "",
        )

    def _relabel(self, component: Dict, selection: OptionSelection,
                 dims: Dimensions) -> Optional[Part]:
        """
        Turn a generic template row into a dimension-qualified part.
        Safety seats are a retired part type and are dropped.
        """
        family = selection.product_family
        qty = int(selection.quantity or 1)
        height = selection.height or ""
        w, d = dims
        name = normalize_part_name(component.get("name", ""))
        spec = str(component.get("specification") or "")

        if SAFETY_SEAT in name:
            return None
        if POST in name:
            name, spec = f"{POST}({height})", f"높이 {height}"
        elif LOAD_BEAM in name:
            name, spec = f"{LOAD_BEAM}({w})", str(w)
        elif TIE_BEAM in name:
            name, spec = f"{TIE_BEAM}({d})", str(d)
        elif SHELF in name:
            name, spec = f"{SHELF}({w})", f"사이즈 W{w}xD{d}"
        elif SUPPORT in name:
            tier = "상" if "상" in name else "하"
            name, spec = f"{SUPPORT}({tier})({d})", f"D{d}"
        elif CONNECTOR in name:
            name, spec = f"{CONNECTOR}({w})", f"W{w}"
        elif SAFETY_PIN in name:
            if family in PALLET_FAMILIES:
                name, spec = PALLET_SAFETY_PIN, PALLET_SAFETY_PIN_SPEC
            else:
                name, spec = f"{SAFETY_PIN}({family.value})", family.value
        elif not spec and any(ch.isdigit() for ch in name):
            spec = f"사이즈 {selection.size}"

        component_qty = int(float(component.get("quantity") or 0))
        unit_price = float(component.get("unit_price") or 0)
        template_total = float(component.get("total_price") or 0)
        line_total = template_total * qty if template_total > 0 else unit_price * component_qty * qty

        return self._part(
            selection, name, spec, component_qty * qty,
            unit_price=unit_price, line_total=line_total,
            note=str(component.get("note") or ""),
        )

    # ----------------------------------------------------------------
    # Family strategies
    # ----------------------------------------------------------------
    def _pallet_rack(self, selection: OptionSelection) -> List[Part]:
        family = selection.product_family
        steel_plate = family == ProductFamily.PALLET_RACK_STEEL_PLATE
        qty = int(selection.quantity or 1)
        level = parse_level(selection.level, family)
        dims = parse_dimensions(selection.size)

        template = self.catalog.lookup_template(
            family, selection.size, selection.height, selection.level, selection.form_type
        )
        if template:
            parts = []
            for component in template["components"]:
                name = normalize_part_name(component.get("name", ""))
                if name in TEMPLATE_HARDWARE_NAMES:
                    continue
                if steel_plate and (STEEL_PLATE in name or TIE_BEAM in name):
                    continue
                part = self._relabel(component, selection, dims)
                if part is not None:
                    parts.append(part)
        else:
            logger.debug(f"BOM: No template for {selection.display_name()}, using formulas")
            parts = self._pallet_formula_parts(selection, level, dims)

        if steel_plate and not any(p.name.startswith(f"{SHELF}(") for p in parts):
            parts.append(self._steel_plate_shelf(selection, level))
        if not any(p.name.startswith(SAFETY_PIN) for p in parts):
            parts.append(self._part(
                selection, PALLET_SAFETY_PIN, PALLET_SAFETY_PIN_SPEC, 2 * level * 2 * qty
            ))

        return append_hardware_if_missing(parts, selection)

    def _pallet_formula_parts(self, selection: OptionSelection, level: int,
                              dims: Dimensions) -> List[Part]:
        qty = int(selection.quantity or 1)
        height = selection.height or ""
        post_qty = (2 if selection.is_connected else 4) * qty
        # Fallback beams are catalogued by width floored to hundreds
        beam_dim = str(dims.width // 100 * 100) if dims.width else f"규격 {selection.size}"
        tie_dim = str(dims.depth) if dims.depth else f"규격 {selection.size}"

        parts = [
            self._part(selection, f"{POST}({height})", f"높이 {height}", post_qty),
            self._part(selection, f"{LOAD_BEAM}({beam_dim})", beam_dim, 2 * level * qty),
        ]
        if selection.product_family != ProductFamily.PALLET_RACK_STEEL_PLATE:
            parts.append(self._part(selection, f"{TIE_BEAM}({tie_dim})", tie_dim, 2 * level * qty))
        return parts

    def _steel_plate_shelf(self, selection: OptionSelection, level: int) -> Part:
        qty = int(selection.quantity or 1)
        per_level = steel_plate_shelves_per_level(selection.size)
        size = selection.size or ""
        front = re.search(r"\d+", size)
        name = f"{SHELF}({front.group(0) if front else size.strip()})"
        return self._part(selection, name, f"사이즈 {size}", per_level * level * qty)

    def _high_rack(self, selection: OptionSelection) -> List[Part]:
        qty = int(selection.quantity or 1)
        level = parse_level(selection.level, selection.product_family)
        height = selection.height or ""
        color = (selection.color or "").strip()
        weight = extract_weight(color)
        weight_suffix = f" {weight}" if weight else ""
        color_suffix = f" {color}" if color else ""
        dims = parse_dimensions(selection.size)
        beam_num = dims.depth if dims.depth else ""
        shelf_num = dims.width if dims.width else ""
        post_qty = (2 if selection.is_connected else 4) * qty

        parts = [
            self._part(selection, f"{POST}({height}){color_suffix}",
                       f"높이 {height}{weight_suffix}", post_qty),
            self._part(selection, f"{LOAD_BEAM}({beam_num}){color_suffix}",
                       f"{beam_num}{weight_suffix}", 2 * level * qty),
            self._part(selection, f"{SHELF}({shelf_num}){color_suffix}",
                       f"사이즈 {selection.size}{weight_suffix}",
                       high_rack_shelves_per_level(selection.size) * level * qty),
        ]
        return parts

    def _stainless_rack(self, selection: OptionSelection) -> List[Part]:
        qty = int(selection.quantity or 1)
        level = parse_level(selection.level, selection.product_family)
        height = selection.height or ""
        size = selection.size or ""
        front = size.split("x")[0] or size
        family = selection.product_family.value

        return [
            self._part(selection, f"{POST}({height})", f"높이 {height}", 4 * qty),
            self._part(selection, f"{SHELF}({front})", f"사이즈 {size}", level * qty),
            self._part(selection, f"{SAFETY_PIN}({family})", family, 4 * level * qty),
        ]

    def _shelf_rack(self, selection: OptionSelection) -> List[Part]:
        if (selection.product_family == ProductFamily.LIGHT_DUTY
                and selection.height == LIGHT_RACK_SPECIAL_HEIGHT):
            return self._h750_parts(selection)

        template = self.catalog.lookup_template(
            selection.product_family, selection.size, selection.height,
            selection.level, selection.form_type
        )
        if not template:
            logger.debug(f"BOM: No template for {selection.display_name()}")
            return []

        dims = parse_dimensions(selection.size)
        parts = []
        for component in template["components"]:
            part = self._relabel(component, selection, dims)
            if part is not None:
                parts.append(part)
        return parts

    def _h750_parts(self, selection: OptionSelection) -> List[Part]:
        """H750 has no template and its own support structure"""
        qty = int(selection.quantity or 1)
        height = LIGHT_RACK_SPECIAL_HEIGHT
        level = parse_level(selection.level, selection.product_family)
        w, d = parse_dimensions(selection.size)
        w = w if w else ""
        d = d if d else ""
        family = selection.product_family.value
        corner_qty = (2 if selection.is_connected else 4) * qty

        return [
            self._part(selection, f"{POST}({height})", f"높이 {height}", corner_qty),
            self._part(selection, f"{SUPPORT}(상)({d})", f"D{d}", corner_qty),
            self._part(selection, f"{SUPPORT}(하)({d})", f"D{d}", corner_qty),
            self._part(selection, f"{CONNECTOR}({w})", f"W{w}", level * qty),
            self._part(selection, f"{SHELF}({w})", f"사이즈 W{w}xD{d}", level * qty),
            self._part(selection, f"{SAFETY_SEAT}({family})", family, level * qty),
            self._part(selection, f"{SAFETY_PIN}({family})", family, level * qty),
        ]
