"""Material grouping order for BOM display"""
from typing import List
from models.bom_models import Part, ProductFamily, family_label

FAMILY_ORDER = [f.value for f in ProductFamily]

# Structural members first, then shelving, then small hardware
CATEGORY_ORDER = [
    "기둥",
    "로드빔",
    "타이빔",
    "선반",
    "받침(상)",
    "받침(하)",
    "연결대",
    "안전좌",
    "안전핀",
    "수평브레싱",
    "경사브레싱",
    "앙카볼트",
    "브레싱볼트",
    "브러싱고무",
]


def _family_rank(part: Part) -> int:
    label = family_label(part.product_family)
    return FAMILY_ORDER.index(label) if label in FAMILY_ORDER else len(FAMILY_ORDER)


def _category_rank(part: Part) -> int:
    if part.is_custom:
        return len(CATEGORY_ORDER) + 1
    name = part.name or ""
    for rank, prefix in enumerate(CATEGORY_ORDER):
        if name.startswith(prefix):
            return rank
    return len(CATEGORY_ORDER)


def sort_bom_by_material_rule(parts: List[Part]) -> List[Part]:
    return sorted(parts, key=lambda p: (_family_rank(p), _category_rank(p), p.name or ""))
