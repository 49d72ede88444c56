"""
Data models for rack quoting, price overrides and sync
Simple dataclasses for clean data handling
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
import uuid


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_entry_id() -> str:
    return uuid.uuid4().hex


class ProductFamily(str, Enum):
    """Supported rack product families, valued by their catalog label"""
    LIGHT_DUTY = "경량랙"
    HEAVY_DUTY = "중량랙"
    PALLET_RACK = "파렛트랙"
    PALLET_RACK_STEEL_PLATE = "파렛트랙 철판형"
    HIGH_RACK = "하이랙"
    STAINLESS_RACK = "스텐랙"

    @classmethod
    def parse(cls, value) -> Optional["ProductFamily"]:
        if isinstance(value, cls):
            return value
        if value is None:
            return None
        text = str(value).strip()
        for member in cls:
            if text == member.value or text == member.name:
                return member
        return None


def family_label(family) -> str:
    """Catalog label for a family given as enum or plain string"""
    if isinstance(family, ProductFamily):
        return family.value
    return str(family or "")


class FormType(str, Enum):
    INDEPENDENT = "독립형"
    CONNECTED = "연결형"


PALLET_FAMILIES = (ProductFamily.PALLET_RACK, ProductFamily.PALLET_RACK_STEEL_PLATE)

REQUIRED_OPTIONS: Dict[ProductFamily, tuple] = {
    ProductFamily.LIGHT_DUTY: ("size", "height", "level", "form_type"),
    ProductFamily.HEAVY_DUTY: ("size", "height", "level", "form_type"),
    ProductFamily.PALLET_RACK: ("size", "height", "level", "form_type"),
    ProductFamily.PALLET_RACK_STEEL_PLATE: ("size", "height", "level", "form_type"),
    ProductFamily.HIGH_RACK: ("color", "size", "height", "level", "form_type"),
    ProductFamily.STAINLESS_RACK: ("size", "height", "level"),
}


@dataclass
class Part:
    """A single line of a flat rack BOM"""
    product_family: Any
    name: str
    specification: str = ""
    quantity: int = 0
    unit_price: float = 0.0
    line_total: float = 0.0
    note: str = ""
    size: str = ""
    is_custom: bool = False

    def to_dict(self):
        return {
            "product_family": family_label(self.product_family),
            "name": self.name,
            "specification": self.specification,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "line_total": self.line_total,
            "note": self.note,
            "size": self.size,
            "is_custom": self.is_custom
        }


@dataclass
class CustomMaterial:
    """Admin-entered flat-priced line item (light-duty racks only)"""
    name: str
    price: float
    id: str = field(default_factory=lambda: f"cm-{new_entry_id()[:12]}")


@dataclass
class OptionSelection:
    """In-progress configuration of one rack line"""
    product_family: Optional[ProductFamily] = None
    size: str = ""
    height: str = ""
    level: str = ""
    form_type: str = ""
    color: str = ""
    quantity: int = 0
    apply_rate_percent: float = 100.0
    extra_option_ids: List[str] = field(default_factory=list)
    custom_materials: List[CustomMaterial] = field(default_factory=list)
    manual_price: float = 0.0

    def __post_init__(self):
        parsed = ProductFamily.parse(self.product_family)
        if parsed is not None:
            self.product_family = parsed

    @property
    def is_connected(self) -> bool:
        return self.form_type == FormType.CONNECTED.value

    def is_complete(self) -> bool:
        """Required options for the family are set and quantity is positive"""
        if not isinstance(self.product_family, ProductFamily):
            return False
        if (self.quantity or 0) <= 0:
            return False
        required = REQUIRED_OPTIONS.get(self.product_family, ())
        return all(str(getattr(self, name) or "").strip() for name in required)

    def display_name(self) -> str:
        parts = [
            family_label(self.product_family),
            self.form_type,
            self.size,
            self.height,
            self.level,
            self.color,
        ]
        return " ".join(p for p in parts if p)

    def to_dict(self):
        return {
            "product_family": family_label(self.product_family),
            "size": self.size,
            "height": self.height,
            "level": self.level,
            "form_type": self.form_type,
            "color": self.color,
            "quantity": self.quantity,
            "apply_rate_percent": self.apply_rate_percent,
            "extra_option_ids": list(self.extra_option_ids),
            "custom_materials": [
                {"id": m.id, "name": m.name, "price": m.price}
                for m in self.custom_materials
            ],
            "manual_price": self.manual_price
        }


@dataclass
class CartItem:
    """Snapshot of a configured selection added to the cart"""
    id: str
    selection: OptionSelection
    bom: List[Part]
    price: float
    display_name: str
    created_at: str = field(default_factory=now_iso)

    def to_dict(self):
        return {
            "id": self.id,
            "selection": self.selection.to_dict(),
            "bom": [p.to_dict() for p in self.bom],
            "price": self.price,
            "display_name": self.display_name,
            "created_at": self.created_at
        }


@dataclass
class PriceOverrideRecord:
    """Admin price override for a price identifier; price <= 0 means absent"""
    part_id: str
    price: float
    updated_at: str = field(default_factory=now_iso)
    actor: str = "admin"
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self):
        return {
            "price": self.price,
            "updatedAt": self.updated_at,
            "actor": self.actor,
            "context": self.context
        }

    @classmethod
    def from_dict(cls, part_id: str, data) -> "PriceOverrideRecord":
        # Older documents used timestamp/account/partInfo
        if not isinstance(data, dict):
            return cls(part_id=part_id, price=_as_float(data), updated_at="")
        return cls(
            part_id=part_id,
            price=_as_float(data.get("price")),
            updated_at=str(data.get("updatedAt") or data.get("timestamp") or ""),
            actor=str(data.get("actor") or data.get("account") or "admin"),
            context=dict(data.get("context") or data.get("partInfo") or {})
        )


@dataclass
class InventoryRecord:
    """Stock count for a stock identifier"""
    part_id: str
    quantity: int = 0
    updated_at: str = field(default_factory=now_iso)

    def to_dict(self):
        return {"quantity": self.quantity, "updatedAt": self.updated_at}

    @classmethod
    def from_dict(cls, part_id: str, data) -> "InventoryRecord":
        # Bare integers predate timestamps and lose every merge tie
        if not isinstance(data, dict):
            return cls(part_id=part_id, quantity=max(0, int(_as_float(data))), updated_at="")
        return cls(
            part_id=part_id,
            quantity=max(0, int(_as_float(data.get("quantity")))),
            updated_at=str(data.get("updatedAt") or data.get("timestamp") or "")
        )


@dataclass(frozen=True)
class PriceHistoryEntry:
    """Immutable record of one admin price change"""
    part_id: str
    from_price: float
    to_price: float
    actor: str = "admin"
    timestamp: str = field(default_factory=now_iso)
    reason_tag: str = "updated"
    part_name: str = ""
    id: str = field(default_factory=new_entry_id)

    def to_dict(self):
        return {
            "id": self.id,
            "partId": self.part_id,
            "fromPrice": self.from_price,
            "toPrice": self.to_price,
            "actor": self.actor,
            "timestamp": self.timestamp,
            "reasonTag": self.reason_tag,
            "partName": self.part_name
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PriceHistoryEntry":
        return cls(
            part_id=str(data.get("partId", "")),
            from_price=_as_float(data.get("fromPrice", data.get("oldPrice"))),
            to_price=_as_float(data.get("toPrice", data.get("newPrice"))),
            actor=str(data.get("actor") or data.get("username") or "admin"),
            timestamp=str(data.get("timestamp", "")),
            reason_tag=str(data.get("reasonTag") or data.get("action") or "updated"),
            part_name=str(data.get("partName", "")),
            id=str(data.get("id") or new_entry_id())
        )


@dataclass(frozen=True)
class ActivityEntry:
    """One line of the admin activity log"""
    action: str
    actor: str = "admin"
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=now_iso)
    id: str = field(default_factory=new_entry_id)

    def to_dict(self):
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "action": self.action,
            "actor": self.actor,
            "details": dict(self.details)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActivityEntry":
        return cls(
            action=str(data.get("action", "")),
            actor=str(data.get("actor") or data.get("userIP") or "admin"),
            details=dict(data.get("details") or {}),
            timestamp=str(data.get("timestamp", "")),
            id=str(data.get("id") or new_entry_id())
        )


@dataclass
class ExtraOption:
    """User-toggled add-on from the extra-options catalog"""
    id: str
    name: str
    price: float = 0.0
    specification: str = ""
    quantity: int = 1
    note: str = ""
    category: str = ""
    bom: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "specification": self.specification,
            "quantity": self.quantity,
            "note": self.note,
            "category": self.category,
            "bom": list(self.bom)
        }


@dataclass
class Material:
    """Row of the material master list"""
    part_id: str
    product_family: str
    name: str
    specification: str = ""
    unit_price: float = 0.0
    display_name: str = ""
    source: str = "csv"
    note: str = ""
    category: str = ""


@dataclass
class ShortageLine:
    """Required vs. available stock for one BOM line"""
    part: Part
    stock_id: str
    required: int
    available: int

    @property
    def shortage(self) -> int:
        return max(0, self.required - self.available)

    def to_dict(self):
        return {
            "name": self.part.name,
            "specification": self.part.specification,
            "stock_id": self.stock_id,
            "required": self.required,
            "available": self.available,
            "shortage": self.shortage
        }


class SyncState(str, Enum):
    ABSENT = "absent"
    LOCAL_ONLY = "local-only"
    SYNCED = "synced"
    REMOTE_NEWER = "remote-newer"


@dataclass
class SyncResult:
    """Result of a synchronization operation"""
    direction: str
    pushed: int = 0
    merged: int = 0
    errors: int = 0
    error_messages: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    timestamp: str = field(default_factory=now_iso)
    status: str = "pending"
    retry_after: Optional[float] = None

    def to_dict(self):
        return {
            "direction": self.direction,
            "pushed": self.pushed,
            "merged": self.merged,
            "errors": self.errors,
            "error_messages": self.error_messages,
            "duration_seconds": round(self.duration_seconds, 3),
            "timestamp": self.timestamp,
            "status": self.status,
            "retry_after": self.retry_after
        }


def _as_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0
