"""
Registry of quoted rack configurations and the parts they use
Lets a price edit show which configurations it affects
"""
import logging
import threading
from typing import Any, Dict, List
from models.bom_models import OptionSelection, Part, family_label, now_iso
from database.local_store import LocalStore, RACK_OPTIONS_KEY
from services.identity import price_id, rack_config_id

logger = logging.getLogger(__name__)


class RackOptionRegistry:
    """Configuration id -> display name and component price identifiers"""

    def __init__(self, local_store: LocalStore):
        self.local = local_store
        self._lock = threading.RLock()
        raw = self.local.get_json(RACK_OPTIONS_KEY, {})
        if not isinstance(raw, dict):
            logger.warning("REGISTRY: Stored registry is not an object, starting empty")
            raw = {}
        self._options: Dict[str, Dict[str, Any]] = raw

    def register(self, selection: OptionSelection, bom: List[Part]) -> str:
        """Record the components of a complete selection; re-registering replaces"""
        config_id = rack_config_id(
            selection.product_family, selection.size, selection.height,
            selection.level, selection.form_type, selection.color
        )
        option = {
            "id": config_id,
            "display_name": selection.display_name(),
            "product_family": family_label(selection.product_family),
            "components": [
                {
                    "part_id": price_id(part),
                    "name": part.name,
                    "specification": part.specification,
                    "quantity": part.quantity
                }
                for part in bom if not part.is_custom
            ],
            "updated_at": now_iso()
        }
        with self._lock:
            self._options[config_id] = option
            self.local.set_json(RACK_OPTIONS_KEY, self._options)
        logger.debug(f"REGISTRY: {config_id} uses {len(option['components'])} parts")
        return config_id

    def get(self, config_id: str):
        with self._lock:
            return self._options.get(config_id)

    def components(self, config_id: str) -> List[Dict[str, Any]]:
        option = self.get(config_id)
        return list(option.get("components", [])) if option else []

    def options_using_part(self, part_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                option for option in self._options.values()
                if any(c.get("part_id") == part_id for c in option.get("components", []))
            ]

    def all(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._options.values())
