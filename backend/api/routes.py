from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from typing import List, Optional
import logging
from models.bom_models import CustomMaterial, OptionSelection, Part, ProductFamily
from services.quote_service import CartItemNotFound, QuoteService

logger = logging.getLogger(__name__)


class CustomMaterialIn(BaseModel):
    name: str
    price: float = Field(0, ge=0)


class SelectionIn(BaseModel):
    product_family: str
    size: str = ""
    height: str = ""
    level: str = ""
    form_type: str = ""
    color: str = ""
    quantity: int = Field(1, ge=0)
    apply_rate_percent: float = Field(100, ge=0)
    extra_option_ids: List[str] = []
    custom_materials: List[CustomMaterialIn] = []
    manual_price: float = Field(0, ge=0)

    def to_selection(self) -> OptionSelection:
        return OptionSelection(
            product_family=self.product_family,
            size=self.size,
            height=self.height,
            level=self.level,
            form_type=self.form_type,
            color=self.color,
            quantity=self.quantity,
            apply_rate_percent=self.apply_rate_percent,
            extra_option_ids=list(self.extra_option_ids),
            custom_materials=[CustomMaterial(name=m.name, price=m.price) for m in self.custom_materials],
            manual_price=self.manual_price
        )


class PartRefIn(BaseModel):
    """Either a ready identifier or the part fields it is derived from"""
    part_id: Optional[str] = None
    product_family: Optional[str] = None
    name: Optional[str] = None
    specification: str = ""
    actor: str = "admin"

    def to_ref(self):
        if self.part_id:
            return self.part_id
        if not self.product_family or not self.name:
            raise HTTPException(status_code=422, detail="part_id or product_family and name required")
        family = ProductFamily.parse(self.product_family) or self.product_family
        return Part(product_family=family, name=self.name, specification=self.specification)


class PriceUpdateIn(PartRefIn):
    price: float


class InventoryUpdateIn(PartRefIn):
    quantity: int


class ExtraOptionPriceIn(BaseModel):
    price: float


class CartItemUpdateIn(BaseModel):
    quantity: Optional[int] = Field(None, gt=0)
    manual_price: Optional[float] = Field(None, ge=0)


def create_app(service: Optional[QuoteService] = None) -> FastAPI:
    quotes = service or QuoteService.from_config()

    app = FastAPI(
        title="Rack Quote API",
        description="Rack BOM synthesis, pricing and admin override sync",
        version="1.0.0"
    )

    # CORS for the quoting frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    def root():
        return {"status": "running", "service": "Rack Quote", "sync": quotes.sync.status()}

    @app.post("/api/quote")
    def quote(body: SelectionIn):
        """BOM and price for one option selection"""
        try:
            return quotes.quote(body.to_selection())
        except Exception as e:
            logger.error(f"API: Quote failed - {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @app.get("/api/extra-options")
    def extra_options(family: str):
        try:
            options = quotes.extra_options(family)
            return {"options": options, "count": len(options)}
        except Exception as e:
            logger.error(f"API: Get extra options failed - {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @app.put("/api/extra-options/{option_id}")
    def set_extra_option_price(option_id: str, body: ExtraOptionPriceIn):
        try:
            quotes.set_extra_option_price(option_id, body.price)
            return {"id": option_id, "price": max(0.0, body.price)}
        except Exception as e:
            logger.error(f"API: Save extra option price failed - {e}")
            raise HTTPException(status_code=500, detail=str(e))

    # ------------------------------------------------------------
    # Admin prices and inventory
    # ------------------------------------------------------------
    @app.get("/api/prices")
    def get_prices():
        try:
            prices = quotes.load_admin_prices()
            return {"prices": prices, "count": len(prices)}
        except Exception as e:
            logger.error(f"API: Get prices failed - {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @app.put("/api/prices")
    def save_price(body: PriceUpdateIn):
        """Save an admin price override; 0 clears it"""
        ref = body.to_ref()
        try:
            record = quotes.save_admin_price(ref, body.price, actor=body.actor)
            part_id = record.part_id if record else (ref if isinstance(ref, str) else None)
            return {"part_id": part_id, "override": record.to_dict() if record else None}
        except Exception as e:
            logger.error(f"API: Save price failed - {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @app.get("/api/prices/history")
    def get_price_history(part_id: Optional[str] = None):
        try:
            history = quotes.price_history(part_id)
            return {"history": history, "count": len(history)}
        except Exception as e:
            logger.error(f"API: Get price history failed - {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @app.get("/api/activity")
    def get_activity(limit: int = 100):
        try:
            return {"activity": quotes.activity_log(limit)}
        except Exception as e:
            logger.error(f"API: Get activity failed - {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @app.get("/api/materials")
    def get_materials(family: Optional[str] = None, search: str = ""):
        try:
            materials = quotes.material_prices(family, search)
            return {"materials": materials, "count": len(materials)}
        except Exception as e:
            logger.error(f"API: Get materials failed - {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @app.get("/api/prices/{part_id}/usages")
    def get_part_usages(part_id: str):
        try:
            options = quotes.rack_options_using_part(part_id)
            return {"part_id": part_id, "options": options, "count": len(options)}
        except Exception as e:
            logger.error(f"API: Get part usages failed - {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @app.get("/api/rack-options/{config_id}")
    def get_rack_option(config_id: str):
        option = quotes.rack_option(config_id)
        if option is None:
            raise HTTPException(status_code=404, detail=f"Rack option {config_id} not found")
        return option

    @app.get("/api/inventory")
    def get_inventory():
        try:
            inventory = quotes.load_inventory()
            return {"inventory": inventory, "count": len(inventory)}
        except Exception as e:
            logger.error(f"API: Get inventory failed - {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @app.put("/api/inventory")
    def set_inventory(body: InventoryUpdateIn):
        ref = body.to_ref()
        try:
            record = quotes.set_inventory(ref, body.quantity, actor=body.actor)
            return {"part_id": record.part_id, **record.to_dict()}
        except Exception as e:
            logger.error(f"API: Save inventory failed - {e}")
            raise HTTPException(status_code=500, detail=str(e))

    # ------------------------------------------------------------
    # Cart
    # ------------------------------------------------------------
    @app.post("/api/cart")
    def add_to_cart(body: SelectionIn):
        try:
            item = quotes.add_to_cart(body.to_selection())
        except Exception as e:
            logger.error(f"API: Add to cart failed - {e}")
            raise HTTPException(status_code=500, detail=str(e))
        if item is None:
            raise HTTPException(status_code=422, detail="Selection is incomplete")
        return item.to_dict()

    @app.get("/api/cart")
    def get_cart():
        try:
            return quotes.cart_view()
        except Exception as e:
            logger.error(f"API: Get cart failed - {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @app.patch("/api/cart/{item_id}")
    def update_cart_item(item_id: str, body: CartItemUpdateIn):
        try:
            item = None
            if body.quantity is not None:
                item = quotes.update_cart_item_quantity(item_id, body.quantity)
            if body.manual_price is not None:
                item = quotes.update_cart_item_price(item_id, body.manual_price)
            if item is None:
                raise HTTPException(status_code=422, detail="Nothing to update")
            return item.to_dict()
        except CartItemNotFound:
            raise HTTPException(status_code=404, detail=f"Cart item {item_id} not found")
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"API: Update cart item failed - {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @app.delete("/api/cart/{item_id}")
    def remove_cart_item(item_id: str):
        try:
            item = quotes.remove_from_cart(item_id)
            return {"status": "removed", "id": item.id}
        except CartItemNotFound:
            raise HTTPException(status_code=404, detail=f"Cart item {item_id} not found")
        except Exception as e:
            logger.error(f"API: Remove cart item failed - {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @app.get("/api/shortages")
    def get_shortages():
        """Stock shortfalls for the merged cart BOM"""
        try:
            lines = quotes.shortages()
            return {"shortages": [line.to_dict() for line in lines], "count": len(lines)}
        except Exception as e:
            logger.error(f"API: Get shortages failed - {e}")
            raise HTTPException(status_code=500, detail=str(e))

    # ------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------
    @app.post("/api/sync")
    def trigger_sync():
        """Load-merge the shared document and push local overrides now"""
        try:
            logger.info("API: Sync requested")
            result = quotes.sync.force_sync()
            return result.to_dict()
        except Exception as e:
            logger.error(f"API: Sync failed - {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @app.get("/api/sync/status")
    def get_sync_status():
        return quotes.sync.status()

    @app.on_event("startup")
    def startup():
        """Start the background override mirror"""
        quotes.start()
        logger.info("API server started")

    @app.on_event("shutdown")
    def shutdown():
        """Flush pending writes and close local storage"""
        quotes.stop()
        logger.info("API server stopped")

    app.state.quotes = quotes
    return app
