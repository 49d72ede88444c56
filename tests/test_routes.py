import pytest
from fastapi.testclient import TestClient

from api.routes import create_app
from services.quote_service import QuoteService

PALLET = {
    "product_family": "파렛트랙",
    "size": "2080x1000",
    "height": "H1500",
    "level": "4단",
    "form_type": "독립형",
    "quantity": 1,
}


@pytest.fixture
def quotes(catalog, local_store, remote, settings, clock, sleeps):
    return QuoteService(catalog=catalog, local_store=local_store, remote=remote,
                        settings=settings, clock=clock, sleep=sleeps.append)


@pytest.fixture
def client(quotes):
    with TestClient(create_app(quotes)) as test_client:
        yield test_client


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "running"
    assert response.json()["sync"]["remote_configured"]


def test_quote(client):
    response = client.post("/api/quote", json=PALLET)

    assert response.status_code == 200
    body = response.json()
    assert body["complete"]
    assert body["price"] > 0
    assert {line["name"] for line in body["bom"]} >= {"기둥(H1500)", "브러싱고무"}


def test_quote_validation(client):
    assert client.post("/api/quote", json={"size": "2080x1000"}).status_code == 422
    assert client.post("/api/quote", json={**PALLET, "quantity": -1}).status_code == 422


def test_price_override_flow(client):
    part = {"product_family": "파렛트랙", "name": "기둥(H1500)", "specification": "높이 H1500"}
    before = client.post("/api/quote", json=PALLET).json()["price"]

    saved = client.put("/api/prices", json={**part, "price": 50000, "actor": "kim"})
    assert saved.status_code == 200
    part_id = saved.json()["part_id"]
    assert saved.json()["override"]["price"] == 50000

    assert client.get("/api/prices").json()["prices"][part_id]["actor"] == "kim"
    assert client.post("/api/quote", json=PALLET).json()["price"] == before + 8000 * 4

    cleared = client.put("/api/prices", json={"part_id": part_id, "price": 0})
    assert cleared.json()["override"] is None
    history = client.get("/api/prices/history", params={"part_id": part_id}).json()
    assert history["count"] == 2


def test_price_update_requires_part(client):
    assert client.put("/api/prices", json={"price": 100}).status_code == 422


def test_inventory(client):
    response = client.put("/api/inventory", json={"part_id": "파렛트랙-기둥h1500-높이h1500", "quantity": 3})
    assert response.status_code == 200
    assert response.json()["quantity"] == 3
    assert client.get("/api/inventory").json()["inventory"] == {"파렛트랙-기둥h1500-높이h1500": 3}

    shortages = client.get("/api/shortages").json()
    assert shortages["count"] == 0


def test_cart_endpoints(client):
    created = client.post("/api/cart", json=PALLET)
    assert created.status_code == 200
    item_id = created.json()["id"]

    updated = client.patch(f"/api/cart/{item_id}", json={"quantity": 2})
    assert updated.status_code == 200
    assert updated.json()["selection"]["quantity"] == 2

    cart = client.get("/api/cart").json()
    assert cart["count"] == 1
    assert cart["total"] == updated.json()["price"]

    assert client.patch(f"/api/cart/{item_id}", json={}).status_code == 422
    assert client.patch("/api/cart/missing", json={"quantity": 1}).status_code == 404
    assert client.delete(f"/api/cart/{item_id}").json()["status"] == "removed"
    assert client.delete(f"/api/cart/{item_id}").status_code == 404


def test_incomplete_selection_not_added_to_cart(client):
    assert client.post("/api/cart", json={**PALLET, "height": ""}).status_code == 422


def test_extra_options(client):
    assert client.put("/api/extra-options/l1-2", json={"price": 15000}).status_code == 200
    options = client.get("/api/extra-options", params={"family": "경량랙"}).json()["options"]
    assert options[0]["effective_price"] == 15000


def test_sync_endpoints(client, remote):
    client.put("/api/prices", json={"part_id": "a", "price": 1000})

    result = client.post("/api/sync").json()
    status = client.get("/api/sync/status").json()

    assert result["status"] == "completed"
    assert remote.files["admin_prices.json"]["a"]["price"] == 1000
    assert status["last_result"]["direction"] == "push"
    assert not status["pending_push"]


def test_materials_and_part_usages(client):
    quoted = client.post("/api/quote", json=PALLET).json()
    posts = next(line for line in quoted["bom"] if line["name"] == "기둥(H1500)")

    materials = client.get("/api/materials", params={"search": "기둥"}).json()
    usages = client.get(f"/api/prices/{posts['price_id']}/usages").json()

    assert materials["count"] == 1
    assert materials["materials"][0]["effective_price"] == 42000
    assert usages["count"] == 1
    assert usages["options"][0]["id"] == quoted["config_id"]


def test_rack_option_lookup(client):
    config_id = client.post("/api/quote", json=PALLET).json()["config_id"]

    found = client.get(f"/api/rack-options/{config_id}")

    assert found.status_code == 200
    assert found.json()["product_family"] == "파렛트랙"
    assert client.get("/api/rack-options/missing").status_code == 404
