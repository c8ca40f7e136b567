# test_api.py
import pytest
from fastapi.testclient import TestClient

from bakeledger.main import create_app
from bakeledger.services import rates
from bakeledger.util.security import create_token


def jprint(step, r):
    # helpful failure text if something breaks
    assert 200 <= r.status_code < 300, f"{step} -> {r.status_code}: {r.text}"
    return r.json()

@pytest.fixture
def client(db_urls, rate_transport):
    app = create_app(*db_urls, transport=rate_transport)
    with TestClient(app) as c:
        yield c

@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {create_token('u-api', name='Api Baker')}"}


def test_healthz_and_request_id(client):
    r = client.get("/healthz", headers={"X-Request-ID": "abc"})
    assert r.json() == {"ok": True}
    assert r.headers["X-Request-ID"] == "abc"


def test_invalid_token_is_rejected(client):
    r = client.get("/transactions/", headers={"Authorization": "Bearer nope"})
    assert r.status_code == 401


def test_full_flow_signed_in(client, auth_headers, rate_history):
    rate_history[rates.today()] = 36.5

    acq = jprint("POST /rates/acquire/today", client.post("/rates/acquire/today", headers=auth_headers))
    assert acq == {"rate": 36.5, "dateFound": rates.today(), "error": None}
    cur = jprint("GET /rates/current", client.get("/rates/current", headers=auth_headers))
    assert cur["current"]["rate"] == 36.5

    tx = jprint("POST /transactions/", client.post("/transactions/", headers=auth_headers, json={
        "type": "income", "date": rates.today(), "description": "Cakes", "amountBs": 1000,
    }))
    assert tx["amountUsd"] == 27.40

    flour = jprint("POST /inventory/ingredients", client.post("/inventory/ingredients", headers=auth_headers, json={
        "name": "Flour", "unit": "kg", "cost": 10, "presentationSize": 1, "initialStock": 4,
    }))
    recipe = jprint("POST /inventory/recipes", client.post("/inventory/recipes", headers=auth_headers, json={
        "name": "Bread", "ingredients": [{"ingredientId": flour["id"], "quantity": 2}], "itemsPerBatch": 10,
    }))
    pricing = jprint("GET pricing", client.get(f"/inventory/recipes/{recipe['id']}/pricing", headers=auth_headers))
    assert pricing["lines"][0]["name"] == "Flour"

    r = client.post("/production/", headers=auth_headers, json={"recipeId": recipe["id"], "batchSize": 3})
    assert r.status_code == 409
    assert "Insufficient stock" in r.json()["detail"]

    rec = jprint("POST /production/", client.post("/production/", headers=auth_headers, json={"recipeId": recipe["id"], "batchSize": 2}))
    jprint("POST /production/{id}/sold", client.post(f"/production/{rec['id']}/sold", headers=auth_headers, json={"sold": True}))
    status = jprint("GET stock_status", client.get("/inventory/stock_status", headers=auth_headers))
    assert status[0]["currentStock"] == 0 and status[0]["level"] == "low"

    st = jprint("POST /sync/drain", client.post("/sync/drain", headers=auth_headers))
    assert st["remote"] is True and st["syncError"] is None and st["pending"] == 0

    history = jprint("GET /history/", client.get("/history/", headers=auth_headers, params={"limit": 0}))
    kinds = {e["eventType"] for e in history}
    assert {"EXCHANGE_RATE_CREATED", "TRANSACTION_CREATED", "RECIPE_CREATED", "PRODUCTION_RECORD_CREATED",
            "STOCK_ADJUST_BY_PRODUCTION_ADD", "PRODUCTION_RECORD_EDITED"} <= kinds
    assert all(e["userName"] == "Api Baker" for e in history)


def test_local_scope_is_separate(client, auth_headers):
    jprint("PUT /rates/2024-01-01", client.put("/rates/2024-01-01", json={"rate": 35}))
    assert client.get("/rates/", headers=auth_headers).json() == []
    local = client.get("/rates/resolve", params={"day": "2024-01-05"}).json()
    assert local["rate"] == 35.0 and local["date"] == "2024-01-01"
    exact = client.get("/rates/resolve", params={"day": "2024-01-05", "exact": True}).json()
    assert exact["rate"] is None


def test_errors_map_to_status_codes(client):
    assert client.put("/transactions/missing", json={"amountBs": 5}).status_code == 404
    r = client.post("/transactions/", json={"type": "income", "date": "2024-01-05", "description": "x", "amountBs": 5})
    assert r.status_code == 400
    assert r.json()["detail"] == "No exchange rate on file for 2024-01-05."
    assert client.put("/rates/2024-01-01", json={"rate": -1}).status_code == 400


def test_summary_and_delete(client):
    client.put("/rates/2024-01-01", json={"rate": 40})
    a = jprint("add", client.post("/transactions/", json={"type": "income", "date": "2024-01-02", "description": "a", "amountBs": 400}))
    jprint("add", client.post("/transactions/", json={"type": "expense", "date": "2024-01-03", "description": "b", "amountBs": 100}))
    s = jprint("summary", client.get("/transactions/summary"))
    assert s["netBalanceUsd"] == 7.5 and s["count"] == 2
    jprint("delete", client.delete(f"/transactions/{a['id']}"))
    assert client.get(f"/transactions/{a['id']}").status_code == 404
    assert jprint("list", client.get("/transactions/", params={"type": "income"})) == []
