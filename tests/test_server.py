"""Tests for the HTTP API."""

import pytest
from fastapi.testclient import TestClient

from stock_ledger.middleware.identity import sign_identity
from stock_ledger.server import app, get_store


def signed_headers(caller_id, caller_name, secret="test_secret"):
    return {
        "X-Caller-Id": caller_id,
        "X-Caller-Name": caller_name,
        "X-Caller-Signature": sign_identity(caller_id, caller_name, secret),
    }


@pytest.fixture
def client(store):
    """Test client bound to the per-test store; lifespan (and the scheduler) is not started."""
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def headers():
    return signed_headers("user-1", "Ana Souza")


@pytest.fixture
def p1(client, headers):
    response = client.post("/products", headers=headers, json={
        "name": "P1", "category": "Bebidas", "quantity": 10, "price": "20.00", "cost": "12.00"
    })
    assert response.status_code == 201
    return response.json()


class TestServiceEndpoints:

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["service"] == "Stock Ledger API"

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestIdentity:

    def test_missing_identity(self, client):
        response = client.get("/products")

        assert response.status_code == 401
        assert response.json()["error"] == "Unauthorized"

    def test_bad_signature(self, client):
        headers = signed_headers("user-1", "Ana Souza", secret="wrong")

        response = client.get("/products", headers=headers)

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid caller signature"


class TestProductsAPI:

    def test_create_and_get(self, client, headers, p1):
        response = client.get(f"/products/{p1['id']}", headers=headers)

        assert response.status_code == 200
        assert response.json()["price"] == "20.00"
        assert response.json()["owner_id"] == "user-1"

    def test_create_invalid(self, client, headers):
        response = client.post("/products", headers=headers, json={
            "name": " ", "category": "Bebidas", "price": "1.00"
        })

        assert response.status_code == 422
        assert response.json()["error"] == "InvalidProduct"

    def test_create_sub_cent_price(self, client, headers):
        response = client.post("/products", headers=headers, json={
            "name": "Cafe", "category": "Mercearia", "price": "19.999"
        })

        assert response.status_code == 422
        assert response.json()["error"] == "InvalidProduct"
        assert "more than 2 decimal places" in response.json()["message"]
        assert client.get("/products", headers=headers).json()["count"] == 0

    def test_create_huge_quantity(self, client, headers):
        response = client.post("/products", headers=headers, json={
            "name": "Cafe", "category": "Mercearia", "price": "1.00", "quantity": 10**20
        })

        assert response.status_code == 422
        assert response.json()["error"] == "InvalidProduct"

    def test_list_and_categories(self, client, headers, p1):
        products = client.get("/products", headers=headers, params={"category": "Bebidas"}).json()
        categories = client.get("/products/categories", headers=headers).json()

        assert products["count"] == 1
        assert categories == {"categories": ["Bebidas"]}

    def test_other_owner_gets_404(self, client, p1):
        response = client.get(f"/products/{p1['id']}", headers=signed_headers("user-2", "Bruno"))

        assert response.status_code == 404
        assert response.json()["error"] == "ProductNotFound"

    def test_patch(self, client, headers, p1):
        response = client.patch(f"/products/{p1['id']}", headers=headers, json={"price": "21.50"})

        assert response.status_code == 200
        assert response.json()["price"] == "21.50"
        assert response.json()["quantity"] == 10

    def test_delete_keeps_movements(self, client, headers, p1):
        client.post("/movements", headers=headers, json={"product_id": p1["id"], "type": "exit", "quantity": 1})

        response = client.delete(f"/products/{p1['id']}", headers=headers)

        assert response.status_code == 204
        assert client.get(f"/products/{p1['id']}", headers=headers).status_code == 404
        assert client.get("/movements", headers=headers).json()["count"] == 1


class TestMovementsAPI:

    def test_record_scenario(self, client, headers, p1):
        entry = client.post("/movements", headers=headers, json={
            "product_id": p1["id"], "type": "entry", "quantity": 5, "supplier": {"name": "Acme"}
        })
        exit_ = client.post("/movements", headers=headers, json={
            "product_id": p1["id"], "type": "exit", "quantity": 12, "customer": {"name": "Jane"}
        })
        rejected = client.post("/movements", headers=headers, json={
            "product_id": p1["id"], "type": "exit", "quantity": 4
        })

        assert entry.status_code == 201
        assert entry.json()["user_name"] == "Ana Souza"
        assert exit_.status_code == 201
        assert rejected.status_code == 409
        assert rejected.json()["error"] == "InsufficientStock"
        assert rejected.json()["details"]["available"] == 3

        valuation = client.get("/valuation", headers=headers).json()
        assert valuation["stock_value"] == "60.00"
        assert valuation["estimated_profit"] == "24.00"
        assert valuation["exit_quantity"] == 12

        listed = client.get("/movements", headers=headers).json()
        assert listed["count"] == 2
        assert [m["type"] for m in listed["movements"]] == ["exit", "entry"]

    @pytest.mark.parametrize("quantity", [0, -3, 2.5, "3"])
    def test_invalid_quantity(self, client, headers, p1, quantity):
        response = client.post("/movements", headers=headers, json={
            "product_id": p1["id"], "type": "entry", "quantity": quantity
        })

        assert response.status_code == 422
        assert response.json()["error"] == "InvalidQuantity"

    def test_invalid_type(self, client, headers, p1):
        response = client.post("/movements", headers=headers, json={
            "product_id": p1["id"], "type": "transfer", "quantity": 1
        })

        assert response.status_code == 422
        assert response.json()["error"] == "InvalidMovementType"

    def test_unknown_product(self, client, headers):
        response = client.post("/movements", headers=headers, json={
            "product_id": "missing", "type": "entry", "quantity": 1
        })

        assert response.status_code == 404

    def test_filter_by_date(self, client, headers, p1):
        for day in (1, 2, 3):
            client.post("/movements", headers=headers, json={
                "product_id": p1["id"], "type": "entry", "quantity": 1,
                "occurred_at": f"2024-05-0{day}T12:00:00Z"
            })

        response = client.get("/movements", headers=headers, params={
            "start": "2024-05-02T00:00:00Z", "end": "2024-05-03T23:59:59Z"
        })

        assert response.json()["count"] == 2

    def test_filter_start_after_end(self, client, headers):
        response = client.get("/movements", headers=headers, params={
            "start": "2024-05-03T00:00:00Z", "end": "2024-05-01T00:00:00Z"
        })

        assert response.status_code == 422

    def test_audit(self, client, headers, p1):
        client.post("/movements", headers=headers, json={"product_id": p1["id"], "type": "sale", "quantity": 2})

        response = client.get("/audit", headers=headers)

        assert response.status_code == 200
        assert response.json()["consistent"] is True
        assert response.json()["checked_count"] == 1

    def test_valuation_breakdowns(self, client, headers, p1):
        client.post("/movements", headers=headers, json={
            "product_id": p1["id"], "type": "exit", "quantity": 3, "occurred_at": "2024-05-02T12:00:00Z"
        })

        valuation = client.get("/valuation", headers=headers, params={
            "start": "2024-05-01T00:00:00Z", "end": "2024-05-03T23:59:59Z"
        }).json()

        assert valuation["by_category"] == [{
            "category": "Bebidas",
            "product_count": 1,
            "stock_value": "140.00",
            "entry_value": "0.00",
            "exit_quantity": 3
        }]
        assert valuation["top_products"][0]["product_id"] == p1["id"]
        assert [d["day"] for d in valuation["daily"]] == ["2024-05-01", "2024-05-02", "2024-05-03"]
        assert valuation["daily"][1]["exit_quantity"] == 3

    def test_valuation_days(self, client, headers, p1):
        response = client.get("/valuation", headers=headers, params={"days": 7})

        assert response.status_code == 200
        assert len(response.json()["daily"]) == 7

    @pytest.mark.parametrize("days", [0, 367])
    def test_valuation_days_out_of_range(self, client, headers, days):
        response = client.get("/valuation", headers=headers, params={"days": days})

        assert response.status_code == 422
