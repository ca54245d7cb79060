from __future__ import annotations

from fastapi.testclient import TestClient
import pytest


@pytest.mark.parametrize(
    "payload",
    [
        {"customerId": "c1", "firstName": "Ada", "lastName": "Lovelace"},
        {"customer_id": "c1", "first_name": "Ada", "last_name": "Lovelace"},
    ],
)
def test_create_customer_accepts_both_casings(client: TestClient, payload: dict) -> None:
    response = client.post("/customers", json=payload)

    assert response.status_code == 201
    body = response.json()
    assert body["customer_id"] == "c1"
    assert body["first_name"] == "Ada"
    assert body["plan_name"] == "Free"
    assert body["subscription_status"] == "active"
    assert body["actual_attempts"] == 3
    assert body["used_attempt"] == 0


def test_create_customer_requires_id(client: TestClient) -> None:
    response = client.post("/customers", json={"email": "x@example.com"})

    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


def test_duplicate_customer_is_409(client: TestClient) -> None:
    client.post("/customers", json={"customerId": "c1"})

    response = client.post("/customers", json={"customerId": "c1"})

    assert response.status_code == 409
    assert response.json()["field"] == "customer_id"


def test_attempt_flow(client: TestClient) -> None:
    client.post("/customers", json={"customerId": "c1"})

    results = [client.post("/customers/c1/complete-attempt").json() for _ in range(4)]

    assert [result["success"] for result in results] == [True, True, True, False]
    assert results[2]["subscription_status"] == "inactive"
    assert results[3]["reason"] == "quota_exhausted"
    assert results[3]["used_attempt"] == 3

    status = client.get("/customers/c1/subscription-status").json()
    assert status == {
        "status": "inactive",
        "remaining": 0,
        "plan_name": "Free",
        "used_attempt": 3,
        "actual_attempts": 3,
    }


def test_paid_subscription_endpoint(client: TestClient) -> None:
    client.post("/customers", json={"customerId": "c1"})
    client.post("/customers/c1/complete-attempt")

    response = client.post(
        "/customers/c1/subscription",
        json={"subscriptionId": "sub_1", "planName": "Pro", "subscriptionPlanPrice": 1900, "actualAttempts": 50},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["plan_name"] == "Pro"
    assert body["subscription_plan_price"] == 1900
    assert body["actual_attempts"] == 50
    assert body["used_attempt"] == 0


def test_status_change_endpoint(client: TestClient) -> None:
    client.post("/customers", json={"customerId": "c1"})

    assert client.post("/customers/c1/status", json={"status": "cancelled"}).status_code == 200

    response = client.post("/customers/c1/status", json={"status": "active"})
    assert response.status_code == 400
    assert response.json()["from"] == "cancelled"


def test_missing_customer_is_404(client: TestClient) -> None:
    assert client.get("/customers/ghost").status_code == 404
    assert client.post("/customers/ghost/complete-attempt").status_code == 404


def test_patch_and_list_customers(client: TestClient) -> None:
    client.post("/customers", json={"customerId": "c1"})
    client.post("/customers", json={"customerId": "c2"})

    response = client.patch("/customers/c1", json={"email": "ada@example.com", "lastName": "Lovelace"})

    assert response.status_code == 200
    assert response.json()["email"] == "ada@example.com"
    assert response.json()["last_name"] == "Lovelace"
    assert {item["customer_id"] for item in client.get("/customers").json()} == {"c1", "c2"}
