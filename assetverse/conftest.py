"""
Shared pytest fixtures for the AssetVerse backend.

Every test gets a fresh file-backed SQLite database (tmp_path) and a fake
payment gateway, injected through create_app().

Run: pytest assetverse -v
"""

from typing import Any, Dict, Optional

import pytest
from fastapi.testclient import TestClient

from assetverse.auth_context import AuthContext
from assetverse.authz import effective_capabilities
from assetverse.errors import NotFound
from assetverse.main import create_app
from assetverse.payments import CheckoutSession, PaymentGateway

WEBHOOK_SECRET = "whsec_test_secret"


class FakeGateway(PaymentGateway):
    """In-memory checkout provider. Sessions start unpaid; tests mark them paid."""

    def __init__(self):
        self.sessions: Dict[str, CheckoutSession] = {}
        self.created = []
        self.retrieve_calls = 0

    def create_session(self, line_items, metadata, success_url, cancel_url, customer_email=None):
        session_id = f"cs_test_{len(self.sessions) + 1}"
        amount = sum(item["price_data"]["unit_amount"] * item["quantity"] for item in line_items)
        session = CheckoutSession(
            id=session_id,
            payment_status="unpaid",
            url=f"https://checkout.example.com/pay/{session_id}",
            metadata=dict(metadata),
            customer_email=customer_email,
            amount_total=amount,
        )
        self.sessions[session_id] = session
        self.created.append({
            "line_items": line_items,
            "metadata": metadata,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "customer_email": customer_email,
        })
        return session

    def retrieve_session(self, session_id):
        self.retrieve_calls += 1
        if session_id not in self.sessions:
            raise NotFound("Payment session not found")
        return self.sessions[session_id]

    def mark_paid(self, session_id):
        self.sessions[session_id].payment_status = "paid"


def auth_headers(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def app(tmp_path, gateway):
    return create_app(
        database_url=f"sqlite:///{tmp_path / 'assetverse_test.db'}",
        payment_gateway=gateway,
        webhook_secret=WEBHOOK_SECRET,
    )


@pytest.fixture
def client(app):
    # Entering the context runs startup (schema + package seed)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def engine(app, client):
    return app.state.engine


@pytest.fixture
def register_hr(client):
    """Factory: register an HR user and return {token, user, headers}."""
    def _register(email: str = "hr@acme.example.com", company: str = "Acme Corp", name: str = "Hana HR"):
        resp = client.post("/register/hr", json={
            "name": name,
            "email": email,
            "password": "secret123",
            "company_name": company,
            "company_logo": "https://img.example.com/logo.png",
        })
        assert resp.status_code == 201, resp.text
        data = resp.json()
        data["headers"] = auth_headers(data["token"])
        return data
    return _register


@pytest.fixture
def register_employee(client):
    """Factory: register an employee and return {token, user, headers}."""
    def _register(email: str = "emp@example.com", name: str = "Eli Employee"):
        resp = client.post("/register/employee", json={
            "name": name,
            "email": email,
            "password": "secret123",
            "date_of_birth": "1995-04-12",
        })
        assert resp.status_code == 201, resp.text
        data = resp.json()
        data["headers"] = auth_headers(data["token"])
        return data
    return _register


@pytest.fixture
def create_asset(client):
    """Factory: create an asset as the given HR and return the asset body."""
    def _create(hr: Dict[str, Any], name: str = "Laptop", quantity: int = 3, product_type: str = "returnable"):
        resp = client.post("/assets", headers=hr["headers"], json={
            "product_name": name,
            "product_type": product_type,
            "product_quantity": quantity,
        })
        assert resp.status_code == 201, resp.text
        return resp.json()
    return _create


@pytest.fixture
def submit_request(client):
    """Factory: submit a request as the given employee and return the request body."""
    def _submit(employee: Dict[str, Any], asset_id: int, note: Optional[str] = None):
        resp = client.post("/requests", headers=employee["headers"], json={"asset_id": asset_id, "note": note})
        assert resp.status_code == 201, resp.text
        return resp.json()
    return _submit


@pytest.fixture
def ctx_for(client):
    """Factory: build an AuthContext for direct service calls from a user's current profile."""
    def _ctx(account: Dict[str, Any]) -> AuthContext:
        email = account["user"]["email"]
        user = client.get(f"/users/{email}", headers=account["headers"]).json()
        return AuthContext(
            user_id=user["id"],
            email=user["email"],
            name=user["name"],
            role=user["role"],
            status=user["status"],
            company_name=user["company_name"],
            hr_email=user["hr_email"],
            capabilities=effective_capabilities(user["role"]),
        )
    return _ctx
