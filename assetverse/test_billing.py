"""
Subscription and payment tests: packages, checkout, finalisation, webhooks.

Tests that verify:
1. Package changes only happen for sessions the provider reports as paid
2. Finalisation is idempotent on the provider session id
3. Webhooks are accepted only with a valid signature
4. A user cannot finalise someone else's checkout session
5. The provider client retries session reads only, never session creation

Run: pytest assetverse/test_billing.py -v
"""

import json
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from assetverse.errors import NotFound, UpstreamError, ValidationFailed
from assetverse.payments import StripeGateway, compute_signature, encode_form, verify_webhook_signature


def _package(client, name):
    return next(p for p in client.get("/packages").json() if p["name"] == name)


def _start_checkout(client, hr, name="Premium"):
    resp = client.post("/create-checkout-session", headers=hr["headers"], json={"package_id": _package(client, name)["id"]})
    assert resp.status_code == 200, resp.text
    return resp.json()["session_id"]


def _header(payload: bytes, secret: str, timestamp: int) -> str:
    return f"t={timestamp},v1={compute_signature(payload, secret, timestamp)}"


@pytest.fixture
def sign(app):
    """Sign a payload with the app's webhook secret (or another secret) at the current time."""
    def _sign(payload: bytes, secret: str = None) -> str:
        return _header(payload, secret or app.state.webhook_secret, int(time.time()))
    return _sign


class _ProviderHandler(BaseHTTPRequestHandler):
    """Answers each call with the next queued (status, body) and records it."""

    def _reply(self):
        length = int(self.headers.get("Content-Length") or 0)
        if length:
            self.rfile.read(length)
        self.server.hits.append({
            "method": self.command,
            "path": self.path,
            "idempotency_key": self.headers.get("Idempotency-Key"),
            "authorization": self.headers.get("Authorization"),
        })
        status, body = self.server.replies.pop(0) if self.server.replies else (500, {})
        payload = body if isinstance(body, bytes) else json.dumps(body).encode()
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    do_GET = _reply
    do_POST = _reply

    def log_message(self, format, *args):
        pass


@pytest.fixture
def provider():
    """A local stand-in for the provider's HTTP API."""
    server = ThreadingHTTPServer(("127.0.0.1", 0), _ProviderHandler)
    server.replies = []
    server.hits = []
    server.base = f"http://127.0.0.1:{server.server_address[1]}/v1"
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


class TestPackages:
    def test_catalogue_is_public_and_seeded(self, client):
        resp = client.get("/packages")
        assert resp.status_code == 200
        packages = resp.json()
        assert [(p["name"], p["employee_limit"], p["price"]) for p in packages] == [
            ("Basic", 5, 5), ("Standard", 10, 8), ("Premium", 20, 15),
        ]
        assert client.get("/packages/hr").json() == packages


class TestCheckout:
    def test_create_session(self, client, gateway, register_hr):
        hr = register_hr()
        premium = _package(client, "Premium")

        resp = client.post("/create-checkout-session", headers=hr["headers"], json={"package_id": premium["id"]})
        assert resp.status_code == 200
        body = resp.json()
        assert body["session_id"] == "cs_test_1"
        assert body["url"].startswith("https://checkout.example.com/")

        created = gateway.created[0]
        assert created["line_items"][0]["price_data"]["unit_amount"] == 1500
        assert created["line_items"][0]["price_data"]["currency"] == "usd"
        assert created["metadata"] == {"user_id": str(hr["user"]["id"]), "package_id": str(premium["id"])}
        assert created["customer_email"] == "hr@acme.example.com"
        assert created["success_url"].endswith("/payment-success?session_id={CHECKOUT_SESSION_ID}")

    def test_unknown_package_is_404(self, client, register_hr):
        hr = register_hr()
        resp = client.post("/create-checkout-session", headers=hr["headers"], json={"package_id": 999})
        assert resp.status_code == 404


class TestPaymentConfirmation:
    def test_unpaid_session_is_402_and_writes_nothing(self, client, register_hr):
        hr = register_hr()
        session_id = _start_checkout(client, hr)

        resp = client.patch("/payment-success", headers=hr["headers"], json={"session_id": session_id})
        assert resp.status_code == 402

        profile = client.get("/users/hr@acme.example.com", headers=hr["headers"]).json()
        assert profile["package_name"] == "Basic"
        assert client.get("/payments", headers=hr["headers"]).json() == []

    def test_paid_session_upgrades_package(self, client, gateway, register_hr):
        hr = register_hr()
        session_id = _start_checkout(client, hr)
        gateway.mark_paid(session_id)

        resp = client.patch("/payment-success", headers=hr["headers"], json={"session_id": session_id})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["already_processed"] is False
        assert body["payment"]["transaction_id"] == session_id
        assert body["payment"]["amount"] == 15
        assert body["payment"]["employee_limit"] == 20

        profile = client.get("/users/hr@acme.example.com", headers=hr["headers"]).json()
        assert profile["package_name"] == "Premium"
        assert profile["package_limit"] == 20
        assert profile["subscription"] == "active"

    def test_second_confirmation_is_idempotent(self, client, gateway, register_hr):
        hr = register_hr()
        session_id = _start_checkout(client, hr)
        gateway.mark_paid(session_id)
        first = client.patch("/payment-success", headers=hr["headers"], json={"session_id": session_id}).json()

        resp = client.post("/payment-success", headers=hr["headers"], json={"session_id": session_id})
        assert resp.status_code == 200
        assert resp.json()["already_processed"] is True
        assert resp.json()["payment"]["id"] == first["payment"]["id"]
        assert len(client.get("/payments", headers=hr["headers"]).json()) == 1

    def test_someone_elses_session_is_404(self, client, gateway, register_hr):
        acme = register_hr()
        globex = register_hr(email="hr@globex.example.com", company="Globex")
        session_id = _start_checkout(client, acme)
        gateway.mark_paid(session_id)

        resp = client.patch("/payment-success", headers=globex["headers"], json={"session_id": session_id})
        assert resp.status_code == 404

        profile = client.get("/users/hr@globex.example.com", headers=globex["headers"]).json()
        assert profile["package_name"] == "Basic"

    def test_unknown_session_is_404(self, client, register_hr):
        hr = register_hr()
        resp = client.patch("/payment-success", headers=hr["headers"], json={"session_id": "cs_missing"})
        assert resp.status_code == 404

    def test_requires_token(self, client):
        resp = client.patch("/payment-success", json={"session_id": "cs_test_1"})
        assert resp.status_code == 401

    def test_upgrade_raises_roster_limit(self, client, gateway, register_hr, register_employee, create_asset, submit_request):
        hr = register_hr()
        asset = create_asset(hr, quantity=10)
        requests = [submit_request(register_employee(email=f"emp{i}@example.com"), asset["id"]) for i in range(6)]
        for req in requests[:5]:
            client.post(f"/requests/{req['id']}/approve", headers=hr["headers"])
        assert client.post(f"/requests/{requests[5]['id']}/approve", headers=hr["headers"]).status_code == 409

        session_id = _start_checkout(client, hr, "Standard")
        gateway.mark_paid(session_id)
        client.patch("/payment-success", headers=hr["headers"], json={"session_id": session_id})

        assert client.post(f"/requests/{requests[5]['id']}/approve", headers=hr["headers"]).status_code == 200


class TestWebhook:
    def _event(self, client, gateway, hr, event_type="checkout.session.completed", paid=True):
        session_id = _start_checkout(client, hr)
        session = gateway.sessions[session_id]
        if paid:
            gateway.mark_paid(session_id)
        return session_id, {
            "id": "evt_1",
            "type": event_type,
            "data": {"object": {
                "id": session_id,
                "payment_status": "paid" if paid else "unpaid",
                "metadata": session.metadata,
                "amount_total": session.amount_total,
                "customer_details": {"email": "hr@acme.example.com"},
            }},
        }

    def test_completed_event_finalizes(self, client, gateway, register_hr, sign):
        hr = register_hr()
        session_id, event = self._event(client, gateway, hr)
        payload = json.dumps(event).encode()

        resp = client.post("/webhooks/payments", content=payload, headers={"Stripe-Signature": sign(payload)})
        assert resp.status_code == 200
        assert resp.json() == {"received": True, "processed": True}

        profile = client.get("/users/hr@acme.example.com", headers=hr["headers"]).json()
        assert profile["package_name"] == "Premium"

        # Client confirmation after the webhook does not double-apply
        resp = client.patch("/payment-success", headers=hr["headers"], json={"session_id": session_id})
        assert resp.json()["already_processed"] is True

    def test_redelivery_is_idempotent(self, client, gateway, register_hr, sign):
        hr = register_hr()
        _, event = self._event(client, gateway, hr)
        payload = json.dumps(event).encode()

        for _ in range(2):
            resp = client.post("/webhooks/payments", content=payload, headers={"Stripe-Signature": sign(payload)})
            assert resp.status_code == 200
        assert len(client.get("/payments", headers=hr["headers"]).json()) == 1

    def test_bad_signature_is_400(self, client, gateway, register_hr, sign):
        hr = register_hr()
        _, event = self._event(client, gateway, hr)
        payload = json.dumps(event).encode()

        resp = client.post("/webhooks/payments", content=payload, headers={"Stripe-Signature": sign(payload, "wrong")})
        assert resp.status_code == 400
        resp = client.post("/webhooks/payments", content=payload)
        assert resp.status_code == 400

        profile = client.get("/users/hr@acme.example.com", headers=hr["headers"]).json()
        assert profile["package_name"] == "Basic"

    def test_other_events_are_acknowledged(self, client, gateway, register_hr, sign):
        hr = register_hr()
        _, event = self._event(client, gateway, hr, event_type="customer.created")
        payload = json.dumps(event).encode()

        resp = client.post("/webhooks/payments", content=payload, headers={"Stripe-Signature": sign(payload)})
        assert resp.status_code == 200
        assert resp.json() == {"received": True, "processed": False}
        assert client.get("/payments", headers=hr["headers"]).json() == []

    def test_unpaid_completion_is_not_applied(self, client, gateway, register_hr, sign):
        hr = register_hr()
        _, event = self._event(client, gateway, hr, paid=False)
        payload = json.dumps(event).encode()

        resp = client.post("/webhooks/payments", content=payload, headers={"Stripe-Signature": sign(payload)})
        assert resp.json()["processed"] is False

    @pytest.mark.parametrize("event", [
        [],
        "checkout.session.completed",
        {"type": "checkout.session.completed", "data": {"object": "cs_1"}},
        {"type": "checkout.session.completed", "data": "cs_1"},
        {"type": "checkout.session.completed", "data": {"object": {"payment_status": "paid"}}},
    ])
    def test_malformed_signed_event_is_400(self, client, sign, event):
        payload = json.dumps(event).encode()

        resp = client.post("/webhooks/payments", content=payload, headers={"Stripe-Signature": sign(payload)})
        assert resp.status_code == 400
        assert resp.json() == {"detail": "Invalid event payload"}

    @pytest.mark.parametrize("overrides", [
        {"user_id": None, "package_id": None},
        {"user_id": "not-a-number"},
        {"user_id": "9999"},
        {"package_id": "9999"},
    ])
    def test_unusable_paid_session_is_acknowledged(self, client, gateway, register_hr, sign, overrides):
        hr = register_hr()
        _, event = self._event(client, gateway, hr)
        metadata = {**event["data"]["object"]["metadata"], **overrides}
        event["data"]["object"]["metadata"] = {k: v for k, v in metadata.items() if v is not None}
        payload = json.dumps(event).encode()

        resp = client.post("/webhooks/payments", content=payload, headers={"Stripe-Signature": sign(payload)})
        assert resp.status_code == 200
        assert resp.json() == {"received": True, "processed": False}

        assert client.get("/payments", headers=hr["headers"]).json() == []
        profile = client.get("/users/hr@acme.example.com", headers=hr["headers"]).json()
        assert profile["package_name"] == "Basic"


class TestSignatureVerification:
    payload = b'{"type": "ping"}'

    def test_valid(self):
        header = _header(self.payload, "s3cret", 1_700_000_000)
        event = verify_webhook_signature(self.payload, header, "s3cret", now=1_700_000_100)
        assert event == {"type": "ping"}

    def test_any_matching_v1_is_accepted(self):
        good = compute_signature(self.payload, "s3cret", 1_700_000_000)
        header = f"t=1700000000,v1=deadbeef,v1={good}"
        assert verify_webhook_signature(self.payload, header, "s3cret", now=1_700_000_000)

    def test_stale_timestamp(self):
        header = _header(self.payload, "s3cret", 1_700_000_000)
        with pytest.raises(ValidationFailed):
            verify_webhook_signature(self.payload, header, "s3cret", now=1_700_000_000 + 301)

    def test_tampered_payload(self):
        header = _header(self.payload, "s3cret", 1_700_000_000)
        with pytest.raises(ValidationFailed):
            verify_webhook_signature(b'{"type": "pong"}', header, "s3cret", now=1_700_000_000)

    @pytest.mark.parametrize("header", [None, "", "v1=abc", "t=notanumber,v1=abc", "t=1700000000"])
    def test_malformed_header(self, header):
        with pytest.raises(ValidationFailed):
            verify_webhook_signature(self.payload, header, "s3cret", now=1_700_000_000)

    def test_unconfigured_secret_rejects(self):
        header = _header(self.payload, "s3cret", 1_700_000_000)
        with pytest.raises(ValidationFailed):
            verify_webhook_signature(self.payload, header, "", now=1_700_000_000)


class TestStripeGateway:
    def test_form_encoding(self):
        pairs = encode_form({
            "mode": "payment",
            "line_items": [{"price_data": {"currency": "usd", "unit_amount": 500}, "quantity": 1}],
            "metadata": {"user_id": "7"},
            "customer_email": None,
        })
        assert ("mode", "payment") in pairs
        assert ("line_items[0][price_data][currency]", "usd") in pairs
        assert ("line_items[0][price_data][unit_amount]", "500") in pairs
        assert ("line_items[0][quantity]", "1") in pairs
        assert ("metadata[user_id]", "7") in pairs
        assert not any(k == "customer_email" for k, _ in pairs)

    def test_only_reads_are_retried(self):
        gw = StripeGateway("sk_test_123", max_retries=2)
        retry = gw.session.get_adapter("https://api.stripe.com/v1").max_retries

        assert retry.total == 2
        assert retry.allowed_methods == frozenset({"GET"})
        assert 503 in retry.status_forcelist

    def test_unconfigured_key_fails_without_network(self):
        gw = StripeGateway("")
        with pytest.raises(UpstreamError):
            gw.retrieve_session("cs_anything")
        with pytest.raises(UpstreamError):
            gw.create_session([], {}, "https://a.example.com", "https://b.example.com")

    def test_create_makes_one_attempt(self):
        gw = StripeGateway("sk_test_123", max_retries=2)
        retry = gw.write_session.get_adapter("https://api.stripe.com/v1").max_retries

        assert retry.total == 0


class TestStripeGatewayHttp:
    """The gateway against a local HTTP server standing in for the provider."""

    def _gateway(self, provider, max_retries=2):
        return StripeGateway("sk_test_123", api_base=provider.base, max_retries=max_retries, backoff_factor=0)

    def test_retrieve_retries_5xx_then_succeeds(self, provider):
        provider.replies = [
            (503, {}),
            (503, {}),
            (200, {"id": "cs_1", "payment_status": "paid", "metadata": {"user_id": "7"}, "amount_total": 1500}),
        ]

        session = self._gateway(provider).retrieve_session("cs_1")

        assert session.is_paid
        assert session.metadata == {"user_id": "7"}
        assert session.amount_total == 1500
        assert len(provider.hits) == 3
        assert all(h["method"] == "GET" and h["path"] == "/v1/checkout/sessions/cs_1" for h in provider.hits)
        assert provider.hits[0]["authorization"].startswith("Basic ")

    def test_retrieve_unknown_session_is_not_found(self, provider):
        provider.replies = [(404, {"error": {"message": "No such checkout.session"}})]

        with pytest.raises(NotFound):
            self._gateway(provider).retrieve_session("cs_missing")
        assert len(provider.hits) == 1

    def test_retrieve_gives_up_after_max_retries(self, provider):
        provider.replies = [(503, {})] * 3

        with pytest.raises(UpstreamError):
            self._gateway(provider, max_retries=2).retrieve_session("cs_1")
        assert len(provider.hits) == 3

    def test_retrieve_client_error_is_upstream_error(self, provider):
        provider.replies = [(401, {"error": {"message": "Invalid API Key"}})]

        with pytest.raises(UpstreamError):
            self._gateway(provider).retrieve_session("cs_1")
        assert len(provider.hits) == 1

    def test_non_json_response_is_upstream_error(self, provider):
        provider.replies = [(200, b"<html>maintenance</html>")]

        with pytest.raises(UpstreamError):
            self._gateway(provider).retrieve_session("cs_1")

    def test_create_sends_idempotency_key(self, provider):
        provider.replies = [(200, {"id": "cs_new", "url": "https://checkout.example.com/cs_new", "payment_status": "unpaid"})]

        session = self._gateway(provider).create_session(
            [{"price_data": {"currency": "usd", "unit_amount": 500}, "quantity": 1}],
            {"user_id": "7", "package_id": "2"},
            "https://app.example.com/ok",
            "https://app.example.com/cancel",
        )

        assert session.id == "cs_new"
        assert session.url == "https://checkout.example.com/cs_new"
        assert not session.is_paid
        (hit,) = provider.hits
        assert hit["method"] == "POST"
        assert hit["path"] == "/v1/checkout/sessions"
        assert hit["idempotency_key"]

    def test_create_is_not_retried_on_5xx(self, provider):
        provider.replies = [(503, {}), (200, {"id": "cs_new", "payment_status": "unpaid"})]

        with pytest.raises(UpstreamError):
            self._gateway(provider).create_session([], {}, "https://a.example.com", "https://b.example.com")
        assert len(provider.hits) == 1

    def test_unreachable_provider_is_upstream_error(self, provider):
        gw = self._gateway(provider, max_retries=0)
        provider.shutdown()
        provider.server_close()

        with pytest.raises(UpstreamError):
            gw.retrieve_session("cs_1")
        with pytest.raises(UpstreamError):
            gw.create_session([], {}, "https://a.example.com", "https://b.example.com")
