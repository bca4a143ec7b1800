"""
assetverse/payments.py

Client for the hosted payment provider (Stripe Checkout, HTTP API).

This module ensures:
1. Every provider call goes through one client with a fixed timeout
2. Session retrieval (the finalization path) retries transient failures a
   bounded number of times; session creation never retries
3. Provider errors surface as UpstreamError/NotFound, never raw responses
4. Webhook events are only trusted after signature verification

Security:
- Never logs the API key, webhook secret or signatures
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from assetverse.config import (
    IS_DEV,
    PAYMENT_MAX_RETRIES,
    PAYMENT_TIMEOUT_SECONDS,
    STRIPE_API_BASE,
    WEBHOOK_TOLERANCE_SECONDS,
)
from assetverse.errors import NotFound, UpstreamError, ValidationFailed


@dataclass
class CheckoutSession:
    """The subset of a provider checkout session this service relies on."""
    id: str
    payment_status: str  # "paid", "unpaid", "no_payment_required"
    url: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    customer_email: Optional[str] = None
    amount_total: Optional[int] = None  # minor units (cents)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"

    @classmethod
    def from_provider(cls, data: Dict[str, Any]) -> "CheckoutSession":
        details = data.get("customer_details")
        details = details if isinstance(details, dict) else {}
        metadata = data.get("metadata")
        return cls(
            id=data["id"],
            payment_status=data.get("payment_status") or "unpaid",
            url=data.get("url"),
            metadata=dict(metadata) if isinstance(metadata, dict) else {},
            customer_email=details.get("email") or data.get("customer_email"),
            amount_total=data.get("amount_total"),
        )


class PaymentGateway:
    """Interface the billing service depends on."""

    def create_session(
        self,
        line_items: List[Dict[str, Any]],
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
    ) -> CheckoutSession:
        raise NotImplementedError

    def retrieve_session(self, session_id: str) -> CheckoutSession:
        raise NotImplementedError


def encode_form(params: Dict[str, Any], prefix: str = "") -> List[Tuple[str, str]]:
    """
    Flatten nested dicts/lists into the bracketed form encoding the provider
    expects, e.g. line_items[0][price_data][currency]=usd.
    """
    pairs: List[Tuple[str, str]] = []
    for key, value in params.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, dict):
            pairs.extend(encode_form(value, name))
        elif isinstance(value, (list, tuple)):
            for i, item in enumerate(value):
                item_name = f"{name}[{i}]"
                if isinstance(item, dict):
                    pairs.extend(encode_form(item, item_name))
                else:
                    pairs.append((item_name, str(item)))
        elif isinstance(value, bool):
            pairs.append((name, "true" if value else "false"))
        else:
            pairs.append((name, str(value)))
    return pairs


class StripeGateway(PaymentGateway):
    """Stripe Checkout over HTTPS using a retrying requests.Session."""

    def __init__(
        self,
        api_key: str,
        api_base: str = STRIPE_API_BASE,
        timeout: int = PAYMENT_TIMEOUT_SECONDS,
        max_retries: int = PAYMENT_MAX_RETRIES,
        backoff_factor: float = 0.5,
    ):
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

        # Reads retry on transport errors and 5xx/429
        retry = Retry(
            total=max_retries,
            connect=max_retries,
            read=max_retries,
            status=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=frozenset({"GET"}),
        )
        self.session = self._new_session(HTTPAdapter(max_retries=retry))
        # Session creation makes exactly one attempt
        self.write_session = self._new_session(HTTPAdapter(max_retries=Retry(total=0, read=False)))

    def _new_session(self, adapter: HTTPAdapter) -> requests.Session:
        session = requests.Session()
        session.auth = (self.api_key, "")
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        return session

    def _require_key(self) -> None:
        if not self.api_key:
            raise UpstreamError("Payment provider is not configured")

    def _handle(self, resp: requests.Response, action: str) -> Dict[str, Any]:
        if resp.status_code == 404:
            raise NotFound("Payment session not found")
        if resp.status_code >= 400:
            # Status only, never the body
            print(f"[PAYMENTS] Provider error on {action}: status={resp.status_code}")
            raise UpstreamError("Payment provider error")
        try:
            return resp.json()
        except ValueError:
            print(f"[PAYMENTS] Non-JSON provider response on {action}")
            raise UpstreamError("Payment provider error")

    def create_session(
        self,
        line_items: List[Dict[str, Any]],
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
    ) -> CheckoutSession:
        self._require_key()
        form = encode_form({
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": line_items,
            "metadata": metadata,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "customer_email": customer_email,
        })
        try:
            resp = self.write_session.post(
                f"{self.api_base}/checkout/sessions",
                data=form,
                headers={"Idempotency-Key": str(uuid.uuid4())},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            print(f"[PAYMENTS] Session create failed: {type(e).__name__}")
            raise UpstreamError("Payment provider unavailable")

        session = CheckoutSession.from_provider(self._handle(resp, "create_session"))
        if IS_DEV:
            print(f"[PAYMENTS] Created checkout session …{session.id[-6:]}")
        return session

    def retrieve_session(self, session_id: str) -> CheckoutSession:
        self._require_key()
        try:
            resp = self.session.get(
                f"{self.api_base}/checkout/sessions/{session_id}",
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            print(f"[PAYMENTS] Session retrieve failed after retries: {type(e).__name__}")
            raise UpstreamError("Payment provider unavailable")

        return CheckoutSession.from_provider(self._handle(resp, "retrieve_session"))


# ---------------------------------------------------------
# Webhook signatures
# ---------------------------------------------------------
def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    """HMAC-SHA256 over "{timestamp}.{payload}", hex encoded."""
    signed = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()


def verify_webhook_signature(
    payload: bytes,
    signature_header: Optional[str],
    secret: str,
    tolerance: int = WEBHOOK_TOLERANCE_SECONDS,
    now: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Verify a provider webhook and return the decoded event.

    Header format: "t=<unix>,v1=<hex>[,v1=<hex>...]".

    Raises:
        ValidationFailed: Missing/invalid signature, stale timestamp or bad JSON
    """
    if not secret:
        print("[WEBHOOK] Webhook secret not configured - rejecting event")
        raise ValidationFailed("Webhook verification is not configured")
    if not signature_header:
        raise ValidationFailed("Missing signature header")

    timestamp: Optional[int] = None
    signatures: List[str] = []
    for part in signature_header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise ValidationFailed("Invalid signature header")
        elif key == "v1":
            signatures.append(value)

    if timestamp is None or not signatures:
        raise ValidationFailed("Invalid signature header")

    current = int(time.time()) if now is None else now
    if abs(current - timestamp) > tolerance:
        raise ValidationFailed("Signature timestamp outside tolerance")

    expected = compute_signature(payload, secret, timestamp)
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise ValidationFailed("Invalid signature")

    try:
        return json.loads(payload)
    except ValueError:
        raise ValidationFailed("Invalid event payload")
