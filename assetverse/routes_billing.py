"""
assetverse/routes_billing.py

Package catalogue, checkout and payment finalisation endpoints.

Security guarantees:
- Package changes only happen after the provider reports the session paid
- The client never supplies status, package or limit; only a session id
- Webhooks are accepted only with a valid provider signature
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.engine import Engine
from starlette.concurrency import run_in_threadpool

from assetverse import billing
from assetverse.auth_context import AuthContext, get_engine, require_auth_context
from assetverse.authz import Capability
from assetverse.dependencies import get_payment_gateway, require_capability
from assetverse.entitlements import list_packages
from assetverse.payments import PaymentGateway, verify_webhook_signature
from assetverse.schemas import (
    CheckoutRequest,
    CheckoutResponse,
    FinalizeResponse,
    PaymentConfirmRequest,
    PaymentResponse,
)

router = APIRouter(tags=["billing"])


@router.get("/packages")
def get_packages(engine: Engine = Depends(get_engine)) -> List[Dict[str, Any]]:
    return [p.model_dump() for p in list_packages(engine)]


@router.get("/packages/hr")
def get_packages_for_hr(engine: Engine = Depends(get_engine)) -> List[Dict[str, Any]]:
    """Same catalogue; kept for clients that fetch it from the HR dashboard."""
    return [p.model_dump() for p in list_packages(engine)]


@router.post("/create-checkout-session", response_model=CheckoutResponse)
def create_checkout_session(
    body: CheckoutRequest,
    ctx: AuthContext = Depends(require_capability(Capability.BILLING_MANAGE)),
    engine: Engine = Depends(get_engine),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> CheckoutResponse:
    """
    Start a hosted checkout for a package.

    Raises:
        HTTPException(404): Unknown package
        HTTPException(502): Payment provider unavailable
    """
    return CheckoutResponse(**billing.create_checkout_session(engine, gateway, ctx, body.package_id))


@router.api_route("/payment-success", methods=["PATCH", "POST"], response_model=FinalizeResponse)
def confirm_payment(
    body: PaymentConfirmRequest,
    ctx: AuthContext = Depends(require_auth_context),
    engine: Engine = Depends(get_engine),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> FinalizeResponse:
    """
    Finalise a checkout after the client is redirected back.

    The session is re-read from the provider and must belong to the caller.

    Raises:
        HTTPException(402): Provider does not report the session as paid
        HTTPException(404): Unknown session, or started by someone else
    """
    return FinalizeResponse(**billing.confirm_payment(engine, gateway, ctx, body.session_id))


@router.post("/webhooks/payments")
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
) -> Dict[str, Any]:
    """
    Provider event callback. The raw body is verified before it is parsed.

    Raises:
        HTTPException(400): Missing/invalid signature or malformed event
    """
    payload = await request.body()
    event = verify_webhook_signature(payload, stripe_signature, request.app.state.webhook_secret)
    # Store access is blocking; keep it off the event loop
    return await run_in_threadpool(billing.handle_webhook_event, get_engine(request), event)


@router.get("/payments", response_model=List[PaymentResponse])
def list_payments(
    ctx: AuthContext = Depends(require_capability(Capability.BILLING_MANAGE)),
    engine: Engine = Depends(get_engine),
) -> List[PaymentResponse]:
    return [PaymentResponse(**p) for p in billing.list_payments(engine, ctx)]
