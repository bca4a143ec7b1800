"""
assetverse/billing.py

Subscription packages and the payment bridge.

Flow:
1. HR starts a hosted checkout for a package (create_checkout_session)
2. The provider reports completion, either by a signed webhook or by the
   client returning with the session id (confirm_payment)
3. finalize_payment re-reads nothing from the client: amount, package and
   owner all come from the provider's session and the package catalogue

Finalisation is idempotent on the provider's session id (unique
transaction_id), so the webhook and the client confirmation can both arrive
and the package is applied once.
"""

from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from assetverse.auth_context import AuthContext
from assetverse.config import IS_DEV, SITE_DOMAIN
from assetverse.db import now_iso, row_to_dict
from assetverse.entitlements import apply_package, get_package
from assetverse.errors import NotFound, PaymentRequired, ValidationFailed
from assetverse.payments import CheckoutSession, PaymentGateway

# Events that mean a checkout session may now be paid
COMPLETION_EVENTS = {
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
}


def create_checkout_session(
    engine: Engine, gateway: PaymentGateway, ctx: AuthContext, package_id: int
) -> Dict[str, Any]:
    """
    Start a hosted checkout for a package. Returns {"url", "session_id"}.

    Raises:
        NotFound: Unknown package
        UpstreamError: Provider unavailable or misconfigured
    """
    with engine.connect() as conn:
        package = get_package(conn, package_id)

    session = gateway.create_session(
        line_items=[{
            "price_data": {
                "currency": "usd",
                "product_data": {"name": f"{package.name} Package"},
                "unit_amount": int(round(package.price * 100)),
            },
            "quantity": 1,
        }],
        metadata={"user_id": str(ctx.user_id), "package_id": str(package.id)},
        success_url=f"{SITE_DOMAIN}/payment-success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{SITE_DOMAIN}/payment-cancelled",
        customer_email=ctx.email,
    )
    print(f"[PAYMENTS] Checkout started: user_id={ctx.user_id}, package={package.name}")
    return {"url": session.url, "session_id": session.id}


def _metadata_int(session: CheckoutSession, key: str) -> int:
    try:
        return int(session.metadata[key])
    except (KeyError, TypeError, ValueError):
        print(f"[PAYMENTS] Session missing metadata: key={key}")
        raise ValidationFailed("Payment session is missing purchase details")


def _fetch_payment(conn, transaction_id: str) -> Dict[str, Any]:
    return row_to_dict(
        conn.execute(
            text("SELECT * FROM payments WHERE transaction_id = :tx"), {"tx": transaction_id}
        ).mappings().first()
    )


def finalize_payment(engine: Engine, session: CheckoutSession) -> Dict[str, Any]:
    """
    Record a paid session and upgrade the purchaser's package.

    Returns {"success", "already_processed", "payment"}. A session that was
    already recorded returns the stored payment and writes nothing.

    Raises:
        PaymentRequired: Provider does not report the session as paid
        ValidationFailed: Session metadata lacks user/package ids
        NotFound: Purchaser or package no longer exists
    """
    if not session.is_paid:
        print(f"[PAYMENTS] Session not paid: status={session.payment_status}")
        raise PaymentRequired("Payment not completed")

    user_id = _metadata_int(session, "user_id")
    package_id = _metadata_int(session, "package_id")

    try:
        with engine.begin() as conn:
            package = get_package(conn, package_id)
            owner = conn.execute(
                text("SELECT id FROM users WHERE id = :id AND role = 'hr'"), {"id": user_id}
            ).scalar()
            if owner is None:
                raise NotFound("User not found")

            amount = session.amount_total / 100 if session.amount_total is not None else package.price
            conn.execute(
                text(
                    """
                    INSERT INTO payments (
                        user_id, package_id, package_name, employee_limit, amount,
                        transaction_id, customer_email, status, payment_date
                    ) VALUES (
                        :user_id, :package_id, :package_name, :employee_limit, :amount,
                        :transaction_id, :customer_email, 'completed', :now
                    )
                    """
                ),
                {
                    "user_id": user_id,
                    "package_id": package.id,
                    "package_name": package.name,
                    "employee_limit": package.employee_limit,
                    "amount": amount,
                    "transaction_id": session.id,
                    "customer_email": session.customer_email,
                    "now": now_iso(),
                },
            )
            apply_package(conn, user_id, package)
            payment = _fetch_payment(conn, session.id)
    except IntegrityError:
        with engine.connect() as conn:
            payment = _fetch_payment(conn, session.id)
        if payment is None:
            raise
        if IS_DEV:
            print(f"[PAYMENTS] Session already finalized: payment_id={payment['id']}")
        return {"success": True, "already_processed": True, "payment": payment}

    print(f"[PAYMENTS] Payment recorded: user_id={user_id}, package={package.name}, "
          f"limit={package.employee_limit}")
    return {"success": True, "already_processed": False, "payment": payment}


def confirm_payment(
    engine: Engine, gateway: PaymentGateway, ctx: AuthContext, session_id: str
) -> Dict[str, Any]:
    """
    Client-side confirmation after the checkout redirect.

    The session is fetched from the provider; it must have been started by the
    caller, otherwise it is reported as not found.
    """
    session = gateway.retrieve_session(session_id)
    if session.metadata.get("user_id") != str(ctx.user_id):
        print(f"[SECURITY] Payment session owner mismatch: user_id={ctx.user_id}")
        raise NotFound("Payment session not found")
    return finalize_payment(engine, session)


def handle_webhook_event(engine: Engine, event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Process a verified provider event.

    Completion events with a paid session are finalized; everything else is
    acknowledged so the provider stops redelivering it.
    """
    if not isinstance(event, dict):
        raise ValidationFailed("Invalid event payload")

    event_type = event.get("type")
    if event_type not in COMPLETION_EVENTS:
        if IS_DEV:
            print(f"[WEBHOOK] Ignored event type={event_type}")
        return {"received": True, "processed": False}

    data = event.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict) or not obj.get("id"):
        raise ValidationFailed("Invalid event payload")

    session = CheckoutSession.from_provider(obj)
    if not session.is_paid:
        print(f"[WEBHOOK] Session completed without payment: status={session.payment_status}")
        return {"received": True, "processed": False}

    # Unusable purchase details are acknowledged, not failed
    try:
        result = finalize_payment(engine, session)
    except (ValidationFailed, NotFound) as e:
        print(f"[WEBHOOK] Paid session not applied: {e.detail}")
        return {"received": True, "processed": False}
    print(f"[WEBHOOK] Processed {event_type}: already_processed={result['already_processed']}")
    return {"received": True, "processed": True}


def list_payments(engine: Engine, ctx: AuthContext) -> List[Dict[str, Any]]:
    with engine.connect() as conn:
        rows = conn.execute(
            text("SELECT * FROM payments WHERE user_id = :id ORDER BY payment_date DESC, id DESC"),
            {"id": ctx.user_id},
        ).mappings().all()
    return [row_to_dict(r) for r in rows]
