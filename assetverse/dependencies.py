"""
assetverse/dependencies.py

Reusable FastAPI dependencies for capability enforcement and injected
collaborators (payment gateway).
"""

from __future__ import annotations

from typing import Callable

from fastapi import Depends, Request

from assetverse.auth_context import AuthContext, require_auth_context
from assetverse.config import IS_DEV
from assetverse.errors import Forbidden
from assetverse.payments import PaymentGateway


def require_capability(capability: str) -> Callable:
    """
    FastAPI dependency factory for capability authorization.

    Capabilities derive from the caller's stored role (see authz.py). Row
    ownership is checked separately by the service layer, which knows the row.

    Usage in routes:
        @router.post("/assets")
        def create_asset(ctx: AuthContext = Depends(require_capability(Capability.ASSET_MANAGE))):
            ...

    Raises:
        Unauthenticated(401): No token (from require_auth_context)
        Forbidden(403): Token invalid, or the role lacks the capability
    """
    # Enum members hash by name, so compare on the plain string value
    capability = getattr(capability, "value", capability)

    def _check_capability(ctx: AuthContext = Depends(require_auth_context)) -> AuthContext:
        if capability not in ctx.capabilities:
            print(f"[AUTHZ] Capability denied: capability={capability}, "
                  f"user_id={ctx.user_id}, role={ctx.role}")
            raise Forbidden(f"{ctx.role} accounts cannot perform this action")

        if IS_DEV:
            print(f"[AUTHZ] Capability granted: capability={capability}, user_id={ctx.user_id}")

        return ctx

    return _check_capability


def get_payment_gateway(request: Request) -> PaymentGateway:
    """The payment provider client (created by create_app)."""
    return request.app.state.payment_gateway
