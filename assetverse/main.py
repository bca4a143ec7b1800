# ---------------------------------------------------------
# assetverse/main.py
# AssetVerse - Company Asset Management Backend
#
# Run: uvicorn assetverse.main:app --reload (from repo root)
#
# - FastAPI + SQLAlchemy (SQLite for dev, PostgreSQL in production)
# - /register/*, /login, /jwt, /users/*  : identity
# - /assets, /assets/public              : inventory
# - /requests, /asset-requests/*         : request lifecycle
# - /employees, /team/*                  : roster
# - /packages, /create-checkout-session,
#   /payment-success, /webhooks/payments : subscription packages
# ---------------------------------------------------------

from __future__ import annotations

from typing import Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from assetverse.config import (
    CORS_ORIGINS,
    DATABASE_URL,
    IS_DEV,
    IS_PROD,
    STRIPE_SECRET,
    STRIPE_WEBHOOK_SECRET,
)
from assetverse.db import create_db_engine, init_db
from assetverse.errors import AssetVerseError
from assetverse.payments import PaymentGateway, StripeGateway
from assetverse.routes_assets import router as assets_router
from assetverse.routes_auth import router as auth_router
from assetverse.routes_billing import router as billing_router
from assetverse.routes_requests import router as requests_router
from assetverse.routes_team import router as team_router


# ============================================================================
# API ENDPOINT CLASSIFICATION & SECURITY MODEL
# ============================================================================
#
# [PUBLIC] - No authentication required
#   • /, /health
#   • /register/hr, /register/employee, /login
#   • /packages, /packages/hr
#   • /assets/public - paginated name search
#   • /webhooks/payments - provider signature instead of a token
#
# [AUTH_ONLY] - Token required, no capability beyond the caller's own data
#   • /jwt, /users/{email} (self only), /users/{email}/role
#   • /assigned-assets, /payment-success (session must be the caller's)
#
# [COMPANY_SCOPED] - Token + capability + hr_email ownership
#   • /assets writes [asset:manage], /requests review [request:review]
#   • /employees [team:manage], /team/{email} [team:view]
#   • /create-checkout-session, /payments [billing:manage]
#
# ENFORCEMENT RULES:
# 1. Missing token -> 401; bad/expired token or missing capability -> 403
# 2. Owner fields are taken from the stored user row, never the body
# 3. Another company's row is reported as 404 (prevents enumeration)
# 4. Multi-row writes run in one transaction with conditional UPDATEs
#
# ============================================================================


def create_app(
    database_url: Optional[str] = None,
    payment_gateway: Optional[PaymentGateway] = None,
    webhook_secret: Optional[str] = None,
) -> FastAPI:
    """
    Build the application with its store and payment gateway.

    Tests pass a temporary database URL and a fake gateway; production uses
    the environment configuration.
    """
    app = FastAPI(title="AssetVerse Backend", version="0.1")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS if IS_PROD else ["*"],  # Restrict origins in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.engine = create_db_engine(database_url or DATABASE_URL)
    app.state.payment_gateway = payment_gateway or StripeGateway(STRIPE_SECRET)
    app.state.webhook_secret = STRIPE_WEBHOOK_SECRET if webhook_secret is None else webhook_secret

    @app.on_event("startup")
    def _startup() -> None:
        init_db(app.state.engine)

    @app.on_event("shutdown")
    def _shutdown() -> None:
        app.state.engine.dispose()

    # ---------------------------------------------------------
    # Error handling
    # ---------------------------------------------------------
    @app.exception_handler(AssetVerseError)
    async def _domain_error(request: Request, exc: AssetVerseError) -> JSONResponse:
        if IS_DEV:
            print(f"[ERROR] {request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(SQLAlchemyError)
    async def _database_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        print(f"[ERROR] Database error on {request.method} {request.url.path}: {type(exc).__name__}")
        return JSONResponse(status_code=500, content={"detail": "Database error"})

    # ---------------------------------------------------------
    # Routes
    # ---------------------------------------------------------
    @app.get("/")
    def root() -> Dict[str, str]:
        return {"message": "AssetVerse server is running"}

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    app.include_router(auth_router)
    app.include_router(assets_router)
    app.include_router(requests_router)
    app.include_router(team_router)
    app.include_router(billing_router)

    return app


app = create_app()
