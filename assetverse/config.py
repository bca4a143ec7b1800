# assetverse/config.py
# Environment-aware configuration for the AssetVerse backend

import os
from typing import Literal

# Environment detection
ENV: Literal["dev", "staging", "prod"] = os.environ.get("ENV", "dev")  # type: ignore
IS_DEV = (ENV == "dev")
IS_STAGING = (ENV == "staging")
IS_PROD = (ENV == "prod")

# JWT configuration
# ACCESS_TOKEN_SECRET is accepted for compatibility with older deployments
SECRET_KEY = os.environ.get("SECRET_KEY") or os.environ.get("ACCESS_TOKEN_SECRET") or "dev-secret-change-me"
ALGORITHM = "HS256"
ACCESS_TOKEN_DAYS = int(os.environ.get("ACCESS_TOKEN_DAYS", "1"))

# Database configuration
# DATABASE_URL is any SQLAlchemy URL; SQLite file for local development
DATABASE_URL = os.environ.get("DATABASE_URL", "").strip() or "sqlite:///assetverse.db"
IS_POSTGRES = DATABASE_URL.startswith(("postgres://", "postgresql://", "postgresql+"))
IS_SQLITE = DATABASE_URL.startswith("sqlite")

# Payment provider (Stripe Checkout over its HTTP API)
STRIPE_SECRET = os.environ.get("STRIPE_SECRET", "")
STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
STRIPE_API_BASE = os.environ.get("STRIPE_API_BASE", "https://api.stripe.com/v1").rstrip("/")
PAYMENT_TIMEOUT_SECONDS = int(os.environ.get("PAYMENT_TIMEOUT_SECONDS", "20"))
PAYMENT_MAX_RETRIES = int(os.environ.get("PAYMENT_MAX_RETRIES", "3"))
WEBHOOK_TOLERANCE_SECONDS = 300

# Front-end base URL used for checkout redirects
SITE_DOMAIN = os.environ.get("SITE_DOMAIN", "http://localhost:5173").rstrip("/")

# CORS origins (expand for staging/prod)
CORS_ORIGINS = [
    "http://localhost:5173",  # Vite dev server
    "http://127.0.0.1:5173",
]

if IS_STAGING or IS_PROD:
    extra_origins = os.environ.get("CORS_ORIGINS", "")
    if extra_origins:
        CORS_ORIGINS.extend(o.strip() for o in extra_origins.split(",") if o.strip())
    else:
        CORS_ORIGINS.append("https://asset-verse-clients.netlify.app")

if IS_PROD and SECRET_KEY == "dev-secret-change-me":
    raise RuntimeError("SECRET_KEY must be set in production")

print(f"[CONFIG] Environment: {ENV}")
print(f"[CONFIG] Database: {'PostgreSQL' if IS_POSTGRES else 'SQLite (local dev)' if IS_SQLITE else 'custom'}")
print(f"[CONFIG] Access token: {ACCESS_TOKEN_DAYS} day(s)")
print(f"[CONFIG] Payments: {'configured' if STRIPE_SECRET else 'not configured'}")
