"""
assetverse/auth_context.py

Shared authentication primitives for FastAPI dependency injection.

Contains:
- Password hashing (salted pbkdf2 via passlib)
- JWT issue/verify
- AuthContext: immutable identity of the caller, loaded from the store
- require_auth_context: FastAPI dependency for auth enforcement
- get_engine: store handle injected from app.state

This module MUST NOT import assetverse.main to avoid circular dependencies.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Set

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from pydantic import BaseModel, ConfigDict
from sqlalchemy import text
from sqlalchemy.engine import Engine

from assetverse.authz import effective_capabilities
from assetverse.config import ACCESS_TOKEN_DAYS, ALGORITHM, IS_DEV, SECRET_KEY
from assetverse.errors import Forbidden, Unauthenticated

# auto_error=False: a missing header must be a 401, not FastAPI's default 403
security = HTTPBearer(auto_error=False)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


# ---------------------------------------------------------
# Store handle
# ---------------------------------------------------------
def get_engine(request: Request) -> Engine:
    """The application's store handle (created by create_app)."""
    return request.app.state.engine


# ---------------------------------------------------------
# Passwords
# ---------------------------------------------------------
def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


# ---------------------------------------------------------
# JWT
# ---------------------------------------------------------
def create_access_token(user_id: int, email: str, role: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "id": user_id,
        "email": email,
        "role": role,
        "iat": now,
        "exp": now + timedelta(days=ACCESS_TOKEN_DAYS),
    }
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> Dict[str, Any]:
    """
    Verify a JWT access token and return the decoded payload.

    Raises:
        Forbidden: If the token is expired or invalid
    """
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise Forbidden("Token expired")
    except jwt.InvalidTokenError:
        raise Forbidden("Invalid token")


# ---------------------------------------------------------
# AuthContext
# ---------------------------------------------------------
class AuthContext(BaseModel):
    """
    Identity of the caller, derived from a verified token and the users table.

    The role and company come from the store, not from the token, so a role
    or roster change takes effect on the next request.
    """
    model_config = ConfigDict(frozen=True)

    user_id: int
    email: str
    name: str
    role: str
    status: str
    company_name: Optional[str] = None
    hr_email: Optional[str] = None
    capabilities: Set[str]


def require_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    engine: Engine = Depends(get_engine),
) -> AuthContext:
    """
    Auth dependency for protected routes.

    Process:
    1. No bearer token -> 401
    2. Verify JWT signature and expiry -> 403 on failure
    3. Load the user row by token id (store is source of truth) -> 403 if gone
    4. Compute capabilities from the stored role

    Raises:
        Unauthenticated(401): No token supplied
        Forbidden(403): Token invalid/expired or user no longer exists
    """
    if credentials is None:
        raise Unauthenticated("Unauthorized")

    payload = verify_token(credentials.credentials)
    user_id = payload.get("id")
    if user_id is None:
        print("[AUTH] Missing id in token payload")
        raise Forbidden("Invalid token payload")

    with engine.connect() as conn:
        row = conn.execute(
            text(
                """
                SELECT id, email, name, role, status, company_name, hr_email
                FROM users WHERE id = :id
                """
            ),
            {"id": user_id},
        ).mappings().first()

    if not row or row["email"] != payload.get("email"):
        print(f"[AUTH] Token user not found: user_id={user_id}")
        raise Forbidden("User not found")

    ctx = AuthContext(
        user_id=row["id"],
        email=row["email"],
        name=row["name"],
        role=row["role"],
        status=row["status"],
        company_name=row["company_name"],
        hr_email=row["hr_email"],
        capabilities=effective_capabilities(row["role"]),
    )

    if IS_DEV:
        print(f"[AUTH] Authenticated: user_id={ctx.user_id}, role={ctx.role}, "
              f"company={ctx.company_name!r}, capabilities={len(ctx.capabilities)}")

    return ctx
