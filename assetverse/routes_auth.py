"""
assetverse/routes_auth.py

Identity endpoints: registration, login, token re-issue and profiles.

Security guarantees:
- Registration and login are public; everything else needs a bearer token
- Profiles are self-only: another user's email is a 404
- Responses never include the password hash
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Path
from sqlalchemy.engine import Engine

from assetverse import accounts
from assetverse.auth_context import AuthContext, get_engine, require_auth_context
from assetverse.schemas import (
    EmployeeRegisterRequest,
    HRRegisterRequest,
    LoginRequest,
    ProfileUpdateRequest,
    TokenRequest,
    TokenResponse,
)

router = APIRouter(tags=["auth"])


@router.post("/register/hr", response_model=TokenResponse, status_code=201)
def register_hr(body: HRRegisterRequest, engine: Engine = Depends(get_engine)) -> TokenResponse:
    """
    Register a company HR account on the default package.

    Raises:
        HTTPException(409): Email already registered
    """
    token, user = accounts.register(engine, body)
    return TokenResponse(token=token, user=user)


@router.post("/register/employee", response_model=TokenResponse, status_code=201)
def register_employee(body: EmployeeRegisterRequest, engine: Engine = Depends(get_engine)) -> TokenResponse:
    token, user = accounts.register(engine, body)
    return TokenResponse(token=token, user=user)


@router.post("/login", response_model=TokenResponse)
def login(body: LoginRequest, engine: Engine = Depends(get_engine)) -> TokenResponse:
    """
    Exchange email + password for a token.

    Raises:
        HTTPException(401): Unknown email or wrong password
    """
    token, user = accounts.login(engine, body.email, body.password)
    return TokenResponse(token=token, user=user)


@router.post("/jwt", response_model=TokenResponse)
def reissue_token(
    body: TokenRequest,
    ctx: AuthContext = Depends(require_auth_context),
    engine: Engine = Depends(get_engine),
) -> TokenResponse:
    """Fresh token for the caller's own identity, with the role currently stored."""
    token, user = accounts.reissue_token(engine, ctx, body.email)
    return TokenResponse(token=token, user=user)


@router.get("/users/{email}/role")
def get_role(
    email: str = Path(..., max_length=320),
    ctx: AuthContext = Depends(require_auth_context),
    engine: Engine = Depends(get_engine),
) -> Dict[str, Any]:
    return {"role": accounts.get_role(engine, email)}


@router.get("/users/{email}")
def get_profile(
    email: str = Path(..., max_length=320),
    ctx: AuthContext = Depends(require_auth_context),
    engine: Engine = Depends(get_engine),
) -> Dict[str, Any]:
    return accounts.get_profile(engine, ctx, email)


@router.patch("/users/{email}")
def update_profile(
    body: ProfileUpdateRequest,
    email: str = Path(..., max_length=320),
    ctx: AuthContext = Depends(require_auth_context),
    engine: Engine = Depends(get_engine),
) -> Dict[str, Any]:
    """
    Update the caller's own cosmetic profile fields.

    Role, company and package fields are not accepted (422).
    """
    return accounts.update_profile(engine, ctx, email, body)
