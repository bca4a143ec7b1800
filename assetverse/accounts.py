"""
assetverse/accounts.py

Identity operations: registration, login, token re-issue and profile access.

Security guarantees:
- Passwords are stored as salted pbkdf2 hashes and checked by passlib
- Unknown email and wrong password produce the same error
- Profiles never include the password hash
- Only cosmetic profile fields can be edited, and only by their owner
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from assetverse.auth_context import AuthContext, create_access_token, hash_password, verify_password
from assetverse.authz import is_self
from assetverse.config import IS_DEV
from assetverse.db import now_iso
from assetverse.entitlements import DEFAULT_PACKAGE_LIMIT, DEFAULT_PACKAGE_NAME
from assetverse.errors import Conflict, NotFound, Unauthenticated
from assetverse.models import SubscriptionState, User, UserRole, UserStatus
from assetverse.schemas import EmployeeRegisterRequest, HRRegisterRequest, ProfileUpdateRequest


def _fetch_user(conn: Connection, email: str) -> Optional[User]:
    row = conn.execute(
        text("SELECT * FROM users WHERE email = :email"), {"email": email}
    ).mappings().first()
    return User(**row) if row else None


def _require_self(ctx: AuthContext, email: str) -> None:
    if not is_self(ctx, {"email": email.strip().lower()}):
        raise NotFound("User not found")


def _issue(user: User) -> Tuple[str, Dict[str, Any]]:
    token = create_access_token(user.id, user.email, user.role.value)
    return token, user.public()


def register(engine: Engine, req: EmployeeRegisterRequest) -> Tuple[str, Dict[str, Any]]:
    """
    Create an HR (HRRegisterRequest) or employee identity and return
    (token, public profile).

    HR accounts start on the default package; employees start unaffiliated
    (status pending) until an HR approves one of their requests.

    Raises:
        Conflict: Email already registered (unique index, so concurrent
            registrations of one email cannot both succeed)
    """
    role = UserRole.hr if isinstance(req, HRRegisterRequest) else UserRole.employee
    now = now_iso()
    values: Dict[str, Any] = {
        "email": req.email,
        "name": req.name,
        "role": role.value,
        "password_hash": hash_password(req.password),
        "photo": req.photo,
        "date_of_birth": req.date_of_birth,
        "company_name": None,
        "company_logo": None,
        "package_name": None,
        "package_limit": None,
        "subscription": None,
        "status": UserStatus.pending.value,
        "created_at": now,
        "updated_at": now,
    }
    if isinstance(req, HRRegisterRequest):
        values.update({
            "company_name": req.company_name,
            "company_logo": req.company_logo,
            "package_name": DEFAULT_PACKAGE_NAME,
            "package_limit": DEFAULT_PACKAGE_LIMIT,
            "subscription": SubscriptionState.basic.value,
            "status": UserStatus.approved.value,
        })

    try:
        with engine.begin() as conn:
            conn.execute(
                text(
                    """
                    INSERT INTO users (
                        email, name, role, password_hash, photo, date_of_birth,
                        company_name, company_logo, package_name, package_limit,
                        current_employees, subscription, status, created_at, updated_at
                    ) VALUES (
                        :email, :name, :role, :password_hash, :photo, :date_of_birth,
                        :company_name, :company_logo, :package_name, :package_limit,
                        0, :subscription, :status, :created_at, :updated_at
                    )
                    """
                ),
                values,
            )
            user = _fetch_user(conn, req.email)
    except IntegrityError:
        print(f"[REGISTER] Duplicate email rejected: role={role.value}")
        raise Conflict("Email already exists")

    print(f"[REGISTER] Created user_id={user.id}, role={role.value}")
    return _issue(user)


def login(engine: Engine, email: str, password: str) -> Tuple[str, Dict[str, Any]]:
    """
    Raises:
        Unauthenticated: Unknown email or wrong password (same message)
    """
    with engine.connect() as conn:
        user = _fetch_user(conn, email)

    if not user or not verify_password(password, user.password_hash):
        print("[LOGIN] Invalid credentials")
        raise Unauthenticated("Invalid credentials")

    if IS_DEV:
        print(f"[LOGIN] Login success: user_id={user.id}, role={user.role.value}")
    return _issue(user)


def reissue_token(engine: Engine, ctx: AuthContext, email: str) -> Tuple[str, Dict[str, Any]]:
    """
    Issue a fresh token for an existing identity.

    The caller must already hold a valid token for the same email; the new
    token carries the role currently in the store.

    Raises:
        NotFound: Email unknown, or not the caller's own
    """
    _require_self(ctx, email)
    with engine.connect() as conn:
        user = _fetch_user(conn, ctx.email)
    if not user:
        raise NotFound("User not found")
    return _issue(user)


def get_profile(engine: Engine, ctx: AuthContext, email: str) -> Dict[str, Any]:
    """Own profile without credential. Other users' profiles are 404."""
    _require_self(ctx, email)
    with engine.connect() as conn:
        user = _fetch_user(conn, ctx.email)
    if not user:
        raise NotFound("User not found")
    return user.public()


def get_role(engine: Engine, email: str) -> str:
    with engine.connect() as conn:
        role = conn.execute(
            text("SELECT role FROM users WHERE email = :email"), {"email": email.lower()}
        ).scalar()
    if role is None:
        raise NotFound("User not found")
    return role


def update_profile(engine: Engine, ctx: AuthContext, email: str, req: ProfileUpdateRequest) -> Dict[str, Any]:
    """
    Update the caller's own cosmetic profile fields.

    Only fields present in the request are written.
    """
    _require_self(ctx, email)

    changes = req.model_dump(exclude_unset=True, exclude_none=True)
    if "company_logo" in changes and ctx.role != UserRole.hr.value:
        changes.pop("company_logo")

    with engine.begin() as conn:
        if changes:
            assignments = ", ".join(f"{col} = :{col}" for col in changes)
            params = dict(changes, now=now_iso(), email=ctx.email)
            conn.execute(
                text(f"UPDATE users SET {assignments}, updated_at = :now WHERE email = :email"),
                params,
            )
        user = _fetch_user(conn, ctx.email)

    if not user:
        raise NotFound("User not found")
    return user.public()
