"""
assetverse/roster.py

Company roster: team listing and employee removal.

A company's team is its HR user plus every approved employee whose
hr_email points at that HR. Removal is a soft delete: the employee keeps
their account and request history but leaves the roster and frees a seat.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from assetverse.auth_context import AuthContext
from assetverse.authz import Role
from assetverse.config import IS_DEV
from assetverse.db import now_iso
from assetverse.entitlements import release_roster_seat
from assetverse.errors import NotFound
from assetverse.models import User


def _team_key(role: str, email: str, hr_email: Optional[str]) -> Optional[str]:
    """The HR email that identifies a user's company (None if unaffiliated)."""
    return email if role == Role.HR else hr_email


def _members(conn: Connection, hr_email: str, employees_only: bool = False) -> List[Dict[str, Any]]:
    query = "SELECT * FROM users WHERE (role = 'employee' AND hr_email = :hr AND status = 'approved')"
    if not employees_only:
        query += " OR (role = 'hr' AND email = :hr)"
    rows = conn.execute(
        text(query + " ORDER BY role DESC, name, id"), {"hr": hr_email}
    ).mappings().all()
    return [User(**r).public() for r in rows]


def list_team(engine: Engine, ctx: AuthContext, email: str) -> List[Dict[str, Any]]:
    """
    Everyone in the same company as `email`.

    The caller must belong to that company; anyone else gets 404.
    """
    caller_key = _team_key(ctx.role, ctx.email, ctx.hr_email)
    with engine.connect() as conn:
        target = conn.execute(
            text("SELECT role, email, hr_email, status FROM users WHERE email = :email"),
            {"email": email.strip().lower()},
        ).mappings().first()
        target_key = _team_key(target["role"], target["email"], target["hr_email"]) if target else None

        if not caller_key or target_key != caller_key:
            print(f"[SECURITY] Team lookup denied: user_id={ctx.user_id}")
            raise NotFound("Team not found")

        team = _members(conn, caller_key)

    if IS_DEV:
        print(f"[TEAM] Listed team: user_id={ctx.user_id}, members={len(team)}")
    return team


def list_employees(engine: Engine, ctx: AuthContext) -> List[Dict[str, Any]]:
    """Approved employees on the calling HR's roster."""
    with engine.connect() as conn:
        return _members(conn, ctx.email, employees_only=True)


def remove_employee(engine: Engine, ctx: AuthContext, employee_id: int) -> None:
    """
    Take an employee off the calling HR's roster and release their seat.

    Raises:
        NotFound: No such employee on this HR's roster
    """
    with engine.begin() as conn:
        result = conn.execute(
            text(
                """
                UPDATE users
                SET status = 'removed', company_name = NULL, hr_email = NULL, updated_at = :now
                WHERE id = :id AND role = 'employee' AND hr_email = :hr AND status = 'approved'
                """
            ),
            {"id": employee_id, "hr": ctx.email, "now": now_iso()},
        )
        if result.rowcount == 0:
            raise NotFound("Employee not found")
        release_roster_seat(conn, ctx.email)

    print(f"[TEAM] Removed employee_id={employee_id}, hr_user_id={ctx.user_id}")
