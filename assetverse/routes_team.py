"""
assetverse/routes_team.py

Roster endpoints: employee listing/removal for HR and the company team view.
"""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Path, Response
from sqlalchemy.engine import Engine

from assetverse import roster
from assetverse.auth_context import AuthContext, get_engine
from assetverse.authz import Capability
from assetverse.dependencies import require_capability

router = APIRouter(tags=["team"])


@router.get("/employees")
def list_employees(
    ctx: AuthContext = Depends(require_capability(Capability.TEAM_MANAGE)),
    engine: Engine = Depends(get_engine),
) -> List[Dict[str, Any]]:
    return roster.list_employees(engine, ctx)


@router.delete("/employees/{employee_id}", status_code=204)
def remove_employee(
    employee_id: int = Path(..., ge=1),
    ctx: AuthContext = Depends(require_capability(Capability.TEAM_MANAGE)),
    engine: Engine = Depends(get_engine),
) -> Response:
    """
    Soft-delete an employee from the caller's roster and free their seat.

    Raises:
        HTTPException(404): Not on the caller's roster
    """
    roster.remove_employee(engine, ctx, employee_id)
    return Response(status_code=204)


@router.get("/team/{email}")
def list_team(
    email: str = Path(..., max_length=320),
    ctx: AuthContext = Depends(require_capability(Capability.TEAM_VIEW)),
    engine: Engine = Depends(get_engine),
) -> List[Dict[str, Any]]:
    return roster.list_team(engine, ctx, email)
