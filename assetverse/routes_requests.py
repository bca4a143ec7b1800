"""
assetverse/routes_requests.py

Asset request workflow endpoints.

Security guarantees:
- Employees submit ("request:submit"); HR reviews ("request:review")
- Review and listing are scoped to the caller's company by hr_email
- Deletion is allowed for the requester or the owning HR; others get 404
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Path, Response
from sqlalchemy.engine import Engine

from assetverse import lifecycle
from assetverse.auth_context import AuthContext, get_engine, require_auth_context
from assetverse.authz import Capability
from assetverse.dependencies import require_capability
from assetverse.schemas import (
    ApprovalResponse,
    AssignedAssetResponse,
    RequestCreateRequest,
    RequestResponse,
)

router = APIRouter(tags=["requests"])


@router.post("/requests", response_model=RequestResponse, status_code=201)
def submit_request(
    body: RequestCreateRequest,
    ctx: AuthContext = Depends(require_capability(Capability.REQUEST_SUBMIT)),
    engine: Engine = Depends(get_engine),
) -> RequestResponse:
    """
    Request one unit of an asset.

    Raises:
        HTTPException(404): Asset does not exist
        HTTPException(409): No stock, or a pending request already exists
    """
    return RequestResponse(**lifecycle.submit_request(engine, ctx, body.asset_id, body.note))


@router.post("/requests/{request_id}/approve", response_model=ApprovalResponse)
def approve_request(
    request_id: int = Path(..., ge=1),
    ctx: AuthContext = Depends(require_capability(Capability.REQUEST_REVIEW)),
    engine: Engine = Depends(get_engine),
) -> ApprovalResponse:
    """
    Approve a pending request: decrements stock, affiliates the employee and
    records the assignment, all in one transaction.

    Raises:
        HTTPException(404): Missing or another company's request
        HTTPException(409): Already processed, no stock, or package limit reached
    """
    return ApprovalResponse(**lifecycle.approve_request(engine, ctx, request_id))


@router.patch("/requests/{request_id}/reject", response_model=RequestResponse)
def reject_request(
    request_id: int = Path(..., ge=1),
    ctx: AuthContext = Depends(require_capability(Capability.REQUEST_REVIEW)),
    engine: Engine = Depends(get_engine),
) -> RequestResponse:
    return RequestResponse(**lifecycle.reject_request(engine, ctx, request_id))


@router.delete("/requests/{request_id}", status_code=204)
def delete_request(
    request_id: int = Path(..., ge=1),
    ctx: AuthContext = Depends(require_auth_context),
    engine: Engine = Depends(get_engine),
) -> Response:
    lifecycle.delete_request(engine, ctx, request_id)
    return Response(status_code=204)


@router.get("/asset-requests/hr", response_model=List[RequestResponse])
def list_requests_for_hr(
    ctx: AuthContext = Depends(require_capability(Capability.REQUEST_REVIEW)),
    engine: Engine = Depends(get_engine),
) -> List[RequestResponse]:
    return [RequestResponse(**r) for r in lifecycle.list_for_hr(engine, ctx)]


@router.get("/asset-requests/employee", response_model=List[RequestResponse])
def list_requests_for_employee(
    ctx: AuthContext = Depends(require_capability(Capability.REQUEST_SUBMIT)),
    engine: Engine = Depends(get_engine),
) -> List[RequestResponse]:
    return [RequestResponse(**r) for r in lifecycle.list_for_employee(engine, ctx)]


@router.get("/assigned-assets", response_model=List[AssignedAssetResponse])
def list_assigned_assets(
    ctx: AuthContext = Depends(require_auth_context),
    engine: Engine = Depends(get_engine),
) -> List[AssignedAssetResponse]:
    return [AssignedAssetResponse(**a) for a in lifecycle.list_assigned(engine, ctx)]
