"""
assetverse/routes_assets.py

Asset inventory endpoints with company-scoped queries and capability checks.

Security guarantees:
- Writes require capability "asset:manage" and company ownership
- Owner fields always come from the stored HR record
- /assets/public is the only unauthenticated read and is paginated
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Path, Query, Response
from sqlalchemy.engine import Engine

from assetverse import inventory
from assetverse.auth_context import AuthContext, get_engine
from assetverse.authz import Capability
from assetverse.dependencies import require_capability
from assetverse.schemas import (
    AssetCreateRequest,
    AssetPageResponse,
    AssetResponse,
    AssetUpdateRequest,
)

router = APIRouter(
    prefix="/assets",
    tags=["assets"],
)


@router.post("", response_model=AssetResponse, status_code=201)
def create_asset(
    body: AssetCreateRequest,
    ctx: AuthContext = Depends(require_capability(Capability.ASSET_MANAGE)),
    engine: Engine = Depends(get_engine),
) -> AssetResponse:
    """
    Create an asset for the caller's company.

    Security:
    - Requires capability "asset:manage"
    - hr_email/company_name from the stored HR record ONLY

    Raises:
        HTTPException(403): Missing capability (handled by dependency)
        HTTPException(404): HR record no longer exists
    """
    return AssetResponse(**inventory.create_asset(engine, ctx, body))


@router.get("", response_model=List[AssetResponse])
def list_assets(
    ctx: AuthContext = Depends(require_capability(Capability.ASSET_VIEW)),
    engine: Engine = Depends(get_engine),
) -> List[AssetResponse]:
    """HR: own company's inventory. Employees: every asset with stock."""
    return [AssetResponse(**a) for a in inventory.list_assets(engine, ctx)]


# Declared before /{asset_id} so "public" is not parsed as an id
@router.get("/public", response_model=AssetPageResponse)
def search_public_assets(
    search_text: str = Query("", max_length=200),
    limit: int = Query(10, ge=1, le=100),
    skip: int = Query(0, ge=0),
    engine: Engine = Depends(get_engine),
) -> AssetPageResponse:
    result = inventory.search_public(engine, search_text, limit, skip)
    return AssetPageResponse(**result)


@router.get("/{asset_id}", response_model=AssetResponse)
def get_asset(
    asset_id: int = Path(..., ge=1),
    ctx: AuthContext = Depends(require_capability(Capability.ASSET_VIEW)),
    engine: Engine = Depends(get_engine),
) -> AssetResponse:
    return AssetResponse(**inventory.get_asset(engine, ctx, asset_id))


@router.patch("/{asset_id}", response_model=AssetResponse)
def update_asset(
    body: AssetUpdateRequest,
    asset_id: int = Path(..., ge=1),
    ctx: AuthContext = Depends(require_capability(Capability.ASSET_MANAGE)),
    engine: Engine = Depends(get_engine),
) -> AssetResponse:
    """
    Update an owned asset.

    Raises:
        HTTPException(404): Missing or another company's asset
        HTTPException(409): New quantity below the units already assigned
    """
    return AssetResponse(**inventory.update_asset(engine, ctx, asset_id, body))


@router.delete("/{asset_id}", status_code=204)
def delete_asset(
    asset_id: int = Path(..., ge=1),
    ctx: AuthContext = Depends(require_capability(Capability.ASSET_MANAGE)),
    engine: Engine = Depends(get_engine),
) -> Response:
    inventory.delete_asset(engine, ctx, asset_id)
    return Response(status_code=204)
