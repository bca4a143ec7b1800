"""
assetverse/inventory.py

Asset inventory operations with company-scoped queries.

Security guarantees:
- Owner fields (hr_email, company_name) come from the HR's stored record,
  never from the request body
- HR reads/writes are filtered by hr_email; another company's asset is a 404
- available_quantity stays within [0, product_quantity]: quantity edits are
  conditional updates backed by CHECK constraints
"""

from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from assetverse.auth_context import AuthContext
from assetverse.authz import Role, owns_company_row
from assetverse.config import IS_DEV
from assetverse.db import now_iso, row_to_dict
from assetverse.errors import Conflict, NotFound
from assetverse.schemas import AssetCreateRequest, AssetUpdateRequest

ASSET_COLUMNS = """
    id, product_name, product_type, product_image, product_quantity,
    available_quantity, hr_email, company_name, date_added, updated_at
"""


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def fetch_asset(conn: Connection, asset_id: int) -> Dict[str, Any]:
    row = conn.execute(
        text(f"SELECT {ASSET_COLUMNS} FROM assets WHERE id = :id"), {"id": asset_id}
    ).mappings().first()
    if not row:
        raise NotFound("Asset not found")
    return row_to_dict(row)


def require_owned_asset(conn: Connection, ctx: AuthContext, asset_id: int) -> Dict[str, Any]:
    """
    Fetch an asset and enforce company ownership.

    Returns 404 (not 403) for another company's asset so ids cannot be probed.
    """
    asset = fetch_asset(conn, asset_id)
    if not owns_company_row(ctx, asset):
        print(f"[SECURITY] Asset access denied: asset_id={asset_id}, user_id={ctx.user_id}")
        raise NotFound("Asset not found")
    return asset


def create_asset(engine: Engine, ctx: AuthContext, req: AssetCreateRequest) -> Dict[str, Any]:
    """
    Create an asset owned by the calling HR.

    Raises:
        NotFound: The HR record no longer exists
    """
    now = now_iso()
    with engine.begin() as conn:
        hr = conn.execute(
            text("SELECT email, company_name FROM users WHERE id = :id AND role = 'hr'"),
            {"id": ctx.user_id},
        ).mappings().first()
        if not hr:
            raise NotFound("HR not found")

        asset_id = conn.execute(
            text(
                """
                INSERT INTO assets (
                    product_name, product_type, product_image, product_quantity,
                    available_quantity, hr_email, company_name, date_added, updated_at
                ) VALUES (
                    :product_name, :product_type, :product_image, :quantity,
                    :quantity, :hr_email, :company_name, :now, :now
                )
                RETURNING id
                """
            ),
            {
                "product_name": req.product_name,
                "product_type": req.product_type.value,
                "product_image": req.product_image,
                "quantity": req.product_quantity,
                "hr_email": hr["email"],
                "company_name": hr["company_name"],
                "now": now,
            },
        ).scalar_one()
        asset = fetch_asset(conn, asset_id)

    print(f"[ASSETS] Created asset_id={asset_id}, hr_user_id={ctx.user_id}, quantity={req.product_quantity}")
    return asset


def list_assets(engine: Engine, ctx: AuthContext) -> List[Dict[str, Any]]:
    """
    Role-scoped listing: HR sees their company's inventory, employees see
    every asset that still has stock.
    """
    with engine.connect() as conn:
        if ctx.role == Role.HR:
            rows = conn.execute(
                text(f"SELECT {ASSET_COLUMNS} FROM assets WHERE hr_email = :email ORDER BY date_added DESC, id DESC"),
                {"email": ctx.email},
            ).mappings().all()
        else:
            rows = conn.execute(
                text(f"SELECT {ASSET_COLUMNS} FROM assets WHERE available_quantity > 0 ORDER BY date_added DESC, id DESC")
            ).mappings().all()
    return [row_to_dict(r) for r in rows]


def get_asset(engine: Engine, ctx: AuthContext, asset_id: int) -> Dict[str, Any]:
    with engine.connect() as conn:
        if ctx.role == Role.HR:
            return require_owned_asset(conn, ctx, asset_id)
        return fetch_asset(conn, asset_id)


def search_public(engine: Engine, search_text: str, limit: int, skip: int) -> Dict[str, Any]:
    """
    Case-insensitive substring search on product name, paginated.

    Returns {"assets": [...], "total": <matches before paging>}.
    """
    pattern = f"%{_escape_like(search_text.strip().lower())}%"
    where = "LOWER(product_name) LIKE :pattern ESCAPE '\\'"
    with engine.connect() as conn:
        total = conn.execute(
            text(f"SELECT COUNT(*) FROM assets WHERE {where}"), {"pattern": pattern}
        ).scalar_one()
        rows = conn.execute(
            text(
                f"""
                SELECT {ASSET_COLUMNS} FROM assets
                WHERE {where}
                ORDER BY id
                LIMIT :limit OFFSET :skip
                """
            ),
            {"pattern": pattern, "limit": limit, "skip": skip},
        ).mappings().all()
    return {"assets": [row_to_dict(r) for r in rows], "total": int(total)}


def update_asset(engine: Engine, ctx: AuthContext, asset_id: int, req: AssetUpdateRequest) -> Dict[str, Any]:
    """
    Update an owned asset.

    A new product_quantity shifts available_quantity by the same delta; the
    update is refused if units already assigned would leave available stock
    negative.

    Raises:
        NotFound: Missing or another company's asset
        Conflict: Quantity lower than the units already assigned
    """
    changes = req.model_dump(exclude_unset=True, exclude_none=True)
    if "product_type" in changes:
        changes["product_type"] = req.product_type.value

    with engine.begin() as conn:
        require_owned_asset(conn, ctx, asset_id)
        if not changes:
            return fetch_asset(conn, asset_id)

        assignments = [f"{col} = :{col}" for col in changes if col != "product_quantity"]
        guard = ""
        if "product_quantity" in changes:
            # Right-hand sides see the pre-update row
            assignments.append("available_quantity = available_quantity + (:product_quantity - product_quantity)")
            assignments.append("product_quantity = :product_quantity")
            guard = " AND available_quantity + (:product_quantity - product_quantity) >= 0"
        assignments.append("updated_at = :now")

        result = conn.execute(
            text(f"UPDATE assets SET {', '.join(assignments)} WHERE id = :id AND hr_email = :hr_email{guard}"),
            dict(changes, now=now_iso(), id=asset_id, hr_email=ctx.email),
        )
        if result.rowcount == 0:
            raise Conflict("Quantity cannot be lower than the number of units already assigned")
        asset = fetch_asset(conn, asset_id)

    if IS_DEV:
        print(f"[ASSETS] Updated asset_id={asset_id}, fields={sorted(changes)}")
    return asset


def delete_asset(engine: Engine, ctx: AuthContext, asset_id: int) -> None:
    """Delete an owned asset. Requests keep their snapshot of it."""
    with engine.begin() as conn:
        require_owned_asset(conn, ctx, asset_id)
        conn.execute(
            text("DELETE FROM assets WHERE id = :id AND hr_email = :hr_email"),
            {"id": asset_id, "hr_email": ctx.email},
        )
    print(f"[ASSETS] Deleted asset_id={asset_id}, hr_user_id={ctx.user_id}")
