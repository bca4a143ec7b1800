"""
assetverse/lifecycle.py

Asset request lifecycle: submit -> approve | reject, plus listings.

Request states:
    pending -> approved   (terminal, creates an assignment)
    pending -> rejected   (terminal, no stock change)

Every state change is a conditional UPDATE guarded by status='pending', so a
request is processed at most once even when two HR sessions race. Approval
runs all of its writes in one transaction; if any step fails nothing is kept.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from assetverse.auth_context import AuthContext
from assetverse.authz import Role, any_of, is_requester, owns_company_row
from assetverse.config import IS_DEV
from assetverse.db import now_iso, row_to_dict
from assetverse.entitlements import claim_roster_seat
from assetverse.errors import Conflict, NotFound
from assetverse.inventory import fetch_asset
from assetverse.models import RequestStatus

can_delete_request = any_of(is_requester, owns_company_row)


def _fetch_request(conn: Connection, request_id: int) -> Dict[str, Any]:
    row = conn.execute(
        text("SELECT * FROM requests WHERE id = :id"), {"id": request_id}
    ).mappings().first()
    if not row:
        raise NotFound("Request not found")
    return row_to_dict(row)


def _explain_missed_transition(conn: Connection, ctx: AuthContext, request_id: int) -> None:
    """
    A conditional status flip touched no rows. Raise 404 when the request is
    missing or belongs to another company, otherwise 409.
    """
    row = conn.execute(
        text("SELECT status, hr_email FROM requests WHERE id = :id"), {"id": request_id}
    ).mappings().first()
    if not row or not owns_company_row(ctx, row):
        raise NotFound("Request not found")
    raise Conflict(f"Request already {row['status']}")


# ============================================================================
# Submit
# ============================================================================

def submit_request(engine: Engine, ctx: AuthContext, asset_id: int, note: Optional[str] = None) -> Dict[str, Any]:
    """
    Create a pending request for an asset, snapshotting the asset's name,
    type, image and owning company.

    Raises:
        NotFound: Asset does not exist
        Conflict: Asset has no available stock, or a pending request for the
            same asset already exists (enforced by a partial unique index)
    """
    try:
        with engine.begin() as conn:
            asset = fetch_asset(conn, asset_id)
            if asset["available_quantity"] <= 0:
                raise Conflict("No stock available")

            request_id = conn.execute(
                text(
                    """
                    INSERT INTO requests (
                        asset_id, asset_name, asset_type, asset_image,
                        requester_email, requester_name, hr_email, company_name,
                        note, status, request_date
                    ) VALUES (
                        :asset_id, :asset_name, :asset_type, :asset_image,
                        :requester_email, :requester_name, :hr_email, :company_name,
                        :note, 'pending', :now
                    )
                    RETURNING id
                    """
                ),
                {
                    "asset_id": asset["id"],
                    "asset_name": asset["product_name"],
                    "asset_type": asset["product_type"],
                    "asset_image": asset["product_image"],
                    "requester_email": ctx.email,
                    "requester_name": ctx.name,
                    "hr_email": asset["hr_email"],
                    "company_name": asset["company_name"],
                    "note": note,
                    "now": now_iso(),
                },
            ).scalar_one()
            request = _fetch_request(conn, request_id)
    except IntegrityError:
        print(f"[REQUESTS] Duplicate pending request: asset_id={asset_id}, user_id={ctx.user_id}")
        raise Conflict("Request already pending for this asset")

    print(f"[REQUESTS] Submitted request_id={request_id}, asset_id={asset_id}, user_id={ctx.user_id}")
    return request


# ============================================================================
# Approve / reject
# ============================================================================

def approve_request(engine: Engine, ctx: AuthContext, request_id: int) -> Dict[str, Any]:
    """
    Approve a pending request in a single transaction.

    Steps (writes first, each conditional):
    1. pending -> approved, only for this HR's requests
    2. available_quantity - 1, only while stock remains
    3. affiliate the requester with this HR's company; a new roster member
       claims a seat under the package limit
    4. record the assignment

    Returns {"request", "assigned", "available_quantity"}.

    Raises:
        NotFound: Request/asset/employee missing, or another company's request
        Conflict: Already processed, no stock, package limit reached, or the
            employee belongs to another company
    """
    now = now_iso()
    with engine.begin() as conn:
        flipped = conn.execute(
            text(
                """
                UPDATE requests
                SET status = 'approved', processed_by = :hr, processed_at = :now
                WHERE id = :id AND status = 'pending' AND hr_email = :hr
                """
            ),
            {"id": request_id, "hr": ctx.email, "now": now},
        )
        if flipped.rowcount == 0:
            _explain_missed_transition(conn, ctx, request_id)
        request = _fetch_request(conn, request_id)

        decremented = conn.execute(
            text(
                """
                UPDATE assets
                SET available_quantity = available_quantity - 1, updated_at = :now
                WHERE id = :asset_id AND hr_email = :hr AND available_quantity > 0
                """
            ),
            {"asset_id": request["asset_id"], "hr": ctx.email, "now": now},
        )
        if decremented.rowcount == 0:
            fetch_asset(conn, request["asset_id"])
            raise Conflict("No stock available")
        available = conn.execute(
            text("SELECT available_quantity FROM assets WHERE id = :id"),
            {"id": request["asset_id"]},
        ).scalar_one()

        # Only an unaffiliated employee is claimed; existing members match no row
        joined = conn.execute(
            text(
                """
                UPDATE users
                SET company_name = :company, hr_email = :hr, status = 'approved', updated_at = :now
                WHERE email = :employee AND role = 'employee'
                  AND (status <> 'approved' OR hr_email IS NULL)
                """
            ),
            {"company": ctx.company_name, "hr": ctx.email, "employee": request["requester_email"], "now": now},
        )
        if joined.rowcount:
            claim_roster_seat(conn, ctx.email)
        else:
            member = conn.execute(
                text("SELECT role, hr_email FROM users WHERE email = :email"),
                {"email": request["requester_email"]},
            ).mappings().first()
            if not member or member["role"] != Role.EMPLOYEE:
                raise NotFound("Employee not found")
            if member["hr_email"] != ctx.email:
                raise Conflict("Employee belongs to another company")

        assigned_id = conn.execute(
            text(
                """
                INSERT INTO assigned_assets (
                    request_id, asset_id, asset_name, asset_type, asset_image,
                    employee_email, employee_name, hr_email, company_name,
                    assignment_date, status
                ) VALUES (
                    :request_id, :asset_id, :asset_name, :asset_type, :asset_image,
                    :employee_email, :employee_name, :hr_email, :company_name,
                    :now, 'assigned'
                )
                RETURNING id
                """
            ),
            {
                "request_id": request["id"],
                "asset_id": request["asset_id"],
                "asset_name": request["asset_name"],
                "asset_type": request["asset_type"],
                "asset_image": request["asset_image"],
                "employee_email": request["requester_email"],
                "employee_name": request["requester_name"],
                "hr_email": ctx.email,
                "company_name": ctx.company_name,
                "now": now,
            },
        ).scalar_one()
        assigned = row_to_dict(
            conn.execute(
                text("SELECT * FROM assigned_assets WHERE id = :id"), {"id": assigned_id}
            ).mappings().first()
        )

    print(f"[REQUESTS] Approved request_id={request_id}, asset_id={request['asset_id']}, "
          f"available={available}, new_member={bool(joined.rowcount)}")
    return {"request": request, "assigned": assigned, "available_quantity": available}


def reject_request(engine: Engine, ctx: AuthContext, request_id: int) -> Dict[str, Any]:
    """
    Reject a pending request. Stock is untouched.

    Raises:
        NotFound: Missing or another company's request
        Conflict: Already processed
    """
    with engine.begin() as conn:
        result = conn.execute(
            text(
                """
                UPDATE requests
                SET status = 'rejected', processed_by = :hr, processed_at = :now
                WHERE id = :id AND status = 'pending' AND hr_email = :hr
                """
            ),
            {"id": request_id, "hr": ctx.email, "now": now_iso()},
        )
        if result.rowcount == 0:
            _explain_missed_transition(conn, ctx, request_id)
        request = _fetch_request(conn, request_id)

    print(f"[REQUESTS] Rejected request_id={request_id}, hr_user_id={ctx.user_id}")
    return request


def delete_request(engine: Engine, ctx: AuthContext, request_id: int) -> None:
    """Delete a request in any state. Requester or owning HR only; others get 404."""
    with engine.begin() as conn:
        request = _fetch_request(conn, request_id)
        if not can_delete_request(ctx, request):
            print(f"[SECURITY] Request delete denied: request_id={request_id}, user_id={ctx.user_id}")
            raise NotFound("Request not found")
        conn.execute(text("DELETE FROM requests WHERE id = :id"), {"id": request_id})

    print(f"[REQUESTS] Deleted request_id={request_id}, status={request['status']}, user_id={ctx.user_id}")


# ============================================================================
# Listings
# ============================================================================

def list_for_hr(engine: Engine, ctx: AuthContext) -> List[Dict[str, Any]]:
    with engine.connect() as conn:
        rows = conn.execute(
            text("SELECT * FROM requests WHERE hr_email = :email ORDER BY request_date DESC, id DESC"),
            {"email": ctx.email},
        ).mappings().all()
    return [row_to_dict(r) for r in rows]


def list_for_employee(engine: Engine, ctx: AuthContext) -> List[Dict[str, Any]]:
    with engine.connect() as conn:
        rows = conn.execute(
            text("SELECT * FROM requests WHERE requester_email = :email ORDER BY request_date DESC, id DESC"),
            {"email": ctx.email},
        ).mappings().all()
    if IS_DEV:
        pending = sum(1 for r in rows if r["status"] == RequestStatus.pending.value)
        print(f"[REQUESTS] Employee listing: user_id={ctx.user_id}, total={len(rows)}, pending={pending}")
    return [row_to_dict(r) for r in rows]


def list_assigned(engine: Engine, ctx: AuthContext) -> List[Dict[str, Any]]:
    """Employees see their own assignments; HR sees their company's."""
    column = "hr_email" if ctx.role == Role.HR else "employee_email"
    with engine.connect() as conn:
        rows = conn.execute(
            text(f"SELECT * FROM assigned_assets WHERE {column} = :email ORDER BY assignment_date DESC, id DESC"),
            {"email": ctx.email},
        ).mappings().all()
    return [row_to_dict(r) for r in rows]
