"""
assetverse/entitlements.py

Package catalogue and roster-size entitlements.

An HR user's package decides how many employees can be on their roster
(package_limit). This module centralises:
- The package catalogue (seeded on first start)
- Claiming/releasing roster seats with conditional updates
- Applying a purchased package to an HR record

Source of truth: packages + users tables.
"""

from __future__ import annotations

import json
from typing import List

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from assetverse.db import now_iso
from assetverse.errors import Conflict, NotFound
from assetverse.models import Package, SubscriptionState


# Every new HR account starts on the free tier below
DEFAULT_PACKAGE_NAME = "Basic"
DEFAULT_PACKAGE_LIMIT = 5

DEFAULT_PACKAGES: List[Package] = [
    Package(name="Basic", price=5, employee_limit=5, features=["Up to 5 employees", "Asset tracking", "Employee management"]),
    Package(name="Standard", price=8, employee_limit=10, features=["Up to 10 employees", "All Basic features", "Advanced analytics"]),
    Package(name="Premium", price=15, employee_limit=20, features=["Up to 20 employees", "All Standard features", "Priority support"]),
]


def _row_to_package(row) -> Package:
    return Package(
        id=row["id"],
        name=row["name"],
        price=row["price"],
        employee_limit=row["employee_limit"],
        features=json.loads(row["features_json"] or "[]"),
        created_at=row["created_at"],
    )


def seed_packages(engine: Engine) -> None:
    """Insert the default catalogue if the packages table is empty."""
    with engine.begin() as conn:
        count = conn.execute(text("SELECT COUNT(*) FROM packages")).scalar_one()
        if count:
            return
        for pkg in DEFAULT_PACKAGES:
            conn.execute(
                text(
                    """
                    INSERT INTO packages (name, price, employee_limit, features_json, created_at)
                    VALUES (:name, :price, :employee_limit, :features_json, :created_at)
                    """
                ),
                {
                    "name": pkg.name,
                    "price": pkg.price,
                    "employee_limit": pkg.employee_limit,
                    "features_json": json.dumps(pkg.features),
                    "created_at": now_iso(),
                },
            )
    print(f"[MIGRATION] Seeded {len(DEFAULT_PACKAGES)} default packages")


def list_packages(engine: Engine) -> List[Package]:
    with engine.connect() as conn:
        rows = conn.execute(
            text("SELECT * FROM packages ORDER BY employee_limit, id")
        ).mappings().all()
    return [_row_to_package(r) for r in rows]


def get_package(conn: Connection, package_id: int) -> Package:
    row = conn.execute(
        text("SELECT * FROM packages WHERE id = :id"), {"id": package_id}
    ).mappings().first()
    if not row:
        raise NotFound("Package not found")
    return _row_to_package(row)


def claim_roster_seat(conn: Connection, hr_email: str) -> None:
    """
    Take one roster seat on an HR account.

    The increment only applies while current_employees < package_limit, so
    two concurrent approvals can never push a roster over its limit.

    Raises:
        Conflict: If the roster is already full.
    """
    result = conn.execute(
        text(
            """
            UPDATE users
            SET current_employees = current_employees + 1, updated_at = :now
            WHERE email = :hr_email
              AND role = 'hr'
              AND current_employees < COALESCE(package_limit, :default_limit)
            """
        ),
        {"hr_email": hr_email, "now": now_iso(), "default_limit": DEFAULT_PACKAGE_LIMIT},
    )
    if result.rowcount == 0:
        raise Conflict("Package limit reached - upgrade your package to add more employees")


def release_roster_seat(conn: Connection, hr_email: str) -> None:
    """Give back one roster seat (never drops below zero)."""
    conn.execute(
        text(
            """
            UPDATE users
            SET current_employees = current_employees - 1, updated_at = :now
            WHERE email = :hr_email AND role = 'hr' AND current_employees > 0
            """
        ),
        {"hr_email": hr_email, "now": now_iso()},
    )


def apply_package(conn: Connection, user_id: int, package: Package) -> None:
    """Switch an HR account to a purchased package."""
    conn.execute(
        text(
            """
            UPDATE users
            SET package_name = :package_name,
                package_limit = :package_limit,
                subscription = :subscription,
                updated_at = :now
            WHERE id = :user_id
            """
        ),
        {
            "package_name": package.name,
            "package_limit": package.employee_limit,
            "subscription": SubscriptionState.active.value,
            "now": now_iso(),
            "user_id": user_id,
        },
    )
