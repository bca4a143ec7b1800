"""
assetverse/authz.py

Capability-based authorization for AssetVerse.

Single source of truth for what each role may do and for the ownership
rules that scope a capability to a specific row.

Roles: hr (company administrator), employee
Ownership: rows carry hr_email (company owner) and, for requests,
requester_email. An HR user only ever touches rows whose hr_email is their
own email.

Pure Python logic - no FastAPI imports, no database access.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Dict, Mapping, Set


# ============================================================================
# Capabilities
# ============================================================================

class Capability(str, Enum):
    """Available capabilities in the AssetVerse platform."""

    # Inventory
    ASSET_MANAGE = "asset:manage"
    ASSET_VIEW = "asset:view"

    # Request workflow
    REQUEST_SUBMIT = "request:submit"
    REQUEST_REVIEW = "request:review"

    # Roster
    TEAM_MANAGE = "team:manage"
    TEAM_VIEW = "team:view"

    # Subscription packages
    BILLING_MANAGE = "billing:manage"


class Role:
    """Role constants."""
    HR = "hr"
    EMPLOYEE = "employee"


ROLE_CAPABILITIES: Dict[str, Set[str]] = {
    "hr": {
        Capability.ASSET_MANAGE,
        Capability.ASSET_VIEW,
        Capability.REQUEST_REVIEW,
        Capability.TEAM_MANAGE,
        Capability.TEAM_VIEW,
        Capability.BILLING_MANAGE,
    },
    "employee": {
        Capability.ASSET_VIEW,
        Capability.REQUEST_SUBMIT,
        Capability.TEAM_VIEW,
    },
}


def effective_capabilities(role: str) -> Set[str]:
    """
    Capabilities granted to a role.

    Returns plain capability strings; an empty set for unknown roles.
    """
    caps = ROLE_CAPABILITIES.get(role.lower() if role else "", set())
    return {c.value for c in caps}


# ============================================================================
# Ownership predicates
# ============================================================================
#
# Each predicate takes the caller's identity (anything with .email and .role)
# and a row mapping, and answers one question. Routes combine them with
# any_of() instead of repeating inline conditionals.

OwnershipRule = Callable[[Any, Mapping[str, Any]], bool]


def owns_company_row(ctx: Any, row: Mapping[str, Any]) -> bool:
    """Caller is the HR that owns the row (asset, request, assignment)."""
    return ctx.role == Role.HR and row.get("hr_email") == ctx.email


def is_requester(ctx: Any, row: Mapping[str, Any]) -> bool:
    """Caller submitted the request."""
    return row.get("requester_email") == ctx.email


def is_self(ctx: Any, row: Mapping[str, Any]) -> bool:
    """Row is the caller's own user record."""
    return row.get("email") == ctx.email


def any_of(*rules: OwnershipRule) -> OwnershipRule:
    """Combine ownership rules: allowed if any rule allows."""
    def _combined(ctx: Any, row: Mapping[str, Any]) -> bool:
        return any(rule(ctx, row) for rule in rules)
    return _combined
