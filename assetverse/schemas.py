"""
assetverse/schemas.py

Pydantic request/response schemas for the HTTP API.
Inputs are trimmed and bounded here; business rules live in the services.
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from assetverse.models import AssetType


def _normalize_email(v: Any) -> Any:
    if isinstance(v, str):
        v = v.strip().lower()
        if "@" not in v or v.startswith("@") or v.endswith("@"):
            raise ValueError("invalid email address")
    return v


def _strip(v: Any) -> Any:
    if isinstance(v, str):
        return v.strip()
    return v


Email = Annotated[str, BeforeValidator(_normalize_email)]
Trimmed = Annotated[str, BeforeValidator(_strip)]


# ========================================================================
# AUTH / IDENTITY
# ========================================================================

class EmployeeRegisterRequest(BaseModel):
    name: Trimmed = Field(..., min_length=1, max_length=200)
    email: Email = Field(..., max_length=320)
    password: str = Field(..., min_length=6, max_length=128)
    date_of_birth: Optional[str] = Field(None, max_length=32)
    photo: Optional[str] = Field(None, max_length=2000)


class HRRegisterRequest(EmployeeRegisterRequest):
    company_name: Trimmed = Field(..., min_length=1, max_length=200)
    company_logo: Optional[str] = Field(None, max_length=2000)


class LoginRequest(BaseModel):
    email: Email
    password: str


class TokenRequest(BaseModel):
    email: Email


class TokenResponse(BaseModel):
    token: str
    user: Dict[str, Any]


class ProfileUpdateRequest(BaseModel):
    """Only cosmetic profile fields are editable by their owner."""
    model_config = ConfigDict(extra="forbid")

    name: Optional[Trimmed] = Field(None, min_length=1, max_length=200)
    photo: Optional[str] = Field(None, max_length=2000)
    date_of_birth: Optional[str] = Field(None, max_length=32)
    company_logo: Optional[str] = Field(None, max_length=2000)


# ========================================================================
# ASSETS
# ========================================================================

class AssetCreateRequest(BaseModel):
    product_name: Trimmed = Field(..., min_length=1, max_length=200)
    product_type: AssetType
    product_quantity: int = Field(..., ge=1, le=1_000_000)
    product_image: Optional[str] = Field(None, max_length=2000)


class AssetUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    product_name: Optional[Trimmed] = Field(None, min_length=1, max_length=200)
    product_type: Optional[AssetType] = None
    product_quantity: Optional[int] = Field(None, ge=1, le=1_000_000)
    product_image: Optional[str] = Field(None, max_length=2000)


class AssetResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    product_name: str
    product_type: str
    product_image: Optional[str] = None
    product_quantity: int
    available_quantity: int
    hr_email: str
    company_name: Optional[str] = None
    date_added: str
    updated_at: str


class AssetPageResponse(BaseModel):
    assets: List[AssetResponse] = Field(default_factory=list)
    total: int = 0


# ========================================================================
# REQUESTS
# ========================================================================

class RequestCreateRequest(BaseModel):
    asset_id: int = Field(..., ge=1)
    note: Optional[str] = Field(None, max_length=1000)


class RequestResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    asset_id: int
    asset_name: str
    asset_type: str
    asset_image: Optional[str] = None
    requester_email: str
    requester_name: Optional[str] = None
    hr_email: str
    company_name: Optional[str] = None
    note: Optional[str] = None
    status: str
    request_date: str
    processed_by: Optional[str] = None
    processed_at: Optional[str] = None


class AssignedAssetResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    request_id: int
    asset_id: int
    asset_name: str
    asset_type: str
    asset_image: Optional[str] = None
    employee_email: str
    employee_name: Optional[str] = None
    hr_email: str
    company_name: Optional[str] = None
    assignment_date: str
    status: str


class ApprovalResponse(BaseModel):
    request: RequestResponse
    assigned: AssignedAssetResponse
    available_quantity: int


# ========================================================================
# BILLING
# ========================================================================

class CheckoutRequest(BaseModel):
    package_id: int = Field(..., ge=1)


class CheckoutResponse(BaseModel):
    url: Optional[str] = None
    session_id: str


class PaymentConfirmRequest(BaseModel):
    session_id: Trimmed = Field(..., min_length=1, max_length=255)


class PaymentResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    user_id: int
    package_id: int
    package_name: str
    employee_limit: int
    amount: float
    transaction_id: str
    customer_email: Optional[str] = None
    status: str
    payment_date: str


class FinalizeResponse(BaseModel):
    success: bool = True
    already_processed: bool = False
    payment: PaymentResponse
