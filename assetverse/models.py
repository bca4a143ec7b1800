from pydantic import BaseModel, Field
from typing import Optional, List
from enum import Enum

# Enums
class UserRole(str, Enum):
    hr = "hr"
    employee = "employee"

class UserStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    removed = "removed"

class SubscriptionState(str, Enum):
    basic = "basic"
    active = "active"

class AssetType(str, Enum):
    returnable = "returnable"
    non_returnable = "non-returnable"

class RequestStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"

# Models (one per stored row shape)
class User(BaseModel):
    id: Optional[int] = None
    email: str
    name: str
    role: UserRole
    password_hash: Optional[str] = None
    photo: Optional[str] = None
    date_of_birth: Optional[str] = None
    company_name: Optional[str] = None
    company_logo: Optional[str] = None
    hr_email: Optional[str] = None
    package_name: Optional[str] = None
    package_limit: Optional[int] = None
    current_employees: int = 0
    subscription: Optional[SubscriptionState] = None
    status: UserStatus = UserStatus.approved
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def public(self) -> dict:
        """Profile as returned to clients (credential stripped)."""
        data = self.model_dump(mode="json", exclude={"password_hash"})
        return data

class Package(BaseModel):
    id: Optional[int] = None
    name: str
    price: float
    employee_limit: int
    features: List[str] = Field(default_factory=list)
    created_at: Optional[str] = None
