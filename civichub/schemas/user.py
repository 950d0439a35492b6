# civichub/schemas/user.py
from typing import Any, Optional
from pydantic import (
    BaseModel,
    EmailStr,
    ConfigDict,
)

from civichub.models.hierarchy import LINEAGE_FIELDS, HierarchyLevel
from civichub.models.user import AdminLevel


# --- Principal ---
class Principal(BaseModel):
    """
    The authenticated actor of a request. Built by the authentication layer
    (or from a stored User) and trusted as-is by the access evaluator.
    """

    id: Optional[str] = None
    admin_level: AdminLevel = AdminLevel.USER
    national_level_id: Optional[str] = None
    region_id: Optional[str] = None
    locality_id: Optional[str] = None
    admin_unit_id: Optional[str] = None
    district_id: Optional[str] = None

    model_config = ConfigDict(extra="ignore", frozen=True)

    def scope_id(self, level: HierarchyLevel) -> Optional[str]:
        value = getattr(self, LINEAGE_FIELDS[level], None)
        return str(value) if value else None

    @classmethod
    def from_user(cls, user: Any) -> "Principal":
        data = {field: getattr(user, field, None) for field in LINEAGE_FIELDS.values()}
        return cls(
            id=str(user.id) if getattr(user, "id", None) is not None else None,
            admin_level=user.admin_level,
            **data,
        )


# --- Base User Schemas ---
class UserBase(BaseModel):
    first_name: str
    last_name: Optional[str] = None
    email: EmailStr
    phone_number: Optional[str] = None
    admin_level: AdminLevel = AdminLevel.USER
    is_active: Optional[bool] = True
    is_verified: Optional[bool] = False
    profile_picture_url: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class HierarchyAssignment(BaseModel):
    """Places a user on a node; ancestors are filled from the node's lineage."""

    level: HierarchyLevel
    node_id: str


class UserCreate(UserBase):
    password: str
    assignment: Optional[HierarchyAssignment] = None


class UserUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = None
    password: Optional[str] = None
    admin_level: Optional[AdminLevel] = None
    is_active: Optional[bool] = None
    is_verified: Optional[bool] = None
    profile_picture_url: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    profile_picture_url: Optional[str] = None

    model_config = ConfigDict(extra="ignore")

