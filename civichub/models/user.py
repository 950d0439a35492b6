# civichub/models/user.py
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from datetime import datetime
from pydantic import Field, EmailStr, ConfigDict, BaseModel
from beanie import Document, PydanticObjectId

from civichub.models.hierarchy import HIERARCHY_LEVELS, LINEAGE_FIELDS, HierarchyLevel


# --- AdminLevel Enum ---
class AdminLevel(str, Enum):
    """Rank of a principal within the fixed hierarchy of authority."""

    ADMIN = "admin"
    GENERAL_SECRETARIAT = "general_secretariat"
    NATIONAL_LEVEL = "national_level"
    REGION = "region"
    LOCALITY = "locality"
    ADMIN_UNIT = "admin_unit"
    DISTRICT = "district"
    USER = "user"


# Smaller depth means broader authority.
ADMIN_LEVEL_DEPTH: Dict[AdminLevel, int] = {
    level: depth for depth, level in enumerate(AdminLevel)
}

TOP_OF_HIERARCHY = frozenset({AdminLevel.ADMIN, AdminLevel.GENERAL_SECRETARIAT})


def is_top_of_hierarchy(admin_level: Optional[AdminLevel]) -> bool:
    return admin_level in TOP_OF_HIERARCHY


def scoped_level(admin_level: Optional[AdminLevel]) -> Optional[HierarchyLevel]:
    """The node level an admin level administers, if it administers one."""
    if admin_level is None:
        return None
    try:
        return HierarchyLevel(admin_level.value)
    except ValueError:
        return None


def level_depth(level: Any) -> int:
    """Depth of an AdminLevel or HierarchyLevel on the shared ordering."""
    return ADMIN_LEVEL_DEPTH[AdminLevel(level.value)]


def deepest_assignment(record: Any) -> Optional[Tuple[HierarchyLevel, str]]:
    """
    Returns the deepest non-null scoping id of a user-like record together
    with its level, or None when the record has no hierarchy assignment.
    """
    for level in reversed(HIERARCHY_LEVELS):
        value = getattr(record, LINEAGE_FIELDS[level], None)
        if value:
            return level, str(value)
    return None


# --- Audit Log Entry Model ---
class AuditLogEntry(BaseModel):
    """
    Represents an entry in a user's audit log for profile changes.
    """

    changed_by_user_id: Optional[PydanticObjectId] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    field_name: str
    old_value: Any = None
    new_value: Any = None


# --- User Model ---
class User(Document):
    first_name: str
    last_name: Optional[str] = None
    email: EmailStr
    phone_number: Optional[str] = None
    hashed_password: str
    admin_level: AdminLevel = AdminLevel.USER
    is_active: bool = True
    is_verified: bool = False
    profile_picture_url: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    # Scoping ids. The id at the user's own admin level is the root of their
    # jurisdiction; ids above it mirror that node's ancestors.
    national_level_id: Optional[str] = None
    region_id: Optional[str] = None
    locality_id: Optional[str] = None
    admin_unit_id: Optional[str] = None
    district_id: Optional[str] = None

    audit_log: List[AuditLogEntry] = Field(default_factory=list)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    class Settings:
        name = "users"
        indexes = [
            "email",
            "national_level_id",
            "region_id",
            "locality_id",
            "admin_unit_id",
            "district_id",
        ]
