# civichub/models/content.py
from enum import Enum
from typing import Any, Dict, Optional, Type
from datetime import datetime
from pydantic import Field
from beanie import Document

from civichub.models.hierarchy import HIERARCHY_LEVELS, HierarchyLevel


class ContentType(str, Enum):
    """Kinds of content that can be targeted at parts of the hierarchy."""

    BULLETINS = "bulletins"
    SURVEYS = "surveys"
    VOTING_ITEMS = "voting_items"
    REPORTS = "reports"


# Field holding the target id for each hierarchy level.
TARGET_FIELDS: Dict[HierarchyLevel, str] = {
    level: f"target_{level.value}_id" for level in HIERARCHY_LEVELS
}


def content_targets(record: Any) -> Dict[HierarchyLevel, str]:
    """Non-null target ids of a content record, keyed by level."""
    targets = {}
    for level, field_name in TARGET_FIELDS.items():
        value = getattr(record, field_name, None)
        if value:
            targets[level] = str(value)
    return targets


class TargetedContent(Document):
    """
    Common shape of bulletins, surveys, voting items and reports. A record may
    carry targets at several levels at once.
    """

    title: str
    body: Optional[str] = None
    created_by_id: Optional[str] = None
    active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    target_national_level_id: Optional[str] = None
    target_region_id: Optional[str] = None
    target_locality_id: Optional[str] = None
    target_admin_unit_id: Optional[str] = None
    target_district_id: Optional[str] = None


class Bulletin(TargetedContent):
    published_at: Optional[datetime] = None

    class Settings:
        name = "bulletins"


class Survey(TargetedContent):
    questions: list = Field(default_factory=list)
    closes_at: Optional[datetime] = None

    class Settings:
        name = "surveys"


class VotingItem(TargetedContent):
    options: list = Field(default_factory=list)
    closes_at: Optional[datetime] = None

    class Settings:
        name = "voting_items"


class Report(TargetedContent):
    status: str = "pending"

    class Settings:
        name = "reports"


CONTENT_MODELS: Dict[ContentType, Type[TargetedContent]] = {
    ContentType.BULLETINS: Bulletin,
    ContentType.SURVEYS: Survey,
    ContentType.VOTING_ITEMS: VotingItem,
    ContentType.REPORTS: Report,
}
