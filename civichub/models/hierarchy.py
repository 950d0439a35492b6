# civichub/models/hierarchy.py
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Type
from datetime import datetime
from pydantic import Field
from beanie import Document
from pymongo import ASCENDING, IndexModel


# --- Hierarchy Levels (ordered from the national root down to the leaf) ---
class HierarchyLevel(str, Enum):
    """The five node levels of the administrative tree."""

    NATIONAL_LEVEL = "national_level"
    REGION = "region"
    LOCALITY = "locality"
    ADMIN_UNIT = "admin_unit"
    DISTRICT = "district"


HIERARCHY_LEVELS: Tuple[HierarchyLevel, ...] = (
    HierarchyLevel.NATIONAL_LEVEL,
    HierarchyLevel.REGION,
    HierarchyLevel.LOCALITY,
    HierarchyLevel.ADMIN_UNIT,
    HierarchyLevel.DISTRICT,
)

# Field that stores the id of the ancestor at a given level, on nodes and users.
LINEAGE_FIELDS: Dict[HierarchyLevel, str] = {
    HierarchyLevel.NATIONAL_LEVEL: "national_level_id",
    HierarchyLevel.REGION: "region_id",
    HierarchyLevel.LOCALITY: "locality_id",
    HierarchyLevel.ADMIN_UNIT: "admin_unit_id",
    HierarchyLevel.DISTRICT: "district_id",
}

# Plural keys used in import payloads, result summaries and stats.
PLURAL_KEYS: Dict[HierarchyLevel, str] = {
    HierarchyLevel.NATIONAL_LEVEL: "national_levels",
    HierarchyLevel.REGION: "regions",
    HierarchyLevel.LOCALITY: "localities",
    HierarchyLevel.ADMIN_UNIT: "admin_units",
    HierarchyLevel.DISTRICT: "districts",
}


def parent_level(level: HierarchyLevel) -> Optional[HierarchyLevel]:
    index = HIERARCHY_LEVELS.index(level)
    return HIERARCHY_LEVELS[index - 1] if index > 0 else None


def child_level(level: HierarchyLevel) -> Optional[HierarchyLevel]:
    index = HIERARCHY_LEVELS.index(level)
    return HIERARCHY_LEVELS[index + 1] if index + 1 < len(HIERARCHY_LEVELS) else None


def ancestors_of(level: HierarchyLevel) -> Tuple[HierarchyLevel, ...]:
    """Levels above `level`, root first."""
    return HIERARCHY_LEVELS[: HIERARCHY_LEVELS.index(level)]


def descendants_of(level: HierarchyLevel) -> Tuple[HierarchyLevel, ...]:
    """Levels below `level`, nearest first."""
    return HIERARCHY_LEVELS[HIERARCHY_LEVELS.index(level) + 1 :]


def node_lineage(level: HierarchyLevel, node: Any) -> Dict[HierarchyLevel, str]:
    """
    Maps every ancestor level of `node` (and its own level) to the node id at
    that level. Ancestors whose id is not stored on the node are left out.
    """
    lineage: Dict[HierarchyLevel, str] = {}
    for ancestor in ancestors_of(level):
        value = getattr(node, LINEAGE_FIELDS[ancestor], None)
        if value:
            lineage[ancestor] = str(value)
    if getattr(node, "id", None) is not None:
        lineage[level] = str(node.id)
    return lineage


# --- Hierarchy Node Models ---
class HierarchyNode(Document):
    """
    Fields shared by every node of the administrative tree. Each concrete
    level stores the ids of all of its ancestors so jurisdiction checks and
    scoped listings never have to walk the tree.
    """

    name: str
    code: Optional[str] = None
    description: Optional[str] = None
    active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def lineage(self) -> Dict[HierarchyLevel, str]:
        return node_lineage(self.level(), self)

    @classmethod
    def level(cls) -> HierarchyLevel:
        raise NotImplementedError


class NationalLevel(HierarchyNode):
    @classmethod
    def level(cls) -> HierarchyLevel:
        return HierarchyLevel.NATIONAL_LEVEL

    class Settings:
        name = "national_levels"
        indexes = ["code", "active"]


class Region(HierarchyNode):
    national_level_id: str

    @classmethod
    def level(cls) -> HierarchyLevel:
        return HierarchyLevel.REGION

    class Settings:
        name = "regions"
        indexes = [
            "national_level_id",
            IndexModel(
                [("code", ASCENDING)],
                name="regions_code_unique",
                unique=True,
                partialFilterExpression={"code": {"$type": "string"}},
            ),
        ]


class Locality(HierarchyNode):
    national_level_id: Optional[str] = None
    region_id: str

    @classmethod
    def level(cls) -> HierarchyLevel:
        return HierarchyLevel.LOCALITY

    class Settings:
        name = "localities"
        indexes = ["region_id", "national_level_id"]


class AdminUnit(HierarchyNode):
    national_level_id: Optional[str] = None
    region_id: Optional[str] = None
    locality_id: str

    @classmethod
    def level(cls) -> HierarchyLevel:
        return HierarchyLevel.ADMIN_UNIT

    class Settings:
        name = "admin_units"
        indexes = ["locality_id", "region_id", "national_level_id"]


class District(HierarchyNode):
    national_level_id: Optional[str] = None
    region_id: Optional[str] = None
    locality_id: Optional[str] = None
    admin_unit_id: str

    @classmethod
    def level(cls) -> HierarchyLevel:
        return HierarchyLevel.DISTRICT

    class Settings:
        name = "districts"
        indexes = ["admin_unit_id", "locality_id", "region_id", "national_level_id"]


NODE_MODELS: Dict[HierarchyLevel, Type[HierarchyNode]] = {
    HierarchyLevel.NATIONAL_LEVEL: NationalLevel,
    HierarchyLevel.REGION: Region,
    HierarchyLevel.LOCALITY: Locality,
    HierarchyLevel.ADMIN_UNIT: AdminUnit,
    HierarchyLevel.DISTRICT: District,
}

HIERARCHY_DOCUMENT_MODELS: List[Type[HierarchyNode]] = list(NODE_MODELS.values())
