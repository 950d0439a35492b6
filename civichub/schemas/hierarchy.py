# civichub/schemas/hierarchy.py
import re
from typing import Any, Dict, List, Mapping, Optional, Union
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    computed_field,
    field_validator,
)

from civichub.configs import configs
from civichub.errors import ValidationFailure
from civichub.models.hierarchy import HIERARCHY_LEVELS, PLURAL_KEYS

CODE_PATTERN = re.compile(
    (configs.get("hierarchy") or {}).get("code_pattern", r"^[A-Z0-9_-]+$")
)


def normalize_code(code: Optional[str]) -> Optional[str]:
    """Trimmed, upper-cased code, or None when blank."""
    if not code or not isinstance(code, str):
        return None
    code = code.strip()
    return code.upper() if code else None


def normalize_name(name: Optional[str]) -> str:
    if not name or not isinstance(name, str):
        return ""
    return name.strip()


def normalize_description(description: Optional[str]) -> Optional[str]:
    if not description or not isinstance(description, str):
        return None
    return description.strip() or None


def _clean_code(value: Any) -> Optional[str]:
    code = normalize_code(value)
    if code is not None and not CODE_PATTERN.match(code):
        raise ValueError(
            "Code can only contain letters, numbers, hyphens, and underscores"
        )
    return code


# --- Single node payloads ---
class HierarchyNodeBase(BaseModel):
    name: str
    code: Optional[str] = None
    description: Optional[str] = None
    active: bool = True

    model_config = ConfigDict(extra="ignore")

    @field_validator("name", mode="before")
    @classmethod
    def _check_name(cls, value: Any) -> str:
        name = normalize_name(value)
        if not name:
            raise ValueError("Name is required")
        return name

    @field_validator("code", mode="before")
    @classmethod
    def _check_code(cls, value: Any) -> Optional[str]:
        return _clean_code(value)

    @field_validator("description", mode="before")
    @classmethod
    def _check_description(cls, value: Any) -> Optional[str]:
        return normalize_description(value)


class HierarchyNodeCreate(HierarchyNodeBase):
    pass


class HierarchyNodeUpdate(BaseModel):
    name: Optional[str] = None
    code: Optional[str] = None
    description: Optional[str] = None
    active: Optional[bool] = None

    model_config = ConfigDict(extra="ignore")

    @field_validator("name", mode="before")
    @classmethod
    def _check_name(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        name = normalize_name(value)
        if not name:
            raise ValueError("Name cannot be empty")
        return name

    @field_validator("code", mode="before")
    @classmethod
    def _check_code(cls, value: Any) -> Optional[str]:
        return _clean_code(value)

    @field_validator("description", mode="before")
    @classmethod
    def _check_description(cls, value: Any) -> Optional[str]:
        return normalize_description(value)


def validation_message(error: ValidationError) -> str:
    return "; ".join(
        str(item.get("msg", "")).removeprefix("Value error, ")
        for item in error.errors()
    )


def prepare_node_data(
    data: Union[Mapping[str, Any], BaseModel], schema=HierarchyNodeCreate
) -> BaseModel:
    """
    Normalises a node payload (trimmed name, upper-cased code, trimmed
    description) and raises ValidationFailure when it is not acceptable.
    """
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_unset=True)
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        raise ValidationFailure(validation_message(e)) from e


# --- Nested import tree ---
class _ImportNode(BaseModel):
    """
    Raw node of an import tree. Name/code normalisation happens when the node
    is created so a bad entry fails on its own.
    """

    name: str
    code: Optional[str] = None
    description: Optional[str] = None
    active: Optional[bool] = None

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    def node_payload(self) -> Dict[str, Any]:
        payload = {
            "name": self.name,
            "code": self.code,
            "description": self.description,
        }
        payload["active"] = True if self.active is None else self.active
        return payload


class DistrictImport(_ImportNode):
    admin_unit_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("admin_unit_id", "adminUnitId")
    )


class AdminUnitImport(_ImportNode):
    locality_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("locality_id", "localityId")
    )
    districts: List[DistrictImport] = Field(default_factory=list)


class LocalityImport(_ImportNode):
    region_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("region_id", "regionId")
    )
    admin_units: List[AdminUnitImport] = Field(
        default_factory=list,
        validation_alias=AliasChoices("admin_units", "adminUnits"),
    )


class RegionImport(_ImportNode):
    national_level_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("national_level_id", "nationalLevelId"),
    )
    localities: List[LocalityImport] = Field(default_factory=list)


class HierarchyImportTree(BaseModel):
    regions: List[RegionImport] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")


def _level_counter() -> Dict[str, int]:
    return {PLURAL_KEYS[level]: 0 for level in HIERARCHY_LEVELS[1:]}


def _level_lists() -> Dict[str, List[Any]]:
    return {PLURAL_KEYS[level]: [] for level in HIERARCHY_LEVELS[1:]}


class ImportResult(BaseModel):
    """
    Summary of a reconcile run. `details` lists the records that were
    actually created, per level, in creation order.
    """

    status: str = "success"
    created: Dict[str, int] = Field(default_factory=_level_counter)
    failed: Dict[str, int] = Field(default_factory=_level_counter)
    details: Dict[str, List[Any]] = Field(default_factory=_level_lists)

    @computed_field
    @property
    def partial(self) -> bool:
        return any(self.failed.values())
