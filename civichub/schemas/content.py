# civichub/schemas/content.py
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class ContentCreate(BaseModel):
    title: str = Field(min_length=1)
    body: Optional[str] = None
    active: bool = True
    target_national_level_id: Optional[str] = None
    target_region_id: Optional[str] = None
    target_locality_id: Optional[str] = None
    target_admin_unit_id: Optional[str] = None
    target_district_id: Optional[str] = None

    # Type-specific fields (questions, options, closes_at...) pass through.
    model_config = ConfigDict(extra="allow")
