# civichub/services/content_service.py
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from beanie import PydanticObjectId
from bson.errors import InvalidId
from pydantic import BaseModel, ValidationError

from civichub.errors import NotFound, ValidationFailure
from civichub.models.content import (
    CONTENT_MODELS,
    TARGET_FIELDS,
    ContentType,
    TargetedContent,
    content_targets,
)
from civichub.models.hierarchy import HIERARCHY_LEVELS, descendants_of
from civichub.models.user import is_top_of_hierarchy, scoped_level
from civichub.schemas.content import ContentCreate
from civichub.services.access_evaluator import MATCH_NOTHING, build_scope_filter


class ContentService:
    """Bulletins, surveys, voting items and reports targeted at hierarchy nodes."""

    def __init__(self, hierarchy_service=None, logger: Optional[logging.Logger] = None):
        if hierarchy_service is None:
            from civichub.services.hierarchy_service import HierarchyService

            hierarchy_service = HierarchyService()
        self.hierarchy_service = hierarchy_service
        self.logger = logger or logging.getLogger(__name__)

    async def get_content(
        self, content_type: ContentType, content_id: Any
    ) -> Optional[TargetedContent]:
        try:
            object_id = PydanticObjectId(content_id)
        except (InvalidId, TypeError):
            return None
        return await CONTENT_MODELS[ContentType(content_type)].get(object_id)

    async def create_content(
        self,
        content_type: ContentType,
        data: Union[Mapping[str, Any], BaseModel],
        created_by_id: Optional[str] = None,
    ) -> TargetedContent:
        """Every target id must name an existing node of its level."""
        content_type = ContentType(content_type)
        if isinstance(data, BaseModel):
            data = data.model_dump(exclude_unset=True)
        try:
            payload = ContentCreate.model_validate(data)
        except ValidationError as e:
            raise ValidationFailure(str(e), entity=content_type.value) from e

        for level, target_id in content_targets(payload).items():
            if await self.hierarchy_service.get_node(level, target_id) is None:
                raise NotFound(
                    f"Target {level.value.replace('_', ' ')} not found", entity=level.value
                )

        content = CONTENT_MODELS[content_type](
            **payload.model_dump(), created_by_id=created_by_id
        )
        await content.insert()
        self.logger.info(f"Created {content_type.value} '{content.title}' ({content.id})")
        return content

    async def content_scope_query(self, principal: Any) -> Dict[str, Any]:
        """
        Query matching content with at least one target inside the principal's
        jurisdiction: a target on the administered node itself or on any node
        beneath it.
        """
        if principal is None:
            return dict(MATCH_NOTHING)
        if is_top_of_hierarchy(principal.admin_level):
            return {}

        own_level = scoped_level(principal.admin_level)
        scope_id = principal.scope_id(own_level) if own_level else None
        if not scope_id:
            return dict(MATCH_NOTHING)

        clauses: List[Dict[str, Any]] = [{TARGET_FIELDS[own_level]: scope_id}]
        for level in descendants_of(own_level):
            node_ids = await self.hierarchy_service.find_node_ids(
                level, scope=build_scope_filter(principal, level)
            )
            if node_ids:
                clauses.append({TARGET_FIELDS[level]: {"$in": node_ids}})
        return {"$or": clauses} if len(clauses) > 1 else clauses[0]

    async def list_manageable_content(
        self, principal: Any, content_type: ContentType, limit: int = 100, skip: int = 0
    ) -> List[TargetedContent]:
        query = await self.content_scope_query(principal)
        return (
            await CONTENT_MODELS[ContentType(content_type)]
            .find(query)
            .sort("-created_at")
            .skip(skip)
            .limit(limit)
            .to_list()
        )

    def content_visibility_query(self, principal: Any) -> Dict[str, Any]:
        """
        Query for the active content a reader sees. A record is visible when
        its deepest target is a node on the reader's own lineage, or when it
        has no target at all. Top-of-hierarchy principals see every active
        record; anonymous readers only untargeted ones.
        """
        if principal is not None and is_top_of_hierarchy(principal.admin_level):
            return {"active": True}

        clauses: List[Dict[str, Any]] = []
        for level in HIERARCHY_LEVELS:
            node_id = principal.scope_id(level) if principal is not None else None
            if not node_id:
                continue
            clause = {TARGET_FIELDS[level]: node_id}
            clause.update({TARGET_FIELDS[deeper]: None for deeper in descendants_of(level)})
            clauses.append(clause)
        clauses.append({TARGET_FIELDS[level]: None for level in HIERARCHY_LEVELS})
        return {"$and": [{"active": True}, {"$or": clauses}]}

    async def list_visible_content(
        self, principal: Any, content_type: ContentType, limit: int = 100, skip: int = 0
    ) -> List[TargetedContent]:
        return (
            await CONTENT_MODELS[ContentType(content_type)]
            .find(self.content_visibility_query(principal))
            .sort("-created_at")
            .skip(skip)
            .limit(limit)
            .to_list()
        )
