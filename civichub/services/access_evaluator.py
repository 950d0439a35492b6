# civichub/services/access_evaluator.py
"""
Hierarchical access control.

A principal administers the node identified by its scoping id at its own
admin level. It may act on a target node when the target sits at the same
level or deeper and the target's ancestor at the principal's level is that
node. ADMIN and GENERAL_SECRETARIAT act everywhere. Every decision here is
total: missing records, malformed ids and lookup errors all resolve to DENY.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from beanie import PydanticObjectId
from bson.errors import InvalidId

from civichub.models.content import ContentType, content_targets
from civichub.models.hierarchy import LINEAGE_FIELDS, HierarchyLevel
from civichub.models.user import (
    deepest_assignment,
    is_top_of_hierarchy,
    level_depth,
    scoped_level,
)

logger = logging.getLogger(__name__)

# Matches no document; `$in` with an empty list is always false.
MATCH_NOTHING: Dict[str, Any] = {"_id": {"$in": []}}


@dataclass(frozen=True)
class ScopeFilter:
    """
    Declarative restriction of a listing to a principal's jurisdiction:
    rows whose ancestor at `level` is `node_id`.
    """

    level: Optional[HierarchyLevel] = None
    node_id: Optional[str] = None
    unrestricted: bool = False

    @classmethod
    def allow_all(cls) -> "ScopeFilter":
        return cls(unrestricted=True)

    @classmethod
    def deny_all(cls) -> "ScopeFilter":
        return cls()

    @property
    def denies_all(self) -> bool:
        return not self.unrestricted and (self.level is None or not self.node_id)

    def matches(self, lineage: Mapping[HierarchyLevel, str]) -> bool:
        """Evaluates the filter against a row's lineage."""
        if self.unrestricted:
            return True
        if self.denies_all:
            return False
        return lineage.get(self.level) == self.node_id

    def to_query(self, target_level: HierarchyLevel) -> Dict[str, Any]:
        """MongoDB query for the collection holding `target_level` nodes."""
        if self.unrestricted:
            return {}
        if self.denies_all:
            return dict(MATCH_NOTHING)
        if self.level == target_level:
            try:
                return {"_id": PydanticObjectId(self.node_id)}
            except (InvalidId, TypeError):
                return dict(MATCH_NOTHING)
        return {LINEAGE_FIELDS[self.level]: self.node_id}

    def to_user_query(self) -> Dict[str, Any]:
        """MongoDB query for the users collection."""
        if self.unrestricted:
            return {}
        if self.denies_all:
            return dict(MATCH_NOTHING)
        return {LINEAGE_FIELDS[self.level]: self.node_id}


def _coerce_level(level: Any) -> Optional[HierarchyLevel]:
    try:
        return HierarchyLevel(level)
    except ValueError:
        return None


def _jurisdiction(
    principal: Any, target_level: HierarchyLevel
) -> Optional[Tuple[HierarchyLevel, str]]:
    """
    Level and node id a non-top principal would have to match for targets at
    `target_level`, or None when the principal can never reach that level.
    """
    own_level = scoped_level(getattr(principal, "admin_level", None))
    if own_level is None:
        return None
    if level_depth(own_level) > level_depth(target_level):
        return None
    scope_id = principal.scope_id(own_level)
    if not scope_id:
        return None
    return own_level, scope_id


def check_lineage_access(
    principal: Any, target_level: Any, lineage: Mapping[HierarchyLevel, str]
) -> bool:
    """The access rule applied to an already resolved target lineage."""
    if principal is None:
        return False
    if is_top_of_hierarchy(principal.admin_level):
        return True
    level = _coerce_level(target_level)
    if level is None:
        return False
    jurisdiction = _jurisdiction(principal, level)
    if jurisdiction is None:
        return False
    own_level, scope_id = jurisdiction
    return lineage.get(own_level) == scope_id


def build_scope_filter(principal: Any, target_level: Any) -> ScopeFilter:
    """
    Filter equivalent to running check_lineage_access on every row of
    `target_level`.
    """
    if principal is None:
        return ScopeFilter.deny_all()
    if is_top_of_hierarchy(principal.admin_level):
        return ScopeFilter.allow_all()
    level = _coerce_level(target_level)
    if level is None:
        return ScopeFilter.deny_all()
    jurisdiction = _jurisdiction(principal, level)
    if jurisdiction is None:
        return ScopeFilter.deny_all()
    own_level, scope_id = jurisdiction
    return ScopeFilter(level=own_level, node_id=scope_id)


def build_user_scope_filter(principal: Any) -> ScopeFilter:
    """Users a principal may manage, filtered on the users' scoping ids."""
    return build_scope_filter(principal, HierarchyLevel.DISTRICT)


class AccessEvaluator:
    def __init__(
        self,
        hierarchy_service=None,
        user_service=None,
        content_service=None,
        logger: Optional[logging.Logger] = None,
    ):
        # Imported here; the services import the filter helpers above.
        from civichub.services.hierarchy_service import HierarchyService
        from civichub.services.user_service import UserService
        from civichub.services.content_service import ContentService

        self.hierarchy_service = hierarchy_service or HierarchyService()
        self.user_service = user_service or UserService(
            hierarchy_service=self.hierarchy_service
        )
        self.content_service = content_service or ContentService(
            hierarchy_service=self.hierarchy_service
        )
        self.logger = logger or logging.getLogger(__name__)

    async def _resolve_lineage(
        self, level: HierarchyLevel, node_id: str
    ) -> Optional[Dict[HierarchyLevel, str]]:
        try:
            return await self.hierarchy_service.get_lineage(level, node_id)
        except Exception:
            self.logger.exception(
                "Could not resolve lineage of %s %s; denying access", level.value, node_id
            )
            return None

    async def can_access(self, principal: Any, target_level: Any, target_id: Any) -> bool:
        """Whether `principal` may act on the node `target_id` at `target_level`."""
        if principal is None:
            return False
        if is_top_of_hierarchy(principal.admin_level):
            return True
        level = _coerce_level(target_level)
        if level is None or not target_id:
            return False
        if _jurisdiction(principal, level) is None:
            return False
        lineage = await self._resolve_lineage(level, str(target_id))
        if lineage is None:
            return False
        return check_lineage_access(principal, level, lineage)

    def scope_filter(self, principal: Any, target_level: Any) -> ScopeFilter:
        return build_scope_filter(principal, target_level)

    async def can_manage_user(self, principal: Any, target_user_id: Any) -> bool:
        """
        Delegates to can_access at the target user's deepest assignment.
        Users without any assignment are left to top-of-hierarchy principals.
        """
        if principal is None or not target_user_id:
            return False
        try:
            target_user = await self.user_service.get_user_by_id(target_user_id)
        except Exception:
            self.logger.exception("Could not load user %s; denying access", target_user_id)
            return False
        if target_user is None:
            return False
        if is_top_of_hierarchy(principal.admin_level):
            return True
        assignment = deepest_assignment(target_user)
        if assignment is None:
            return False
        level, node_id = assignment
        return await self.can_access(principal, level, node_id)

    async def can_manage_content(
        self, principal: Any, content_type: Any, content_id: Any
    ) -> bool:
        """
        ALLOW when any one of the content's targets is within the principal's
        jurisdiction. Untargeted content is left to top-of-hierarchy principals.
        """
        if principal is None or not content_id:
            return False
        try:
            content_type = ContentType(content_type)
        except ValueError:
            return False
        try:
            content = await self.content_service.get_content(content_type, content_id)
        except Exception:
            self.logger.exception(
                "Could not load %s %s; denying access", content_type.value, content_id
            )
            return False
        if content is None:
            return False
        if is_top_of_hierarchy(principal.admin_level):
            return True
        for level, target_id in content_targets(content).items():
            if await self.can_access(principal, level, target_id):
                return True
        return False
