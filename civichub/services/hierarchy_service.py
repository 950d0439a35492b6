# civichub/services/hierarchy_service.py
import logging
from enum import Enum
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from beanie import PydanticObjectId
from bson.errors import InvalidId
from pydantic import BaseModel

from civichub.configs import configs
from civichub.errors import NotFound, ValidationFailure
from civichub.models.content import CONTENT_MODELS, TARGET_FIELDS
from civichub.models.hierarchy import (
    HIERARCHY_LEVELS,
    LINEAGE_FIELDS,
    NODE_MODELS,
    PLURAL_KEYS,
    HierarchyLevel,
    HierarchyNode,
    NationalLevel,
    child_level,
    descendants_of,
    parent_level,
)
from civichub.models.user import User, is_top_of_hierarchy, scoped_level
from civichub.schemas.hierarchy import (
    HierarchyNodeCreate,
    HierarchyNodeUpdate,
    prepare_node_data,
)
from civichub.services.access_evaluator import ScopeFilter, build_scope_filter
from civichub.services.db import get_database_client

NodePayload = Union[Mapping[str, Any], BaseModel]


class DeletionOutcome(str, Enum):
    DELETED = "deleted"
    DEACTIVATED = "deactivated"


def _label(level: HierarchyLevel) -> str:
    return level.value.replace("_", " ")


def _combine(*clauses: Dict[str, Any]) -> Dict[str, Any]:
    """ANDs MongoDB query clauses, skipping empty ones."""
    clauses = [clause for clause in clauses if clause]
    if not clauses:
        return {}
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _object_id(node_id: Any) -> Optional[PydanticObjectId]:
    try:
        return PydanticObjectId(node_id)
    except (InvalidId, TypeError):
        return None


class HierarchyService:
    """
    Persistence operations for the NationalLevel → Region → Locality →
    AdminUnit → District tree.

    Every database round trip goes through the storage methods below; the
    rules for parents, codes, deletion and reporting sit on top of them.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self.use_transactions = (configs.get("database") or {}).get("transactions", True)

    # --- Storage ---
    def _new_node(self, level: HierarchyLevel, **fields) -> HierarchyNode:
        return NODE_MODELS[level](**fields)

    async def _fetch(self, level: HierarchyLevel, object_id: PydanticObjectId):
        return await NODE_MODELS[level].get(object_id)

    async def _find_one(self, level: HierarchyLevel, query: Dict[str, Any]):
        return await NODE_MODELS[level].find_one(query)

    async def _find(self, level: HierarchyLevel, query: Dict[str, Any]) -> List[HierarchyNode]:
        return await NODE_MODELS[level].find(query).sort("name").to_list()

    async def _count(self, level: HierarchyLevel, query: Dict[str, Any]) -> int:
        return await NODE_MODELS[level].find(query).count()

    async def _insert(self, node: HierarchyNode) -> None:
        await node.insert()

    async def _insert_many(self, level: HierarchyLevel, nodes: List[HierarchyNode]) -> None:
        """Inserts all nodes or none of them."""
        for node in nodes:
            node.id = PydanticObjectId()
        model = NODE_MODELS[level]
        if self.use_transactions:
            client = await get_database_client()
            async with client.start_session() as session:
                async with await session.start_transaction():
                    await model.insert_many(nodes, session=session)
        else:
            await model.insert_many(nodes)

    async def _update(self, node: HierarchyNode, values: Dict[str, Any]) -> None:
        await node.set(values)

    async def _remove(self, node: HierarchyNode) -> None:
        await node.delete()

    async def _count_references(self, level: HierarchyLevel, node_id: str) -> int:
        """Users and content records pointing at the node."""
        count = await User.find({LINEAGE_FIELDS[level]: node_id}).count()
        for model in CONTENT_MODELS.values():
            count += await model.find({TARGET_FIELDS[level]: node_id}).count()
        return count

    # --- Lookups ---
    async def get_node(self, level: HierarchyLevel, node_id: Any) -> Optional[HierarchyNode]:
        """Fetches a node by id; None when missing or when the id is malformed."""
        object_id = _object_id(node_id)
        if object_id is None:
            return None
        return await self._fetch(HierarchyLevel(level), object_id)

    async def get_lineage(
        self, level: HierarchyLevel, node_id: Any
    ) -> Optional[Dict[HierarchyLevel, str]]:
        node = await self.get_node(level, node_id)
        return node.lineage() if node else None

    def _query(
        self,
        level: HierarchyLevel,
        scope: Optional[ScopeFilter] = None,
        parent_id: Optional[str] = None,
        active_only: bool = True,
    ) -> Dict[str, Any]:
        clauses = []
        if scope is not None:
            clauses.append(scope.to_query(level))
        if parent_id is not None:
            clauses.append({LINEAGE_FIELDS[parent_level(level)]: parent_id})
        if active_only:
            clauses.append({"active": True})
        return _combine(*clauses)

    async def list_nodes(
        self,
        level: HierarchyLevel,
        scope: Optional[ScopeFilter] = None,
        parent_id: Optional[str] = None,
        active_only: bool = True,
    ) -> List[HierarchyNode]:
        """Nodes of a level, ordered by name, optionally scoped and under one parent."""
        if scope is not None and scope.denies_all:
            return []
        return await self._find(level, self._query(level, scope, parent_id, active_only))

    async def find_node_ids(
        self, level: HierarchyLevel, scope: Optional[ScopeFilter] = None
    ) -> List[str]:
        nodes = await self.list_nodes(level, scope=scope, active_only=False)
        return [str(node.id) for node in nodes]

    async def count_nodes(
        self,
        level: HierarchyLevel,
        scope: Optional[ScopeFilter] = None,
        active_only: bool = True,
    ) -> int:
        if scope is not None and scope.denies_all:
            return 0
        return await self._count(level, self._query(level, scope, None, active_only))

    async def find_sibling(
        self,
        level: HierarchyLevel,
        parent_id: Optional[str],
        name: str,
        code: Optional[str] = None,
    ) -> Optional[HierarchyNode]:
        """A node under the same parent whose name or code matches."""
        matches = [{"name": name}]
        if code:
            matches.append({"code": code})
        parent_clause = {}
        if parent_level(level) is not None:
            parent_clause = {LINEAGE_FIELDS[parent_level(level)]: parent_id}
        return await self._find_one(level, _combine(parent_clause, {"$or": matches}))

    async def _node_with_code(
        self,
        level: HierarchyLevel,
        parent_id: Optional[str],
        code: str,
        exclude_id: Optional[PydanticObjectId] = None,
    ) -> Optional[HierarchyNode]:
        """
        A node already holding `code`. Region codes are unique across the
        whole tree; codes at other levels only among siblings.
        """
        clauses = [{"code": code}]
        if level != HierarchyLevel.REGION and parent_level(level) is not None:
            clauses.append({LINEAGE_FIELDS[parent_level(level)]: parent_id})
        if exclude_id is not None:
            clauses.append({"_id": {"$ne": exclude_id}})
        return await self._find_one(level, _combine(*clauses))

    # --- Default national level policy ---
    async def get_default_national_level(self) -> NationalLevel:
        """
        Returns the first active national level, creating one from the
        configured defaults when the tree has no root yet.
        """
        level = HierarchyLevel.NATIONAL_LEVEL
        national_level = await self._find_one(level, {"active": True})
        if national_level is not None:
            return national_level
        defaults = (configs.get("hierarchy") or {}).get("default_national_level") or {}
        payload = prepare_node_data(
            {
                "name": defaults.get("name", "National Level"),
                "code": defaults.get("code", "NATIONAL"),
                "description": defaults.get("description"),
            }
        )
        national_level = self._new_node(level, **payload.model_dump())
        await self._insert(national_level)
        self.logger.info(
            f"Created default national level '{national_level.name}' ({national_level.id})"
        )
        return national_level

    async def resolve_parent(
        self, level: HierarchyLevel, parent_id: Optional[str], allow_inactive: bool = False
    ) -> Optional[HierarchyNode]:
        """
        Loads the parent a new node will hang from. Regions without a national
        level fall back to the default national level. Inactive parents are
        refused unless `allow_inactive` is set.
        """
        parent = parent_level(level)
        if parent is None:
            return None
        if not parent_id:
            if parent == HierarchyLevel.NATIONAL_LEVEL:
                return await self.get_default_national_level()
            raise ValidationFailure(f"{_label(parent).capitalize()} ID is required")
        parent_node = await self.get_node(parent, parent_id)
        if parent_node is None:
            raise NotFound(f"{_label(parent).capitalize()} not found", entity=parent.value)
        if not parent_node.active and not allow_inactive:
            raise ValidationFailure(f"{_label(parent).capitalize()} is not active")
        return parent_node

    def _build_node(
        self,
        level: HierarchyLevel,
        payload: HierarchyNodeCreate,
        parent: Optional[HierarchyNode],
    ) -> HierarchyNode:
        lineage_fields = {}
        if parent is not None:
            lineage_fields = {
                LINEAGE_FIELDS[ancestor]: node_id
                for ancestor, node_id in parent.lineage().items()
            }
        return self._new_node(level, **payload.model_dump(), **lineage_fields)

    # --- Creation ---
    async def create_node(
        self,
        level: HierarchyLevel,
        data: NodePayload,
        parent_id: Optional[str] = None,
        allow_inactive_parent: bool = False,
    ) -> HierarchyNode:
        level = HierarchyLevel(level)
        payload = prepare_node_data(data)
        parent = await self.resolve_parent(level, parent_id, allow_inactive=allow_inactive_parent)
        parent_key = str(parent.id) if parent is not None else None
        if payload.code and await self._node_with_code(level, parent_key, payload.code):
            raise ValidationFailure(f"{_label(level).capitalize()} code already exists")

        node = self._build_node(level, payload, parent)
        await self._insert(node)
        self.logger.info(f"Created {_label(level)} '{node.name}' ({node.id})")
        return node

    async def bulk_create_nodes(
        self,
        level: HierarchyLevel,
        parent_id: Optional[str],
        items: Sequence[NodePayload],
    ) -> List[HierarchyNode]:
        """
        Creates sibling nodes under one parent. Every item is validated first
        and the inserts run in a single transaction: all are created or none.
        """
        level = HierarchyLevel(level)
        if not items:
            raise ValidationFailure(
                f"Invalid {PLURAL_KEYS[level]} data. Expected non-empty array."
            )
        parent = await self.resolve_parent(level, parent_id)
        parent_key = str(parent.id) if parent is not None else None

        payloads = [prepare_node_data(item) for item in items]
        seen_codes = set()
        for payload in payloads:
            if not payload.code:
                continue
            if payload.code in seen_codes or await self._node_with_code(
                level, parent_key, payload.code
            ):
                raise ValidationFailure(
                    f"{_label(level).capitalize()} code {payload.code} already exists"
                )
            seen_codes.add(payload.code)

        nodes = [self._build_node(level, payload, parent) for payload in payloads]
        await self._insert_many(level, nodes)
        self.logger.info(f"Bulk created {len(nodes)} {PLURAL_KEYS[level]}")
        return nodes

    # --- Update / delete ---
    async def update_node(
        self, level: HierarchyLevel, node_id: str, data: NodePayload
    ) -> HierarchyNode:
        level = HierarchyLevel(level)
        node = await self.get_node(level, node_id)
        if node is None:
            raise NotFound(f"{_label(level).capitalize()} not found", entity=level.value)

        update_data = prepare_node_data(data, HierarchyNodeUpdate).model_dump(
            exclude_unset=True
        )
        if "name" in update_data and update_data["name"] is None:
            update_data.pop("name")
        new_code = update_data.get("code")
        if new_code and new_code != node.code:
            parent = parent_level(level)
            parent_key = getattr(node, LINEAGE_FIELDS[parent]) if parent else None
            if await self._node_with_code(level, parent_key, new_code, exclude_id=node.id):
                raise ValidationFailure(f"{_label(level).capitalize()} code already exists")

        update_data["updated_at"] = datetime.utcnow()
        await self._update(node, update_data)
        return node

    async def _count_dependents(self, level: HierarchyLevel, node_id: str) -> int:
        count = await self._count_references(level, node_id)
        child = child_level(level)
        if child is not None:
            count += await self._count(child, {LINEAGE_FIELDS[level]: node_id})
        return count

    async def delete_node(self, level: HierarchyLevel, node_id: str) -> DeletionOutcome:
        """
        Refuses while active children exist. A node that inactive children,
        users or content still reference is deactivated; anything else is
        removed.
        """
        level = HierarchyLevel(level)
        node = await self.get_node(level, node_id)
        if node is None:
            raise NotFound(f"{_label(level).capitalize()} not found", entity=level.value)

        child = child_level(level)
        if child is not None:
            active_children = await self._count(
                child, {LINEAGE_FIELDS[level]: str(node.id), "active": True}
            )
            if active_children:
                raise ValidationFailure(
                    f"Cannot delete {_label(level)} with active {_label(child)}s. "
                    f"Please deactivate all {_label(child)}s first."
                )

        if await self._count_dependents(level, str(node.id)):
            await self._update(node, {"active": False, "updated_at": datetime.utcnow()})
            self.logger.info(f"Deactivated {_label(level)} {node.id}")
            return DeletionOutcome.DEACTIVATED

        await self._remove(node)
        self.logger.info(f"Deleted {_label(level)} {node.id}")
        return DeletionOutcome.DELETED

    # --- Tree and statistics ---
    async def get_tree(self, principal: Any) -> List[Dict[str, Any]]:
        """
        Active nodes within the principal's jurisdiction, nested under the
        node the principal administers (or under every national level for
        top-of-hierarchy principals).
        """
        if is_top_of_hierarchy(principal.admin_level):
            root_level = HierarchyLevel.NATIONAL_LEVEL
        else:
            root_level = scoped_level(principal.admin_level)
            if root_level is None:
                return []

        levels = (root_level, *descendants_of(root_level))
        nodes_by_level = {
            level: await self.list_nodes(level, scope=build_scope_filter(principal, level))
            for level in levels
        }

        children: Dict[str, List[Dict[str, Any]]] = {}
        for level in reversed(levels[1:]):
            parent_field = LINEAGE_FIELDS[parent_level(level)]
            for node in nodes_by_level[level]:
                children.setdefault(getattr(node, parent_field), []).append(
                    self._tree_entry(level, node, children)
                )
        return [self._tree_entry(root_level, node, children) for node in nodes_by_level[root_level]]

    @staticmethod
    def _tree_entry(level, node, children) -> Dict[str, Any]:
        return {
            "id": str(node.id),
            "level": level.value,
            "name": node.name,
            "code": node.code,
            "children": children.get(str(node.id), []),
        }

    async def get_stats(self, principal: Any) -> Dict[str, int]:
        """Node counts per level within the principal's jurisdiction."""
        return {
            PLURAL_KEYS[level]: await self.count_nodes(
                level, scope=build_scope_filter(principal, level), active_only=False
            )
            for level in HIERARCHY_LEVELS
        }
