"""In-memory collaborators standing in for the Beanie-backed services."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId

from civichub.models.hierarchy import (
    HIERARCHY_LEVELS,
    LINEAGE_FIELDS,
    HierarchyLevel,
    node_lineage,
)
from civichub.models.user import AdminLevel
from civichub.schemas.user import Principal
from civichub.services.hierarchy_service import HierarchyService


def new_id() -> str:
    return str(ObjectId())


def _plain(value: Any) -> Any:
    return str(value) if isinstance(value, ObjectId) else value


def matches_query(record: Any, query: Dict[str, Any]) -> bool:
    """Evaluates the subset of MongoDB query syntax the services build."""
    for key, condition in query.items():
        if key == "$and":
            if not all(matches_query(record, clause) for clause in condition):
                return False
            continue
        if key == "$or":
            if not any(matches_query(record, clause) for clause in condition):
                return False
            continue

        actual = _plain(getattr(record, "id" if key == "_id" else key, None))
        if not isinstance(condition, dict):
            if actual != _plain(condition):
                return False
            continue
        for operator, operand in condition.items():
            if operator == "$in":
                ok = actual in [_plain(value) for value in operand]
            elif operator == "$ne":
                ok = actual != _plain(operand)
            else:
                raise NotImplementedError(operator)
            if not ok:
                return False
    return True


@dataclass
class FakeNode:
    level: HierarchyLevel
    name: str
    code: Optional[str] = None
    description: Optional[str] = None
    active: bool = True
    id: str = field(default_factory=new_id)
    national_level_id: Optional[str] = None
    region_id: Optional[str] = None
    locality_id: Optional[str] = None
    admin_unit_id: Optional[str] = None
    district_id: Optional[str] = None

    def lineage(self) -> Dict[HierarchyLevel, str]:
        return node_lineage(self.level, self)


@dataclass
class FakeUser:
    admin_level: AdminLevel = AdminLevel.USER
    id: str = field(default_factory=new_id)
    national_level_id: Optional[str] = None
    region_id: Optional[str] = None
    locality_id: Optional[str] = None
    admin_unit_id: Optional[str] = None
    district_id: Optional[str] = None
    is_active: bool = True


@dataclass
class FakeContent:
    title: str
    id: str = field(default_factory=new_id)
    active: bool = True
    created_at: datetime = field(default_factory=datetime.utcnow)
    target_national_level_id: Optional[str] = None
    target_region_id: Optional[str] = None
    target_locality_id: Optional[str] = None
    target_admin_unit_id: Optional[str] = None
    target_district_id: Optional[str] = None


class InMemoryHierarchyService(HierarchyService):
    """
    The real HierarchyService with its storage methods backed by lists of
    FakeNodes. `references` holds the number of users and content records
    pointing at a node id.
    """

    def __init__(self):
        super().__init__()
        self.use_transactions = False
        self.nodes: Dict[HierarchyLevel, List[FakeNode]] = {
            level: [] for level in HIERARCHY_LEVELS
        }
        self.references: Dict[str, int] = {}
        self.failing_ids = set()
        self.failing_names = set()

    def add(self, level: HierarchyLevel, name: str, parent: Optional[FakeNode] = None, **kwargs) -> FakeNode:
        lineage_fields = {}
        if parent is not None:
            lineage_fields = {
                LINEAGE_FIELDS[ancestor]: node_id for ancestor, node_id in parent.lineage().items()
            }
        node = FakeNode(level=level, name=name, **lineage_fields, **kwargs)
        self.nodes[level].append(node)
        return node

    def all_nodes(self):
        for level in HIERARCHY_LEVELS:
            for node in self.nodes[level]:
                yield level, node

    def _new_node(self, level, **fields):
        return FakeNode(level=level, **fields)

    async def _fetch(self, level, object_id):
        if str(object_id) in self.failing_ids:
            raise RuntimeError("database unavailable")
        return next((n for n in self.nodes[level] if n.id == str(object_id)), None)

    async def _find_one(self, level, query):
        return next((n for n in self.nodes[level] if matches_query(n, query)), None)

    async def _find(self, level, query):
        return sorted(
            (n for n in self.nodes[level] if matches_query(n, query)), key=lambda n: n.name
        )

    async def _count(self, level, query):
        return sum(1 for n in self.nodes[level] if matches_query(n, query))

    async def _insert(self, node):
        if node.name in self.failing_names:
            raise RuntimeError(f"insert of {node.name} failed")
        self.nodes[node.level].append(node)

    async def _insert_many(self, level, nodes):
        self.nodes[level].extend(nodes)

    async def _update(self, node, values):
        for key, value in values.items():
            setattr(node, key, value)

    async def _remove(self, node):
        self.nodes[node.level].remove(node)

    async def _count_references(self, level, node_id):
        return self.references.get(node_id, 0)


class InMemoryUserService:
    def __init__(self):
        self.users: Dict[str, FakeUser] = {}
        self.failing_ids = set()

    def add(self, user: FakeUser) -> FakeUser:
        self.users[user.id] = user
        return user

    async def get_user_by_id(self, user_id):
        if user_id in self.failing_ids:
            raise RuntimeError("database unavailable")
        return self.users.get(user_id)


class InMemoryContentService:
    def __init__(self):
        self.contents: Dict[Any, FakeContent] = {}

    def add(self, content_type, content: FakeContent) -> FakeContent:
        self.contents[(content_type, content.id)] = content
        return content

    async def get_content(self, content_type, content_id):
        return self.contents.get((content_type, content_id))


def principal_at(admin_level: AdminLevel, node: Optional[FakeNode] = None) -> Principal:
    """A principal administering `node`, with its ancestors' ids filled in."""
    ids = {}
    if node is not None:
        ids = {LINEAGE_FIELDS[level]: node_id for level, node_id in node.lineage().items()}
    return Principal(id=new_id(), admin_level=admin_level, **ids)
