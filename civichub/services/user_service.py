# civichub/services/user_service.py
import logging
from collections import Counter
from typing import Any, Dict, List, Optional, Union
from datetime import datetime

from beanie import PydanticObjectId
from bson.errors import InvalidId
from passlib.context import CryptContext

from civichub.errors import NotFound, ValidationFailure
from civichub.models.hierarchy import LINEAGE_FIELDS
from civichub.models.user import AdminLevel, AuditLogEntry, User, scoped_level
from civichub.schemas.user import HierarchyAssignment, ProfileUpdate, UserCreate, UserUpdate
from civichub.services.access_evaluator import build_user_scope_filter

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

AUDITED_FIELDS = [
    "email",
    "phone_number",
    "first_name",
    "last_name",
    "profile_picture_url",
    "admin_level",
    "is_active",
]


class UserService:
    def __init__(self, hierarchy_service=None, logger: Optional[logging.Logger] = None):
        if hierarchy_service is None:
            from civichub.services.hierarchy_service import HierarchyService

            hierarchy_service = HierarchyService()
        self.hierarchy_service = hierarchy_service
        self.logger = logger or logging.getLogger(__name__)

    def hash_password(self, password: str) -> str:
        return pwd_context.hash(password)

    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        return pwd_context.verify(plain_password, hashed_password)

    async def _scoping_ids(
        self, admin_level: AdminLevel, assignment: Optional[HierarchyAssignment]
    ) -> Dict[str, Optional[str]]:
        """
        Scoping id fields for a user placed on `assignment`: the node itself and
        each of its ancestors. Deeper fields are cleared.
        """
        own_level = scoped_level(admin_level)
        if own_level is not None and (assignment is None or assignment.level != own_level):
            raise ValidationFailure(
                f"A {admin_level.value} user must be assigned to a {own_level.value} node"
            )
        ids = {field: None for field in LINEAGE_FIELDS.values()}
        if assignment is None:
            return ids

        node = await self.hierarchy_service.get_node(assignment.level, assignment.node_id)
        if node is None:
            raise NotFound(
                f"{assignment.level.value.replace('_', ' ').capitalize()} not found",
                entity=assignment.level.value,
            )
        if not node.active:
            raise ValidationFailure("Cannot assign a user to an inactive node")
        for level, node_id in node.lineage().items():
            ids[LINEAGE_FIELDS[level]] = node_id
        return ids

    async def create_user(self, user_create_data: UserCreate) -> User:
        """
        Creates a new user with a hashed password. Scoped admin levels must be
        assigned to a node at their own level.
        """
        existing_user = await self.get_user_by_email(user_create_data.email)
        if existing_user:
            raise ValidationFailure("User with this email already exists.", entity="user")

        scoping_ids = await self._scoping_ids(
            user_create_data.admin_level, user_create_data.assignment
        )
        new_user = User(
            **user_create_data.model_dump(exclude={"password", "assignment"}),
            hashed_password=self.hash_password(user_create_data.password),
            **scoping_ids,
        )
        await new_user.insert()
        self.logger.info(f"Created user {new_user.email} ({new_user.id})")
        return new_user

    async def get_user_by_id(self, user_id: Any) -> Optional[User]:
        """Retrieves a user by their ID; None for malformed ids."""
        try:
            object_id = PydanticObjectId(user_id)
        except (InvalidId, TypeError):
            return None
        return await User.get(object_id)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        return await User.find_one(User.email == email)

    async def list_manageable_users(
        self, principal: Any, limit: int = 100, skip: int = 0
    ) -> List[User]:
        """Users within the principal's jurisdiction, newest first."""
        scope = build_user_scope_filter(principal)
        if scope.denies_all:
            return []
        return (
            await User.find(scope.to_user_query())
            .sort("-created_at")
            .skip(skip)
            .limit(limit)
            .to_list()
        )

    async def assign_user_to_node(
        self,
        user_id: Any,
        assignment: HierarchyAssignment,
        admin_level: Optional[AdminLevel] = None,
    ) -> User:
        user = await self.get_user_by_id(user_id)
        if user is None:
            raise NotFound("User not found", entity="user")
        admin_level = admin_level or user.admin_level
        scoping_ids = await self._scoping_ids(admin_level, assignment)
        await user.set(
            {**scoping_ids, "admin_level": admin_level, "updated_at": datetime.utcnow()}
        )
        self.logger.info(
            f"Assigned user {user.id} to {assignment.level.value} {assignment.node_id}"
        )
        return user

    async def update_user(
        self,
        user_id: Any,
        user_update: Union[UserUpdate, ProfileUpdate],
        changer_user_id: Optional[PydanticObjectId] = None,
    ) -> User:
        """
        Updates an existing user's data and logs changes to contact information.
        changer_user_id: The ID of the user who is performing this update.
        """
        user = await self.get_user_by_id(user_id)
        if user is None:
            raise NotFound("User not found", entity="user")

        update_data = user_update.model_dump(exclude_unset=True)
        if update_data.get("password"):
            update_data["hashed_password"] = self.hash_password(update_data.pop("password"))
        update_data.pop("password", None)

        new_email = update_data.get("email")
        if new_email and new_email != user.email:
            other = await self.get_user_by_email(new_email)
            if other is not None and other.id != user.id:
                raise ValidationFailure("User with this email already exists.", entity="user")

        audit_entries = [
            AuditLogEntry(
                changed_by_user_id=changer_user_id,
                timestamp=datetime.utcnow(),
                field_name=field_name,
                old_value=getattr(user, field_name),
                new_value=update_data[field_name],
            )
            for field_name in AUDITED_FIELDS
            if field_name in update_data and getattr(user, field_name) != update_data[field_name]
        ]

        update_data["updated_at"] = datetime.utcnow()
        await user.set(update_data)
        if audit_entries:
            await user.update(
                {"$push": {"audit_log": {"$each": [entry.model_dump() for entry in audit_entries]}}}
            )
        return user

    async def deactivate_user(
        self, user_id: Any, changer_user_id: Optional[PydanticObjectId] = None
    ) -> User:
        return await self.update_user(user_id, UserUpdate(is_active=False), changer_user_id)

    async def get_user_stats(self, principal: Any) -> Dict[str, Any]:
        """Counts of manageable users by admin level and by region."""
        scope = build_user_scope_filter(principal)
        if scope.denies_all:
            users = []
        else:
            users = await User.find(scope.to_user_query()).to_list()
        by_level = Counter(user.admin_level.value for user in users)
        by_region = Counter(user.region_id for user in users if user.region_id)
        return {
            "total": len(users),
            "active": sum(1 for user in users if user.is_active),
            "by_admin_level": dict(by_level),
            "by_region": dict(by_region),
        }
