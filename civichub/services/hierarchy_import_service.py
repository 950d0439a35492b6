# civichub/services/hierarchy_import_service.py
import logging
from typing import Any, List, Mapping, Optional, Union

from pydantic import ValidationError

from civichub.errors import ValidationFailure
from civichub.models.hierarchy import (
    LINEAGE_FIELDS,
    PLURAL_KEYS,
    HierarchyLevel,
    child_level,
    parent_level,
)
from civichub.schemas.hierarchy import (
    HierarchyImportTree,
    ImportResult,
    validation_message,
    prepare_node_data,
)

# Attribute holding an import entry's children, per level.
CHILDREN_KEYS = {
    HierarchyLevel.REGION: "localities",
    HierarchyLevel.LOCALITY: "admin_units",
    HierarchyLevel.ADMIN_UNIT: "districts",
}


class HierarchyImportService:
    """
    Merges a nested Region → Locality → AdminUnit → District tree into the
    stored hierarchy. Existing nodes are matched by name or code under the
    same parent and reused; the rest are created. Re-running an import is a
    no-op.
    """

    def __init__(self, hierarchy_service=None, logger: Optional[logging.Logger] = None):
        if hierarchy_service is None:
            from civichub.services.hierarchy_service import HierarchyService

            hierarchy_service = HierarchyService()
        self.hierarchy_service = hierarchy_service
        self.logger = logger or logging.getLogger(__name__)
        self._default_national_level_id: Optional[str] = None

    async def reconcile(self, tree: Union[Mapping[str, Any], HierarchyImportTree]) -> ImportResult:
        if not isinstance(tree, HierarchyImportTree):
            try:
                tree = HierarchyImportTree.model_validate(tree)
            except ValidationError as e:
                raise ValidationFailure(
                    f"Invalid hierarchy data: {validation_message(e)}", entity="hierarchy"
                ) from e

        result = ImportResult()
        self._default_national_level_id = None
        for region in tree.regions:
            await self._reconcile_node(HierarchyLevel.REGION, region, None, result)

        self.logger.info(
            "Hierarchy import finished. created=%s failed=%s", result.created, result.failed
        )
        return result

    async def _default_parent_id(self) -> str:
        if self._default_national_level_id is None:
            national_level = await self.hierarchy_service.get_default_national_level()
            self._default_national_level_id = str(national_level.id)
        return self._default_national_level_id

    async def _reconcile_node(
        self,
        level: HierarchyLevel,
        entry: Any,
        enclosing_parent_id: Optional[str],
        result: ImportResult,
    ) -> None:
        key = PLURAL_KEYS[level]
        try:
            explicit_parent = getattr(entry, LINEAGE_FIELDS[parent_level(level)], None)
            parent_id = explicit_parent or enclosing_parent_id
            if parent_id is None and level == HierarchyLevel.REGION:
                parent_id = await self._default_parent_id()

            payload = prepare_node_data(entry.node_payload())
            node = await self.hierarchy_service.find_sibling(
                level, parent_id, payload.name, payload.code
            )
            if node is None:
                node = await self.hierarchy_service.create_node(
                    level, payload, parent_id, allow_inactive_parent=True
                )
                result.created[key] += 1
                result.details[key].append(node)
        except Exception:
            result.failed[key] += 1
            self.logger.exception(
                "Failed to import %s '%s'; skipping its subtree",
                level.value.replace("_", " "),
                getattr(entry, "name", None),
            )
            return

        child = child_level(level)
        children: List[Any] = getattr(entry, CHILDREN_KEYS.get(level, ""), [])
        for child_entry in children:
            await self._reconcile_node(child, child_entry, str(node.id), result)
