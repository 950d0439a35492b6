import pytest

from civichub.models.hierarchy import HierarchyLevel
from civichub.services.access_evaluator import AccessEvaluator

from tests.fakes import InMemoryContentService, InMemoryHierarchyService, InMemoryUserService


@pytest.fixture
def hierarchy():
    """
    Two disjoint branches under one national level:
    North > Capital > Central > Old Town and South > Coast > Harbour > Docks.
    """
    service = InMemoryHierarchyService()
    nation = service.add(HierarchyLevel.NATIONAL_LEVEL, "National", code="NATIONAL")
    north = service.add(HierarchyLevel.REGION, "North", nation, code="N1")
    south = service.add(HierarchyLevel.REGION, "South", nation, code="S1")
    capital = service.add(HierarchyLevel.LOCALITY, "Capital", north, code="C1")
    coast = service.add(HierarchyLevel.LOCALITY, "Coast", south, code="C2")
    central = service.add(HierarchyLevel.ADMIN_UNIT, "Central", capital)
    harbour = service.add(HierarchyLevel.ADMIN_UNIT, "Harbour", coast)
    service.add(HierarchyLevel.DISTRICT, "Old Town", central)
    service.add(HierarchyLevel.DISTRICT, "Docks", harbour)
    return service


@pytest.fixture
def nodes(hierarchy):
    """Nodes of the fixture tree by name."""
    return {node.name: node for _, node in hierarchy.all_nodes()}


@pytest.fixture
def users():
    return InMemoryUserService()


@pytest.fixture
def contents():
    return InMemoryContentService()


@pytest.fixture
def evaluator(hierarchy, users, contents):
    return AccessEvaluator(
        hierarchy_service=hierarchy, user_service=users, content_service=contents
    )
