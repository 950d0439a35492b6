"""Request-layer guards exercised through a throwaway FastAPI app."""

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from civichub.dependencies.access import (
    get_access_evaluator,
    get_current_principal,
    require_admin_level,
    require_content_management,
    require_node_access,
    require_user_management,
    to_http_exception,
)
from civichub.errors import Forbidden, NotFound, ValidationFailure
from civichub.models.content import ContentType
from civichub.models.hierarchy import HierarchyLevel
from civichub.models.user import AdminLevel

from tests.fakes import FakeContent, FakeUser, principal_at


@pytest.fixture
def principals(nodes):
    return {
        "admin": principal_at(AdminLevel.ADMIN),
        "north": principal_at(AdminLevel.REGION, nodes["North"]),
        "docks": principal_at(AdminLevel.DISTRICT, nodes["Docks"]),
    }


@pytest.fixture
def client(evaluator, principals):
    app = FastAPI()

    @app.middleware("http")
    async def attach_principal(request: Request, call_next):
        principal = principals.get(request.headers.get("X-Principal"))
        if principal is not None:
            request.state.user = principal
        return await call_next(request)

    @app.get("/me")
    async def me(principal=Depends(get_current_principal)):
        return {"admin_level": principal.admin_level}

    @app.get("/regions/{node_id}", dependencies=[Depends(require_node_access(HierarchyLevel.REGION))])
    async def region(node_id: str):
        return {"id": node_id}

    @app.get("/users/{user_id}", dependencies=[Depends(require_user_management())])
    async def user(user_id: str):
        return {"id": user_id}

    @app.get(
        "/bulletins/{content_id}",
        dependencies=[Depends(require_content_management(ContentType.BULLETINS))],
    )
    async def bulletin(content_id: str):
        return {"id": content_id}

    @app.get("/stats", dependencies=[Depends(require_admin_level(AdminLevel.NATIONAL_LEVEL))])
    async def stats():
        return {}

    @app.get("/districts", dependencies=[Depends(require_node_access(HierarchyLevel.DISTRICT))])
    async def districts():
        return []

    @app.get("/missing")
    async def missing():
        raise to_http_exception(NotFound("Region not found"))

    app.dependency_overrides[get_access_evaluator] = lambda: evaluator
    return TestClient(app)


def test_missing_principal_is_unauthorized(client):
    response = client.get("/me")
    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_principal_read_from_request_state(client):
    response = client.get("/me", headers={"X-Principal": "north"})
    assert response.status_code == 200
    assert response.json() == {"admin_level": "region"}


def test_node_guard(client, nodes):
    north, south = nodes["North"].id, nodes["South"].id

    assert client.get(f"/regions/{north}", headers={"X-Principal": "north"}).status_code == 200
    assert client.get(f"/regions/{south}", headers={"X-Principal": "admin"}).status_code == 200

    denied = client.get(f"/regions/{south}", headers={"X-Principal": "north"})
    assert denied.status_code == 403
    assert "jurisdiction" in denied.json()["detail"]
    assert client.get(f"/regions/{north}", headers={"X-Principal": "docks"}).status_code == 403


def test_node_guard_reads_query_parameter(client, nodes):
    headers = {"X-Principal": "north"}
    assert client.get("/districts", headers=headers).status_code == 400
    assert client.get(
        "/districts", params={"node_id": nodes["Old Town"].id}, headers=headers
    ).status_code == 200
    assert client.get(
        "/districts", params={"node_id": nodes["Docks"].id}, headers=headers
    ).status_code == 403


def test_user_guard(client, users, nodes):
    target = users.add(FakeUser(region_id=nodes["North"].id, locality_id=nodes["Capital"].id))

    assert client.get(f"/users/{target.id}", headers={"X-Principal": "north"}).status_code == 200
    assert client.get(f"/users/{target.id}", headers={"X-Principal": "docks"}).status_code == 403


def test_content_guard(client, contents, nodes):
    bulletin = contents.add(
        ContentType.BULLETINS, FakeContent(title="Ferry times", target_district_id=nodes["Docks"].id)
    )

    assert client.get(f"/bulletins/{bulletin.id}", headers={"X-Principal": "docks"}).status_code == 200
    assert client.get(f"/bulletins/{bulletin.id}", headers={"X-Principal": "north"}).status_code == 403


def test_admin_level_guard(client):
    assert client.get("/stats", headers={"X-Principal": "admin"}).status_code == 200
    assert client.get("/stats", headers={"X-Principal": "docks"}).status_code == 403


def test_domain_errors_map_to_statuses(client):
    response = client.get("/missing")
    assert response.status_code == 404
    assert response.json() == {"detail": "Region not found"}

    assert to_http_exception(Forbidden("no")).status_code == 403
    assert to_http_exception(ValidationFailure("bad")).status_code == 400
