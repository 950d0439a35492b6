import pytest

from civichub.errors import ValidationFailure
from civichub.schemas.hierarchy import (
    HierarchyImportTree,
    HierarchyNodeUpdate,
    ImportResult,
    normalize_code,
    prepare_node_data,
)


def test_node_data_is_normalised():
    payload = prepare_node_data(
        {"name": "  Old Town ", "code": " ot-1 ", "description": "   "}
    )
    assert payload.name == "Old Town"
    assert payload.code == "OT-1"
    assert payload.description is None
    assert payload.active is True


@pytest.mark.parametrize("code", [None, "", "   "])
def test_blank_codes_become_none(code):
    assert normalize_code(code) is None
    assert prepare_node_data({"name": "North", "code": code}).code is None


@pytest.mark.parametrize("code", ["N 1", "north/1", "N.1"])
def test_invalid_codes_rejected(code):
    with pytest.raises(ValidationFailure) as excinfo:
        prepare_node_data({"name": "North", "code": code})
    assert "letters, numbers, hyphens, and underscores" in excinfo.value.detail


@pytest.mark.parametrize("name", [None, "", "   "])
def test_name_required(name):
    with pytest.raises(ValidationFailure, match="Name is required"):
        prepare_node_data({"name": name})


def test_partial_update_keeps_unset_fields_out():
    update = prepare_node_data({"code": "c1"}, HierarchyNodeUpdate)
    assert update.model_dump(exclude_unset=True) == {"code": "C1"}


def test_import_tree_accepts_camel_case_keys():
    tree = HierarchyImportTree.model_validate(
        {
            "regions": [
                {
                    "name": "North",
                    "nationalLevelId": "abc",
                    "localities": [
                        {"name": "Capital", "adminUnits": [{"name": "Central", "districts": [{"name": "Old Town"}]}]}
                    ],
                }
            ]
        }
    )
    region = tree.regions[0]
    assert region.national_level_id == "abc"
    assert region.localities[0].admin_units[0].districts[0].name == "Old Town"
    assert region.node_payload()["active"] is True


def test_import_result_reports_partial_failures():
    result = ImportResult()
    assert set(result.created) == {"regions", "localities", "admin_units", "districts"}
    assert not result.partial

    result.failed["districts"] += 1
    assert result.partial


def test_import_result_dump_includes_partial_flag():
    result = ImportResult()
    assert result.model_dump()["partial"] is False

    result.failed["regions"] += 1
    dumped = result.model_dump()
    assert dumped["partial"] is True
    assert dumped["status"] == "success"
