from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from app.schemas.mbee import OrganizationUpdate
from app.services.common import (
    build_index,
    chunked,
    classify_input,
    find_duplicates,
    parse_options,
)
from app.services.crud import UpdatePolicy, plan_update, reject_duplicates


class TestClassifyInput:
    def test_find_nothing(self) -> None:
        assert classify_input(None, "find") == ("none", [])

    def test_single_id(self) -> None:
        assert classify_input("e1", "remove") == ("ids", ["e1"])

    def test_list_of_ids(self) -> None:
        assert classify_input(["e1", "e2"], "find") == ("ids", ["e1", "e2"])

    def test_single_object(self) -> None:
        assert classify_input({"id": "e1"}, "create") == ("objects", [{"id": "e1"}])

    def test_mixed_list_rejected(self) -> None:
        with pytest.raises(HTTPException) as exc:
            classify_input([{"id": "e1"}, "e2"], "update")
        assert exc.value.status_code == 400
        assert exc.value.detail == "Invalid input for update: received [str]."

    def test_object_to_remove_rejected(self) -> None:
        with pytest.raises(HTTPException) as exc:
            classify_input({"id": "e1"}, "remove")
        assert "received [object]" in exc.value.detail

    def test_nothing_to_create_rejected(self) -> None:
        with pytest.raises(HTTPException) as exc:
            classify_input(None, "create")
        assert "received [undefined]" in exc.value.detail


class TestParseOptions:
    def test_defaults(self) -> None:
        parsed = parse_options(None, {"archived"})
        assert parsed["archived"] is False
        assert parsed["populate"] == []
        assert parsed["limit"] is None

    def test_unknown_option(self) -> None:
        with pytest.raises(HTTPException) as exc:
            parse_options({"depth": 2}, {"archived"})
        assert exc.value.detail == "Invalid option [depth]."

    def test_wrong_type(self) -> None:
        with pytest.raises(HTTPException) as exc:
            parse_options({"archived": "yes"}, {"archived"})
        assert exc.value.detail == "The option 'archived' is not a bool."

    def test_bool_is_not_an_int(self) -> None:
        with pytest.raises(HTTPException):
            parse_options({"limit": True}, {"limit"})

    def test_negative_skip(self) -> None:
        with pytest.raises(HTTPException):
            parse_options({"skip": -1}, {"skip"})

    def test_populate_checked_against_populatable(self) -> None:
        with pytest.raises(HTTPException) as exc:
            parse_options({"populate": ["owner"]}, {"populate"}, ("parent",))
        assert "[owner]" in exc.value.detail

    def test_populated_means_everything(self) -> None:
        parsed = parse_options(
            {"populated": True}, {"populated"}, ("parent", "source")
        )
        assert parsed["populate"] == ["parent", "source"]


class TestHelpers:
    def test_chunked(self) -> None:
        assert list(chunked(range(5), 2)) == [[0, 1], [2, 3], [4]]

    def test_find_duplicates(self) -> None:
        assert find_duplicates(["a1", "b1", "a1"]) == ["a1"]

    def test_build_index_objects_and_dicts(self) -> None:
        doc = SimpleNamespace(id="e1")
        assert build_index([doc]) == {"e1": doc}
        assert build_index([{"id": "e2"}]) == {"e2": {"id": "e2"}}

    def test_reject_duplicates(self) -> None:
        with pytest.raises(HTTPException) as exc:
            reject_duplicates(["e1", "e1"], "create")
        assert exc.value.status_code == 409
        assert exc.value.detail == (
            "Multiple objects with the same ID [e1] exist in the create."
        )


POLICY = UpdatePolicy(
    name="Org",
    schema=OrganizationUpdate,
    updatable=frozenset({"name", "custom", "archived"}),
    immutable=frozenset({"permissions_locked"}),
)


def _org(**overrides):
    values = {
        "id": "council",
        "name": "Council",
        "custom": {"a": 1},
        "archived": False,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class TestPlanUpdate:
    def test_sets_fields_and_audit(self) -> None:
        plan = plan_update(_org(), {"id": "council", "name": "New"}, POLICY, "alice")
        assert plan["name"] == "New"
        assert plan["last_modified_by"] == "alice"

    def test_custom_is_merged(self) -> None:
        plan = plan_update(_org(), {"id": "council", "custom": {"b": 2}}, POLICY, "al")
        assert plan["custom"] == {"a": 1, "b": 2}

    def test_not_updatable(self) -> None:
        with pytest.raises(HTTPException) as exc:
            plan_update(_org(), {"id": "council", "color": "red"}, POLICY, "al")
        assert exc.value.status_code == 400
        assert exc.value.detail == "Org property [color] cannot be changed."

    def test_immutable_is_a_conflict(self) -> None:
        with pytest.raises(HTTPException) as exc:
            plan_update(_org(), {"permissions_locked": True}, POLICY, "al")
        assert exc.value.status_code == 409

    def test_archived_blocks_changes(self) -> None:
        with pytest.raises(HTTPException) as exc:
            plan_update(_org(archived=True), {"name": "x"}, POLICY, "al")
        assert exc.value.status_code == 409
        assert "is archived" in exc.value.detail

    def test_archiving_an_archived_doc_is_a_no_op(self) -> None:
        plan = plan_update(_org(archived=True), {"archived": True}, POLICY, "al")
        assert plan == {}

    def test_unarchive_with_changes(self) -> None:
        plan = plan_update(
            _org(archived=True), {"archived": False, "name": "Back"}, POLICY, "al"
        )
        assert plan["archived"] is False
        assert plan["archived_on"] is None
        assert plan["name"] == "Back"

    def test_schema_errors_become_validation_errors(self) -> None:
        with pytest.raises(HTTPException) as exc:
            plan_update(_org(), {"name": ""}, POLICY, "al")
        assert exc.value.status_code == 400
        assert exc.value.detail.startswith("Invalid org:")
