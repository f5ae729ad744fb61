"""Unit tests for option validation, paging and query parameter parsing."""

from types import SimpleNamespace

import pytest
from starlette.requests import Request

from mbee.api.deps import body_for_path, get_query_options, get_requested_ids
from mbee.core.exceptions import ConflictError, ValidationError
from mbee.services.helpers import deep_merge, ensure_unique, normalize_batch, normalize_ids
from mbee.services.query_options import (
    ELEMENT_FIND_OPTIONS,
    FIND_OPTIONS,
    REMOVE_OPTIONS,
    WRITE_OPTIONS,
    project_fields,
    sort_and_page,
    validate_options,
)


def _request(query: str) -> Request:
    return Request({"type": "http", "method": "GET", "path": "/", "query_string": query.encode()})


class TestValidateOptions:
    def test_defaults(self):
        """Test no options means the documented defaults."""
        opts = validate_options(None, "element", ELEMENT_FIND_OPTIONS)

        assert opts.archived is False
        assert opts.subtree is False
        assert opts.soft is True
        assert opts.populate == []

    def test_unknown_option_is_rejected(self):
        with pytest.raises(ValidationError, match="Invalid option"):
            validate_options({"bogus": True}, "element", FIND_OPTIONS)

    def test_option_not_allowed_for_operation(self):
        """Test subtree is only an element find option."""
        with pytest.raises(ValidationError):
            validate_options({"subtree": True}, "branch", FIND_OPTIONS)

    def test_boolean_option_type(self):
        with pytest.raises(ValidationError, match="boolean"):
            validate_options({"archived": "yes"}, "element", FIND_OPTIONS)

    def test_integer_option_rejects_booleans(self):
        with pytest.raises(ValidationError, match="integer"):
            validate_options({"limit": True}, "element", FIND_OPTIONS)

    def test_negative_skip_is_rejected(self):
        with pytest.raises(ValidationError, match="negative"):
            validate_options({"skip": -1}, "element", FIND_OPTIONS)

    def test_populate_allow_list(self):
        """Test populate only accepts reference fields of the model."""
        opts = validate_options({"populate": ["parent", "parent"]}, "element", WRITE_OPTIONS)
        assert opts.populate == ["parent"]

        with pytest.raises(ValidationError) as exc_info:
            validate_options({"populate": ["documentation"]}, "element", WRITE_OPTIONS)
        assert exc_info.value.details["fields"] == ["documentation"]

    def test_fields_include_and_exclude(self):
        opts = validate_options({"fields": ["name", "type"]}, "element", FIND_OPTIONS)
        assert opts.include_fields == ["name", "type"]

        opts = validate_options({"fields": ["-custom"]}, "element", FIND_OPTIONS)
        assert opts.exclude_fields == ["custom"]

    def test_fields_cannot_mix(self):
        with pytest.raises(ValidationError, match="cannot mix"):
            validate_options({"fields": ["name", "-custom"]}, "element", FIND_OPTIONS)

    def test_sort_descending(self):
        opts = validate_options({"sort": "-name"}, "project", FIND_OPTIONS)

        assert opts.sort == "name"
        assert opts.sort_descending is True

    def test_sort_field_allow_list(self):
        with pytest.raises(ValidationError):
            validate_options({"sort": "permissions"}, "project", FIND_OPTIONS)

    def test_search_keys_only_with_search(self):
        """Test search keys are rejected unless the operation allows search."""
        opts = validate_options({"type": "Block"}, "element", FIND_OPTIONS, search=True)
        assert opts.search == {"type": "Block"}

        with pytest.raises(ValidationError):
            validate_options({"type": "Block"}, "element", FIND_OPTIONS)

    def test_custom_search_keys(self):
        opts = validate_options({"custom.owner": "vader"}, "element", FIND_OPTIONS, search=True)

        assert opts.search == {"custom.owner": "vader"}

    def test_bare_custom_prefix_is_rejected(self):
        with pytest.raises(ValidationError):
            validate_options({"custom.": "x"}, "element", FIND_OPTIONS, search=True)

    def test_search_value_type(self):
        with pytest.raises(ValidationError, match="must be a bool"):
            validate_options({"admin": "yes"}, "user", FIND_OPTIONS, search=True)

    def test_remove_options(self):
        assert validate_options({"soft": False}, "element", REMOVE_OPTIONS).soft is False


class TestSortAndPage:
    def test_sort_skip_limit(self):
        """Test in-memory paging sorts before skipping and limiting."""
        docs = [SimpleNamespace(id=i, name=n) for i, n in [("c", "x"), ("a", "z"), ("b", "y")]]
        opts = validate_options({"sort": "-name", "skip": 1, "limit": 1}, "project", FIND_OPTIONS)

        assert [d.id for d in sort_and_page(docs, opts, "id")] == ["b"]

    def test_default_order(self):
        docs = [SimpleNamespace(id=i) for i in ("b", "a", "c")]
        opts = validate_options(None, "project", FIND_OPTIONS)

        assert [d.id for d in sort_and_page(docs, opts, "id")] == ["a", "b", "c"]


class TestProjectFields:
    def test_include_keeps_always_fields(self):
        """Test id and contains survive an include projection of elements."""
        opts = validate_options({"fields": ["name"]}, "element", FIND_OPTIONS)
        document = {"id": "e1", "name": "E1", "type": "Block", "contains": []}

        assert project_fields(document, opts, "element") == {
            "id": "e1",
            "name": "E1",
            "contains": [],
        }

    def test_exclude_cannot_drop_id(self):
        opts = validate_options({"fields": ["-id", "-type"]}, "element", FIND_OPTIONS)
        document = {"id": "e1", "name": "E1", "type": "Block", "contains": []}

        assert project_fields(document, opts, "element") == {
            "id": "e1",
            "name": "E1",
            "contains": [],
        }


class TestHelpers:
    def test_deep_merge_merges_nested_objects(self):
        base = {"owner": "vader", "specs": {"mass": 1, "crew": 2}}
        merged = deep_merge(base, {"specs": {"crew": 3}, "status": "active"})

        assert merged == {"owner": "vader", "specs": {"mass": 1, "crew": 3}, "status": "active"}
        assert base["specs"]["crew"] == 2

    def test_deep_merge_replaces_non_objects(self):
        assert deep_merge({"tags": [1, 2]}, {"tags": [3]}) == {"tags": [3]}

    def test_normalize_batch(self):
        assert normalize_batch({"id": "e1"}, "element") == [{"id": "e1"}]
        with pytest.raises(ValidationError):
            normalize_batch([], "element")
        with pytest.raises(ValidationError):
            normalize_batch(["e1"], "element")

    def test_normalize_ids_drops_duplicates(self):
        assert normalize_ids(["e2", "e1", "e2"], "element") == ["e2", "e1"]

    def test_ensure_unique(self):
        with pytest.raises(ValidationError) as exc_info:
            ensure_unique(["e1", "e2", "e1"], "element")

        assert exc_info.value.details == {"ids": ["e1"]}


class TestQueryParameters:
    def test_typed_parameters(self):
        """Test lists, booleans and integers are parsed from the query string."""
        options = get_query_options(
            _request("populate=parent,contains&archived=true&limit=5&type=Block&ids=e1,e2")
        )

        assert options == {
            "populate": ["parent", "contains"],
            "archived": True,
            "limit": 5,
            "type": "Block",
        }

    def test_invalid_boolean(self):
        with pytest.raises(ValidationError):
            get_query_options(_request("soft=maybe"))

    def test_invalid_integer(self):
        with pytest.raises(ValidationError):
            get_query_options(_request("limit=ten"))

    def test_requested_ids(self):
        assert get_requested_ids(_request("ids=e1,e2,")) == ["e1", "e2"]
        assert get_requested_ids(_request("")) is None

    def test_body_for_path(self):
        assert body_for_path({"name": "x"}, "id", "e1") == {"name": "x", "id": "e1"}

    def test_body_for_path_conflict(self):
        """Test a body naming another id than the path is a conflict."""
        with pytest.raises(ConflictError):
            body_for_path({"id": "e2"}, "id", "e1")
