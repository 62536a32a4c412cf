"""
Unit tests for the dotted-key codec, value kinds and record models.
"""

import pytest

from raincache_docstore import (
    Entry,
    ListElement,
    ValueKind,
    classify,
    contains_value,
    merge_value,
    namespace_prefixes,
    split_partition,
    values_equal,
)


@pytest.mark.unit
class TestNamespacePrefixes:
    """Ancestor prefixes always start at the root and exclude the key."""

    def test_nested_key(self):
        assert namespace_prefixes("a.b.c") == ["", "a", "a.b"]

    def test_single_component(self):
        assert namespace_prefixes("a") == [""]

    def test_empty_key(self):
        assert namespace_prefixes("") == [""]

    def test_deep_key(self):
        prefixes = namespace_prefixes("users.42.settings.theme")
        assert prefixes == ["", "users", "users.42", "users.42.settings"]

    def test_empty_components_are_kept(self):
        assert namespace_prefixes("a..b") == ["", "a", "a."]


@pytest.mark.unit
class TestSplitPartition:

    @pytest.mark.parametrize("key,expected", [
        ("users.42.profile", ("users", "42.profile")),
        ("users", ("users", "")),
        ("", ("", "")),
        (".hidden", ("", "hidden")),
    ])
    def test_split(self, key, expected):
        assert split_partition(key) == expected


@pytest.mark.unit
class TestValueKinds:

    @pytest.mark.parametrize("value,kind", [
        (None, ValueKind.ABSENT),
        ("text", ValueKind.SCALAR),
        (42, ValueKind.SCALAR),
        (1.5, ValueKind.SCALAR),
        (False, ValueKind.SCALAR),
        ([1, 2], ValueKind.SCALAR),
        ({"a": 1}, ValueKind.STRUCTURED),
        ({}, ValueKind.STRUCTURED),
    ])
    def test_classify(self, value, kind):
        assert classify(value) is kind

    def test_scalar_is_replaced(self):
        assert merge_value("old", "new") == "new"
        assert merge_value(1, {"a": 1}) == {"a": 1}

    def test_false_is_replaced_not_treated_as_absent(self):
        assert merge_value(False, True) is True

    def test_absent_is_replaced(self):
        assert merge_value(None, {"a": 1}) == {"a": 1}

    def test_structured_is_shallow_merged(self):
        existing = {"a": 1, "nested": {"x": 1}}
        merged = merge_value(existing, {"b": 2, "nested": {"y": 2}})
        assert merged == {"a": 1, "b": 2, "nested": {"y": 2}}
        # the existing mapping is not mutated
        assert existing == {"a": 1, "nested": {"x": 1}}

    def test_structured_replaced_by_non_mapping(self):
        assert merge_value({"a": 1}, "flat") == "flat"

    def test_array_is_replaced(self):
        assert merge_value([1, 2], [3]) == [3]


@pytest.mark.unit
class TestValueEquality:

    @pytest.mark.parametrize("left,right,equal", [
        (1, 1.0, True),
        ("a", "a", True),
        (True, True, True),
        (True, 1, False),
        (0, False, False),
        (None, False, False),
        ([1, True], [1, True], True),
        ([1, True], [True, 1], False),
        ([1], (1,), True),
        ({"a": [True]}, {"a": [1]}, False),
        ({"a": 1, "b": 2}, {"b": 2, "a": 1}, True),
        ({"a": 1}, {"a": 1, "b": 2}, False),
        (["a", "b"], "a", False),
    ])
    def test_values_equal(self, left, right, equal):
        assert values_equal(left, right) is equal
        assert values_equal(right, left) is equal

    def test_contains_value(self):
        assert contains_value([1, "x"], 1)
        assert not contains_value([1, "x"], True)
        assert contains_value([[1, 2]], [1, 2])
        assert not contains_value([], None)


@pytest.mark.unit
class TestRecords:

    def test_new_entry_document(self):
        document = Entry.new("a.b.c", {"k": 1}).to_document()
        assert document == {
            "key": "a.b.c",
            "value": {"k": 1},
            "list": False,
            "namespaces": ["", "a", "a.b"],
        }

    def test_new_list_entry(self):
        entry = Entry.new("lists.online", is_list=True)
        assert entry.is_list is True
        assert entry.value is None
        assert "_id" not in entry.to_document()

    def test_entry_from_document_aliases(self):
        entry = Entry.model_validate({"_id": "abc", "key": "k", "list": True})
        assert entry.id == "abc"
        assert entry.is_list is True
        assert entry.namespaces == []

    def test_list_element_document(self):
        element = ListElement(list_id="owner", value="m")
        assert element.to_document() == {"listID": "owner", "value": "m"}
