from __future__ import annotations

import pytest

from tdshape.analysis.lattice import LatticeContext, is_assignable
from tdshape.analysis.shape import RecordShape, ShapeRegistry
from tdshape.analysis.shape_consistency import (
    ConsistencyRule,
    explain_consistency,
    is_consistent,
    mapping_assignable_to_shape,
    shape_assignable_to_mapping,
)
from tdshape.analysis.shape_validation import check_literal
from tdshape.analysis.type_expr import ClassType, ShapeRef, parse_type


def _shape(name: str, items: dict[str, str], **kwargs) -> RecordShape:
    return RecordShape.from_annotations(name, items, **kwargs)


@pytest.mark.parametrize(
    "shape",
    [
        _shape("Empty", {}),
        _shape("Movie", {"name": "str", "year": "NotRequired[int]"}),
        _shape("Frozen", {"name": "ReadOnly[str]", "tags": "ReadOnly[NotRequired[list[str]]]"}),
        _shape("Mixed", {"value": "int | str | None"}, total=False),
    ],
)
def test_descriptor_without_extra_rule_is_consistent_with_itself(shape: RecordShape) -> None:
    assert is_consistent(shape, shape)


def test_consistency_chain_is_transitive() -> None:
    first = _shape("First", {"name": "str", "year": "int"})
    second = _shape("Second", {"name": "str", "year": "ReadOnly[int | None]"})
    third = _shape("Third", {"name": "ReadOnly[str]"}, extra="ReadOnly[object]")
    assert is_consistent(first, second)
    assert is_consistent(second, third)
    assert is_consistent(first, third)
    assert not is_consistent(third, first)


def test_item_against_optional_read_only_item() -> None:
    target = _shape("Target", {"x": "ReadOnly[int | None]"})
    assert is_consistent(_shape("Number", {"x": "int"}), target)
    assert is_consistent(_shape("Nothing", {"x": "None"}), target)
    assert not is_consistent(_shape("Text", {"x": "str"}), target)
    assert not is_consistent(_shape("Maybe", {"x": "str | None"}), target)
    assert not explain_consistency(_shape("Text", {"x": "str"}), target).consistent


def test_surplus_item_against_read_only_extra_rule() -> None:
    movie = _shape("Movie", {"name": "str", "year": "NotRequired[int]"})
    target = _shape("Target", {"name": "str"}, extra="ReadOnly[str | int]")
    assert is_consistent(movie, target)


def test_surplus_item_outside_read_only_extra_type_fails() -> None:
    movie = _shape("Movie", {"name": "str", "year": "NotRequired[bytes]"})
    target = _shape("Target", {"name": "str"}, extra="ReadOnly[str | int]")
    report = explain_consistency(movie, target)
    assert not report.consistent
    assert [(failure.field, failure.rule) for failure in report.failures] == [
        ("year", ConsistencyRule.EXTRA_ITEMS)
    ]


def test_mutable_extra_rule_rejects_closed_source() -> None:
    movie = _shape("Movie", {"name": "str", "year": "NotRequired[int]"})
    target = _shape("Target", {"name": "str"}, extra="int")
    report = explain_consistency(movie, target)
    assert not report.consistent
    assert {failure.field for failure in report.failures} == {"<extra>"}


def test_mutable_extra_rule_accepts_matching_non_required_item() -> None:
    movie = _shape("Movie", {"name": "str", "year": "NotRequired[int]"}, extra="int")
    target = _shape("Target", {"name": "str"}, extra="int")
    assert is_consistent(movie, target)


def test_mutable_extra_rule_rejects_required_item() -> None:
    movie = _shape("Movie", {"name": "str", "year": "int"}, extra="int")
    target = _shape("Target", {"name": "str"}, extra="int")
    report = explain_consistency(movie, target)
    assert not report.consistent
    assert report.render() == ["year: [extra-items] required item cannot stand in for mutable extra items"]


def test_mutable_extra_rule_needs_both_directions() -> None:
    movie = _shape("Movie", {"name": "str", "year": "NotRequired[bool]"}, extra="int")
    target = _shape("Target", {"name": "str"}, extra="int")
    assert not is_consistent(movie, target)
    source_extra_wider = _shape("Wide", {"name": "str"}, extra="int | str")
    assert not is_consistent(source_extra_wider, target)


def test_required_target_item_is_not_satisfied_by_extra_rule() -> None:
    source = _shape("Source", {"name": "str"}, extra="int")
    target = _shape("Target", {"name": "str", "year": "int"}, extra="int")
    report = explain_consistency(source, target)
    rules = {(failure.field, failure.rule) for failure in report.failures}
    assert ("year", ConsistencyRule.REQUIREDNESS) in rules


def test_non_required_target_item_is_satisfied_by_extra_rule() -> None:
    source = _shape("Source", {"name": "str"}, extra="int")
    target = _shape("Target", {"name": "str", "year": "NotRequired[int]"}, extra="int")
    assert is_consistent(source, target)


def test_read_only_target_item_is_covariant() -> None:
    source = _shape("Source", {"value": "bool"})
    target = _shape("Target", {"value": "ReadOnly[int]"})
    assert is_consistent(source, target)
    mutable_target = _shape("MutableTarget", {"value": "int"})
    report = explain_consistency(source, mutable_target)
    assert [failure.rule for failure in report.failures] == [ConsistencyRule.VALUE_TYPE_INVARIANT]


@pytest.mark.parametrize(
    ("source_item", "target_item", "consistent"),
    [
        ("int", "int", True),
        ("NotRequired[int]", "int", False),
        ("int", "NotRequired[int]", False),
        ("NotRequired[int]", "NotRequired[int]", True),
        ("int", "ReadOnly[NotRequired[int]]", True),
        ("ReadOnly[int]", "int", False),
        ("ReadOnly[int]", "ReadOnly[int]", True),
    ],
)
def test_requiredness_and_mutability_combinations(
    source_item: str, target_item: str, consistent: bool
) -> None:
    source = _shape("Source", {"year": source_item})
    target = _shape("Target", {"year": target_item})
    assert is_consistent(source, target) is consistent


def test_missing_top_constraint_item_is_tolerated() -> None:
    source = _shape("Source", {"name": "str"})
    target = _shape("Target", {"name": "str", "anything": "ReadOnly[NotRequired[object]]"})
    assert is_consistent(source, target)
    strict_target = _shape("Strict", {"name": "str", "anything": "ReadOnly[NotRequired[int]]"})
    report = explain_consistency(source, strict_target)
    assert [failure.rule for failure in report.failures] == [ConsistencyRule.MISSING_ITEM]


def test_closed_target_rejects_surplus_items_and_open_sources() -> None:
    target = _shape("Target", {"name": "str"}, extra="Never")
    surplus = _shape("Surplus", {"name": "str", "year": "int"})
    open_source = _shape("OpenSource", {"name": "str"}, extra="ReadOnly[str]")
    assert not is_consistent(surplus, target)
    report = explain_consistency(open_source, target)
    assert [(failure.field, failure.rule) for failure in report.failures] == [
        ("<extra>", ConsistencyRule.CLOSED_TARGET)
    ]


def test_consistency_is_directional() -> None:
    narrow = _shape("Narrow", {"name": "str", "year": "NotRequired[int]"})
    wide = _shape("Wide", {"name": "str"}, extra="ReadOnly[str | int]")
    assert is_consistent(narrow, wide)
    assert not is_consistent(wide, narrow)


def test_nested_shapes_are_compared_structurally() -> None:
    names = {"Inner", "Other", "Outer", "OuterOther"}
    inner = _shape("Inner", {"name": "str"})
    other = _shape("Other", {"name": "str"})
    outer = _shape("Outer", {"inner": "ReadOnly[Inner]"}, shape_names=names)
    outer_other = _shape("OuterOther", {"inner": "Other"}, shape_names=names)
    context = LatticeContext(ShapeRegistry([inner, other, outer, outer_other]))
    assert is_consistent(outer_other, outer, context=context)


@pytest.mark.parametrize(
    ("value_type", "expected"),
    [("str", True), ("int", False), ("str | int", True), ("object", True)],
)
def test_extra_rule_descriptor_as_read_only_mapping(value_type: str, expected: bool) -> None:
    shape = _shape("Named", {"name": "str"}, extra="str")
    assert shape_assignable_to_mapping(shape, parse_type(value_type)) is expected


def test_extra_rule_descriptor_as_dict_requires_no_required_items() -> None:
    required = _shape("Required", {"name": "str"}, extra="str")
    loose = _shape("Loose", {"name": "NotRequired[str]"}, extra="str")
    assert not shape_assignable_to_mapping(required, parse_type("str"), mutable=True)
    assert shape_assignable_to_mapping(loose, parse_type("str"), mutable=True)
    assert not shape_assignable_to_mapping(loose, parse_type("str | int"), mutable=True)


def test_required_ancestor_item_blocks_dict_consistency() -> None:
    base = _shape("Base", {"name": "str"}, extra="str")
    child = _shape("Child", {"name": "NotRequired[str]"}, bases=(base,))
    assert child.fields["name"].required is False
    assert not shape_assignable_to_mapping(child, parse_type("str"), mutable=True)


def test_dict_assignable_to_extra_rule_descriptor() -> None:
    loose = _shape("Loose", {"name": "NotRequired[str]"}, extra="str")
    assert mapping_assignable_to_shape(parse_type("str"), loose)
    assert not mapping_assignable_to_shape(parse_type("int"), loose)
    assert not mapping_assignable_to_shape(parse_type("str"), loose, mutable=False)
    closed = _shape("Closed", {"name": "NotRequired[str]"})
    assert not mapping_assignable_to_shape(parse_type("str"), closed)


def test_mapping_paths_through_assignability() -> None:
    named = _shape("Named", {"name": "str"}, extra="str")
    context = LatticeContext(ShapeRegistry([named]))
    ref = ShapeRef("Named")
    assert is_assignable(ref, parse_type("Mapping[str, str]"), context=context)
    assert not is_assignable(ref, parse_type("Mapping[str, int]"), context=context)
    assert is_assignable(ref, parse_type("Mapping[str, str | int]"), context=context)
    assert not is_assignable(ref, parse_type("Mapping[int, str]"), context=context)
    assert not is_assignable(ref, parse_type("dict[str, str]"), context=context)
    assert not is_assignable(ref, ClassType("list"), context=context)


def test_closed_descriptor_rejects_unknown_literal_keys() -> None:
    shape = _shape("Named", {"name": "str"}, extra="Never")
    assert check_literal(shape, {"name": parse_type("str")}) == []
    diagnostics = check_literal(shape, {"name": parse_type("str"), "year": parse_type("int")})
    assert [(d.code, d.field) for d in diagnostics] == [("unexpected-key", "year")]
