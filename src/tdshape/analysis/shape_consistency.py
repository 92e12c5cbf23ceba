"""Structural consistency between record-shape descriptors.

``is_consistent(A, B)`` answers "may a value of shape A be used where shape B
is expected". Each item of B is matched against the item of the same name in
A, or against A's extra rule standing in as a non-required pseudo-item. Items
A declares that B does not list are then matched against B's extra rule, and
finally the two extra rules are compared as pseudo-items.

The predicate never raises. Callers that need to know *why* a pair is
rejected use :func:`explain_consistency`, which runs the same checks and
keeps every failed sub-check.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import StrEnum

from tdshape.analysis.lattice import LatticeContext, is_assignable, is_consistent_both_ways
from tdshape.analysis.shape import ExtraRule, Field, RecordShape
from tdshape.analysis.type_expr import ObjectType, TypeExpr, render_type

logger = logging.getLogger(__name__)

EXTRA_SLOT = "<extra>"


class ConsistencyRule(StrEnum):
    MISSING_ITEM = "missing-item"
    REQUIREDNESS = "requiredness"
    READ_ONLY = "read-only"
    VALUE_TYPE = "value-type"
    VALUE_TYPE_INVARIANT = "value-type-invariant"
    CLOSED_TARGET = "closed-target"
    EXTRA_ITEMS = "extra-items"


@dataclass(frozen=True)
class ConsistencyFailure:
    field: str
    rule: ConsistencyRule
    message: str


@dataclass(frozen=True)
class ConsistencyReport:
    source: str
    target: str
    failures: tuple[ConsistencyFailure, ...] = ()

    @property
    def consistent(self) -> bool:
        return not self.failures

    def render(self) -> list[str]:
        return [f"{failure.field}: [{failure.rule.value}] {failure.message}" for failure in self.failures]


def _is_top_constraint(item: Field) -> bool:
    return isinstance(item.type, ObjectType) and not item.required and item.read_only


class _Comparison:
    def __init__(self, source: RecordShape, target: RecordShape, context: LatticeContext):
        self.source = source
        self.target = target
        self.context = context
        self.failures: list[ConsistencyFailure] = []

    def fail(self, field: str, rule: ConsistencyRule, message: str) -> None:
        logger.debug(
            "%s is not consistent with %s: %s [%s] %s",
            self.source.name,
            self.target.name,
            field,
            rule.value,
            message,
        )
        self.failures.append(ConsistencyFailure(field=field, rule=rule, message=message))

    def assignable(self, left: TypeExpr, right: TypeExpr) -> bool:
        return is_assignable(left, right, context=self.context)

    def mutual(self, left: TypeExpr, right: TypeExpr) -> bool:
        return is_consistent_both_ways(left, right, self.context)

    def corresponding(self, name: str) -> Field | None:
        named = self.source.fields.get(name)
        if named is not None:
            return named
        extra = self.source.effective_extra
        if extra is not None:
            return replace(extra.as_field(), name=name)
        return None

    def target_items(self) -> None:
        for name in sorted(self.target.fields):
            expected = self.target.fields[name]
            actual = self.corresponding(name)
            if actual is None:
                if _is_top_constraint(expected):
                    continue
                self.fail(name, ConsistencyRule.MISSING_ITEM, f"{self.source.name} has no item {name!r}")
                continue
            self.compare_item(name, actual, expected)

    def compare_item(self, name: str, actual: Field, expected: Field) -> None:
        if expected.required and not actual.required:
            self.fail(name, ConsistencyRule.REQUIREDNESS, "item is required in the target but not in the source")
        if not expected.required and not expected.read_only and actual.required:
            self.fail(
                name,
                ConsistencyRule.REQUIREDNESS,
                "mutable non-required item in the target is required in the source",
            )
        if not expected.read_only and actual.read_only:
            self.fail(name, ConsistencyRule.READ_ONLY, "mutable item in the target is read-only in the source")
        if expected.read_only:
            if not self.assignable(actual.type, expected.type):
                self.fail(
                    name,
                    ConsistencyRule.VALUE_TYPE,
                    f"{render_type(actual.type)} is not assignable to {render_type(expected.type)}",
                )
        elif not self.mutual(actual.type, expected.type):
            self.fail(
                name,
                ConsistencyRule.VALUE_TYPE_INVARIANT,
                f"{render_type(actual.type)} and {render_type(expected.type)} are not mutually consistent",
            )

    def against_extra(self, name: str, actual: Field, rule: ExtraRule) -> None:
        if rule.read_only:
            if not self.assignable(actual.type, rule.type):
                self.fail(
                    name,
                    ConsistencyRule.EXTRA_ITEMS,
                    f"{render_type(actual.type)} is not assignable to extra items type {render_type(rule.type)}",
                )
            return
        if actual.required:
            self.fail(name, ConsistencyRule.EXTRA_ITEMS, "required item cannot stand in for mutable extra items")
        if actual.read_only:
            self.fail(name, ConsistencyRule.EXTRA_ITEMS, "read-only item cannot stand in for mutable extra items")
        if not self.mutual(actual.type, rule.type):
            self.fail(
                name,
                ConsistencyRule.EXTRA_ITEMS,
                f"{render_type(actual.type)} and extra items type {render_type(rule.type)} are not mutually consistent",
            )

    def source_surplus(self) -> None:
        target_extra = self.target.effective_extra
        source_extra = self.source.effective_extra
        surplus = sorted(name for name in self.source.fields if name not in self.target.fields)
        if target_extra is None:
            for name in surplus:
                self.fail(name, ConsistencyRule.CLOSED_TARGET, f"{self.target.name} is closed and does not list {name!r}")
            if source_extra is not None:
                self.fail(EXTRA_SLOT, ConsistencyRule.CLOSED_TARGET, f"{self.target.name} is closed but {self.source.name} admits extra items")
            return
        for name in surplus:
            self.against_extra(name, self.source.fields[name], target_extra)
        if source_extra is not None:
            self.against_extra(EXTRA_SLOT, source_extra.as_field(), target_extra)
        elif not target_extra.read_only:
            self.fail(
                EXTRA_SLOT,
                ConsistencyRule.EXTRA_ITEMS,
                f"{self.source.name} is closed but {self.target.name} allows writing extra items",
            )

    def run(self) -> ConsistencyReport:
        self.target_items()
        self.source_surplus()
        return ConsistencyReport(
            source=self.source.name,
            target=self.target.name,
            failures=tuple(self.failures),
        )


def explain_consistency(
    source: RecordShape,
    target: RecordShape,
    *,
    context: LatticeContext | None = None,
) -> ConsistencyReport:
    return _Comparison(source, target, context or LatticeContext()).run()


def is_consistent(
    source: RecordShape,
    target: RecordShape,
    *,
    context: LatticeContext | None = None,
) -> bool:
    """Return True when ``source`` is assignable where ``target`` is expected."""
    return explain_consistency(source, target, context=context).consistent


def shape_assignable_to_mapping(
    shape: RecordShape,
    value_type: TypeExpr,
    *,
    mutable: bool = False,
    context: LatticeContext | None = None,
) -> bool:
    """``Mapping[str, VT]`` (``mutable=False``) or ``dict[str, VT]`` (``mutable=True``) target."""
    context = context or LatticeContext()
    if not mutable:
        return all(is_assignable(item, value_type, context=context) for item in shape.value_types())
    extra = shape.effective_extra
    if extra is None or extra.read_only:
        return False
    if shape.has_required_anywhere():
        return False
    if any(item.read_only for item in shape.fields.values()):
        return False
    return all(is_consistent_both_ways(item, value_type, context) for item in shape.value_types())


def mapping_assignable_to_shape(
    value_type: TypeExpr,
    shape: RecordShape,
    *,
    mutable: bool = True,
    context: LatticeContext | None = None,
) -> bool:
    """A plain ``dict[str, VT]`` / ``Mapping[str, VT]`` source viewed as ``shape``."""
    context = context or LatticeContext()
    extra = shape.effective_extra
    if extra is None or shape.has_required_anywhere():
        return False
    slots = [*shape.fields.values(), extra.as_field()]
    for slot in slots:
        if not is_assignable(value_type, slot.type, context=context):
            return False
        if slot.read_only:
            continue
        # Writes through the shape land in the mapping.
        if not mutable or not is_assignable(slot.type, value_type, context=context):
            return False
    return True
