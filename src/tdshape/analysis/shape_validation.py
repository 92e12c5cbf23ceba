"""Construction-time checks for record-shape declarations and literals."""

from __future__ import annotations

from collections import Counter
from typing import Iterator, Mapping

from tdshape.analysis.diagnostics import Diagnostic, DiagnosticKind, ill_formed
from tdshape.analysis.lattice import LatticeContext, is_assignable, is_consistent_both_ways
from tdshape.analysis.shape import ExtraRule, Field, Openness, RecordShape
from tdshape.analysis.type_expr import (
    NEVER,
    CallableType,
    ClassType,
    NarrowingType,
    NeverType,
    ShapeRef,
    TypeExpr,
    UnionType,
    render_type,
)
from tdshape.exceptions import IllFormedDeclarationError


def _shape_refs(value: TypeExpr) -> Iterator[ShapeRef]:
    match value:
        case ShapeRef():
            yield value
        case ClassType(args=args):
            for arg in args:
                yield from _shape_refs(arg)
        case UnionType(members=members):
            for member in members:
                yield from _shape_refs(member)
        case CallableType(parameters=parameters, returns=returns):
            for param in parameters or ():
                yield from _shape_refs(param)
            yield from _shape_refs(returns)
        case NarrowingType(narrowed=narrowed):
            yield from _shape_refs(narrowed)


def _is_closed_rule(rule: ExtraRule | None) -> bool:
    return rule is None or isinstance(rule.type, NeverType)


class _ShapeValidator:
    def __init__(self, shape: RecordShape, context: LatticeContext):
        self.shape = shape
        self.context = context
        self.diagnostics: list[Diagnostic] = []

    def report(self, code: str, message: str, *, field: str | None = None) -> None:
        self.diagnostics.append(ill_formed(self.shape.name, code, message, field=field))

    def mutual(self, left: TypeExpr, right: TypeExpr) -> bool:
        return is_consistent_both_ways(left, right, self.context)

    def assignable(self, left: TypeExpr, right: TypeExpr) -> bool:
        return is_assignable(left, right, context=self.context)

    def declaration(self) -> None:
        counts = Counter(item.name for item in self.shape.own_fields)
        for name, count in sorted(counts.items()):
            if count > 1:
                self.report("duplicate-field", f"item {name!r} is declared {count} times", field=name)
        extra = self.shape.own_extra
        if extra is not None and extra.required_qualifier is not None:
            qualifier = "Required" if extra.required_qualifier else "NotRequired"
            self.report("extra-qualifier", f"{qualifier}[] is not allowed on extra items")
        if extra is not None and self.shape.closed:
            self.report("closed-and-extra", "closed=True cannot be combined with extra_items")
        if extra is not None and not self.mutual(extra.type, extra.type):
            self.report(
                "extra-not-self-consistent",
                f"extra items type {render_type(extra.type)} is not consistent with itself",
            )

    def references(self) -> None:
        types: list[tuple[str | None, TypeExpr]] = [
            (item.name, item.type) for item in self.shape.own_fields
        ]
        if self.shape.own_extra is not None:
            types.append((None, self.shape.own_extra.type))
        for field_name, value in types:
            for ref in _shape_refs(value):
                if ref.name not in self.context.registry:
                    self.report(
                        "unresolved-type",
                        f"typed dictionary {ref.name!r} is not declared",
                        field=field_name,
                    )

    def redeclared_item(self, item: Field, inherited: Field) -> None:
        name = item.name
        if inherited.required and not item.required:
            self.report("field-made-not-required", "inherited required item made non-required", field=name)
        if inherited.read_only:
            if not self.assignable(item.type, inherited.type):
                self.report(
                    "field-type-changed",
                    f"{render_type(item.type)} is not assignable to inherited read-only "
                    f"type {render_type(inherited.type)}",
                    field=name,
                )
            return
        if item.read_only:
            self.report("field-made-read-only", "inherited mutable item made read-only", field=name)
        if not inherited.required and item.required:
            self.report("field-made-required", "inherited mutable non-required item made required", field=name)
        if not self.mutual(item.type, inherited.type):
            self.report(
                "field-type-changed",
                f"{render_type(item.type)} changes inherited type {render_type(inherited.type)}",
                field=name,
            )

    def added_item(self, item: Field, rule: ExtraRule | None) -> None:
        name = item.name
        if _is_closed_rule(rule):
            self.report("field-violates-extra", "cannot add items to a closed typed dictionary", field=name)
            return
        if rule.read_only:
            if not self.assignable(item.type, rule.type):
                self.report(
                    "field-violates-extra",
                    f"{render_type(item.type)} is not assignable to inherited extra items "
                    f"type {render_type(rule.type)}",
                    field=name,
                )
            return
        if item.required:
            self.report(
                "field-violates-extra",
                "required item cannot be added under mutable inherited extra items",
                field=name,
            )
        if item.read_only:
            self.report(
                "field-violates-extra",
                "read-only item cannot be added under mutable inherited extra items",
                field=name,
            )
        if not self.mutual(item.type, rule.type):
            self.report(
                "field-violates-extra",
                f"{render_type(item.type)} is not consistent with inherited extra items "
                f"type {render_type(rule.type)}",
                field=name,
            )

    def redeclared_extra(self, rule: ExtraRule, inherited: ExtraRule | None) -> None:
        if _is_closed_rule(inherited):
            if not isinstance(rule.type, NeverType):
                self.report("extra-reopened", "subclass of a closed typed dictionary cannot allow extra items")
            return
        if inherited.read_only:
            if not self.assignable(rule.type, inherited.type):
                self.report(
                    "extra-redeclared",
                    f"extra items type {render_type(rule.type)} is not assignable to inherited "
                    f"read-only extra items type {render_type(inherited.type)}",
                )
            return
        if rule.read_only or not self.mutual(rule.type, inherited.type):
            self.report(
                "extra-redeclared",
                f"inherited mutable extra items {render_type(inherited.type)} cannot be redeclared",
            )

    def inheritance(self) -> None:
        if not self.shape.bases:
            return
        inherited_fields = self.shape.inherited_fields
        inherited_extra = self.shape.inherited_extra
        for item in self.shape.own_fields:
            inherited = inherited_fields.get(item.name)
            if inherited is None:
                self.added_item(item, inherited_extra)
            else:
                self.redeclared_item(item, inherited)
        own_rule = self.shape.own_extra
        if own_rule is None and self.shape.closed:
            own_rule = ExtraRule(NEVER)
        if own_rule is not None:
            self.redeclared_extra(own_rule, inherited_extra)

    def run(self) -> list[Diagnostic]:
        self.declaration()
        self.references()
        self.inheritance()
        return self.diagnostics


def validate_shape(
    shape: RecordShape,
    *,
    context: LatticeContext | None = None,
) -> list[Diagnostic]:
    """Return the ``IllFormedDeclaration`` diagnostics for ``shape`` (empty when well formed)."""
    return _ShapeValidator(shape, context or LatticeContext()).run()


def require_valid(
    shape: RecordShape,
    *,
    context: LatticeContext | None = None,
) -> RecordShape:
    diagnostics = validate_shape(shape, context=context)
    if diagnostics:
        raise IllFormedDeclarationError(shape.name, diagnostics)
    return shape


def _literal_diagnostic(shape: RecordShape, code: str, message: str, key: str) -> Diagnostic:
    return Diagnostic(
        kind=DiagnosticKind.INVALID_LITERAL,
        code=code,
        subject=shape.name,
        message=message,
        field=key,
    )


def check_literal(
    shape: RecordShape,
    items: Mapping[str, TypeExpr],
    *,
    context: LatticeContext | None = None,
) -> list[Diagnostic]:
    """Check a dictionary display (key -> value type) constructed as ``shape``.

    Keys the declaration does not list are accepted only when the shape has an
    explicit extra-items rule; a plain open declaration rejects them too.
    """
    context = context or LatticeContext()
    diagnostics: list[Diagnostic] = []
    fields = shape.fields
    for name in sorted(fields):
        if fields[name].required and name not in items:
            diagnostics.append(
                _literal_diagnostic(shape, "missing-key", f"required key {name!r} is missing", name)
            )
    extra = shape.effective_extra if shape.openness is Openness.EXTRA_ITEMS else None
    for key in sorted(items):
        value = items[key]
        slot = fields.get(key)
        expected = slot.type if slot is not None else extra.type if extra is not None else None
        if expected is None:
            diagnostics.append(
                _literal_diagnostic(shape, "unexpected-key", f"{shape.name} does not allow key {key!r}", key)
            )
            continue
        if not is_assignable(value, expected, context=context):
            diagnostics.append(
                _literal_diagnostic(
                    shape,
                    "bad-value",
                    f"{render_type(value)} is not assignable to {render_type(expected)}",
                    key,
                )
            )
    return diagnostics
