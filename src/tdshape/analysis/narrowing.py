"""Narrowing contracts: predicate functions returning ``TypeIs[R]`` or ``TypeGuard[R]``.

Both constructs share one contract type. ``applies_negative_narrowing``
selects the behaviour: ``TypeIs`` narrows in both branches and keeps its
return type invariant, ``TypeGuard`` only replaces the type in the positive
branch and is covariant in its return type.

A narrowing function must really return a bool whose truth matches the
declared narrowing. Nothing here can observe a function that lies; such a
function makes the checker accept code that fails at runtime.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from tdshape.analysis.diagnostics import Diagnostic, ill_formed
from tdshape.analysis.lattice import LatticeContext, is_assignable, is_consistent_both_ways
from tdshape.analysis.type_expr import (
    AnyType,
    NarrowingType,
    TypeExpr,
    make_union,
    render_type,
    union_members,
)
from tdshape.exceptions import IllFormedDeclarationError


class NarrowingKind(StrEnum):
    TYPE_GUARD = "TypeGuard"
    TYPE_IS = "TypeIs"


@dataclass(frozen=True)
class NarrowingContract:
    name: str
    input_type: TypeExpr
    returns: NarrowingType
    parameter_count: int = 1

    @classmethod
    def type_is(cls, name: str, input_type: TypeExpr, narrowed: TypeExpr) -> NarrowingContract:
        return cls(name, input_type, NarrowingType(narrowed, applies_negative_narrowing=True))

    @classmethod
    def type_guard(cls, name: str, input_type: TypeExpr, narrowed: TypeExpr) -> NarrowingContract:
        return cls(name, input_type, NarrowingType(narrowed, applies_negative_narrowing=False))

    @property
    def narrowed_type(self) -> TypeExpr:
        return self.returns.narrowed

    @property
    def applies_negative_narrowing(self) -> bool:
        return self.returns.applies_negative_narrowing

    @property
    def kind(self) -> NarrowingKind:
        return NarrowingKind(self.returns.kind)


@dataclass(frozen=True)
class NarrowingOutcome:
    if_true: TypeExpr
    if_false: TypeExpr


def _meet(declared: TypeExpr, narrowed: TypeExpr, context: LatticeContext) -> TypeExpr:
    kept: list[TypeExpr] = []
    for member in union_members(declared):
        if isinstance(member, AnyType):
            kept.append(narrowed)
        elif is_assignable(member, narrowed, context=context):
            kept.append(member)
        else:
            kept.extend(
                candidate
                for candidate in union_members(narrowed)
                if is_assignable(candidate, member, context=context)
            )
    return make_union(*kept)


def _subtract(declared: TypeExpr, narrowed: TypeExpr, context: LatticeContext) -> TypeExpr:
    return make_union(
        *(
            member
            for member in union_members(declared)
            if isinstance(member, AnyType) or not is_assignable(member, narrowed, context=context)
        )
    )


def narrow(
    contract: NarrowingContract,
    declared: TypeExpr,
    *,
    context: LatticeContext | None = None,
) -> NarrowingOutcome:
    """Types of the argument after the predicate returned True / False."""
    context = context or LatticeContext()
    narrowed = contract.narrowed_type
    if not contract.applies_negative_narrowing:
        return NarrowingOutcome(if_true=narrowed, if_false=declared)
    return NarrowingOutcome(
        if_true=_meet(declared, narrowed, context),
        if_false=_subtract(declared, narrowed, context),
    )


def return_types_consistent(
    source: NarrowingType,
    target: NarrowingType,
    *,
    context: LatticeContext | None = None,
) -> bool:
    if source.applies_negative_narrowing != target.applies_negative_narrowing:
        return False
    if target.applies_negative_narrowing:
        return is_consistent_both_ways(source.narrowed, target.narrowed, context)
    return is_assignable(source.narrowed, target.narrowed, context=context)


def contract_consistent(
    source: NarrowingContract,
    target: NarrowingContract,
    *,
    context: LatticeContext | None = None,
) -> bool:
    """May ``source`` be passed where a callable shaped like ``target`` is expected."""
    context = context or LatticeContext()
    if not is_assignable(target.input_type, source.input_type, context=context):
        return False
    return return_types_consistent(source.returns, target.returns, context=context)


def validate_contract(
    contract: NarrowingContract,
    *,
    context: LatticeContext | None = None,
) -> list[Diagnostic]:
    context = context or LatticeContext()
    diagnostics: list[Diagnostic] = []
    if contract.parameter_count < 1:
        diagnostics.append(
            ill_formed(
                contract.name,
                "bad-narrowing-signature",
                f"{contract.kind.value} function must accept at least one positional parameter",
            )
        )
    if contract.applies_negative_narrowing and not is_assignable(
        contract.narrowed_type, contract.input_type, context=context
    ):
        diagnostics.append(
            ill_formed(
                contract.name,
                "narrowed-not-consistent",
                f"narrowed type {render_type(contract.narrowed_type)} is not assignable "
                f"to input type {render_type(contract.input_type)}",
            )
        )
    return diagnostics


def require_valid_contract(
    contract: NarrowingContract,
    *,
    context: LatticeContext | None = None,
) -> NarrowingContract:
    diagnostics = validate_contract(contract, context=context)
    if diagnostics:
        raise IllFormedDeclarationError(contract.name, diagnostics)
    return contract
