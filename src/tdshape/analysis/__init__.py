"""Type model and checkers for typed dictionary shapes and narrowing contracts."""

from .lattice import ClassHierarchy, LatticeContext, is_assignable, is_consistent_both_ways
from .narrowing import NarrowingContract, NarrowingOutcome, contract_consistent, narrow
from .shape import ExtraRule, Field, Openness, RecordShape, ShapeRegistry
from .shape_consistency import (
    ConsistencyReport,
    explain_consistency,
    is_consistent,
    mapping_assignable_to_shape,
    shape_assignable_to_mapping,
)
from .shape_validation import check_literal, require_valid, validate_shape
from .type_expr import parse_item, parse_type, render_type

__all__ = [
    "ClassHierarchy",
    "ConsistencyReport",
    "ExtraRule",
    "Field",
    "LatticeContext",
    "NarrowingContract",
    "NarrowingOutcome",
    "Openness",
    "RecordShape",
    "ShapeRegistry",
    "check_literal",
    "contract_consistent",
    "explain_consistency",
    "is_assignable",
    "is_consistent",
    "is_consistent_both_ways",
    "mapping_assignable_to_shape",
    "narrow",
    "parse_item",
    "parse_type",
    "render_type",
    "require_valid",
    "shape_assignable_to_mapping",
    "validate_shape",
]
