from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Iterable

from tdshape.analysis.diagnostics import Diagnostic, filter_ignored, sort_diagnostics
from tdshape.analysis.lattice import LatticeContext, is_assignable
from tdshape.analysis.narrowing import contract_consistent, narrow, validate_contract
from tdshape.analysis.shape import RecordShape
from tdshape.analysis.shape_consistency import explain_consistency
from tdshape.analysis.shape_validation import validate_shape
from tdshape.analysis.type_expr import ShapeRef, TypeExpr, parse_type, render_type
from tdshape.ingest.python_ingest import IngestResult, ingest_path
from tdshape.schema import (
    ConsistencyFailureDTO,
    ConsistencyResponse,
    DiagnosticDTO,
    ExtraRuleDTO,
    NarrowingResponse,
    ShapeDTO,
    ShapeFieldDTO,
    ValidationResponse,
)


class UnknownDeclarationError(LookupError):
    pass


def diagnostic_dto(diagnostic: Diagnostic) -> DiagnosticDTO:
    return DiagnosticDTO(
        kind=diagnostic.kind.value,
        code=diagnostic.code,
        subject=diagnostic.subject,
        message=diagnostic.message,
        field=diagnostic.field,
        line=diagnostic.line,
    )


def validate_declarations(
    result: IngestResult,
    *,
    numeric_promotion: bool = True,
    ignore: Iterable[str] = (),
) -> list[Diagnostic]:
    """Ingest problems plus construction-time diagnostics for every declaration."""
    context = result.context(numeric_promotion=numeric_promotion)
    diagnostics: list[Diagnostic] = list(result.diagnostics)
    for shape in result.shapes:
        line = result.lines.get(shape.name)
        diagnostics.extend(
            replace(diagnostic, line=line) for diagnostic in validate_shape(shape, context=context)
        )
    for contract in result.contracts:
        line = result.lines.get(contract.name)
        diagnostics.extend(
            replace(diagnostic, line=line)
            for diagnostic in validate_contract(contract, context=context)
        )
    return sort_diagnostics(filter_ignored(diagnostics, ignore))


def validation_response(
    path: Path,
    *,
    numeric_promotion: bool = True,
    ignore: Iterable[str] = (),
) -> ValidationResponse:
    result = ingest_path(path)
    diagnostics = validate_declarations(result, numeric_promotion=numeric_promotion, ignore=ignore)
    return ValidationResponse(
        path=str(path),
        shapes=[shape.name for shape in result.shapes],
        contracts=[contract.name for contract in result.contracts],
        diagnostics=[diagnostic_dto(diagnostic) for diagnostic in diagnostics],
    )


def _resolve_operand(result: IngestResult, text: str) -> TypeExpr:
    contract = result.contract(text)
    if contract is not None:
        return contract.returns
    return parse_type(text, shape_names=result.registry().names)


def check_pair(
    result: IngestResult,
    source: str,
    target: str,
    *,
    numeric_promotion: bool = True,
) -> ConsistencyResponse:
    """Is ``source`` assignable where ``target`` is expected.

    Operands are typed dictionary names, narrowing function names, or any
    annotation text (``dict[str, int]``) over the declarations in ``result``.
    """
    context = result.context(numeric_promotion=numeric_promotion)
    left_contract = result.contract(source)
    right_contract = result.contract(target)
    if left_contract is not None and right_contract is not None:
        consistent = contract_consistent(left_contract, right_contract, context=context)
        return ConsistencyResponse(source=source, target=target, consistent=consistent)
    left = _resolve_operand(result, source)
    right = _resolve_operand(result, target)
    match left, right:
        case ShapeRef(name=left_name), ShapeRef(name=right_name):
            left_shape = result.shape(left_name)
            right_shape = result.shape(right_name)
            if left_shape is not None and right_shape is not None:
                report = explain_consistency(left_shape, right_shape, context=context)
                return ConsistencyResponse(
                    source=source,
                    target=target,
                    consistent=report.consistent,
                    failures=[
                        ConsistencyFailureDTO(
                            field=failure.field,
                            rule=failure.rule.value,
                            message=failure.message,
                        )
                        for failure in report.failures
                    ],
                )
    consistent = is_assignable(left, right, context=context)
    return ConsistencyResponse(source=source, target=target, consistent=consistent)


def narrow_function(
    result: IngestResult,
    function: str,
    declared: str | None = None,
    *,
    numeric_promotion: bool = True,
) -> NarrowingResponse:
    contract = result.contract(function)
    if contract is None:
        raise UnknownDeclarationError(f"no narrowing function named {function!r}")
    context: LatticeContext = result.context(numeric_promotion=numeric_promotion)
    declared_type = (
        parse_type(declared, shape_names=result.registry().names)
        if declared is not None
        else contract.input_type
    )
    outcome = narrow(contract, declared_type, context=context)
    return NarrowingResponse(
        function=contract.name,
        kind=contract.kind.value,
        declared=render_type(declared_type),
        if_true=render_type(outcome.if_true),
        if_false=render_type(outcome.if_false),
    )


def describe_shape(shape: RecordShape) -> ShapeDTO:
    extra = shape.effective_extra
    return ShapeDTO(
        name=shape.name,
        openness=shape.openness.value,
        bases=[base.name for base in shape.bases],
        fields=[
            ShapeFieldDTO(
                name=item.name,
                type=render_type(item.type),
                required=item.required,
                read_only=item.read_only,
            )
            for item in shape.fields.values()
        ],
        extra=(
            ExtraRuleDTO(type=render_type(extra.type), read_only=extra.read_only, implicit=extra.implicit)
            if extra is not None
            else None
        ),
    )
