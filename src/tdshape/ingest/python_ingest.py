from __future__ import annotations

import ast
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping

from tdshape.analysis.diagnostics import Diagnostic, DiagnosticKind
from tdshape.analysis.lattice import ClassHierarchy, LatticeContext
from tdshape.analysis.narrowing import NarrowingContract
from tdshape.analysis.shape import (
    ExtraRule,
    Field,
    RecordShape,
    ShapeRegistry,
    extra_from_item,
    field_from_item,
)
from tdshape.analysis.type_expr import ANY, NarrowingType, TypeExpr, item_from_node, type_from_node
from tdshape.exceptions import TypeExpressionError

logger = logging.getLogger(__name__)

_TYPED_DICT_NAMES = frozenset({"TypedDict", "typing.TypedDict", "typing_extensions.TypedDict"})
_EXTRA_ITEMS_ATTRIBUTE = "__extra_items__"
_EXCLUDED_DIRS = frozenset({".git", ".venv", "venv", "__pycache__", ".tox", "build", "dist"})
_NARROWING_HEADS = frozenset({"TypeIs", "TypeGuard"})


@dataclass(frozen=True)
class IngestResult:
    path: Path | None
    shapes: tuple[RecordShape, ...] = ()
    contracts: tuple[NarrowingContract, ...] = ()
    hierarchy: ClassHierarchy = field(default_factory=ClassHierarchy)
    lines: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    diagnostics: tuple[Diagnostic, ...] = ()

    def registry(self) -> ShapeRegistry:
        return ShapeRegistry(self.shapes)

    def context(self, *, numeric_promotion: bool = True) -> LatticeContext:
        return LatticeContext(
            self.registry(),
            self.hierarchy,
            numeric_promotion=numeric_promotion,
        )

    def shape(self, name: str) -> RecordShape | None:
        return next((shape for shape in self.shapes if shape.name == name), None)

    def contract(self, name: str) -> NarrowingContract | None:
        return next((contract for contract in self.contracts if contract.name == name), None)


def _dotted(node: ast.expr) -> str:
    match node:
        case ast.Name(id=name):
            return name
        case ast.Attribute(value=inner, attr=attr):
            return f"{_dotted(inner)}.{attr}"
        case _:
            return ""


def _returns_narrowing(node: ast.expr) -> bool:
    if isinstance(node, ast.Constant) and isinstance(node.value, str):
        try:
            node = ast.parse(node.value.strip(), mode="eval").body
        except SyntaxError:
            return False
    if not isinstance(node, ast.Subscript):
        return False
    return _dotted(node.value).rsplit(".", 1)[-1] in _NARROWING_HEADS


def _is_typed_dict_call(node: ast.expr) -> bool:
    return isinstance(node, ast.Call) and _dotted(node.func) in _TYPED_DICT_NAMES


class _ModuleIngest:
    def __init__(self, tree: ast.Module, path: Path | None):
        self.tree = tree
        self.path = path
        self.subject = str(path) if path is not None else "<source>"
        self.shape_names: set[str] = set()
        self.shapes: dict[str, RecordShape] = {}
        self.contracts: list[NarrowingContract] = []
        self.hierarchy = ClassHierarchy()
        self.lines: dict[str, int] = {}
        self.diagnostics: list[Diagnostic] = []

    def report(self, code: str, message: str, *, node: ast.AST, subject: str | None = None) -> None:
        self.diagnostics.append(
            Diagnostic(
                kind=DiagnosticKind.INGEST,
                code=code,
                subject=subject or self.subject,
                message=message,
                line=getattr(node, "lineno", None),
            )
        )

    def is_typed_dict_class(self, node: ast.ClassDef) -> bool:
        return any(
            _dotted(base) in _TYPED_DICT_NAMES or _dotted(base) in self.shape_names
            for base in node.bases
        )

    def collect_names(self) -> None:
        for node in self.tree.body:
            match node:
                case ast.ClassDef() if self.is_typed_dict_class(node):
                    self.shape_names.add(node.name)
                case ast.Assign(targets=[ast.Name(id=name)], value=value) if _is_typed_dict_call(value):
                    self.shape_names.add(name)

    def item(self, node: ast.expr, *, owner: str):
        try:
            return item_from_node(node, shape_names=self.shape_names)
        except TypeExpressionError as exc:
            self.report("bad-annotation", str(exc), node=node, subject=owner)
            return None

    def type(self, node: ast.expr, *, owner: str) -> TypeExpr | None:
        try:
            return type_from_node(node, shape_names=self.shape_names)
        except TypeExpressionError as exc:
            self.report("bad-annotation", str(exc), node=node, subject=owner)
            return None

    def keyword_flags(
        self, keywords: list[ast.keyword], *, owner: str
    ) -> tuple[bool, bool, ExtraRule | None]:
        total, closed, extra = True, False, None
        for keyword in keywords:
            match keyword.arg, keyword.value:
                case "total", ast.Constant(value=bool() as flag):
                    total = flag
                case "closed", ast.Constant(value=bool() as flag):
                    closed = flag
                case "extra_items", value:
                    item = self.item(value, owner=owner)
                    if item is not None:
                        extra = extra_from_item(item)
                case name, value:
                    self.report(
                        "bad-keyword",
                        f"unsupported TypedDict keyword {name}={ast.unparse(value)}",
                        node=keyword,
                        subject=owner,
                    )
        return total, closed, extra

    def register(
        self,
        node: ast.AST,
        *,
        name: str,
        own_fields: list[Field],
        extra: ExtraRule | None,
        bases: tuple[RecordShape, ...],
        closed: bool,
    ) -> None:
        if extra is None and not closed and not bases:
            extra = ExtraRule.open_default()
        self.shapes[name] = RecordShape(
            name=name,
            own_fields=tuple(own_fields),
            own_extra=extra,
            bases=bases,
            closed=closed,
        )
        self.lines[name] = getattr(node, "lineno", 0)

    def class_shape(self, node: ast.ClassDef) -> None:
        bases: list[RecordShape] = []
        for base in node.bases:
            base_name = _dotted(base) or ast.unparse(base)
            if base_name in _TYPED_DICT_NAMES:
                continue
            resolved = self.shapes.get(base_name)
            if resolved is None:
                self.report(
                    "unknown-base",
                    f"base {base_name!r} is not a typed dictionary declared earlier",
                    node=base,
                    subject=node.name,
                )
                continue
            bases.append(resolved)
        total, closed, extra = self.keyword_flags(node.keywords, owner=node.name)
        own_fields: list[Field] = []
        for statement in node.body:
            match statement:
                case ast.AnnAssign(target=ast.Name(id=key), annotation=annotation):
                    item = self.item(annotation, owner=node.name)
                    if item is None:
                        continue
                    if key == _EXTRA_ITEMS_ATTRIBUTE:
                        extra = extra_from_item(item)
                    else:
                        own_fields.append(field_from_item(key, item, total=total))
                case ast.Expr(value=ast.Constant(value=str())) | ast.Pass():
                    continue
                case _:
                    logger.debug("skipping non-item statement in %s at line %s", node.name, statement.lineno)
        self.register(
            node,
            name=node.name,
            own_fields=own_fields,
            extra=extra,
            bases=tuple(bases),
            closed=closed,
        )

    def functional_shape(self, node: ast.Assign, name: str, call: ast.Call) -> None:
        total, closed, extra = self.keyword_flags(call.keywords, owner=name)
        own_fields: list[Field] = []
        items = call.args[1] if len(call.args) > 1 else None
        if not isinstance(items, ast.Dict):
            self.report("bad-functional-form", "TypedDict() needs a dict of items", node=call, subject=name)
        else:
            for key_node, annotation in zip(items.keys, items.values):
                if not isinstance(key_node, ast.Constant) or not isinstance(key_node.value, str):
                    self.report("bad-functional-form", "item keys must be string literals", node=call, subject=name)
                    continue
                item = self.item(annotation, owner=name)
                if item is not None:
                    own_fields.append(field_from_item(key_node.value, item, total=total))
        self.register(node, name=name, own_fields=own_fields, extra=extra, bases=(), closed=closed)

    def function(self, node: ast.FunctionDef | ast.AsyncFunctionDef, *, owner: str | None) -> None:
        if node.returns is None or not _returns_narrowing(node.returns):
            return
        returns = self.type(node.returns, owner=node.name)
        if not isinstance(returns, NarrowingType):
            return
        positional = [*node.args.posonlyargs, *node.args.args]
        is_static = any(_dotted(decorator) == "staticmethod" for decorator in node.decorator_list)
        if owner is not None and not is_static and positional:
            positional = positional[1:]
        input_type: TypeExpr = ANY
        if positional and positional[0].annotation is not None:
            input_type = self.type(positional[0].annotation, owner=node.name) or ANY
        name = f"{owner}.{node.name}" if owner else node.name
        self.contracts.append(
            NarrowingContract(
                name=name,
                input_type=input_type,
                returns=returns,
                parameter_count=len(positional),
            )
        )
        self.lines[name] = node.lineno

    def plain_class(self, node: ast.ClassDef) -> None:
        self.hierarchy.add(node.name, [_dotted(base) for base in node.bases if _dotted(base)])
        for statement in node.body:
            if isinstance(statement, (ast.FunctionDef, ast.AsyncFunctionDef)):
                self.function(statement, owner=node.name)

    def run(self) -> IngestResult:
        self.collect_names()
        for node in self.tree.body:
            match node:
                case ast.ClassDef() if node.name in self.shape_names:
                    self.class_shape(node)
                case ast.ClassDef():
                    self.plain_class(node)
                case ast.Assign(targets=[ast.Name(id=name)], value=ast.Call() as call) if name in self.shape_names:
                    self.functional_shape(node, name, call)
                case ast.FunctionDef() | ast.AsyncFunctionDef():
                    self.function(node, owner=None)
        return IngestResult(
            path=self.path,
            shapes=tuple(self.shapes.values()),
            contracts=tuple(self.contracts),
            hierarchy=self.hierarchy,
            lines=MappingProxyType(dict(self.lines)),
            diagnostics=tuple(self.diagnostics),
        )


def ingest_source(text: str, *, path: Path | None = None) -> IngestResult:
    """Collect typed dictionary descriptors and narrowing contracts from module text."""
    try:
        tree = ast.parse(text, filename=str(path) if path is not None else "<source>")
    except SyntaxError as exc:
        diagnostic = Diagnostic(
            kind=DiagnosticKind.INGEST,
            code="syntax-error",
            subject=str(path) if path is not None else "<source>",
            message=str(exc.msg),
            line=exc.lineno,
        )
        return IngestResult(path=path, diagnostics=(diagnostic,))
    return _ModuleIngest(tree, path).run()


def ingest_path(path: Path) -> IngestResult:
    return ingest_source(path.read_text(encoding="utf-8"), path=path)


def iter_python_paths(paths: Iterable[str | Path]) -> list[Path]:
    """Expand input paths to python files, pruning tool and build directories."""
    out: list[Path] = []
    for entry in paths:
        path = Path(entry)
        if path.is_dir():
            for root, dirnames, filenames in os.walk(path, topdown=True):
                dirnames[:] = sorted(d for d in dirnames if d not in _EXCLUDED_DIRS)
                for filename in sorted(filenames):
                    if filename.endswith((".py", ".pyi")):
                        out.append(Path(root) / filename)
        else:
            out.append(path)
    return sorted(out)
