"""Value-type expressions compared by the shape and narrowing checkers."""

from __future__ import annotations

import ast
from dataclasses import dataclass
from typing import Collection, TypeAlias

from tdshape.exceptions import TypeExpressionError
from tdshape.invariants import never

LiteralValue: TypeAlias = str | int | bool | bytes | None


@dataclass(frozen=True)
class AnyType:
    pass


@dataclass(frozen=True)
class ObjectType:
    pass


@dataclass(frozen=True)
class NeverType:
    pass


@dataclass(frozen=True)
class NoneType:
    pass


@dataclass(frozen=True)
class ClassType:
    name: str
    args: tuple["TypeExpr", ...] = ()
    # tuple[X, ...]
    variadic: bool = False


@dataclass(frozen=True)
class LiteralType:
    values: frozenset[tuple[str, LiteralValue]]

    @classmethod
    def of(cls, *values: LiteralValue) -> LiteralType:
        return cls(frozenset((_literal_base_name(value), value) for value in values))


@dataclass(frozen=True)
class UnionType:
    members: frozenset["TypeExpr"]


@dataclass(frozen=True)
class ShapeRef:
    name: str


@dataclass(frozen=True)
class CallableType:
    # None stands for ``Callable[..., R]``.
    parameters: tuple["TypeExpr", ...] | None
    returns: "TypeExpr"


@dataclass(frozen=True)
class NarrowingType:
    """Return annotation of a narrowing function (``TypeIs[R]`` / ``TypeGuard[R]``)."""

    narrowed: "TypeExpr"
    applies_negative_narrowing: bool

    @property
    def kind(self) -> str:
        return "TypeIs" if self.applies_negative_narrowing else "TypeGuard"


TypeExpr: TypeAlias = (
    AnyType
    | ObjectType
    | NeverType
    | NoneType
    | ClassType
    | LiteralType
    | UnionType
    | ShapeRef
    | CallableType
    | NarrowingType
)

ANY = AnyType()
OBJECT = ObjectType()
NEVER = NeverType()
NONE = NoneType()


@dataclass(frozen=True)
class ItemAnnotation:
    """An item annotation with its qualifiers peeled off.

    ``required`` is None when neither ``Required`` nor ``NotRequired`` was
    written, so the declaration's ``total`` decides.
    """

    type: TypeExpr
    required: bool | None = None
    read_only: bool = False


def _literal_base_name(value: LiteralValue) -> str:
    match value:
        case None:
            return "None"
        case bool():
            return "bool"
        case int():
            return "int"
        case str():
            return "str"
        case bytes():
            return "bytes"
        case _:
            never("unsupported literal value", value_type=type(value).__name__)


def make_union(*types: TypeExpr) -> TypeExpr:
    members: set[TypeExpr] = set()
    for item in types:
        if isinstance(item, UnionType):
            members.update(item.members)
        elif isinstance(item, NeverType):
            continue
        else:
            members.add(item)
    if not members:
        return NEVER
    if ANY in members:
        return ANY
    if OBJECT in members:
        return OBJECT
    if len(members) == 1:
        return next(iter(members))
    return UnionType(frozenset(members))


def union_members(value: TypeExpr) -> tuple[TypeExpr, ...]:
    if isinstance(value, UnionType):
        return tuple(sorted(value.members, key=render_type))
    if isinstance(value, NeverType):
        return ()
    return (value,)


_STRIP_PREFIXES = ("typing_extensions.", "typing.", "builtins.", "collections.abc.")

_CLASS_ALIASES: dict[str, str] = {
    "List": "list",
    "Dict": "dict",
    "Set": "set",
    "FrozenSet": "frozenset",
    "Tuple": "tuple",
    "Type": "type",
    "Text": "str",
}

_QUALIFIERS = frozenset({"Required", "NotRequired", "ReadOnly"})


def _strip_known_prefix(name: str) -> str:
    for prefix in _STRIP_PREFIXES:
        if name.startswith(prefix):
            return name[len(prefix) :]
    return name


def _dotted_name(node: ast.expr, text: str) -> str:
    match node:
        case ast.Name(id=name):
            return name
        case ast.Attribute(value=inner, attr=attr):
            return f"{_dotted_name(inner, text)}.{attr}"
        case _:
            raise TypeExpressionError(
                f"unsupported type expression: {ast.unparse(node)}", text=text
            )


def _subscript_args(node: ast.expr) -> list[ast.expr]:
    if isinstance(node, ast.Tuple):
        return list(node.elts)
    return [node]


class _Converter:
    def __init__(self, text: str, shape_names: Collection[str]):
        self.text = text
        self.shape_names = frozenset(shape_names)

    def fail(self, message: str) -> TypeExpressionError:
        return TypeExpressionError(f"{message} in {self.text!r}", text=self.text)

    def item(self, node: ast.expr) -> ItemAnnotation:
        if isinstance(node, ast.Subscript):
            head = _strip_known_prefix(_dotted_name(node.value, self.text))
            if head in _QUALIFIERS:
                args = _subscript_args(node.slice)
                if len(args) != 1:
                    raise self.fail(f"{head}[] takes exactly one argument")
                inner = self.item(args[0])
                if head == "ReadOnly":
                    if inner.read_only:
                        raise self.fail("ReadOnly[] applied twice")
                    return ItemAnnotation(inner.type, inner.required, True)
                if inner.required is not None:
                    raise self.fail(f"{head}[] conflicts with another requiredness qualifier")
                return ItemAnnotation(inner.type, head == "Required", inner.read_only)
        if isinstance(node, ast.Constant) and isinstance(node.value, str):
            return self.item(self.parse_forward(node.value))
        return ItemAnnotation(self.type(node))

    def parse_forward(self, text: str) -> ast.expr:
        try:
            return ast.parse(text.strip(), mode="eval").body
        except SyntaxError as exc:
            raise self.fail(f"invalid forward reference {text!r}") from exc

    def type(self, node: ast.expr) -> TypeExpr:
        match node:
            case ast.Constant(value=None):
                return NONE
            case ast.Constant(value=str() as forward):
                return self.type(self.parse_forward(forward))
            case ast.Constant(value=constant) if constant is Ellipsis:
                raise self.fail("'...' is only valid inside tuple[] or Callable[]")
            case ast.BinOp(left=left, op=ast.BitOr(), right=right):
                return make_union(self.type(left), self.type(right))
            case ast.Name() | ast.Attribute():
                return self.named(_strip_known_prefix(_dotted_name(node, self.text)))
            case ast.Subscript(value=head_node, slice=slice_node):
                head = _strip_known_prefix(_dotted_name(head_node, self.text))
                return self.subscript(head, _subscript_args(slice_node))
            case _:
                raise self.fail(f"unsupported type expression {ast.unparse(node)!r}")

    def named(self, name: str) -> TypeExpr:
        if name in _QUALIFIERS:
            raise self.fail(f"bare {name} is not a type")
        match name:
            case "Any":
                return ANY
            case "object":
                return OBJECT
            case "Never" | "NoReturn":
                return NEVER
            case "None" | "NoneType":
                return NONE
            case "Callable":
                return CallableType(None, ANY)
        if name in self.shape_names:
            return ShapeRef(name)
        if name in {"tuple", "Tuple"}:
            return ClassType("tuple", (ANY,), variadic=True)
        return ClassType(_CLASS_ALIASES.get(name, name))

    def subscript(self, head: str, args: list[ast.expr]) -> TypeExpr:
        if head in _QUALIFIERS:
            raise self.fail(f"{head}[] is only valid on a typed dictionary item")
        match head:
            case "Optional":
                if len(args) != 1:
                    raise self.fail("Optional[] takes exactly one argument")
                return make_union(self.type(args[0]), NONE)
            case "Union":
                return make_union(*(self.type(arg) for arg in args))
            case "Literal":
                return self.literal(args)
            case "Annotated":
                return self.type(args[0])
            case "TypeGuard" | "TypeIs":
                if len(args) != 1:
                    raise self.fail(f"{head}[] takes exactly one argument")
                return NarrowingType(self.type(args[0]), head == "TypeIs")
            case "Callable":
                return self.callable_type(args)
        name = _CLASS_ALIASES.get(head, head)
        if name in self.shape_names:
            raise self.fail(f"typed dictionary {name} is not generic")
        if name == "tuple":
            return self.tuple_type(args)
        return ClassType(name, tuple(self.type(arg) for arg in args))

    def callable_type(self, args: list[ast.expr]) -> TypeExpr:
        if len(args) != 2:
            raise self.fail("Callable[] takes a parameter list and a return type")
        params, returns = args
        match params:
            case ast.Constant(value=constant) if constant is Ellipsis:
                return CallableType(None, self.type(returns))
            case ast.List(elts=elts):
                return CallableType(tuple(self.type(elt) for elt in elts), self.type(returns))
        raise self.fail("Callable[] parameters must be a list or '...'")

    def tuple_type(self, args: list[ast.expr]) -> TypeExpr:
        if len(args) == 2 and isinstance(args[1], ast.Constant) and args[1].value is Ellipsis:
            return ClassType("tuple", (self.type(args[0]),), variadic=True)
        if len(args) == 1 and isinstance(args[0], ast.Tuple) and not args[0].elts:
            return ClassType("tuple")
        return ClassType("tuple", tuple(self.type(arg) for arg in args))

    def literal(self, args: list[ast.expr]) -> TypeExpr:
        values: list[LiteralValue] = []
        for arg in args:
            match arg:
                case ast.Constant(value=str() | bytes() | bool() | int() | None as value):
                    values.append(value)
                case ast.UnaryOp(op=ast.USub(), operand=ast.Constant(value=int() as value)):
                    values.append(-value)
                case ast.Subscript():
                    nested = self.type(arg)
                    if not isinstance(nested, LiteralType):
                        raise self.fail("Literal[] accepts only literal values")
                    values.extend(value for _, value in nested.values)
                case _:
                    raise self.fail(f"invalid Literal[] value {ast.unparse(arg)!r}")
        if not values:
            raise self.fail("Literal[] needs at least one value")
        if all(value is None for value in values):
            return NONE
        return LiteralType.of(*values)


def _parse_expr(text: str) -> ast.expr:
    try:
        return ast.parse(text.strip(), mode="eval").body
    except SyntaxError as exc:
        raise TypeExpressionError(f"invalid annotation {text!r}", text=text) from exc


def parse_type(text: str, *, shape_names: Collection[str] = ()) -> TypeExpr:
    """Parse annotation text into a type expression."""
    return _Converter(text, shape_names).type(_parse_expr(text))


def parse_item(text: str, *, shape_names: Collection[str] = ()) -> ItemAnnotation:
    """Parse an item annotation, accepting ``Required``/``NotRequired``/``ReadOnly``."""
    return _Converter(text, shape_names).item(_parse_expr(text))


def type_from_node(node: ast.expr, *, shape_names: Collection[str] = ()) -> TypeExpr:
    return _Converter(ast.unparse(node), shape_names).type(node)


def item_from_node(node: ast.expr, *, shape_names: Collection[str] = ()) -> ItemAnnotation:
    return _Converter(ast.unparse(node), shape_names).item(node)


def _render_literal_value(value: LiteralValue) -> str:
    return repr(value)


def render_type(value: TypeExpr) -> str:
    match value:
        case AnyType():
            return "Any"
        case ObjectType():
            return "object"
        case NeverType():
            return "Never"
        case NoneType():
            return "None"
        case ClassType(name=name, args=args, variadic=variadic):
            if not args:
                return "tuple[()]" if name == "tuple" else name
            rendered = ", ".join(render_type(arg) for arg in args)
            if variadic:
                rendered = f"{rendered}, ..."
            return f"{name}[{rendered}]"
        case LiteralType(values=values):
            ordered = sorted(values, key=lambda item: (item[0], repr(item[1])))
            return f"Literal[{', '.join(_render_literal_value(v) for _, v in ordered)}]"
        case UnionType(members=members):
            return " | ".join(sorted(render_type(member) for member in members))
        case ShapeRef(name=name):
            return name
        case CallableType(parameters=parameters, returns=returns):
            if parameters is None:
                rendered = "..."
            else:
                rendered = f"[{', '.join(render_type(param) for param in parameters)}]"
            return f"Callable[{rendered}, {render_type(returns)}]"
        case NarrowingType(narrowed=narrowed):
            return f"{value.kind}[{render_type(narrowed)}]"
        case _:
            never("unknown type expression", value_type=type(value).__name__)


def render_item(item: ItemAnnotation) -> str:
    rendered = render_type(item.type)
    if item.required is True:
        rendered = f"Required[{rendered}]"
    elif item.required is False:
        rendered = f"NotRequired[{rendered}]"
    if item.read_only:
        rendered = f"ReadOnly[{rendered}]"
    return rendered
