"""Gradual assignability between value types."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterable, Iterator, Mapping

from tdshape.analysis.shape import RecordShape, ShapeRegistry
from tdshape.analysis.type_expr import (
    ANY,
    AnyType,
    CallableType,
    ClassType,
    LiteralType,
    NarrowingType,
    NeverType,
    NoneType,
    ObjectType,
    ShapeRef,
    TypeExpr,
    UnionType,
    make_union,
)
from tdshape.invariants import never, require_not_none

_NOMINAL_SUPERS: dict[str, tuple[str, ...]] = {
    "bool": ("int",),
}

_NUMERIC_PROMOTIONS: dict[str, tuple[str, ...]] = {
    "int": ("float", "complex"),
    "float": ("complex",),
}

# Per-argument variance; anything not listed is invariant in every argument.
_COVARIANT = "co"
_INVARIANT = "inv"
_VARIANCE: dict[str, tuple[str, ...]] = {
    "Sequence": (_COVARIANT,),
    "Iterable": (_COVARIANT,),
    "Iterator": (_COVARIANT,),
    "Collection": (_COVARIANT,),
    "AbstractSet": (_COVARIANT,),
    "frozenset": (_COVARIANT,),
    "type": (_COVARIANT,),
    "Mapping": (_INVARIANT, _COVARIANT),
}

_MAPPING_NAMES = frozenset({"dict", "Mapping", "MutableMapping"})


class ClassHierarchy:
    """Declared nominal bases of user classes, keyed by class name."""

    def __init__(self, bases: Mapping[str, Iterable[str]] | None = None):
        self._bases: dict[str, tuple[str, ...]] = {}
        for name, supers in (bases or {}).items():
            self.add(name, supers)

    def add(self, name: str, supers: Iterable[str]) -> None:
        self._bases[name] = tuple(supers)

    def ancestors(self, name: str) -> set[str]:
        seen: set[str] = set()
        stack = list(self._bases.get(name, ()))
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._bases.get(current, ()))
        return seen


class LatticeContext:
    """Everything assignability needs beyond the two types being compared."""

    def __init__(
        self,
        registry: ShapeRegistry | None = None,
        hierarchy: ClassHierarchy | None = None,
        *,
        numeric_promotion: bool = True,
    ):
        self.registry = registry if registry is not None else ShapeRegistry()
        self.hierarchy = hierarchy if hierarchy is not None else ClassHierarchy()
        self.numeric_promotion = numeric_promotion
        self._assumed: set[tuple[str, str]] = set()

    def resolve(self, ref: ShapeRef) -> RecordShape | None:
        return require_not_none(
            self.registry.get(ref.name),
            reason="unresolved typed dictionary reference",
            name=ref.name,
        )

    def is_assumed(self, pair: tuple[str, str]) -> bool:
        return pair in self._assumed

    @contextmanager
    def assuming(self, pair: tuple[str, str]) -> Iterator[None]:
        # Recursive shapes: a comparison already in progress is taken to hold.
        self._assumed.add(pair)
        try:
            yield
        finally:
            self._assumed.discard(pair)


def _nominal_supers(name: str, *, numeric_promotion: bool) -> set[str]:
    seen: set[str] = set()
    stack = [name]
    while stack:
        current = stack.pop()
        supers = list(_NOMINAL_SUPERS.get(current, ()))
        if numeric_promotion:
            supers.extend(_NUMERIC_PROMOTIONS.get(current, ()))
        for item in supers:
            if item not in seen:
                seen.add(item)
                stack.append(item)
    return seen


def _upcasts(source: ClassType) -> list[ClassType]:
    args = source.args

    def _with(*names: str, arity: int = 1) -> list[ClassType]:
        picked = args[:arity] if args else ()
        return [ClassType(name, picked) for name in names]

    match source.name:
        case "list":
            return _with("Sequence", "MutableSequence", "Collection", "Iterable")
        case "tuple":
            if not args:
                element: tuple[TypeExpr, ...] = ()
            elif source.variadic:
                element = (args[0],)
            else:
                element = (make_union(*args),)
            return [
                ClassType(name, element) for name in ("Sequence", "Collection", "Iterable")
            ]
        case "dict":
            return _with("Mapping", "MutableMapping", arity=2) + _with("Collection", "Iterable")
        case "MutableMapping":
            return _with("Mapping", arity=2) + _with("Collection", "Iterable")
        case "Mapping":
            return _with("Collection", "Iterable")
        case "set":
            return _with("AbstractSet", "MutableSet", "Collection", "Iterable")
        case "frozenset":
            return _with("AbstractSet", "Collection", "Iterable")
        case "MutableSequence":
            return _with("Sequence", "Collection", "Iterable")
        case "Sequence" | "AbstractSet" | "MutableSet":
            return _with("Collection", "Iterable")
        case "Collection" | "Iterator":
            return _with("Iterable")
        case "str":
            text = (ClassType("str"),)
            return [ClassType(name, text) for name in ("Sequence", "Collection", "Iterable")]
    return []


def _mapping_value_type(value: ClassType) -> TypeExpr:
    if len(value.args) == 2:
        return value.args[1]
    return ANY


def _mapping_key_accepts_str(value: ClassType, context: LatticeContext) -> bool:
    if len(value.args) != 2:
        return True
    return is_consistent_both_ways(ClassType("str"), value.args[0], context)


class _Assignability:
    def __init__(self, context: LatticeContext):
        self.context = context

    def check(self, source: TypeExpr, target: TypeExpr) -> bool:
        if source == target:
            return True
        match source, target:
            case (AnyType(), _) | (_, AnyType()) | (_, ObjectType()) | (NeverType(), _):
                return True
            case (_, NeverType()):
                return False
            case (UnionType(members=members), _):
                return all(self.check(member, target) for member in members)
            case (LiteralType(values=values), _) if len(values) > 1:
                return all(self.check(LiteralType(frozenset({value})), target) for value in values)
            case (_, UnionType(members=members)):
                return any(self.check(source, member) for member in members)
            case (NoneType(), _) | (ObjectType(), _):
                return False
            case (LiteralType(values=values), LiteralType(values=allowed)):
                return values <= allowed
            case (LiteralType(values=values), _):
                ((base, _value),) = tuple(values)
                if base == "None":
                    return isinstance(target, NoneType)
                return self.check(ClassType(base), target)
            case (_, LiteralType()):
                return False
            case (_, NoneType()):
                return False
            case (NarrowingType(), NarrowingType()):
                from tdshape.analysis.narrowing import return_types_consistent

                return return_types_consistent(source, target, context=self.context)
            case (NarrowingType(), ClassType(name=name)):
                return name == "bool" or self.check(ClassType("bool"), target)
            case (NarrowingType(), _) | (_, NarrowingType()):
                return False
            case (CallableType(), CallableType()):
                return self.callables(source, target)
            case (CallableType(), _) | (_, CallableType()):
                return False
            case (ShapeRef(), ShapeRef()):
                return self.shapes(source, target)
            case (ShapeRef(), ClassType(name=name)) if name in _MAPPING_NAMES:
                return self.shape_to_mapping(source, target)
            case (ClassType(name=name), ShapeRef()) if name in _MAPPING_NAMES:
                return self.mapping_to_shape(source, target)
            case (ShapeRef(), _) | (_, ShapeRef()):
                return False
            case (ClassType(), ClassType()):
                return self.classes(source, target)
            case _:
                never(
                    "unhandled type pair",
                    source=type(source).__name__,
                    target=type(target).__name__,
                )

    def shapes(self, source: ShapeRef, target: ShapeRef) -> bool:
        pair = (source.name, target.name)
        if self.context.is_assumed(pair):
            return True
        left = self.context.resolve(source)
        right = self.context.resolve(target)
        if left is None or right is None:
            return False
        from tdshape.analysis.shape_consistency import is_consistent

        with self.context.assuming(pair):
            return is_consistent(left, right, context=self.context)

    def shape_to_mapping(self, source: ShapeRef, target: ClassType) -> bool:
        shape = self.context.resolve(source)
        if shape is None or not _mapping_key_accepts_str(target, self.context):
            return False
        from tdshape.analysis.shape_consistency import shape_assignable_to_mapping

        return shape_assignable_to_mapping(
            shape,
            _mapping_value_type(target),
            mutable=target.name != "Mapping",
            context=self.context,
        )

    def mapping_to_shape(self, source: ClassType, target: ShapeRef) -> bool:
        shape = self.context.resolve(target)
        if shape is None or not _mapping_key_accepts_str(source, self.context):
            return False
        from tdshape.analysis.shape_consistency import mapping_assignable_to_shape

        return mapping_assignable_to_shape(
            _mapping_value_type(source),
            shape,
            mutable=source.name != "Mapping",
            context=self.context,
        )

    def classes(self, source: ClassType, target: ClassType) -> bool:
        if source.name == target.name:
            return self.arguments(source, target)
        supers = _nominal_supers(source.name, numeric_promotion=self.context.numeric_promotion)
        if target.name in supers and not target.args:
            return True
        for upcast in _upcasts(source):
            if upcast.name == target.name:
                return self.arguments(upcast, target)
        return target.name in self.context.hierarchy.ancestors(source.name)

    def arguments(self, source: ClassType, target: ClassType) -> bool:
        if source.name == "tuple":
            return self.tuples(source, target)
        if not source.args or not target.args:
            return True
        if len(source.args) != len(target.args):
            return False
        variances = _VARIANCE.get(target.name, ())
        for index, (left, right) in enumerate(zip(source.args, target.args)):
            variance = variances[index] if index < len(variances) else _INVARIANT
            if variance == _COVARIANT:
                if not self.check(left, right):
                    return False
            elif not (self.check(left, right) and self.check(right, left)):
                return False
        return True

    def tuples(self, source: ClassType, target: ClassType) -> bool:
        if target.variadic:
            (element,) = target.args
            if source.variadic:
                return self.check(source.args[0], element)
            return all(self.check(item, element) for item in source.args)
        if source.variadic:
            return False
        if len(source.args) != len(target.args):
            return False
        return all(self.check(left, right) for left, right in zip(source.args, target.args))

    def callables(self, source: CallableType, target: CallableType) -> bool:
        if not self.check(source.returns, target.returns):
            return False
        if source.parameters is None or target.parameters is None:
            return True
        if len(source.parameters) != len(target.parameters):
            return False
        # Parameters are contravariant.
        return all(
            self.check(expected, accepted)
            for accepted, expected in zip(source.parameters, target.parameters)
        )


def is_assignable(
    source: TypeExpr,
    target: TypeExpr,
    *,
    context: LatticeContext | None = None,
) -> bool:
    """Return True when a value of ``source`` type may be used where ``target`` is expected."""
    return _Assignability(context or LatticeContext()).check(source, target)


def is_consistent_both_ways(
    left: TypeExpr,
    right: TypeExpr,
    context: LatticeContext | None = None,
) -> bool:
    context = context or LatticeContext()
    return is_assignable(left, right, context=context) and is_assignable(
        right, left, context=context
    )
