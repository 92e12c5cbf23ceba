"""Record-shape descriptors: typed dictionaries with an optional extra-items rule.

A descriptor is built once from a declaration and never mutated. Derived
descriptors keep a reference to their bases and expose the flattened field set
through :attr:`RecordShape.fields`; the consistency checker only ever reads
that flattened view plus :attr:`RecordShape.effective_extra`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from functools import cached_property
from typing import Collection, Iterator, Mapping

from tdshape.analysis.type_expr import (
    NEVER,
    OBJECT,
    ItemAnnotation,
    NeverType,
    TypeExpr,
    parse_item,
)


class Openness(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    EXTRA_ITEMS = "extra_items"


@dataclass(frozen=True)
class Field:
    name: str
    type: TypeExpr
    required: bool = True
    read_only: bool = False


@dataclass(frozen=True)
class ExtraRule:
    """Value type and mutability for every key a descriptor does not list."""

    type: TypeExpr
    read_only: bool = False
    # True for the ReadOnly[object] rule a plain (non-closed) declaration gets.
    implicit: bool = False
    # Requiredness qualifier written on the extra slot; always ill-formed.
    required_qualifier: bool | None = field(default=None, compare=False)

    @classmethod
    def open_default(cls) -> ExtraRule:
        return cls(OBJECT, read_only=True, implicit=True)

    def as_field(self) -> Field:
        return Field(name="<extra>", type=self.type, required=False, read_only=self.read_only)


@dataclass(frozen=True)
class RecordShape:
    name: str
    own_fields: tuple[Field, ...] = ()
    own_extra: ExtraRule | None = None
    bases: tuple[RecordShape, ...] = ()
    closed: bool = False

    @cached_property
    def fields(self) -> Mapping[str, Field]:
        flattened: dict[str, Field] = {}
        for base in reversed(self.bases):
            flattened.update(base.fields)
        for item in self.own_fields:
            flattened[item.name] = item
        return flattened

    @cached_property
    def inherited_fields(self) -> Mapping[str, Field]:
        flattened: dict[str, Field] = {}
        for base in reversed(self.bases):
            flattened.update(base.fields)
        return flattened

    @cached_property
    def declared_extra(self) -> ExtraRule | None:
        """Extra rule as declared or inherited, before ``Never`` collapses to closed."""
        if self.own_extra is not None:
            return self.own_extra
        if self.closed:
            return ExtraRule(NEVER)
        for base in self.bases:
            if base.openness is not Openness.OPEN:
                return base.declared_extra
        if self.bases:
            return ExtraRule.open_default()
        return None

    @cached_property
    def inherited_extra(self) -> ExtraRule | None:
        for base in self.bases:
            if base.openness is not Openness.OPEN:
                return base.declared_extra
        if self.bases:
            return ExtraRule.open_default()
        return None

    @property
    def effective_extra(self) -> ExtraRule | None:
        rule = self.declared_extra
        if rule is None or isinstance(rule.type, NeverType):
            return None
        return rule

    @property
    def openness(self) -> Openness:
        rule = self.effective_extra
        if rule is None:
            return Openness.CLOSED
        if rule.implicit:
            return Openness.OPEN
        return Openness.EXTRA_ITEMS

    @property
    def is_closed(self) -> bool:
        return self.openness is Openness.CLOSED

    def ancestors(self) -> Iterator[RecordShape]:
        seen: set[str] = set()
        stack = list(self.bases)
        while stack:
            base = stack.pop(0)
            if base.name in seen:
                continue
            seen.add(base.name)
            yield base
            stack.extend(base.bases)

    def has_required_anywhere(self) -> bool:
        if any(item.required for item in self.own_fields):
            return True
        return any(
            item.required for ancestor in self.ancestors() for item in ancestor.own_fields
        )

    def value_types(self) -> tuple[TypeExpr, ...]:
        types = [item.type for item in self.fields.values()]
        extra = self.effective_extra
        if extra is not None:
            types.append(extra.type)
        return tuple(types)

    @classmethod
    def from_annotations(
        cls,
        name: str,
        items: Mapping[str, str],
        *,
        extra: str | None = None,
        bases: tuple[RecordShape, ...] = (),
        closed: bool = False,
        total: bool = True,
        shape_names: Collection[str] = (),
    ) -> RecordShape:
        """Build a descriptor from annotation text, e.g. ``{"year": "NotRequired[int]"}``."""
        own_fields = tuple(
            field_from_item(key, parse_item(text, shape_names=shape_names), total=total)
            for key, text in items.items()
        )
        own_extra = None
        if extra is not None:
            own_extra = extra_from_item(parse_item(extra, shape_names=shape_names))
        return cls(
            name=name,
            own_fields=own_fields,
            own_extra=own_extra,
            bases=bases,
            closed=closed,
        )


def field_from_item(name: str, item: ItemAnnotation, *, total: bool = True) -> Field:
    required = total if item.required is None else item.required
    return Field(name=name, type=item.type, required=required, read_only=item.read_only)


def extra_from_item(item: ItemAnnotation) -> ExtraRule:
    return ExtraRule(
        type=item.type,
        read_only=item.read_only,
        required_qualifier=item.required,
    )


class ShapeRegistry:
    """Name -> descriptor table used to resolve ``ShapeRef`` values."""

    def __init__(self, shapes: Collection[RecordShape] = ()):
        self._shapes: dict[str, RecordShape] = {}
        for shape in shapes:
            self.register(shape)

    def register(self, shape: RecordShape) -> None:
        self._shapes[shape.name] = shape

    def get(self, name: str) -> RecordShape | None:
        return self._shapes.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._shapes

    def __iter__(self) -> Iterator[RecordShape]:
        return iter(self._shapes.values())

    def __len__(self) -> int:
        return len(self._shapes)

    @property
    def names(self) -> frozenset[str]:
        return frozenset(self._shapes)
