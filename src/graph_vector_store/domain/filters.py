"""
Search Filters
==============

Structured predicates over stored document properties.

Predicates are plain data; the Cypher builder renders them with every
value passed as a bound parameter. They apply to top-level properties of
the stored node only.

    from graph_vector_store.domain.filters import Field

    predicate = Field("year").gte(2020) & Field("category").eq("news")
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class Operator(StrEnum):
    """Comparison operators supported in filters."""

    EQ = "="
    NE = "<>"
    GT = ">"
    GTE = ">="
    LT = "<"
    LTE = "<="
    IN = "IN"
    CONTAINS = "CONTAINS"
    STARTS_WITH = "STARTS WITH"
    ENDS_WITH = "ENDS WITH"
    INCLUDES = "INCLUDES"  # value is an element of a list property
    IS_NULL = "IS NULL"
    IS_NOT_NULL = "IS NOT NULL"


class Predicate:
    """Base class for filter predicates. Supports `&`, `|` and `~`."""

    def __and__(self, other: Predicate) -> Predicate:
        return all_of(self, other)

    def __or__(self, other: Predicate) -> Predicate:
        return any_of(self, other)

    def __invert__(self) -> Predicate:
        return Not(self)


@dataclass(frozen=True, slots=True)
class Comparison(Predicate):
    """Compare one node property against a value."""

    field: str
    operator: Operator
    value: Any = None


@dataclass(frozen=True, slots=True)
class AllOf(Predicate):
    predicates: tuple[Predicate, ...]


@dataclass(frozen=True, slots=True)
class AnyOf(Predicate):
    predicates: tuple[Predicate, ...]


@dataclass(frozen=True, slots=True)
class Not(Predicate):
    predicate: Predicate


@dataclass(frozen=True, slots=True)
class RawPredicate(Predicate):
    """
    A trusted Cypher boolean expression over the `node` variable.

    The expression text is spliced into the query verbatim, so it must
    never contain user input. Values belong in `parameters` and are
    referenced as `$name` from the expression.
    """

    expression: str
    parameters: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Field:
    """Builder for comparisons on a single property."""

    name: str

    def eq(self, value: Any) -> Comparison:
        return Comparison(self.name, Operator.EQ, value)

    def ne(self, value: Any) -> Comparison:
        return Comparison(self.name, Operator.NE, value)

    def gt(self, value: Any) -> Comparison:
        return Comparison(self.name, Operator.GT, value)

    def gte(self, value: Any) -> Comparison:
        return Comparison(self.name, Operator.GTE, value)

    def lt(self, value: Any) -> Comparison:
        return Comparison(self.name, Operator.LT, value)

    def lte(self, value: Any) -> Comparison:
        return Comparison(self.name, Operator.LTE, value)

    def in_(self, values: Sequence[Any]) -> Comparison:
        return Comparison(self.name, Operator.IN, list(values))

    def contains(self, substring: str) -> Comparison:
        return Comparison(self.name, Operator.CONTAINS, substring)

    def starts_with(self, prefix: str) -> Comparison:
        return Comparison(self.name, Operator.STARTS_WITH, prefix)

    def ends_with(self, suffix: str) -> Comparison:
        return Comparison(self.name, Operator.ENDS_WITH, suffix)

    def includes(self, value: Any) -> Comparison:
        return Comparison(self.name, Operator.INCLUDES, value)

    def is_null(self) -> Comparison:
        return Comparison(self.name, Operator.IS_NULL)

    def is_not_null(self) -> Comparison:
        return Comparison(self.name, Operator.IS_NOT_NULL)


def _flatten(kind: type[AllOf] | type[AnyOf], predicates: Sequence[Predicate]) -> tuple[Predicate, ...]:
    flat: list[Predicate] = []
    for predicate in predicates:
        if isinstance(predicate, kind):
            flat.extend(predicate.predicates)
        else:
            flat.append(predicate)
    return tuple(flat)


def all_of(*predicates: Predicate) -> AllOf:
    """Conjunction of predicates."""
    return AllOf(_flatten(AllOf, predicates))


def any_of(*predicates: Predicate) -> AnyOf:
    """Disjunction of predicates."""
    return AnyOf(_flatten(AnyOf, predicates))


def not_(predicate: Predicate) -> Not:
    return Not(predicate)


def where(**equalities: Any) -> AllOf:
    """Shorthand for equality on several properties: `where(lang="en", draft=False)`."""
    return all_of(*(Field(name).eq(value) for name, value in equalities.items()))
