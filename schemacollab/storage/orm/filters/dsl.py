"""Filter DSL models.

PostgREST-style serialisable filters. The same filter object is evaluated in
Python by the in-memory engine and compiled to SQLAlchemy by the SQL engine.
"""

from collections.abc import Sequence
from enum import Enum
from typing import Literal

from pydantic import BaseModel

FilterValue = str | int | float | bool | None


class FilterOperator(str, Enum):
    """Comparison operators."""

    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"  # value is a list
    IS = "is"  # IS NULL


class FilterBase(BaseModel):
    """Base class for every filter node."""

    pass


class ComparisonFilter(FilterBase):
    """Single-field comparison."""

    type: Literal["comparison"] = "comparison"
    field: str
    op: FilterOperator
    value: FilterValue | list[str | int | float]

    @classmethod
    def eq(cls, field: str, value: FilterValue) -> "ComparisonFilter":
        return cls(field=field, op=FilterOperator.EQ, value=value)

    @classmethod
    def neq(cls, field: str, value: FilterValue) -> "ComparisonFilter":
        return cls(field=field, op=FilterOperator.NEQ, value=value)

    @classmethod
    def gt(cls, field: str, value: str | int | float) -> "ComparisonFilter":
        return cls(field=field, op=FilterOperator.GT, value=value)

    @classmethod
    def gte(cls, field: str, value: str | int | float) -> "ComparisonFilter":
        return cls(field=field, op=FilterOperator.GTE, value=value)

    @classmethod
    def lt(cls, field: str, value: str | int | float) -> "ComparisonFilter":
        return cls(field=field, op=FilterOperator.LT, value=value)

    @classmethod
    def lte(cls, field: str, value: str | int | float) -> "ComparisonFilter":
        return cls(field=field, op=FilterOperator.LTE, value=value)

    @classmethod
    def in_(cls, field: str, value: list[str | int | float]) -> "ComparisonFilter":
        return cls(field=field, op=FilterOperator.IN, value=value)

    @classmethod
    def is_null(cls, field: str) -> "ComparisonFilter":
        return cls(field=field, op=FilterOperator.IS, value=None)


class AndFilter(FilterBase):
    """Logical AND of the child filters. Empty means match-all."""

    type: Literal["and"] = "and"
    filters: Sequence["ComparisonFilter | AndFilter | OrFilter | NotFilter"]


class OrFilter(FilterBase):
    """Logical OR of the child filters. Empty means match-nothing."""

    type: Literal["or"] = "or"
    filters: Sequence["ComparisonFilter | AndFilter | OrFilter | NotFilter"]


class NotFilter(FilterBase):
    """Logical negation."""

    type: Literal["not"] = "not"
    filter: "ComparisonFilter | AndFilter | OrFilter | NotFilter"


Filter = ComparisonFilter | AndFilter | OrFilter | NotFilter

# Resolve the forward references so nested filters validate
AndFilter.model_rebuild()
OrFilter.model_rebuild()
NotFilter.model_rebuild()
