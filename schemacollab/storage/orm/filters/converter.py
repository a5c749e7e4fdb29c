"""Filter converters.

``to_sqlalchemy`` compiles a filter into a ``ColumnElement[bool]`` for a
SQLModel class; ``evaluate`` checks a filter against a record in Python.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel
from sqlalchemy import ColumnElement, and_, literal, not_, or_
from sqlmodel import SQLModel

from .dsl import AndFilter, ComparisonFilter, Filter, FilterOperator, NotFilter, OrFilter

_ORDERING_OPS = {
    FilterOperator.GT: lambda a, b: a > b,
    FilterOperator.GTE: lambda a, b: a >= b,
    FilterOperator.LT: lambda a, b: a < b,
    FilterOperator.LTE: lambda a, b: a <= b,
}


# ============================================================================
# SQLAlchemy
# ============================================================================


def to_sqlalchemy(filter_: Filter, model_class: type[SQLModel]) -> ColumnElement[bool]:
    """Compile a filter into a SQLAlchemy boolean expression.

    Raises:
        ValueError: If a field does not exist on ``model_class`` or an operator
            receives a value of the wrong shape.
    """
    if isinstance(filter_, ComparisonFilter):
        return _compile_comparison(filter_, model_class)
    if isinstance(filter_, AndFilter):
        if not filter_.filters:
            return literal(True)
        return and_(*(to_sqlalchemy(f, model_class) for f in filter_.filters))
    if isinstance(filter_, OrFilter):
        if not filter_.filters:
            return literal(False)
        return or_(*(to_sqlalchemy(f, model_class) for f in filter_.filters))
    return not_(to_sqlalchemy(filter_.filter, model_class))


def _get_column(model_class: type[SQLModel], field_name: str) -> ColumnElement[Any]:
    if not hasattr(model_class, field_name):
        raise ValueError(f"Field '{field_name}' not found in model {model_class.__name__}")
    column: ColumnElement[Any] = getattr(model_class, field_name)
    return column


def _compile_comparison(filter_: ComparisonFilter, model_class: type[SQLModel]) -> ColumnElement[bool]:
    column = _get_column(model_class, filter_.field)
    op = filter_.op
    value = filter_.value

    if op == FilterOperator.EQ:
        return column.is_(None) if value is None else column == value
    if op == FilterOperator.NEQ:
        return column.is_not(None) if value is None else column != value
    if op in _ORDERING_OPS:
        return _ORDERING_OPS[op](column, value)
    if op == FilterOperator.IN:
        if not isinstance(value, list):
            raise ValueError(f"Invalid value type for operator {op}: expected list, got {type(value).__name__}")
        return column.in_(value)
    if op == FilterOperator.IS:
        return column.is_(value)
    raise ValueError(f"Unsupported operator: {op}")


# ============================================================================
# Python evaluation
# ============================================================================


def evaluate(filter_: Filter, record: Mapping[str, Any] | BaseModel) -> bool:
    """Evaluate a filter against a dict or pydantic/SQLModel instance.

    Missing fields read as ``None``. Ordering comparisons involving ``None`` or
    incomparable types are false.

    Examples:
        >>> evaluate(ComparisonFilter.eq("name", "orders"), {"name": "orders"})
        True
    """
    values: Mapping[str, Any] = record.model_dump() if isinstance(record, BaseModel) else record
    return _evaluate(filter_, values)


def _evaluate(filter_: Filter, values: Mapping[str, Any]) -> bool:
    if isinstance(filter_, ComparisonFilter):
        return _evaluate_comparison(filter_, values)
    if isinstance(filter_, AndFilter):
        return all(_evaluate(f, values) for f in filter_.filters)
    if isinstance(filter_, OrFilter):
        return any(_evaluate(f, values) for f in filter_.filters)
    return not _evaluate(filter_.filter, values)


def _evaluate_comparison(filter_: ComparisonFilter, values: Mapping[str, Any]) -> bool:
    field_value = values.get(filter_.field)
    op = filter_.op
    expected = filter_.value

    if op == FilterOperator.EQ:
        return field_value == expected
    if op == FilterOperator.NEQ:
        return field_value != expected
    if op in _ORDERING_OPS:
        if field_value is None or expected is None:
            return False
        try:
            return bool(_ORDERING_OPS[op](field_value, expected))
        except TypeError:
            return False
    if op == FilterOperator.IN:
        if not isinstance(expected, list):
            raise ValueError(f"Invalid value type for operator {op}: expected list, got {type(expected).__name__}")
        return field_value in expected
    if op == FilterOperator.IS:
        return field_value is expected
    raise ValueError(f"Unsupported operator: {op}")
