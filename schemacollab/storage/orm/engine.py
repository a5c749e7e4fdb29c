# Copyright (c) Nex-AGI. All rights reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Database engine abstract base class.

Engines are the lease store behind the lock manager and the read side of the
resource registry. Two guarantees matter for coordination:

- ``create`` enforces primary-key uniqueness and raises
  :class:`ConstraintViolationError` on a duplicate key.
- ``update_where`` is a compare-and-set: it writes only if the stored row
  with the same primary key still matches the given filters.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TypeVar

from sqlmodel import SQLModel

from .filters import AndFilter, ComparisonFilter, Filter

T = TypeVar("T", bound=SQLModel)


class ConstraintViolationError(ValueError):
    """Raised when a write would violate a uniqueness constraint."""


def get_table_name(model_class: type[SQLModel]) -> str:
    """Get table name from a SQLModel class."""
    return str(model_class.__tablename__)  # type: ignore[attr-defined]


def get_pk_fields(model_class: type[SQLModel]) -> list[str]:
    """Get primary key field names from a SQLModel class."""
    return [name for name, info in model_class.model_fields.items() if getattr(info, "primary_key", False) is True]


def pk_filter(model: SQLModel) -> Filter:
    """Build a filter selecting ``model``'s row by primary key."""
    pk_filters = [ComparisonFilter.eq(field, getattr(model, field)) for field in get_pk_fields(type(model))]
    if len(pk_filters) == 1:
        return pk_filters[0]
    return AndFilter(filters=pk_filters)


class DatabaseEngine(ABC):
    """Abstract database engine for multi-backend storage."""

    @abstractmethod
    async def setup_models(self, model_classes: list[type[SQLModel]]) -> None:
        """Setup storage for the given model classes."""

    @abstractmethod
    async def find_first(
        self,
        model_class: type[T],
        *,
        filters: Filter,
    ) -> T | None:
        """Find the first record matching filters."""

    @abstractmethod
    async def find_many(
        self,
        model_class: type[T],
        *,
        filters: Filter | None = None,
        limit: int | None = None,
        offset: int | None = None,
        order_by: str | tuple[str, ...] | None = None,
    ) -> list[T]:
        """Find all records matching filters."""

    @abstractmethod
    async def create(self, model: T) -> T:
        """Create a new record. Raises ConstraintViolationError on duplicate key."""

    @abstractmethod
    async def create_many(self, models: list[T]) -> list[T]:
        """Create multiple records. Returns the created records."""

    @abstractmethod
    async def update(self, model: T) -> T:
        """Update a record by primary key. Returns the updated record."""

    @abstractmethod
    async def update_where(self, model: T, *, filters: Filter) -> T | None:
        """Update a record by primary key only if the stored row matches filters.

        Returns:
            The updated record, or None when no stored row matched.
        """

    @abstractmethod
    async def delete(
        self,
        model_class: type[T],
        *,
        filters: Filter,
    ) -> int:
        """Delete records matching filters. Returns count of deleted records."""

    @abstractmethod
    async def count(
        self,
        model_class: type[T],
        *,
        filters: Filter | None = None,
    ) -> int:
        """Count records matching filters."""
