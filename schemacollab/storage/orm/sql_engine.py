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

"""SQL database engine using SQLModel/SQLAlchemy.

Filters are compiled with ``to_sqlalchemy()`` before being passed to
``where()`` clauses. Duplicate keys surface as ``ConstraintViolationError``;
``update_where`` and ``delete`` are single conditional statements, so the
database itself arbitrates concurrent writers.
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar

from sqlalchemy import and_, delete, func, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlmodel import SQLModel, select

from .engine import ConstraintViolationError, DatabaseEngine, get_pk_fields, pk_filter
from .filters import Filter, to_sqlalchemy

T = TypeVar("T", bound=SQLModel)

logger = logging.getLogger(__name__)


class SQLDatabaseEngine(DatabaseEngine):
    """Async SQL database engine supporting SQLite, PostgreSQL, MySQL."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._initialized_models: set[type[SQLModel]] = set()

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        pool_size: int = 5,
        max_overflow: int = 10,
        echo: bool = False,
        **kwargs: Any,
    ) -> SQLDatabaseEngine:
        """Create engine from database URL."""
        if not any(driver in url for driver in ["+asyncpg", "+aiosqlite", "+aiomysql"]):
            raise ValueError(f"URL must contain async driver (+asyncpg, +aiosqlite, or +aiomysql): {url}")

        if "sqlite" in url:
            connect_args = kwargs.pop("connect_args", {})
            connect_args.setdefault("check_same_thread", False)
            connect_args.setdefault("timeout", 30)
            engine = create_async_engine(url, echo=echo, connect_args=connect_args, **kwargs)
        else:
            engine = create_async_engine(
                url,
                pool_size=pool_size,
                max_overflow=max_overflow,
                echo=echo,
                **kwargs,
            )

        return cls(engine)

    async def setup_models(self, model_classes: list[type[SQLModel]]) -> None:
        """Create tables for the given model classes."""
        tables = [model_class.__table__ for model_class in model_classes]  # type: ignore[attr-defined]
        async with self._engine.begin() as conn:
            if "sqlite" in str(self._engine.url.drivername) and self._engine.url.database not in (None, "", ":memory:"):
                await conn.execute(text("PRAGMA journal_mode=WAL"))
                await conn.execute(text("PRAGMA busy_timeout=30000"))
            await conn.run_sync(lambda sync_conn: SQLModel.metadata.create_all(sync_conn, tables=tables))
        self._initialized_models.update(model_classes)

    async def dispose(self) -> None:
        """Close all pooled connections."""
        await self._engine.dispose()

    async def find_first(
        self,
        model_class: type[T],
        *,
        filters: Filter,
    ) -> T | None:
        stmt = select(model_class).where(to_sqlalchemy(filters, model_class)).limit(1)
        async with AsyncSession(self._engine, expire_on_commit=False) as session:
            result = await session.execute(stmt)
            return result.scalars().first()

    async def find_many(
        self,
        model_class: type[T],
        *,
        filters: Filter | None = None,
        limit: int | None = None,
        offset: int | None = None,
        order_by: str | tuple[str, ...] | None = None,
    ) -> list[T]:
        """Find all records matching filters.

        Args:
            model_class: The SQLModel class to query
            filters: Optional Filter DSL filter expression
            limit: Maximum number of records to return
            offset: Number of records to skip
            order_by: Field name(s) to order by. Prefix with "-" for descending.
        """
        stmt = select(model_class)

        if filters is not None:
            stmt = stmt.where(to_sqlalchemy(filters, model_class))

        if order_by:
            fields = (order_by,) if isinstance(order_by, str) else order_by
            for field in fields:
                if field.startswith("-"):
                    stmt = stmt.order_by(getattr(model_class, field[1:]).desc())
                else:
                    stmt = stmt.order_by(getattr(model_class, field))

        if offset:
            stmt = stmt.offset(offset)
        if limit:
            stmt = stmt.limit(limit)

        async with AsyncSession(self._engine, expire_on_commit=False) as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def create(self, model: T) -> T:
        """Create a new record.

        Raises:
            ConstraintViolationError: If the insert violates a uniqueness constraint
        """
        async with AsyncSession(self._engine, expire_on_commit=False) as session:
            session.add(model)
            try:
                # Flush first so constraint violations surface before commit
                await session.flush()
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ConstraintViolationError(str(e.orig)) from e
            except Exception:
                await session.rollback()
                raise
            session.expunge(model)
            return model

    async def create_many(self, models: list[T]) -> list[T]:
        if not models:
            return []

        async with AsyncSession(self._engine, expire_on_commit=False) as session:
            session.add_all(models)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ConstraintViolationError(str(e.orig)) from e
            session.expunge_all()
            return models

    async def update(self, model: T) -> T:
        async with AsyncSession(self._engine, expire_on_commit=False) as session:
            merged = await session.merge(model)
            await session.commit()
            session.expunge(merged)
            return merged

    async def update_where(self, model: T, *, filters: Filter) -> T | None:
        model_class = type(model)
        pk_fields = set(get_pk_fields(model_class))
        values = {name: value for name, value in model.model_dump().items() if name not in pk_fields}
        condition = and_(to_sqlalchemy(pk_filter(model), model_class), to_sqlalchemy(filters, model_class))
        stmt = update(model_class).where(condition).values(**values)

        async with AsyncSession(self._engine) as session:
            result = await session.execute(stmt)
            await session.commit()
            if result.rowcount == 0:  # type: ignore[attr-defined]
                logger.debug(f"Conditional update matched no row in {model_class.__name__}")
                return None
            return model

    async def delete(
        self,
        model_class: type[T],
        *,
        filters: Filter,
    ) -> int:
        stmt = delete(model_class).where(to_sqlalchemy(filters, model_class))
        async with AsyncSession(self._engine) as session:
            result = await session.execute(stmt)
            await session.commit()
            return int(result.rowcount or 0)  # type: ignore[attr-defined]

    async def count(
        self,
        model_class: type[T],
        *,
        filters: Filter | None = None,
    ) -> int:
        stmt = select(func.count()).select_from(model_class)
        if filters is not None:
            stmt = stmt.where(to_sqlalchemy(filters, model_class))

        async with AsyncSession(self._engine) as session:
            result = await session.execute(stmt)
            return result.scalar() or 0
