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

"""Read-only access to the schema records conflict checks inspect."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from ..storage.models import DataFieldModel, DataTableModel, RelationshipModel, ResourceKind
from ..storage.orm import AndFilter, ComparisonFilter, OrFilter
from ..storage.orm.filters import Filter

if TYPE_CHECKING:
    from ..storage.orm import DatabaseEngine

SchemaRecord = DataTableModel | DataFieldModel


class ResourceRegistry(ABC):
    """Lookup interface over tables, fields and relationships.

    Implementations may raise ``PermissionError`` when the caller cannot
    read a record; conflict detection reports that as PERMISSION_DENIED.
    """

    @abstractmethod
    async def get_table(self, table_id: str) -> DataTableModel | None: ...

    @abstractmethod
    async def get_field(self, field_id: str) -> DataFieldModel | None: ...

    @abstractmethod
    async def list_relationships_referencing(self, field_id: str) -> list[RelationshipModel]:
        """Relationships whose source or target is ``field_id``."""
        ...

    @abstractmethod
    async def list_relationships_for_table(self, table_id: str) -> list[RelationshipModel]:
        """Relationships whose source or target is ``table_id``."""
        ...

    @abstractmethod
    async def find_sibling(
        self,
        kind: ResourceKind,
        parent_id: str,
        name: str,
        *,
        exclude_id: str | None = None,
    ) -> SchemaRecord | None:
        """Find a record named ``name`` under the same parent.

        For tables the parent is the project and the name is ``table_name``;
        for fields the parent is the table and the name is ``field_name``.
        """
        ...


class EngineResourceRegistry(ResourceRegistry):
    """ResourceRegistry backed by a DatabaseEngine."""

    def __init__(self, engine: DatabaseEngine):
        self._engine = engine
        self._initialized = False

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self._engine.setup_models([DataTableModel, DataFieldModel, RelationshipModel])
            self._initialized = True

    async def get_table(self, table_id: str) -> DataTableModel | None:
        await self._ensure_initialized()
        return await self._engine.find_first(DataTableModel, filters=ComparisonFilter.eq("id", table_id))

    async def get_field(self, field_id: str) -> DataFieldModel | None:
        await self._ensure_initialized()
        return await self._engine.find_first(DataFieldModel, filters=ComparisonFilter.eq("id", field_id))

    async def list_relationships_referencing(self, field_id: str) -> list[RelationshipModel]:
        await self._ensure_initialized()
        return await self._engine.find_many(
            RelationshipModel,
            filters=OrFilter(
                filters=[
                    ComparisonFilter.eq("source_field_id", field_id),
                    ComparisonFilter.eq("target_field_id", field_id),
                ]
            ),
            order_by="id",
        )

    async def list_relationships_for_table(self, table_id: str) -> list[RelationshipModel]:
        await self._ensure_initialized()
        return await self._engine.find_many(
            RelationshipModel,
            filters=OrFilter(
                filters=[
                    ComparisonFilter.eq("source_table_id", table_id),
                    ComparisonFilter.eq("target_table_id", table_id),
                ]
            ),
            order_by="id",
        )

    async def find_sibling(
        self,
        kind: ResourceKind,
        parent_id: str,
        name: str,
        *,
        exclude_id: str | None = None,
    ) -> SchemaRecord | None:
        await self._ensure_initialized()
        model_class: type[DataTableModel] | type[DataFieldModel]
        if kind == ResourceKind.TABLE:
            model_class = DataTableModel
            filters: list[Filter] = [
                ComparisonFilter.eq("project_id", parent_id),
                ComparisonFilter.eq("table_name", name),
            ]
        elif kind == ResourceKind.FIELD:
            model_class = DataFieldModel
            filters = [
                ComparisonFilter.eq("table_id", parent_id),
                ComparisonFilter.eq("field_name", name),
            ]
        else:
            raise ValueError(f"Sibling lookup is not supported for {kind.value} records")

        if exclude_id is not None:
            filters.append(ComparisonFilter.neq("id", exclude_id))
        return await self._engine.find_first(model_class, filters=AndFilter(filters=filters))
