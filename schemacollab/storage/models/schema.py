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

"""Schema designer records: tables, fields and relationships.

These rows are owned by the schema designer. The coordination layer only
reads them (see ``schemacollab.conflicts.registry``) and watches their
change events.
"""

from __future__ import annotations

import time

from sqlmodel import Field, SQLModel


class DataTableModel(SQLModel, table=True):
    """A table in a project's data model.

    Attributes:
        id: Table identifier (primary key)
        project_id: Owning project
        name: Display name
        table_name: Identifier name, unique within the project
        updated_at_ns: Nanosecond timestamp of the last modification
        updated_by: Actor that made the last modification
    """

    __tablename__ = "data_tables"  # type: ignore[assignment]

    id: str = Field(primary_key=True)
    project_id: str = Field(index=True)
    name: str
    table_name: str = Field(index=True)
    updated_at_ns: int = Field(default_factory=time.time_ns)
    updated_by: str | None = Field(default=None)


class DataFieldModel(SQLModel, table=True):
    """A field (column) of a table.

    ``field_name`` is unique within ``table_id``.
    """

    __tablename__ = "data_fields"  # type: ignore[assignment]

    id: str = Field(primary_key=True)
    project_id: str = Field(index=True)
    table_id: str = Field(index=True)
    name: str
    field_name: str = Field(index=True)
    updated_at_ns: int = Field(default_factory=time.time_ns)
    updated_by: str | None = Field(default=None)


class RelationshipModel(SQLModel, table=True):
    """A relationship between a source field and a target field."""

    __tablename__ = "table_relationships"  # type: ignore[assignment]

    id: str = Field(primary_key=True)
    project_id: str = Field(index=True)
    name: str = ""
    source_table_id: str = Field(index=True)
    source_field_id: str = Field(index=True)
    target_table_id: str = Field(index=True)
    target_field_id: str = Field(index=True)
    updated_at_ns: int = Field(default_factory=time.time_ns)
    updated_by: str | None = Field(default=None)
