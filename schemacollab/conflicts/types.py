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

"""Conflict, detection result and real-time event types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ..storage.id_generator import generate_conflict_id, generate_event_id
from ..storage.models import ResourceKind


class Operation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ConflictType(str, Enum):
    RESOURCE_LOCKED = "resource_locked"
    SCHEMA_MODIFIED = "schema_modified"
    FIELD_CONFLICT = "field_conflict"
    RELATIONSHIP_CONFLICT = "relationship_conflict"
    CONCURRENT_EDIT = "concurrent_edit"
    PERMISSION_DENIED = "permission_denied"
    RESOURCE_DELETED = "resource_deleted"


_SEVERITY_RANK = {"low": 0, "medium": 1, "high": 2, "critical": 3}


class ConflictSeverity(str, Enum):
    """Conflict severity, ordered ``LOW < MEDIUM < HIGH < CRITICAL``."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self.value]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, ConflictSeverity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, ConflictSeverity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, ConflictSeverity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, ConflictSeverity):
            return NotImplemented
        return self.rank >= other.rank


class ResolutionStrategy(str, Enum):
    FORCE_OVERRIDE = "force_override"
    MERGE_CHANGES = "merge_changes"
    RENAME_RESOURCE = "rename_resource"
    REQUEST_LOCK = "request_lock"
    CANCEL_OPERATION = "cancel_operation"
    SAVE_AS_COPY = "save_as_copy"


@dataclass(frozen=True)
class Conflict:
    """A hazard found before a schema mutation.

    ``details`` carries the structured payload for the conflict type, e.g.
    ``{"lease_id", "owner_id", "expires_at", "is_own_lock"}`` for
    RESOURCE_LOCKED or ``{"relationships": [...]}`` for RELATIONSHIP_CONFLICT.
    """

    type: ConflictType
    severity: ConflictSeverity
    title: str
    description: str
    resource_id: str
    resource_kind: ResourceKind
    details: dict[str, Any] = field(default_factory=dict)
    conflicting_actor_id: str | None = None
    id: str = field(default_factory=generate_conflict_id)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def blocking(self) -> bool:
        """Whether this entry should stop the operation."""
        return self.severity > ConflictSeverity.LOW and self.type != ConflictType.CONCURRENT_EDIT


@dataclass(frozen=True)
class ConflictDetectionResult:
    conflicts: list[Conflict] = field(default_factory=list)
    warnings: list[Conflict] = field(default_factory=list)
    suggested_resolution: ResolutionStrategy | None = None

    @property
    def can_proceed(self) -> bool:
        return len(self.conflicts) == 0

    @property
    def highest_severity(self) -> ConflictSeverity | None:
        entries = self.conflicts + self.warnings
        if not entries:
            return None
        return max(entry.severity for entry in entries)


class RealTimeEventType(str, Enum):
    LEASE_ACQUIRED = "lease_acquired"
    LEASE_EXTENDED = "lease_extended"
    LEASE_RELEASED = "lease_released"
    RESOURCE_CREATED = "resource_created"
    RESOURCE_MODIFIED = "resource_modified"
    RESOURCE_DELETED = "resource_deleted"


@dataclass(frozen=True)
class RealTimeEvent:
    """A remote change as seen by a conflict detector."""

    type: RealTimeEventType
    resource_kind: ResourceKind
    resource_id: str
    actor_id: str | None = None
    project_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=generate_event_id)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
