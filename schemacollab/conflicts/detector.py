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

"""Conflict detection for schema mutations.

ConflictDetector runs a fixed sequence of independent checks before a table
or field is created, updated or deleted, and classifies what it finds:

1. Lock: a valid lease on the table held by someone else blocks; one held
   by the caller is reported as a LOW warning.
2. Existence (update/delete): the record is gone.
3. Concurrent edit (update): another actor modified the record after the
   caller last saw it. Advisory only.
4. Name collision (create, or update changing the identifier name).
5. Relationship dependency (delete, or changing a field's ``field_name``).

Each check fails on its own: a ``PermissionError`` becomes a
PERMISSION_DENIED conflict, any other exception is logged and the check
contributes nothing. An identity provider failing with anything other than
``PermissionError`` is logged and yields an empty result.

The detector also turns change-feed events into ``RealTimeEvent``s for its
listeners.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sqlmodel import SQLModel

from ..identity import Actor, IdentityProvider
from ..storage.change_feed import ChangeEvent, ChangeEventType, Unsubscribe
from ..storage.models import DataFieldModel, DataTableModel, LeaseModel, ResourceKind, ns_to_datetime
from .resolution import suggest_resolution
from .types import (
    Conflict,
    ConflictDetectionResult,
    ConflictSeverity,
    ConflictType,
    Operation,
    RealTimeEvent,
    RealTimeEventType,
)

if TYPE_CHECKING:
    from ..locking import LockManager
    from ..storage.change_feed import ChangeFeed
    from .last_seen import LastSeenCache
    from .registry import ResourceRegistry

logger = logging.getLogger(__name__)

RealTimeListener = Callable[[RealTimeEvent], None]

_WATCHED_KINDS = (ResourceKind.LEASE, ResourceKind.TABLE, ResourceKind.FIELD, ResourceKind.RELATIONSHIP)

_LEASE_EVENTS = {
    ChangeEventType.INSERT: RealTimeEventType.LEASE_ACQUIRED,
    ChangeEventType.UPDATE: RealTimeEventType.LEASE_EXTENDED,
    ChangeEventType.DELETE: RealTimeEventType.LEASE_RELEASED,
}

_RESOURCE_EVENTS = {
    ChangeEventType.INSERT: RealTimeEventType.RESOURCE_CREATED,
    ChangeEventType.UPDATE: RealTimeEventType.RESOURCE_MODIFIED,
    ChangeEventType.DELETE: RealTimeEventType.RESOURCE_DELETED,
}


@dataclass
class _CallContext:
    """State fixed for the duration of one detection call."""

    actor: Actor
    now_ns: int
    operation: Operation
    changes: Mapping[str, Any]
    records: dict[tuple[ResourceKind, str], SQLModel | None] = field(default_factory=dict)


def _proposed_name(changes: Mapping[str, Any], key: str, operation: Operation) -> str | None:
    # Only a create derives the identifier from the display name
    value = changes.get(key)
    if not value and operation == Operation.CREATE:
        value = changes.get("name")
    return str(value) if value else None


def _record_id(row: SQLModel) -> str:
    if isinstance(row, LeaseModel):
        return row.resource_id
    return str(getattr(row, "id"))


class ConflictDetector:
    """Detect conflicts for table and field operations.

    Example:
        >>> detector = ConflictDetector(
        ...     lock_manager=manager,
        ...     registry=EngineResourceRegistry(engine),
        ...     identity=StaticIdentityProvider("user_1"),
        ...     last_seen=InMemoryLastSeenCache(),
        ... )
        >>> result = await detector.detect_table_conflicts("proj_1", "tbl_1", Operation.DELETE)
        >>> result.can_proceed, result.suggested_resolution
        (False, <ResolutionStrategy.CANCEL_OPERATION: 'cancel_operation'>)
    """

    def __init__(
        self,
        *,
        lock_manager: LockManager,
        registry: ResourceRegistry,
        identity: IdentityProvider,
        last_seen: LastSeenCache,
        feed: ChangeFeed | None = None,
        project_id: str | None = None,
        clock: Callable[[], int] | None = None,
    ):
        """Initialize the detector.

        Args:
            lock_manager: Source of lease state
            registry: Read access to tables, fields and relationships
            identity: Provides the acting user
            last_seen: Client-local last-seen timestamps
            feed: Change feed to react to, see ``start()``
            project_id: Only react to changes in this project
            clock: Nanosecond epoch clock; defaults to the lock manager's
        """
        self._lock_manager = lock_manager
        self._registry = registry
        self._identity = identity
        self._last_seen = last_seen
        self._feed = feed
        self._project_id = project_id
        self._clock = clock or lock_manager.now_ns
        self._listeners: dict[RealTimeEventType, list[RealTimeListener]] = {}
        self._listeners_lock = threading.Lock()
        self._unsubscribe: Unsubscribe | None = None

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    async def detect_table_conflicts(
        self,
        project_id: str,
        table_id: str,
        operation: Operation | str,
        proposed_changes: Mapping[str, Any] | None = None,
    ) -> ConflictDetectionResult:
        """Detect conflicts for a table create, update or delete.

        Args:
            project_id: Project of the table
            table_id: Table being changed (the new id for creates)
            operation: create | update | delete
            proposed_changes: Changed attributes, e.g. ``{"table_name": "orders"}``
        """
        ctx = self._begin(operation, proposed_changes, table_id, ResourceKind.TABLE)
        if isinstance(ctx, ConflictDetectionResult):
            return ctx

        op = ctx.operation
        checks: list[tuple[str, Callable[[], Awaitable[list[Conflict]]]]] = [
            ("lock", lambda: self._check_lock(ctx, table_id, table_id, ResourceKind.TABLE)),
        ]
        if op in (Operation.UPDATE, Operation.DELETE):
            checks.append(("existence", lambda: self._check_exists(ctx, project_id, ResourceKind.TABLE, table_id)))
        if op == Operation.UPDATE:
            checks.append(("concurrent_edit", lambda: self._check_concurrent_edit(ctx, project_id, ResourceKind.TABLE, table_id)))
        name = _proposed_name(ctx.changes, "table_name", op)
        if name and (op == Operation.CREATE or op == Operation.UPDATE):
            checks.append(("name_collision", lambda: self._check_table_name(project_id, table_id, name)))
        if op == Operation.DELETE:
            checks.append(("relationships", lambda: self._check_table_relationships(table_id)))

        return await self._run(checks, table_id, ResourceKind.TABLE)

    async def detect_field_conflicts(
        self,
        project_id: str,
        table_id: str,
        field_id: str,
        operation: Operation | str,
        proposed_changes: Mapping[str, Any] | None = None,
    ) -> ConflictDetectionResult:
        """Detect conflicts for a field create, update or delete.

        The lock check applies to the parent table. Changing the ``field_name``
        of a field that a relationship references is treated like deleting it.
        Display ``name`` edits never touch relationships.
        """
        ctx = self._begin(operation, proposed_changes, field_id, ResourceKind.FIELD)
        if isinstance(ctx, ConflictDetectionResult):
            return ctx

        op = ctx.operation
        checks: list[tuple[str, Callable[[], Awaitable[list[Conflict]]]]] = [
            ("lock", lambda: self._check_lock(ctx, table_id, field_id, ResourceKind.FIELD)),
        ]
        if op in (Operation.UPDATE, Operation.DELETE):
            checks.append(("existence", lambda: self._check_exists(ctx, project_id, ResourceKind.FIELD, field_id)))
        if op == Operation.UPDATE:
            checks.append(("concurrent_edit", lambda: self._check_concurrent_edit(ctx, project_id, ResourceKind.FIELD, field_id)))
        name = _proposed_name(ctx.changes, "field_name", op)
        if name and (op == Operation.CREATE or op == Operation.UPDATE):
            checks.append(("name_collision", lambda: self._check_field_name(table_id, field_id, name)))
        if op == Operation.DELETE or (op == Operation.UPDATE and "field_name" in ctx.changes):
            checks.append(("relationships", lambda: self._check_field_relationships(field_id)))

        return await self._run(checks, field_id, ResourceKind.FIELD)

    def _begin(
        self,
        operation: Operation | str,
        proposed_changes: Mapping[str, Any] | None,
        resource_id: str,
        resource_kind: ResourceKind,
    ) -> _CallContext | ConflictDetectionResult:
        op = Operation(operation)
        changes = dict(proposed_changes or {})
        try:
            actor = self._identity.current_actor()
        except PermissionError as e:
            logger.info(f"Conflict detection refused: no authenticated actor ({e})")
            conflict = Conflict(
                type=ConflictType.PERMISSION_DENIED,
                severity=ConflictSeverity.HIGH,
                title="Not authenticated",
                description="You must be signed in to change the data model.",
                resource_id=resource_id,
                resource_kind=resource_kind,
                details={"error": str(e)},
            )
            return ConflictDetectionResult(conflicts=[conflict], suggested_resolution=suggest_resolution([conflict]))
        except Exception:
            logger.exception(f"Conflict detection skipped for {resource_kind.value}={resource_id}: identity lookup failed")
            return ConflictDetectionResult()
        return _CallContext(actor=actor, now_ns=self._clock(), operation=op, changes=changes)

    async def _run(
        self,
        checks: list[tuple[str, Callable[[], Awaitable[list[Conflict]]]]],
        resource_id: str,
        resource_kind: ResourceKind,
    ) -> ConflictDetectionResult:
        conflicts: list[Conflict] = []
        warnings: list[Conflict] = []
        for name, check in checks:
            for entry in await self._guarded(name, check, resource_id, resource_kind):
                (conflicts if entry.blocking else warnings).append(entry)

        return ConflictDetectionResult(
            conflicts=conflicts,
            warnings=warnings,
            suggested_resolution=suggest_resolution(conflicts),
        )

    async def _guarded(
        self,
        name: str,
        check: Callable[[], Awaitable[list[Conflict]]],
        resource_id: str,
        resource_kind: ResourceKind,
    ) -> list[Conflict]:
        try:
            return await check()
        except PermissionError as e:
            logger.info(f"Conflict check {name} denied for {resource_kind.value}={resource_id}: {e}")
            return [
                Conflict(
                    type=ConflictType.PERMISSION_DENIED,
                    severity=ConflictSeverity.HIGH,
                    title="Permission denied",
                    description=f"You do not have permission to read this {resource_kind.value}.",
                    resource_id=resource_id,
                    resource_kind=resource_kind,
                    details={"check": name, "error": str(e)},
                )
            ]
        except Exception:
            logger.exception(f"Conflict check {name} failed for {resource_kind.value}={resource_id}")
            return []

    async def _get_record(self, ctx: _CallContext, kind: ResourceKind, resource_id: str) -> SQLModel | None:
        key = (kind, resource_id)
        if key not in ctx.records:
            if kind == ResourceKind.TABLE:
                ctx.records[key] = await self._registry.get_table(resource_id)
            else:
                ctx.records[key] = await self._registry.get_field(resource_id)
        return ctx.records[key]

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    async def _check_lock(self, ctx: _CallContext, table_id: str, resource_id: str, kind: ResourceKind) -> list[Conflict]:
        lease = await self._lock_manager.query(table_id, now_ns=ctx.now_ns)
        if lease is None:
            return []

        details = {
            "lease_id": lease.lease_id,
            "owner_id": lease.owner_id,
            "kind": lease.kind,
            "reason": lease.reason,
            "expires_at": lease.expires_at,
            "is_own_lock": lease.owner_id == ctx.actor.id,
        }
        if details["is_own_lock"]:
            return [
                Conflict(
                    type=ConflictType.RESOURCE_LOCKED,
                    severity=ConflictSeverity.LOW,
                    title="Table is locked by you",
                    description="You have an active lock on this table. The operation will proceed.",
                    resource_id=resource_id,
                    resource_kind=kind,
                    details=details,
                )
            ]

        title = "Table is locked by another user" if kind == ResourceKind.TABLE else "Cannot modify field - table is locked"
        return [
            Conflict(
                type=ConflictType.RESOURCE_LOCKED,
                severity=ConflictSeverity.HIGH,
                title=title,
                description=f"Table is locked by {lease.owner_id} until {lease.expires_at.isoformat()}.",
                resource_id=resource_id,
                resource_kind=kind,
                details=details,
                conflicting_actor_id=lease.owner_id,
            )
        ]

    async def _check_exists(self, ctx: _CallContext, project_id: str, kind: ResourceKind, resource_id: str) -> list[Conflict]:
        record = await self._get_record(ctx, kind, resource_id)
        if record is not None and getattr(record, "project_id", None) == project_id:
            return []
        label = kind.value.capitalize()
        return [
            Conflict(
                type=ConflictType.RESOURCE_DELETED,
                severity=ConflictSeverity.HIGH,
                title=f"{label} no longer exists",
                description=f"This {kind.value} was deleted by another user.",
                resource_id=resource_id,
                resource_kind=kind,
                details={"project_id": project_id},
            )
        ]

    async def _check_concurrent_edit(self, ctx: _CallContext, project_id: str, kind: ResourceKind, resource_id: str) -> list[Conflict]:
        record = await self._get_record(ctx, kind, resource_id)
        if not isinstance(record, DataTableModel | DataFieldModel):
            return []
        seen_at_ns = self._last_seen.get(kind, resource_id)
        if seen_at_ns is None:
            return []
        if record.updated_at_ns <= seen_at_ns or record.updated_by is None or record.updated_by == ctx.actor.id:
            return []

        return [
            Conflict(
                type=ConflictType.CONCURRENT_EDIT,
                severity=ConflictSeverity.MEDIUM,
                title=f"{kind.value.capitalize()} was modified by another user",
                description=f"{record.updated_by} modified this {kind.value} since you last viewed it.",
                resource_id=resource_id,
                resource_kind=kind,
                details={
                    "last_modified": ns_to_datetime(record.updated_at_ns),
                    "last_seen": ns_to_datetime(seen_at_ns),
                    "modified_by": record.updated_by,
                },
                conflicting_actor_id=record.updated_by,
            )
        ]

    async def _check_table_name(self, project_id: str, table_id: str, name: str) -> list[Conflict]:
        existing = await self._registry.find_sibling(ResourceKind.TABLE, project_id, name, exclude_id=table_id)
        if existing is None:
            return []
        return [
            Conflict(
                type=ConflictType.SCHEMA_MODIFIED,
                severity=ConflictSeverity.HIGH,
                title="Table name already exists",
                description=f'A table with the name "{name}" already exists in this project.',
                resource_id=table_id,
                resource_kind=ResourceKind.TABLE,
                details={"conflicting_id": existing.id, "proposed_name": name},
            )
        ]

    async def _check_field_name(self, table_id: str, field_id: str, name: str) -> list[Conflict]:
        existing = await self._registry.find_sibling(ResourceKind.FIELD, table_id, name, exclude_id=field_id)
        if existing is None:
            return []
        return [
            Conflict(
                type=ConflictType.FIELD_CONFLICT,
                severity=ConflictSeverity.HIGH,
                title="Field name already exists",
                description=f'A field with the name "{name}" already exists in this table.',
                resource_id=field_id,
                resource_kind=ResourceKind.FIELD,
                details={"conflicting_id": existing.id, "proposed_name": name},
            )
        ]

    async def _check_table_relationships(self, table_id: str) -> list[Conflict]:
        relationships = await self._registry.list_relationships_for_table(table_id)
        if not relationships:
            return []
        return [
            Conflict(
                type=ConflictType.RELATIONSHIP_CONFLICT,
                severity=ConflictSeverity.CRITICAL,
                title="Table is used in relationships",
                description=f"This table is used in {len(relationships)} relationship(s) and cannot be deleted.",
                resource_id=table_id,
                resource_kind=ResourceKind.TABLE,
                details={
                    "relationships": [rel.id for rel in relationships],
                    "affected_tables": sorted({rel.source_table_id for rel in relationships} | {rel.target_table_id for rel in relationships}),
                },
            )
        ]

    async def _check_field_relationships(self, field_id: str) -> list[Conflict]:
        relationships = await self._registry.list_relationships_referencing(field_id)
        if not relationships:
            return []
        return [
            Conflict(
                type=ConflictType.RELATIONSHIP_CONFLICT,
                severity=ConflictSeverity.CRITICAL,
                title="Field is used in relationships",
                description=f"This field is used in {len(relationships)} relationship(s) and cannot be modified or deleted.",
                resource_id=field_id,
                resource_kind=ResourceKind.FIELD,
                details={
                    "relationships": [rel.id for rel in relationships],
                    "affected_tables": sorted({rel.source_table_id for rel in relationships} | {rel.target_table_id for rel in relationships}),
                },
            )
        ]

    # ------------------------------------------------------------------
    # Last seen
    # ------------------------------------------------------------------

    def mark_seen(self, resource_kind: ResourceKind, resource_id: str) -> None:
        """Record that the caller has observed the current state of a resource."""
        self._last_seen.set(resource_kind, resource_id, self._clock())

    # ------------------------------------------------------------------
    # Real-time events
    # ------------------------------------------------------------------

    def add_event_listener(self, event_type: RealTimeEventType, listener: RealTimeListener) -> Unsubscribe:
        with self._listeners_lock:
            self._listeners.setdefault(event_type, []).append(listener)

        def unsubscribe() -> None:
            with self._listeners_lock:
                listeners = self._listeners.get(event_type, [])
                if listener in listeners:
                    listeners.remove(listener)

        return unsubscribe

    @property
    def running(self) -> bool:
        return self._unsubscribe is not None

    def start(self) -> None:
        """Subscribe to the change feed. No-op without a feed or when running."""
        if self._feed is None or self._unsubscribe is not None:
            return
        self._unsubscribe = self._feed.subscribe(self._handle_change, kinds=_WATCHED_KINDS)
        logger.debug(f"Conflict detector subscribed to change feed, project={self._project_id}")

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
            logger.debug("Conflict detector unsubscribed from change feed")

    def _handle_change(self, event: ChangeEvent) -> None:
        if self._project_id is not None and event.project_id != self._project_id:
            return

        mapping = _LEASE_EVENTS if event.resource_kind == ResourceKind.LEASE else _RESOURCE_EVENTS
        record = event.record
        resource_id = _record_id(record)
        if event.event_type == ChangeEventType.DELETE and event.resource_kind in (ResourceKind.TABLE, ResourceKind.FIELD):
            self._last_seen.forget(event.resource_kind, resource_id)

        self._emit(
            RealTimeEvent(
                type=mapping[event.event_type],
                resource_kind=event.resource_kind,
                resource_id=resource_id,
                actor_id=event.actor_id,
                project_id=event.project_id,
                payload={"before": event.before, "after": event.after},
                timestamp=event.timestamp,
            )
        )

    def _emit(self, event: RealTimeEvent) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners.get(event.type, []))
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(f"Real-time event listener failed for {event.type.value} {event.resource_id}")
