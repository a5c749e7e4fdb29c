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

"""Change feed: row-level change notifications from the store.

``ChangeFeed`` is a callback registry. ``FeedingDatabaseEngine`` wraps any
``DatabaseEngine`` and publishes a ``ChangeEvent`` for every row of a watched
record type that it inserts, updates or deletes, so every client sharing the
store and feed sees the others' writes.

Dispatch is synchronous and ordered: events are delivered to subscribers one
at a time, in publish order. Subscribers doing slow work must hand it off to
their own queue.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TypeVar, cast

from sqlmodel import SQLModel

from .models import DataFieldModel, DataTableModel, LeaseModel, RelationshipModel, ResourceKind
from .orm import AndFilter, DatabaseEngine, Filter, pk_filter

T = TypeVar("T", bound=SQLModel)

logger = logging.getLogger(__name__)

Unsubscribe = Callable[[], None]


class ChangeEventType(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class ChangeEvent:
    """A row-level change observed on the store."""

    event_type: ChangeEventType
    resource_kind: ResourceKind
    before: SQLModel | None
    after: SQLModel | None
    actor_id: str | None
    project_id: str | None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        if self.before is None and self.after is None:
            raise ValueError(f"{self.event_type.value} event on {self.resource_kind.value} carries no row")

    @property
    def record(self) -> SQLModel:
        """The row after the change, or before it for deletes."""
        return cast(SQLModel, self.after if self.after is not None else self.before)


ChangeListener = Callable[[ChangeEvent], None]


class ChangeFeed:
    """In-process publish/subscribe channel for change events."""

    def __init__(self) -> None:
        self._subscribers: list[tuple[ChangeListener, frozenset[ResourceKind] | None]] = []
        self._lock = threading.Lock()
        # Serialises dispatch so every subscriber sees events in publish order
        self._dispatch_lock = threading.RLock()

    def subscribe(
        self,
        listener: ChangeListener,
        *,
        kinds: Iterable[ResourceKind] | None = None,
    ) -> Unsubscribe:
        """Register a listener, optionally restricted to some resource kinds.

        Returns:
            A callable removing the subscription. Calling it twice is a no-op.
        """
        entry = (listener, frozenset(kinds) if kinds is not None else None)
        with self._lock:
            self._subscribers.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._subscribers:
                    self._subscribers.remove(entry)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: ChangeEvent) -> None:
        """Deliver ``event`` to every matching subscriber.

        A failing subscriber is logged and skipped.
        """
        with self._lock:
            subscribers = list(self._subscribers)

        with self._dispatch_lock:
            for listener, kinds in subscribers:
                if kinds is not None and event.resource_kind not in kinds:
                    continue
                try:
                    listener(event)
                except Exception:
                    logger.exception(f"Change feed listener failed for {event.event_type.value} {event.resource_kind.value}")


DEFAULT_WATCHED: dict[type[SQLModel], ResourceKind] = {
    LeaseModel: ResourceKind.LEASE,
    DataTableModel: ResourceKind.TABLE,
    DataFieldModel: ResourceKind.FIELD,
    RelationshipModel: ResourceKind.RELATIONSHIP,
}


def _actor_of(row: SQLModel) -> str | None:
    if isinstance(row, LeaseModel):
        return row.owner_id
    return getattr(row, "updated_by", None)


class FeedingDatabaseEngine(DatabaseEngine):
    """DatabaseEngine decorator that publishes writes to a ChangeFeed.

    Writes to record types not listed in ``watched`` pass straight through.

    Example:
        >>> feed = ChangeFeed()
        >>> engine = FeedingDatabaseEngine(InMemoryDatabaseEngine(), feed)
        >>> feed.subscribe(print, kinds=[ResourceKind.LEASE])
    """

    def __init__(
        self,
        inner: DatabaseEngine,
        feed: ChangeFeed,
        *,
        watched: dict[type[SQLModel], ResourceKind] | None = None,
    ) -> None:
        self._inner = inner
        self._feed = feed
        self._watched = dict(DEFAULT_WATCHED if watched is None else watched)

    @property
    def inner(self) -> DatabaseEngine:
        return self._inner

    @property
    def feed(self) -> ChangeFeed:
        return self._feed

    def _emit(self, event_type: ChangeEventType, before: SQLModel | None, after: SQLModel | None) -> None:
        row = after if after is not None else before
        if row is None:
            return
        kind = self._watched.get(type(row))
        if kind is None:
            return
        self._feed.publish(
            ChangeEvent(
                event_type=event_type,
                resource_kind=kind,
                before=before,
                after=after,
                actor_id=_actor_of(row),
                project_id=getattr(row, "project_id", None),
            )
        )

    async def setup_models(self, model_classes: list[type[SQLModel]]) -> None:
        await self._inner.setup_models(model_classes)

    async def find_first(self, model_class: type[T], *, filters: Filter) -> T | None:
        return await self._inner.find_first(model_class, filters=filters)

    async def find_many(
        self,
        model_class: type[T],
        *,
        filters: Filter | None = None,
        limit: int | None = None,
        offset: int | None = None,
        order_by: str | tuple[str, ...] | None = None,
    ) -> list[T]:
        return await self._inner.find_many(model_class, filters=filters, limit=limit, offset=offset, order_by=order_by)

    async def create(self, model: T) -> T:
        created = await self._inner.create(model)
        self._emit(ChangeEventType.INSERT, None, created)
        return created

    async def create_many(self, models: list[T]) -> list[T]:
        created = await self._inner.create_many(models)
        for model in created:
            self._emit(ChangeEventType.INSERT, None, model)
        return created

    async def update(self, model: T) -> T:
        before = await self._inner.find_first(type(model), filters=pk_filter(model))
        updated = await self._inner.update(model)
        self._emit(ChangeEventType.UPDATE if before is not None else ChangeEventType.INSERT, before, updated)
        return updated

    async def update_where(self, model: T, *, filters: Filter) -> T | None:
        before = await self._inner.find_first(type(model), filters=pk_filter(model))
        updated = await self._inner.update_where(model, filters=filters)
        if updated is not None:
            self._emit(ChangeEventType.UPDATE, before, updated)
        return updated

    async def delete(self, model_class: type[T], *, filters: Filter) -> int:
        if model_class not in self._watched:
            return await self._inner.delete(model_class, filters=filters)

        # Delete row by row so each published event carries the removed row
        deleted = 0
        for row in await self._inner.find_many(model_class, filters=filters):
            count = await self._inner.delete(model_class, filters=AndFilter(filters=[pk_filter(row), filters]))
            if count:
                deleted += count
                self._emit(ChangeEventType.DELETE, row, None)
        return deleted

    async def count(self, model_class: type[T], *, filters: Filter | None = None) -> int:
        return await self._inner.count(model_class, filters=filters)
