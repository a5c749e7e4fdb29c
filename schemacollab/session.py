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

"""Collaboration session: wires the coordination components for one client.

A session owns one LockManager, ConflictDetector, NotificationDispatcher and
NotificationInbox, all sharing a change-feed-publishing view of the store.
Sessions of different clients coordinate only through the shared store and
the shared ChangeFeed.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from .config import CollabConfig
from .conflicts import (
    ConflictDetectionResult,
    ConflictDetector,
    EngineResourceRegistry,
    InMemoryLastSeenCache,
    JSONFileLastSeenCache,
    LastSeenCache,
    Operation,
    ResourceRegistry,
)
from .identity import Actor, IdentityProvider
from .locking import LockError, LockManager
from .notifications import NotificationDispatcher, NotificationInbox
from .storage import ChangeFeed, DatabaseEngine, FeedingDatabaseEngine, InMemoryDatabaseEngine, LeaseModel, LockKind, SQLDatabaseEngine

logger = logging.getLogger(__name__)


def build_engine(database_url: str | None) -> DatabaseEngine:
    """Create the store for ``database_url``; None selects the in-memory engine."""
    if database_url is None:
        return InMemoryDatabaseEngine()
    return SQLDatabaseEngine.from_url(database_url)


def build_last_seen(config: CollabConfig) -> LastSeenCache:
    if config.last_seen_path is None:
        return InMemoryLastSeenCache()
    return JSONFileLastSeenCache(config.last_seen_path)


class CollaborationSession:
    """Coordination components of one client, bound to one project.

    Example:
        >>> session = CollaborationSession.create(engine, StaticIdentityProvider("user_1"), project_id="proj_1")
        >>> async with session:
        ...     result = await session.check_table_change("tbl_1", Operation.DELETE)
        ...     if result.can_proceed:
        ...         ...
    """

    def __init__(
        self,
        *,
        project_id: str,
        identity: IdentityProvider,
        config: CollabConfig,
        engine: FeedingDatabaseEngine,
        lock_manager: LockManager,
        detector: ConflictDetector,
        dispatcher: NotificationDispatcher,
        inbox: NotificationInbox,
    ):
        self.project_id = project_id
        self.identity = identity
        self.config = config
        self.engine = engine
        self.lock_manager = lock_manager
        self.detector = detector
        self.dispatcher = dispatcher
        self.inbox = inbox

    @classmethod
    def create(
        cls,
        engine: DatabaseEngine,
        identity: IdentityProvider,
        *,
        project_id: str,
        config: CollabConfig | None = None,
        last_seen: LastSeenCache | None = None,
        registry: ResourceRegistry | None = None,
        feed: ChangeFeed | None = None,
        clock: Callable[[], int] = time.time_ns,
    ) -> CollaborationSession:
        """Build a session over ``engine``.

        Args:
            engine: Shared store. An existing FeedingDatabaseEngine is reused
                together with its feed.
            identity: Provides the acting user
            project_id: Project this session works on
            config: Settings; defaults apply when omitted
            last_seen: Last-seen cache; built from ``config.last_seen_path`` when omitted
            registry: Schema lookups; defaults to an EngineResourceRegistry over ``engine``
            feed: Change feed shared with other sessions on the same store
            clock: Nanosecond epoch clock
        """
        config = config or CollabConfig()
        if isinstance(engine, FeedingDatabaseEngine):
            feeding = engine
        else:
            feeding = FeedingDatabaseEngine(engine, feed or ChangeFeed())

        registry = registry or EngineResourceRegistry(feeding)
        lock_manager = LockManager(engine=feeding, settings=config.locks, registry=registry, clock=clock)
        detector = ConflictDetector(
            lock_manager=lock_manager,
            registry=registry,
            identity=identity,
            last_seen=last_seen or build_last_seen(config),
            feed=feeding.feed,
            project_id=project_id,
            clock=clock,
        )
        dispatcher = NotificationDispatcher()
        inbox = NotificationInbox(dispatcher, capacity=config.notifications.buffer_size)
        return cls(
            project_id=project_id,
            identity=identity,
            config=config,
            engine=feeding,
            lock_manager=lock_manager,
            detector=detector,
            dispatcher=dispatcher,
            inbox=inbox,
        )

    @property
    def actor(self) -> Actor:
        return self.identity.current_actor()

    async def start(self, *, sweep: bool = False) -> None:
        """Subscribe to remote changes and optionally start the lease sweep."""
        self.detector.start()
        if sweep:
            await self.lock_manager.start_sweeper(self.config.locks.sweep_interval_seconds)
        logger.info(f"Collaboration session started for project={self.project_id}")

    async def stop(self) -> None:
        self.detector.stop()
        await self.lock_manager.stop()
        self.inbox.detach()
        logger.info(f"Collaboration session stopped for project={self.project_id}")

    async def __aenter__(self) -> CollaborationSession:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def lock_table(
        self,
        table_id: str,
        kind: LockKind | str,
        reason: str,
        duration_minutes: int | None = None,
    ) -> LeaseModel | LockError:
        """Acquire a lease on a table as the current actor."""
        return await self.lock_manager.acquire(
            table_id,
            self.actor.id,
            kind,
            reason,
            duration_minutes,
            project_id=self.project_id,
        )

    async def unlock_table(self, lease: LeaseModel) -> LockError | None:
        return await self.lock_manager.release(lease.resource_id, self.actor.id, lease.lease_token)

    async def check_table_change(
        self,
        table_id: str,
        operation: Operation | str,
        proposed_changes: Mapping[str, Any] | None = None,
    ) -> ConflictDetectionResult:
        """Detect conflicts for a table change and notify one entry per finding."""
        result = await self.detector.detect_table_conflicts(self.project_id, table_id, operation, proposed_changes)
        self._notify(result)
        return result

    async def check_field_change(
        self,
        table_id: str,
        field_id: str,
        operation: Operation | str,
        proposed_changes: Mapping[str, Any] | None = None,
    ) -> ConflictDetectionResult:
        """Detect conflicts for a field change and notify one entry per finding."""
        result = await self.detector.detect_field_conflicts(self.project_id, table_id, field_id, operation, proposed_changes)
        self._notify(result)
        return result

    def _notify(self, result: ConflictDetectionResult) -> None:
        for conflict in result.conflicts + result.warnings:
            self.dispatcher.notify_conflict(conflict)
