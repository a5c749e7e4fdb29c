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

"""
Pytest configuration and fixtures for schemacollab tests.

This module provides shared fixtures: a controllable clock, engines and
pre-wired coordination components.
"""

from __future__ import annotations

import pytest

from schemacollab.config import LockSettings
from schemacollab.conflicts import ConflictDetector, EngineResourceRegistry, InMemoryLastSeenCache
from schemacollab.identity import Actor, StaticIdentityProvider
from schemacollab.locking import LockManager
from schemacollab.storage import ChangeFeed, FeedingDatabaseEngine, InMemoryDatabaseEngine

from .factories import FakeClock


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine() -> InMemoryDatabaseEngine:
    return InMemoryDatabaseEngine()


@pytest.fixture
def lock_manager(engine, clock) -> LockManager:
    return LockManager(engine=engine, settings=LockSettings(), clock=clock)


@pytest.fixture
def feed() -> ChangeFeed:
    return ChangeFeed()


@pytest.fixture
def feeding_engine(engine, feed) -> FeedingDatabaseEngine:
    return FeedingDatabaseEngine(engine, feed)


@pytest.fixture
def alice() -> Actor:
    return Actor(id="user_alice", email="alice@example.com", display_name="Alice")


@pytest.fixture
def bob() -> Actor:
    return Actor(id="user_bob", email="bob@example.com", display_name="Bob")


@pytest.fixture
def last_seen() -> InMemoryLastSeenCache:
    return InMemoryLastSeenCache()


@pytest.fixture
def detector(feeding_engine, feed, clock, alice, last_seen) -> ConflictDetector:
    """Detector acting as alice on proj_1, over the shared feeding engine."""
    manager = LockManager(engine=feeding_engine, clock=clock)
    return ConflictDetector(
        lock_manager=manager,
        registry=EngineResourceRegistry(feeding_engine),
        identity=StaticIdentityProvider(alice),
        last_seen=last_seen,
        feed=feed,
        project_id="proj_1",
        clock=clock,
    )
