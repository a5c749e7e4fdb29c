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

"""Unit tests for ConflictDetector."""

import pytest

from schemacollab.conflicts import (
    ConflictDetector,
    ConflictSeverity,
    ConflictType,
    EngineResourceRegistry,
    InMemoryLastSeenCache,
    Operation,
    RealTimeEventType,
    ResolutionStrategy,
)
from schemacollab.identity import IdentityProvider, StaticIdentityProvider
from schemacollab.locking import LockManager
from schemacollab.storage import DataTableModel, LockKind, ResourceKind
from schemacollab.storage.orm import ComparisonFilter

from ..factories import make_field, make_relationship, make_table


async def seed(engine, *records):
    for record in records:
        await engine.create(record)


@pytest.fixture
def bob_locks(feeding_engine, clock):
    """Lock manager used to take leases as other users."""
    return LockManager(engine=feeding_engine, clock=clock)


class AnonymousIdentity(IdentityProvider):
    def current_actor(self):
        raise PermissionError("session expired")


class DeniedRegistry(EngineResourceRegistry):
    async def get_table(self, table_id):
        raise PermissionError("row level security")


class FlakyRegistry(EngineResourceRegistry):
    async def get_table(self, table_id):
        raise RuntimeError("replica lag")


class UnreachableIdentity(IdentityProvider):
    def current_actor(self):
        raise ConnectionError("auth service down")


def make_detector(engine, clock, *, registry=None, identity=None):
    return ConflictDetector(
        lock_manager=LockManager(engine=engine, clock=clock),
        registry=registry or EngineResourceRegistry(engine),
        identity=identity or StaticIdentityProvider("user_alice"),
        last_seen=InMemoryLastSeenCache(),
        clock=clock,
    )


class TestTableConflicts:
    @pytest.mark.anyio
    async def test_clean_update(self, detector, feeding_engine):
        await seed(feeding_engine, make_table("tbl_1", "orders"))

        result = await detector.detect_table_conflicts("proj_1", "tbl_1", Operation.UPDATE, {"description": "x"})

        assert result.conflicts == []
        assert result.warnings == []
        assert result.can_proceed
        assert result.suggested_resolution is None
        assert result.highest_severity is None

    @pytest.mark.anyio
    async def test_locked_by_another_user(self, detector, feeding_engine, bob_locks):
        await seed(feeding_engine, make_table("tbl_1", "orders"))
        lease = await bob_locks.acquire("tbl_1", "user_bob", LockKind.PESSIMISTIC, "reshaping orders")

        result = await detector.detect_table_conflicts("proj_1", "tbl_1", "update")

        assert [c.type for c in result.conflicts] == [ConflictType.RESOURCE_LOCKED]
        conflict = result.conflicts[0]
        assert conflict.severity == ConflictSeverity.HIGH
        assert conflict.title == "Table is locked by another user"
        assert conflict.conflicting_actor_id == "user_bob"
        assert conflict.details["lease_id"] == lease.lease_id
        assert conflict.details["reason"] == "reshaping orders"
        assert conflict.details["is_own_lock"] is False
        assert not result.can_proceed
        assert result.suggested_resolution == ResolutionStrategy.REQUEST_LOCK

    @pytest.mark.anyio
    async def test_own_lock_is_a_warning(self, detector, feeding_engine, bob_locks):
        await seed(feeding_engine, make_table("tbl_1", "orders"))
        await bob_locks.acquire("tbl_1", "user_alice", LockKind.OPTIMISTIC, "mine")

        result = await detector.detect_table_conflicts("proj_1", "tbl_1", Operation.UPDATE)

        assert result.conflicts == []
        assert [(w.type, w.severity) for w in result.warnings] == [(ConflictType.RESOURCE_LOCKED, ConflictSeverity.LOW)]
        assert result.warnings[0].details["is_own_lock"] is True
        assert result.can_proceed

    @pytest.mark.anyio
    async def test_expired_lock_is_ignored(self, detector, feeding_engine, bob_locks, clock):
        await seed(feeding_engine, make_table("tbl_1", "orders"))
        await bob_locks.acquire("tbl_1", "user_bob", LockKind.OPTIMISTIC, "quick", duration_minutes=5)
        clock.advance(minutes=5)

        result = await detector.detect_table_conflicts("proj_1", "tbl_1", Operation.UPDATE)
        assert result.conflicts == []

    @pytest.mark.anyio
    async def test_rename_to_sibling_name(self, detector, feeding_engine):
        await seed(feeding_engine, make_table("tbl_1", "orders"), make_table("tbl_2", "invoices"))

        result = await detector.detect_table_conflicts("proj_1", "tbl_2", Operation.UPDATE, {"table_name": "orders"})

        assert [(c.type, c.severity) for c in result.conflicts] == [(ConflictType.SCHEMA_MODIFIED, ConflictSeverity.HIGH)]
        assert result.conflicts[0].details == {"conflicting_id": "tbl_1", "proposed_name": "orders"}
        assert result.suggested_resolution == ResolutionStrategy.RENAME_RESOURCE

    @pytest.mark.anyio
    async def test_keeping_own_name_is_fine(self, detector, feeding_engine):
        await seed(feeding_engine, make_table("tbl_1", "orders"))
        result = await detector.detect_table_conflicts("proj_1", "tbl_1", Operation.UPDATE, {"table_name": "orders"})
        assert result.conflicts == []

    @pytest.mark.anyio
    async def test_same_name_in_other_project_is_fine(self, detector, feeding_engine):
        await seed(feeding_engine, make_table("tbl_9", "orders", project_id="proj_2"))
        result = await detector.detect_table_conflicts("proj_1", "tbl_new", Operation.CREATE, {"name": "orders"})
        assert result.conflicts == []

    @pytest.mark.anyio
    async def test_create_with_taken_name(self, detector, feeding_engine):
        await seed(feeding_engine, make_table("tbl_1", "orders"))
        result = await detector.detect_table_conflicts("proj_1", "tbl_new", Operation.CREATE, {"name": "orders"})
        assert [c.type for c in result.conflicts] == [ConflictType.SCHEMA_MODIFIED]

    @pytest.mark.anyio
    async def test_display_name_edit_is_not_a_rename(self, detector, feeding_engine):
        await seed(feeding_engine, make_table("tbl_1", "orders"), make_table("tbl_2", "invoices"))

        result = await detector.detect_table_conflicts("proj_1", "tbl_2", Operation.UPDATE, {"name": "orders"})

        assert result.conflicts == []
        assert result.can_proceed

    @pytest.mark.anyio
    @pytest.mark.parametrize("operation", [Operation.UPDATE, Operation.DELETE])
    async def test_missing_table(self, detector, operation):
        result = await detector.detect_table_conflicts("proj_1", "tbl_gone", operation)

        assert [(c.type, c.severity) for c in result.conflicts] == [(ConflictType.RESOURCE_DELETED, ConflictSeverity.HIGH)]
        assert result.conflicts[0].title == "Table no longer exists"

    @pytest.mark.anyio
    async def test_table_in_other_project_counts_as_missing(self, detector, feeding_engine):
        await seed(feeding_engine, make_table("tbl_1", "orders", project_id="proj_2"))
        result = await detector.detect_table_conflicts("proj_1", "tbl_1", Operation.UPDATE)
        assert [c.type for c in result.conflicts] == [ConflictType.RESOURCE_DELETED]

    @pytest.mark.anyio
    async def test_delete_table_with_relationships(self, detector, feeding_engine):
        order_customer = make_field("fld_1", "tbl_1", "customer_id")
        customer_id = make_field("fld_2", "tbl_2", "id")
        await seed(
            feeding_engine,
            make_table("tbl_1", "orders"),
            make_table("tbl_2", "customers"),
            order_customer,
            customer_id,
            make_relationship("rel_1", order_customer, customer_id),
        )

        result = await detector.detect_table_conflicts("proj_1", "tbl_2", Operation.DELETE)

        assert [(c.type, c.severity) for c in result.conflicts] == [(ConflictType.RELATIONSHIP_CONFLICT, ConflictSeverity.CRITICAL)]
        assert result.conflicts[0].details == {"relationships": ["rel_1"], "affected_tables": ["tbl_1", "tbl_2"]}
        assert result.suggested_resolution == ResolutionStrategy.CANCEL_OPERATION

    @pytest.mark.anyio
    async def test_relationship_beats_lock(self, detector, feeding_engine, bob_locks):
        source = make_field("fld_1", "tbl_1", "customer_id")
        target = make_field("fld_2", "tbl_2", "id")
        await seed(
            feeding_engine,
            make_table("tbl_1", "orders"),
            make_table("tbl_2", "customers"),
            source,
            target,
            make_relationship("rel_1", source, target),
        )
        await bob_locks.acquire("tbl_1", "user_bob", LockKind.CRITICAL, "migration")

        result = await detector.detect_table_conflicts("proj_1", "tbl_1", Operation.DELETE)

        assert [c.type for c in result.conflicts] == [ConflictType.RESOURCE_LOCKED, ConflictType.RELATIONSHIP_CONFLICT]
        assert result.highest_severity == ConflictSeverity.CRITICAL
        assert result.suggested_resolution == ResolutionStrategy.CANCEL_OPERATION

    @pytest.mark.anyio
    async def test_detection_is_deterministic(self, detector, feeding_engine, bob_locks):
        await seed(feeding_engine, make_table("tbl_1", "orders"), make_table("tbl_2", "invoices"))
        await bob_locks.acquire("tbl_2", "user_bob", LockKind.OPTIMISTIC, "edit")

        first = await detector.detect_table_conflicts("proj_1", "tbl_2", Operation.UPDATE, {"table_name": "orders"})
        second = await detector.detect_table_conflicts("proj_1", "tbl_2", Operation.UPDATE, {"table_name": "orders"})

        def shape(result):
            return [(c.type, c.severity, c.title, c.details) for c in result.conflicts], result.suggested_resolution

        assert shape(first) == shape(second)
        assert [c.type for c in first.conflicts] == [ConflictType.RESOURCE_LOCKED, ConflictType.SCHEMA_MODIFIED]


class TestConcurrentEdit:
    @pytest.mark.anyio
    async def test_modified_by_other_since_last_seen(self, detector, feeding_engine, clock):
        await seed(feeding_engine, make_table("tbl_1", "orders"))
        detector.mark_seen(ResourceKind.TABLE, "tbl_1")
        clock.advance(minutes=1)
        await feeding_engine.update(make_table("tbl_1", "orders", updated_at_ns=clock(), updated_by="user_bob"))

        result = await detector.detect_table_conflicts("proj_1", "tbl_1", Operation.UPDATE)

        assert result.conflicts == []
        assert [(w.type, w.severity) for w in result.warnings] == [(ConflictType.CONCURRENT_EDIT, ConflictSeverity.MEDIUM)]
        assert result.warnings[0].details["modified_by"] == "user_bob"
        assert result.warnings[0].conflicting_actor_id == "user_bob"
        assert result.can_proceed

    @pytest.mark.anyio
    async def test_no_last_seen_entry_means_no_warning(self, detector, feeding_engine, clock):
        await seed(feeding_engine, make_table("tbl_1", "orders", updated_at_ns=clock() + 1, updated_by="user_bob"))
        result = await detector.detect_table_conflicts("proj_1", "tbl_1", Operation.UPDATE)
        assert result.warnings == []

    @pytest.mark.anyio
    async def test_own_modification_is_not_a_conflict(self, detector, feeding_engine, clock):
        await seed(feeding_engine, make_table("tbl_1", "orders"))
        detector.mark_seen(ResourceKind.TABLE, "tbl_1")
        clock.advance(minutes=1)
        await feeding_engine.update(make_table("tbl_1", "orders", updated_at_ns=clock(), updated_by="user_alice"))

        result = await detector.detect_table_conflicts("proj_1", "tbl_1", Operation.UPDATE)
        assert result.warnings == []

    @pytest.mark.anyio
    async def test_field_modified_by_other(self, detector, feeding_engine, clock):
        await seed(feeding_engine, make_table("tbl_1", "orders"), make_field("fld_1", "tbl_1", "total"))
        detector.mark_seen(ResourceKind.FIELD, "fld_1")
        clock.advance(seconds=30)
        await feeding_engine.update(make_field("fld_1", "tbl_1", "total", updated_at_ns=clock(), updated_by="user_bob"))

        result = await detector.detect_field_conflicts("proj_1", "tbl_1", "fld_1", Operation.UPDATE, {"data_type": "decimal"})
        assert [w.type for w in result.warnings] == [ConflictType.CONCURRENT_EDIT]


class TestFieldConflicts:
    @pytest.mark.anyio
    async def test_delete_referenced_field(self, detector, feeding_engine):
        source = make_field("F1", "tbl_1", "customer_id")
        target = make_field("F2", "tbl_2", "id")
        await seed(
            feeding_engine,
            make_table("tbl_1", "orders"),
            make_table("tbl_2", "customers"),
            source,
            target,
            make_relationship("rel_1", source, target),
        )

        result = await detector.detect_field_conflicts("proj_1", "tbl_1", "F1", Operation.DELETE)

        assert [(c.type, c.severity) for c in result.conflicts] == [(ConflictType.RELATIONSHIP_CONFLICT, ConflictSeverity.CRITICAL)]
        assert not result.can_proceed
        assert result.suggested_resolution == ResolutionStrategy.CANCEL_OPERATION

    @pytest.mark.anyio
    async def test_rename_referenced_field(self, detector, feeding_engine):
        source = make_field("F1", "tbl_1", "customer_id")
        target = make_field("F2", "tbl_2", "id")
        await seed(feeding_engine, make_table("tbl_1", "orders"), make_table("tbl_2", "customers"), source, target)
        await seed(feeding_engine, make_relationship("rel_1", source, target))

        result = await detector.detect_field_conflicts("proj_1", "tbl_2", "F2", Operation.UPDATE, {"field_name": "customer_key"})
        assert [c.type for c in result.conflicts] == [ConflictType.RELATIONSHIP_CONFLICT]

        untouched = await detector.detect_field_conflicts("proj_1", "tbl_2", "F2", Operation.UPDATE, {"description": "key"})
        assert untouched.conflicts == []

    @pytest.mark.anyio
    async def test_relabel_referenced_field(self, detector, feeding_engine):
        source = make_field("F1", "tbl_1", "customer_id")
        target = make_field("F2", "tbl_2", "id")
        await seed(feeding_engine, make_table("tbl_1", "orders"), make_table("tbl_2", "customers"), source, target)
        await seed(feeding_engine, make_relationship("rel_1", source, target))

        result = await detector.detect_field_conflicts("proj_1", "tbl_1", "F1", Operation.UPDATE, {"name": "Customer"})

        assert result.conflicts == []
        assert result.can_proceed
        assert result.suggested_resolution is None

    @pytest.mark.anyio
    async def test_duplicate_field_name(self, detector, feeding_engine):
        await seed(feeding_engine, make_table("tbl_1", "orders"), make_field("F1", "tbl_1", "total"))

        result = await detector.detect_field_conflicts("proj_1", "tbl_1", "F_new", Operation.CREATE, {"field_name": "total"})

        assert [(c.type, c.severity) for c in result.conflicts] == [(ConflictType.FIELD_CONFLICT, ConflictSeverity.HIGH)]
        assert result.suggested_resolution == ResolutionStrategy.RENAME_RESOURCE

        other_table = await detector.detect_field_conflicts("proj_1", "tbl_2", "F_new", Operation.CREATE, {"field_name": "total"})
        assert other_table.conflicts == []

    @pytest.mark.anyio
    async def test_parent_table_locked(self, detector, feeding_engine, bob_locks):
        await seed(feeding_engine, make_table("tbl_1", "orders"), make_field("F1", "tbl_1", "total"))
        await bob_locks.acquire("tbl_1", "user_bob", LockKind.OPTIMISTIC, "edit")

        result = await detector.detect_field_conflicts("proj_1", "tbl_1", "F1", Operation.UPDATE)

        assert len(result.conflicts) == 1
        conflict = result.conflicts[0]
        assert conflict.title == "Cannot modify field - table is locked"
        assert conflict.resource_id == "F1"
        assert conflict.resource_kind == ResourceKind.FIELD

    @pytest.mark.anyio
    async def test_missing_field(self, detector, feeding_engine):
        await seed(feeding_engine, make_table("tbl_1", "orders"))
        result = await detector.detect_field_conflicts("proj_1", "tbl_1", "F_gone", Operation.DELETE)
        assert [c.title for c in result.conflicts] == ["Field no longer exists"]


class TestFailureHandling:
    @pytest.mark.anyio
    async def test_unauthenticated_caller(self, engine, clock):
        detector = make_detector(engine, clock, identity=AnonymousIdentity())

        result = await detector.detect_table_conflicts("proj_1", "tbl_1", Operation.DELETE)

        assert [c.type for c in result.conflicts] == [ConflictType.PERMISSION_DENIED]
        assert result.conflicts[0].title == "Not authenticated"
        assert not result.can_proceed

    @pytest.mark.anyio
    async def test_identity_outage_lets_caller_proceed(self, engine, clock, caplog):
        await seed(engine, make_table("tbl_1", "orders"))
        detector = make_detector(engine, clock, identity=UnreachableIdentity())

        result = await detector.detect_table_conflicts("proj_1", "tbl_new", Operation.CREATE, {"table_name": "orders"})

        assert result.conflicts == []
        assert result.warnings == []
        assert result.can_proceed
        assert "identity lookup failed" in caplog.text

        field_result = await detector.detect_field_conflicts("proj_1", "tbl_1", "F1", Operation.DELETE)
        assert field_result.can_proceed

    @pytest.mark.anyio
    async def test_permission_error_in_check(self, engine, clock):
        detector = make_detector(engine, clock, registry=DeniedRegistry(engine))

        result = await detector.detect_table_conflicts("proj_1", "tbl_1", Operation.DELETE)

        assert [(c.type, c.severity) for c in result.conflicts] == [(ConflictType.PERMISSION_DENIED, ConflictSeverity.HIGH)]
        assert result.conflicts[0].details["check"] == "existence"

    @pytest.mark.anyio
    async def test_failing_check_is_skipped(self, engine, clock, caplog):
        source = make_field("F1", "tbl_1", "customer_id")
        target = make_field("F2", "tbl_2", "id")
        await seed(engine, source, target, make_relationship("rel_1", source, target))
        detector = make_detector(engine, clock, registry=FlakyRegistry(engine))

        result = await detector.detect_table_conflicts("proj_1", "tbl_1", Operation.DELETE)

        assert [c.type for c in result.conflicts] == [ConflictType.RELATIONSHIP_CONFLICT]
        assert "Conflict check existence failed" in caplog.text

    @pytest.mark.anyio
    async def test_invalid_operation_raises(self, detector):
        with pytest.raises(ValueError):
            await detector.detect_table_conflicts("proj_1", "tbl_1", "rename")


class TestRealTimeEvents:
    @pytest.mark.anyio
    async def test_lease_events(self, detector, feeding_engine, bob_locks):
        await seed(feeding_engine, make_table("tbl_1", "orders"))
        received = []
        for event_type in (RealTimeEventType.LEASE_ACQUIRED, RealTimeEventType.LEASE_EXTENDED, RealTimeEventType.LEASE_RELEASED):
            detector.add_event_listener(event_type, received.append)
        detector.start()

        lease = await bob_locks.acquire("tbl_1", "user_bob", LockKind.OPTIMISTIC, "edit", project_id="proj_1")
        await bob_locks.extend("tbl_1", "user_bob", lease.lease_token, 10)
        await bob_locks.release("tbl_1", "user_bob", lease.lease_token)

        assert [e.type for e in received] == [
            RealTimeEventType.LEASE_ACQUIRED,
            RealTimeEventType.LEASE_EXTENDED,
            RealTimeEventType.LEASE_RELEASED,
        ]
        assert all(e.resource_id == "tbl_1" and e.actor_id == "user_bob" for e in received)
        assert received[1].payload["after"].expires_at_ns > received[1].payload["before"].expires_at_ns

    @pytest.mark.anyio
    async def test_other_projects_are_ignored(self, detector, feeding_engine):
        received = []
        detector.add_event_listener(RealTimeEventType.RESOURCE_CREATED, received.append)
        detector.start()

        await seed(feeding_engine, make_table("tbl_9", "orders", project_id="proj_2"), make_table("tbl_1", "orders"))

        assert [e.resource_id for e in received] == ["tbl_1"]

    @pytest.mark.anyio
    async def test_delete_forgets_last_seen(self, detector, feeding_engine, last_seen):
        await seed(feeding_engine, make_table("tbl_1", "orders"))
        detector.start()
        detector.mark_seen(ResourceKind.TABLE, "tbl_1")
        assert last_seen.get(ResourceKind.TABLE, "tbl_1") is not None

        deleted = []
        detector.add_event_listener(RealTimeEventType.RESOURCE_DELETED, deleted.append)
        await feeding_engine.delete(DataTableModel, filters=ComparisonFilter.eq("id", "tbl_1"))

        assert [e.resource_id for e in deleted] == ["tbl_1"]
        assert last_seen.get(ResourceKind.TABLE, "tbl_1") is None

    @pytest.mark.anyio
    async def test_failing_listener_does_not_block_others(self, detector, feeding_engine):
        received = []

        def broken(event):
            raise RuntimeError("listener bug")

        detector.add_event_listener(RealTimeEventType.RESOURCE_CREATED, broken)
        detector.add_event_listener(RealTimeEventType.RESOURCE_CREATED, received.append)
        detector.start()

        await seed(feeding_engine, make_table("tbl_1", "orders"))
        assert len(received) == 1

    @pytest.mark.anyio
    async def test_stop_and_unsubscribe(self, detector, feeding_engine, feed):
        received = []
        unsubscribe = detector.add_event_listener(RealTimeEventType.RESOURCE_CREATED, received.append)
        detector.start()
        detector.start()
        assert detector.running
        assert feed.subscriber_count == 1

        unsubscribe()
        await seed(feeding_engine, make_table("tbl_1", "orders"))
        assert received == []

        detector.add_event_listener(RealTimeEventType.RESOURCE_CREATED, received.append)
        detector.stop()
        assert not detector.running
        await seed(feeding_engine, make_table("tbl_2", "invoices"))
        assert received == []
