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

"""Unit tests for LeaseKeeper background renewal."""

import asyncio

import pytest

from schemacollab.locking import NS_PER_MINUTE, LeaseKeeper, LockErrorCode
from schemacollab.storage import LockKind


class TestLeaseKeeper:
    @pytest.mark.anyio
    async def test_renews_until_cap(self, lock_manager, clock):
        lease = await lock_manager.acquire("T1", "user_a", LockKind.OPTIMISTIC, "long edit")
        keeper = LeaseKeeper(lock_manager, lease, sleep=clock.sleep)

        keeper.start()
        await keeper.wait()

        assert keeper.last_error is None
        assert keeper.renewals == 15
        assert keeper.lease.expires_at_ns == lease.acquired_at_ns + 480 * NS_PER_MINUTE
        stored = await lock_manager.query("T1")
        assert stored.expires_at_ns == keeper.lease.expires_at_ns

    @pytest.mark.anyio
    async def test_renews_before_expiry(self, lock_manager, clock):
        lease = await lock_manager.acquire("T1", "user_a", LockKind.OPTIMISTIC, "edit")
        sleeps: list[float] = []

        async def recording_sleep(seconds: float) -> None:
            sleeps.append(seconds)
            await clock.sleep(seconds)

        keeper = LeaseKeeper(lock_manager, lease, renew_before_minutes=5, extend_by_minutes=30, sleep=recording_sleep)
        keeper.start()
        await keeper.wait()

        # First renewal fires 5 minutes before the initial 30 minute expiry
        assert sleeps[0] == 25 * 60

    @pytest.mark.anyio
    async def test_stops_when_lease_released(self, lock_manager, clock):
        lease = await lock_manager.acquire("T1", "user_a", LockKind.OPTIMISTIC, "edit")
        await lock_manager.release("T1", "user_a", lease.lease_token)

        keeper = LeaseKeeper(lock_manager, lease, sleep=clock.sleep)
        keeper.start()
        await keeper.wait()

        assert keeper.renewals == 0
        assert keeper.last_error.code == LockErrorCode.NOT_FOUND
        assert not keeper.running

    @pytest.mark.anyio
    async def test_stop_cancels_waiting_keeper(self, lock_manager):
        lease = await lock_manager.acquire("T1", "user_a", LockKind.OPTIMISTIC, "edit")
        keeper = LeaseKeeper(lock_manager, lease)

        keeper.start()
        await asyncio.sleep(0)
        assert keeper.running

        await keeper.stop()
        assert not keeper.running
        assert keeper.renewals == 0

    @pytest.mark.parametrize("extend_by", [0, 121])
    def test_rejects_out_of_range_extension(self, lock_manager, extend_by):
        lease = asyncio.run(lock_manager.acquire("T1", "user_a", LockKind.OPTIMISTIC, "edit"))
        with pytest.raises(ValueError):
            LeaseKeeper(lock_manager, lease, extend_by_minutes=extend_by)
