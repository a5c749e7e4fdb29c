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

"""Lease (table lock) data model."""

from __future__ import annotations

import time
from datetime import UTC, datetime

from sqlmodel import Field, SQLModel

from .types import LockKind


def ns_to_datetime(value_ns: int) -> datetime:
    """Convert a nanosecond epoch timestamp to an aware UTC datetime."""
    return datetime.fromtimestamp(value_ns / 1_000_000_000, tz=UTC)


class LeaseModel(SQLModel, table=True):
    """Time-bounded exclusive claim on a resource.

    Lock key: resource_id
    - The primary key is the storage-level uniqueness constraint: at most one
      lease row exists per resource, so two concurrent inserts cannot both win
    - An expired row is reclaimed by the next acquirer or by the sweep

    Expiration-based locking:
    - Lease is valid while expires_at_ns > current time
    - Extension only ever moves expires_at_ns forward
    - Nothing marks a lease invalid; it ages out

    Attributes:
        resource_id: Locked resource, a table identifier (primary key)
        lease_id: Opaque lease identifier, e.g. "lease_01HQZX3Y4K5M6N7P8Q9R0S1T2V"
        lease_token: Secret presented by the owner to release or extend
        owner_id: Actor holding the lease
        project_id: Project the resource belongs to (optional)
        kind: Lease kind (optimistic | pessimistic | critical)
        reason: Free-text justification, at most 200 characters
        acquired_at_ns: Nanosecond timestamp when the lease was acquired
        expires_at_ns: Nanosecond timestamp when the lease expires
    """

    __tablename__ = "table_locks"  # type: ignore[assignment]

    resource_id: str = Field(primary_key=True)
    lease_id: str = Field(index=True)
    lease_token: str
    owner_id: str = Field(index=True)
    project_id: str | None = Field(default=None, index=True)
    kind: LockKind = Field(default=LockKind.OPTIMISTIC)
    reason: str = ""
    acquired_at_ns: int = Field(default_factory=time.time_ns)
    expires_at_ns: int = Field(default_factory=time.time_ns)

    @property
    def acquired_at(self) -> datetime:
        return ns_to_datetime(self.acquired_at_ns)

    @property
    def expires_at(self) -> datetime:
        return ns_to_datetime(self.expires_at_ns)

    def is_valid(self, now_ns: int) -> bool:
        """True while the lease has not expired at ``now_ns``."""
        return self.expires_at_ns > now_ns
