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

"""Lease-based table lock manager.

This module provides LockManager, which stores leases through a
DatabaseEngine. A lease gives one owner exclusive write intent on a resource
until it expires. Expired leases are never marked invalid: they age out and
are reclaimed by the next acquirer or by the background sweep.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import TYPE_CHECKING

from ..config import LockSettings
from ..storage.id_generator import generate_lease_id, generate_lease_token
from ..storage.models import LeaseModel, LockKind
from ..storage.orm import AndFilter, ComparisonFilter, ConstraintViolationError
from ..storage.orm.filters import Filter
from .errors import LockError, LockErrorCode, LockFailedError
from .lease_keeper import LeaseKeeper

if TYPE_CHECKING:
    from ..conflicts.registry import ResourceRegistry
    from ..storage.orm import DatabaseEngine

logger = logging.getLogger(__name__)

NS_PER_MINUTE = 60 * 1_000_000_000

LOCK_DESCRIPTIONS: dict[LockKind, str] = {
    LockKind.OPTIMISTIC: "Short-term lock for field edits (30 minutes default)",
    LockKind.PESSIMISTIC: "Long-term lock for schema changes (2 hours default)",
    LockKind.CRITICAL: "Lock for breaking changes (4 hours default)",
}


def calculate_expires_at_ns(
    kind: LockKind,
    acquired_at_ns: int,
    duration_minutes: int | None = None,
    *,
    settings: LockSettings | None = None,
) -> int:
    """Expiry of a lease acquired at ``acquired_at_ns``.

    The requested duration (or the kind default) is capped at the maximum
    lease duration.
    """
    settings = settings or LockSettings()
    minutes = duration_minutes or settings.default_duration(kind)
    return acquired_at_ns + min(minutes, settings.max_duration_minutes) * NS_PER_MINUTE


def time_remaining(lease: LeaseModel, now_ns: int | None = None) -> timedelta:
    """Time left before ``lease`` expires, never negative."""
    now = time.time_ns() if now_ns is None else now_ns
    remaining_ns = max(0, lease.expires_at_ns - now)
    return timedelta(microseconds=remaining_ns // 1000)


def format_time_remaining(lease: LeaseModel, now_ns: int | None = None) -> str:
    """Render the remaining lease time as ``"1h 5m"``, ``"12m"`` or ``"Expired"``."""
    remaining = time_remaining(lease, now_ns)
    if remaining <= timedelta(0):
        return "Expired"
    total_minutes = int(remaining.total_seconds() // 60)
    hours, minutes = divmod(total_minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def _lease_filter(resource_id: str, lease_token: str) -> Filter:
    return AndFilter(
        filters=[
            ComparisonFilter.eq("resource_id", resource_id),
            ComparisonFilter.eq("lease_token", lease_token),
        ]
    )


class LockManager:
    """Acquire, extend and release leases on schema resources.

    Features:
    - Uses DatabaseEngine for storage (works with any engine)
    - At most one valid lease per resource, enforced by the primary key on
      ``resource_id``: of N concurrent acquirers exactly one insert wins
    - Extension is a compare-and-set on the current expiry, so a lease that
      was released and re-acquired is never resurrected
    - Business failures are returned as ``LockError`` values, not raised
    - Optional background sweep removes expired rows

    Example:
        >>> engine = InMemoryDatabaseEngine()
        >>> manager = LockManager(engine=engine)
        >>> result = await manager.acquire("tbl_1", "user_1", LockKind.PESSIMISTIC, "schema edit")
        >>> if isinstance(result, LockError):
        ...     print(result.code, result.details)
    """

    def __init__(
        self,
        *,
        engine: DatabaseEngine,
        settings: LockSettings | None = None,
        registry: ResourceRegistry | None = None,
        clock: Callable[[], int] = time.time_ns,
    ):
        """Initialize the lock manager.

        Args:
            engine: DatabaseEngine instance for lease storage
            settings: Durations and limits (defaults: 30/120/240 min, max 480)
            registry: When given, ``acquire`` checks that the table exists
            clock: Nanosecond epoch clock, injectable for tests
        """
        self._engine = engine
        self._settings = settings or LockSettings()
        self._registry = registry
        self._clock = clock
        self._sweep_task: asyncio.Task[None] | None = None
        self._sweep_lock = asyncio.Lock()
        self._initialized = False

    @property
    def settings(self) -> LockSettings:
        return self._settings

    def now_ns(self) -> int:
        return self._clock()

    def max_expires_at_ns(self, lease: LeaseModel) -> int:
        """Absolute expiry cap of ``lease``."""
        return lease.acquired_at_ns + self._settings.max_duration_minutes * NS_PER_MINUTE

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            logger.debug("Initializing LockManager database models")
            await self._engine.setup_models([LeaseModel])
            self._initialized = True

    async def _find(self, resource_id: str) -> LeaseModel | None:
        return await self._engine.find_first(LeaseModel, filters=ComparisonFilter.eq("resource_id", resource_id))

    def _validate(self, kind: LockKind | str, reason: str, duration_minutes: int | None) -> list[str]:
        errors: list[str] = []
        try:
            LockKind(kind)
        except ValueError:
            errors.append(f"Invalid lock type: {kind}")

        if not reason or not reason.strip():
            errors.append("Lock reason is required")
        elif len(reason.strip()) > self._settings.max_reason_length:
            errors.append(f"Lock reason must be {self._settings.max_reason_length} characters or less")

        if duration_minutes is not None:
            if duration_minutes <= 0:
                errors.append("Lock duration must be positive")
            if duration_minutes > self._settings.max_duration_minutes:
                errors.append(f"Lock duration cannot exceed {self._settings.max_duration_minutes} minutes")
        return errors

    def _already_locked(self, lease: LeaseModel | None, owner_id: str) -> LockError:
        if lease is None:
            # The winner of a race released before we could read it back
            return LockError(LockErrorCode.ALREADY_LOCKED, "Table is already locked by another user", {"is_own_lock": False})
        is_own_lock = lease.owner_id == owner_id
        holder = "you" if is_own_lock else "another user"
        return LockError(
            LockErrorCode.ALREADY_LOCKED,
            f"Table is already locked by {holder}",
            {
                "lease_id": lease.lease_id,
                "kind": lease.kind,
                "expires_at": lease.expires_at,
                "is_own_lock": is_own_lock,
            },
        )

    async def _check_table(self, resource_id: str, project_id: str | None) -> LockError | None:
        if self._registry is None:
            return None
        table = await self._registry.get_table(resource_id)
        if table is None or (project_id is not None and table.project_id != project_id):
            logger.info(f"Lock rejected: table not found resource={resource_id}, project={project_id}")
            return LockError.not_found("Table not found or access denied", resource_id=resource_id)
        return None

    async def acquire(
        self,
        resource_id: str,
        owner_id: str,
        kind: LockKind | str,
        reason: str,
        duration_minutes: int | None = None,
        *,
        project_id: str | None = None,
    ) -> LeaseModel | LockError:
        """Acquire a lease on ``resource_id``.

        Args:
            resource_id: Resource (table) identifier
            owner_id: Acquiring actor
            kind: Lease kind; selects the default duration
            reason: Non-empty justification, stored stripped
            duration_minutes: Optional explicit duration, at most the max duration
            project_id: Project the resource belongs to

        Returns:
            The new lease, or a LockError:
            - INVALID_REQUEST with every validation failure in ``details["errors"]``
            - NOT_FOUND if a registry is configured and the table does not exist
            - ALREADY_LOCKED if a valid lease exists, even one held by ``owner_id``
            - UNEXPECTED on storage failure
        """
        errors = self._validate(kind, reason, duration_minutes)
        if errors:
            logger.info(f"Invalid lock request for resource={resource_id}, owner={owner_id}: {errors}")
            return LockError.invalid_request(errors)
        kind = LockKind(kind)

        try:
            await self._ensure_initialized()
            not_found = await self._check_table(resource_id, project_id)
            if not_found is not None:
                return not_found

            now = self._clock()
            existing = await self._find(resource_id)
            if existing is not None and existing.is_valid(now):
                logger.info(f"Lock acquisition failed: resource={resource_id} already locked by owner={existing.owner_id}")
                return self._already_locked(existing, owner_id)

            if existing is not None:
                # Reclaim only if still expired; a fresh lease from a racing acquirer survives
                reclaimed = await self._engine.delete(
                    LeaseModel,
                    filters=AndFilter(
                        filters=[
                            ComparisonFilter.eq("resource_id", resource_id),
                            ComparisonFilter.lte("expires_at_ns", now),
                        ]
                    ),
                )
                if reclaimed:
                    logger.debug(f"Reclaimed expired lease for resource={resource_id}, owner={existing.owner_id}")

            lease = LeaseModel(
                resource_id=resource_id,
                lease_id=generate_lease_id(),
                lease_token=generate_lease_token(),
                owner_id=owner_id,
                project_id=project_id,
                kind=kind,
                reason=reason.strip(),
                acquired_at_ns=now,
                expires_at_ns=calculate_expires_at_ns(kind, now, duration_minutes, settings=self._settings),
            )
            try:
                await self._engine.create(lease)
            except ConstraintViolationError:
                logger.info(f"Lock race lost for resource={resource_id}, owner={owner_id}")
                return self._already_locked(await self._find(resource_id), owner_id)
        except Exception as e:
            logger.exception(f"Unexpected error acquiring lock for resource={resource_id}, owner={owner_id}")
            return LockError.unexpected("acquiring lock", e)

        logger.info(f"Lock acquired for resource={resource_id}, owner={owner_id}, lease={lease.lease_id}, kind={kind.value}")
        return lease

    async def release(self, resource_id: str, owner_id: str, lease_token: str) -> LockError | None:
        """Release a lease held by ``owner_id``.

        Returns:
            None on success, or a LockError:
            - NOT_FOUND if no lease matches ``(resource_id, lease_token)``
            - FORBIDDEN if the lease belongs to another owner
            - UNEXPECTED on storage failure
        """
        try:
            await self._ensure_initialized()
            lease = await self._engine.find_first(LeaseModel, filters=_lease_filter(resource_id, lease_token))
            if lease is None:
                logger.info(f"Release failed: lock not found for resource={resource_id}, owner={owner_id}")
                return LockError.not_found()
            if lease.owner_id != owner_id:
                logger.info(f"Release refused: resource={resource_id} owned by {lease.owner_id}, requested by {owner_id}")
                return LockError.forbidden("You can only release your own locks", owner_id=lease.owner_id)

            deleted = await self._engine.delete(LeaseModel, filters=_lease_filter(resource_id, lease_token))
        except Exception as e:
            logger.exception(f"Unexpected error releasing lock for resource={resource_id}, owner={owner_id}")
            return LockError.unexpected("releasing lock", e)

        if deleted == 0:
            logger.info(f"Release failed: lock vanished for resource={resource_id}, owner={owner_id}")
            return LockError.not_found()
        logger.info(f"Lock released for resource={resource_id}, owner={owner_id}, lease={lease.lease_id}")
        return None

    async def extend(
        self,
        resource_id: str,
        owner_id: str,
        lease_token: str,
        additional_minutes: int,
    ) -> LeaseModel | LockError:
        """Push the expiry of a held lease forward.

        The new expiry is ``min(expires_at + additional, acquired_at + max duration)``.

        Returns:
            The updated lease, or a LockError:
            - INVALID_REQUEST if ``additional_minutes`` is outside (0, max extension]
            - NOT_FOUND / FORBIDDEN as for ``release`` (ownership is checked first)
            - LOCK_EXPIRED if the lease expired, or changed before the write landed
            - UNEXPECTED on storage failure
        """
        max_extension = self._settings.max_extension_minutes
        if not 0 < additional_minutes <= max_extension:
            return LockError.invalid_request([f"Additional minutes must be between 1 and {max_extension}"])

        try:
            await self._ensure_initialized()
            lease = await self._engine.find_first(LeaseModel, filters=_lease_filter(resource_id, lease_token))
            if lease is None:
                logger.info(f"Extend failed: lock not found for resource={resource_id}, owner={owner_id}")
                return LockError.not_found()
            if lease.owner_id != owner_id:
                logger.info(f"Extend refused: resource={resource_id} owned by {lease.owner_id}, requested by {owner_id}")
                return LockError.forbidden("You can only extend your own locks", owner_id=lease.owner_id)

            now = self._clock()
            if not lease.is_valid(now):
                logger.info(f"Extend failed: lock expired for resource={resource_id}, owner={owner_id}")
                return LockError.expired()

            new_expires_at_ns = min(
                lease.expires_at_ns + additional_minutes * NS_PER_MINUTE,
                self.max_expires_at_ns(lease),
            )
            extended = LeaseModel.model_validate({**lease.model_dump(), "expires_at_ns": new_expires_at_ns})
            updated = await self._engine.update_where(
                extended,
                filters=AndFilter(
                    filters=[
                        ComparisonFilter.eq("resource_id", resource_id),
                        ComparisonFilter.eq("lease_token", lease_token),
                        ComparisonFilter.eq("expires_at_ns", lease.expires_at_ns),
                    ]
                ),
            )
        except Exception as e:
            logger.exception(f"Unexpected error extending lock for resource={resource_id}, owner={owner_id}")
            return LockError.unexpected("extending lock", e)

        if updated is None:
            logger.info(f"Extend lost a concurrent update for resource={resource_id}, owner={owner_id}")
            return LockError.expired("Lock changed before it could be extended")
        logger.info(f"Lock extended for resource={resource_id}, owner={owner_id}, expires_at={updated.expires_at.isoformat()}")
        return updated

    async def query(self, resource_id: str, *, now_ns: int | None = None) -> LeaseModel | None:
        """Return the valid lease on ``resource_id``, if any. Never mutates.

        Args:
            now_ns: Evaluate validity at this instant instead of the clock
        """
        await self._ensure_initialized()
        lease = await self._find(resource_id)
        now = self._clock() if now_ns is None else now_ns
        if lease is None or not lease.is_valid(now):
            return None
        return lease

    async def list_active(self, *, project_id: str | None = None) -> list[LeaseModel]:
        """Valid leases, newest first, optionally restricted to a project."""
        await self._ensure_initialized()
        filters: list[Filter] = [ComparisonFilter.gt("expires_at_ns", self._clock())]
        if project_id is not None:
            filters.append(ComparisonFilter.eq("project_id", project_id))
        return await self._engine.find_many(LeaseModel, filters=AndFilter(filters=filters), order_by="-acquired_at_ns")

    async def cleanup_expired(self) -> int:
        """Delete expired lease rows.

        Returns:
            Number of leases removed
        """
        await self._ensure_initialized()
        count = await self._engine.delete(LeaseModel, filters=ComparisonFilter.lte("expires_at_ns", self._clock()))
        if count > 0:
            logger.info(f"Cleaned up {count} expired lease(s)")
        return count

    async def start_sweeper(self, interval_seconds: float | None = None) -> None:
        """Start the background sweep task if it is not running."""
        interval = interval_seconds or self._settings.sweep_interval_seconds
        async with self._sweep_lock:
            if self._sweep_task is None or self._sweep_task.done():
                logger.debug(f"Starting lease sweep task, interval={interval}s")
                self._sweep_task = asyncio.create_task(self._sweep_loop(interval))

    async def _sweep_loop(self, interval: float) -> None:
        try:
            while True:
                await asyncio.sleep(interval)
                try:
                    await self.cleanup_expired()
                except Exception:
                    logger.exception("Lease sweep failed")
        except asyncio.CancelledError:
            pass

    @property
    def sweeping(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def stop(self) -> None:
        """Stop the sweep task."""
        if self._sweep_task and not self._sweep_task.done():
            logger.info("Stopping lease sweep task")
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
        self._sweep_task = None

    @asynccontextmanager
    async def hold(
        self,
        resource_id: str,
        owner_id: str,
        kind: LockKind | str,
        reason: str,
        duration_minutes: int | None = None,
        *,
        project_id: str | None = None,
        keep_alive: bool = False,
    ) -> AsyncGenerator[LeaseModel, None]:
        """Hold a lease for the duration of a block.

        Args:
            keep_alive: Renew the lease in the background with a LeaseKeeper

        Yields:
            The acquired lease

        Raises:
            LockFailedError: If the lease cannot be acquired
        """
        result = await self.acquire(resource_id, owner_id, kind, reason, duration_minutes, project_id=project_id)
        if isinstance(result, LockError):
            raise LockFailedError(result)

        keeper: LeaseKeeper | None = None
        if keep_alive:
            keeper = LeaseKeeper(self, result)
            keeper.start()

        try:
            yield result
        finally:
            token = result.lease_token
            if keeper is not None:
                await keeper.stop()
                token = keeper.lease.lease_token
            error = await self.release(resource_id, owner_id, token)
            if error is not None:
                logger.warning(f"Lock was already released or taken over for resource={resource_id}, owner={owner_id}: {error.code.value}")
