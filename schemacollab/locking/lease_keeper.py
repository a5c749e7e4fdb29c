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

"""Background renewal of a held lease."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from ..storage.models import LeaseModel
from .errors import LockError

if TYPE_CHECKING:
    from .lock_manager import LockManager

logger = logging.getLogger(__name__)


class LeaseKeeper:
    """Keep a lease alive while its owner is working.

    The keeper sleeps until the lease has less than ``renew_before_minutes``
    left, then extends it by ``extend_by_minutes``. It stops on its own once
    the lease reaches its absolute cap or an extension fails; the failure is
    kept in ``last_error``.

    Example:
        >>> keeper = LeaseKeeper(manager, lease)
        >>> keeper.start()
        >>> ...
        >>> await keeper.stop()
    """

    def __init__(
        self,
        lock_manager: LockManager,
        lease: LeaseModel,
        *,
        renew_before_minutes: float | None = None,
        extend_by_minutes: int = 30,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if renew_before_minutes is None:
            renew_before_minutes = lock_manager.settings.renew_before_minutes
        if extend_by_minutes <= 0 or extend_by_minutes > lock_manager.settings.max_extension_minutes:
            raise ValueError(f"extend_by_minutes must be in (0, {lock_manager.settings.max_extension_minutes}], got {extend_by_minutes}")

        self._manager = lock_manager
        self._lease = lease
        self._renew_before_ns = int(renew_before_minutes * 60 * 1_000_000_000)
        self._extend_by_minutes = extend_by_minutes
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None
        self.last_error: LockError | None = None
        self.renewals = 0

    @property
    def lease(self) -> LeaseModel:
        """The most recent version of the kept lease."""
        return self._lease

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._renew_loop())

    async def wait(self) -> None:
        """Wait for the keeper to stop on its own."""
        if self._task is not None:
            await self._task

    async def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def _renew_loop(self) -> None:
        lease = self._lease
        logger.debug(f"Starting lease renewal for resource={lease.resource_id}, lease={lease.lease_id}")
        try:
            while True:
                lease = self._lease
                if lease.expires_at_ns >= self._manager.max_expires_at_ns(lease):
                    logger.info(f"Lease renewal stopped: resource={lease.resource_id} reached its maximum duration")
                    return

                wait_ns = lease.expires_at_ns - self._manager.now_ns() - self._renew_before_ns
                if wait_ns > 0:
                    await self._sleep(wait_ns / 1_000_000_000)

                result = await self._manager.extend(
                    lease.resource_id,
                    lease.owner_id,
                    lease.lease_token,
                    self._extend_by_minutes,
                )
                if isinstance(result, LockError):
                    self.last_error = result
                    logger.warning(f"Lease renewal stopped for resource={lease.resource_id}: {result.code.value} ({result.message})")
                    return

                self._lease = result
                self.renewals += 1
                logger.debug(f"Lease renewed for resource={lease.resource_id}, expires_at={result.expires_at.isoformat()}")
        except asyncio.CancelledError:
            logger.debug(f"Lease renewal cancelled for resource={lease.resource_id}")
            raise
