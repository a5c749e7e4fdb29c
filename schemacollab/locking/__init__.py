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

"""Lease-based locking of schema resources."""

from .errors import LockError, LockErrorCode, LockFailedError
from .lease_keeper import LeaseKeeper
from .lock_manager import (
    LOCK_DESCRIPTIONS,
    NS_PER_MINUTE,
    LockManager,
    calculate_expires_at_ns,
    format_time_remaining,
    time_remaining,
)

__all__ = [
    "LockManager",
    "LeaseKeeper",
    "LockError",
    "LockErrorCode",
    "LockFailedError",
    "LOCK_DESCRIPTIONS",
    "NS_PER_MINUTE",
    "calculate_expires_at_ns",
    "format_time_remaining",
    "time_remaining",
]
