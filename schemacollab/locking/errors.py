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

"""Typed lock errors.

Lock operations return a ``LockError`` value for every failure instead of
raising, so callers can branch on ``code`` and render ``details`` without
parsing messages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class LockErrorCode(str, Enum):
    INVALID_REQUEST = "invalid_request"
    ALREADY_LOCKED = "already_locked"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    LOCK_EXPIRED = "lock_expired"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class LockError:
    """Failure result of a lock operation.

    Attributes:
        code: Failure class
        message: Human readable summary
        details: Structured payload, e.g. ``{"is_own_lock": False}`` for
            ALREADY_LOCKED or ``{"errors": [...]}`` for INVALID_REQUEST
    """

    code: LockErrorCode
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def retryable(self) -> bool:
        """Only infrastructure failures are safe to retry unchanged."""
        return self.code == LockErrorCode.UNEXPECTED

    @classmethod
    def invalid_request(cls, errors: list[str]) -> LockError:
        return cls(LockErrorCode.INVALID_REQUEST, "Invalid lock request", {"errors": errors})

    @classmethod
    def not_found(cls, message: str = "Lock not found", **details: Any) -> LockError:
        return cls(LockErrorCode.NOT_FOUND, message, details)

    @classmethod
    def forbidden(cls, message: str, **details: Any) -> LockError:
        return cls(LockErrorCode.FORBIDDEN, message, details)

    @classmethod
    def expired(cls, message: str = "Cannot extend expired lock", **details: Any) -> LockError:
        return cls(LockErrorCode.LOCK_EXPIRED, message, details)

    @classmethod
    def unexpected(cls, operation: str, error: BaseException) -> LockError:
        return cls(
            LockErrorCode.UNEXPECTED,
            f"Unexpected error occurred while {operation}",
            {"error": repr(error)},
        )


class LockFailedError(Exception):
    """Raised by ``LockManager.hold()`` when the lease cannot be acquired."""

    def __init__(self, error: LockError) -> None:
        super().__init__(f"{error.code.value}: {error.message}")
        self.error = error
