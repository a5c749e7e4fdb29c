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

"""Shared enums for stored records."""

from __future__ import annotations

from enum import Enum


class LockKind(str, Enum):
    """Lease kind. Determines the default duration of a lease."""

    OPTIMISTIC = "optimistic"
    PESSIMISTIC = "pessimistic"
    CRITICAL = "critical"


class ResourceKind(str, Enum):
    """Kinds of records a lease, conflict or change event can refer to."""

    LEASE = "lease"
    TABLE = "table"
    FIELD = "field"
    RELATIONSHIP = "relationship"
