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

"""ID generation utilities using ULID with type prefixes.

Format: {prefix}_{ULID}
Example: lease_01HQZX3Y4K5M6N7P8Q9R0S1T2V

Lease tokens are not identifiers: they are unguessable secrets and use uuid4.
"""

from __future__ import annotations

import uuid

from ulid import ULID


def generate_lease_id() -> str:
    """Generate a lease ID with 'lease_' prefix."""
    return f"lease_{ULID()}"


def generate_lease_token() -> str:
    """Generate a lease token (32 hex chars)."""
    return uuid.uuid4().hex


def generate_conflict_id() -> str:
    """Generate a conflict ID with 'conf_' prefix."""
    return f"conf_{ULID()}"


def generate_event_id() -> str:
    """Generate a real-time event ID with 'evt_' prefix."""
    return f"evt_{ULID()}"


def generate_notification_id() -> str:
    """Generate a notification ID with 'ntf_' prefix."""
    return f"ntf_{ULID()}"
