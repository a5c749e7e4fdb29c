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

"""Notification types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ..conflicts.types import ConflictSeverity
from ..storage.id_generator import generate_notification_id


class NotificationType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    CONFLICT = "conflict"


class ActionVariant(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    DESTRUCTIVE = "destructive"


@dataclass(frozen=True)
class NotificationAction:
    """A choice offered to the user. The view layer maps ``action_id`` to behavior."""

    label: str
    action_id: str
    variant: ActionVariant = ActionVariant.SECONDARY


@dataclass
class Notification:
    """A user-facing message owned by the local session.

    Persistent notifications stay unread until explicitly acknowledged.
    """

    type: NotificationType
    title: str
    message: str
    severity: ConflictSeverity | None = None
    persistent: bool = False
    actions: list[NotificationAction] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    read: bool = False
    id: str = field(default_factory=generate_notification_id)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def action_ids(self) -> list[str]:
        return [action.action_id for action in self.actions]
