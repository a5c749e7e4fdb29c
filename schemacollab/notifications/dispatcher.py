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

"""Notification fan-out.

NotificationDispatcher builds notifications from conflicts and detection
results and delivers them to every registered listener. Listeners are
called synchronously in registration order; one failing listener is logged
and does not prevent delivery to the others.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from ..conflicts.types import Conflict, ConflictDetectionResult, ConflictSeverity, ConflictType, ResolutionStrategy
from ..storage.change_feed import Unsubscribe
from .types import ActionVariant, Notification, NotificationAction, NotificationType

logger = logging.getLogger(__name__)

NotificationListener = Callable[[Notification], None]

CANCEL_ACTION = NotificationAction("Cancel", "cancel", ActionVariant.SECONDARY)

_RESOLUTION_ACTIONS: dict[ResolutionStrategy, NotificationAction] = {
    ResolutionStrategy.REQUEST_LOCK: NotificationAction("Request Lock", "request_lock", ActionVariant.PRIMARY),
    ResolutionStrategy.RENAME_RESOURCE: NotificationAction("Rename", "rename", ActionVariant.PRIMARY),
    ResolutionStrategy.MERGE_CHANGES: NotificationAction("Merge Changes", "merge_changes", ActionVariant.PRIMARY),
    ResolutionStrategy.SAVE_AS_COPY: NotificationAction("Save as Copy", "save_as_copy", ActionVariant.SECONDARY),
    ResolutionStrategy.FORCE_OVERRIDE: NotificationAction("Force Override", "force_override", ActionVariant.DESTRUCTIVE),
}


def conflict_actions(conflict: Conflict) -> list[NotificationAction]:
    """Actions offered for a conflict. The last one is always "Cancel"."""
    actions: list[NotificationAction] = []
    match conflict.type:
        case ConflictType.RESOURCE_LOCKED:
            if conflict.details.get("is_own_lock"):
                actions.append(NotificationAction("Proceed", "proceed", ActionVariant.PRIMARY))
            else:
                actions.append(NotificationAction("Request Lock", "request_lock", ActionVariant.PRIMARY))
        case ConflictType.SCHEMA_MODIFIED | ConflictType.FIELD_CONFLICT:
            actions.append(NotificationAction("Rename", "rename", ActionVariant.PRIMARY))
        case ConflictType.RELATIONSHIP_CONFLICT:
            actions.append(NotificationAction("View Relationships", "view_relationships", ActionVariant.PRIMARY))
        case ConflictType.CONCURRENT_EDIT:
            actions.append(NotificationAction("Review Changes", "review_changes", ActionVariant.PRIMARY))
            actions.append(NotificationAction("Proceed Anyway", "proceed_anyway", ActionVariant.SECONDARY))
        case ConflictType.RESOURCE_DELETED:
            actions.append(NotificationAction("Reload", "reload", ActionVariant.PRIMARY))
        case _:
            pass
    actions.append(CANCEL_ACTION)
    return actions


class NotificationDispatcher:
    """Stateless fan-out of notifications to listeners."""

    def __init__(self) -> None:
        self._listeners: list[NotificationListener] = []
        self._lock = threading.Lock()

    def add_listener(self, listener: NotificationListener) -> Unsubscribe:
        """Register a listener.

        Returns:
            A callable removing the listener. Calling it twice is a no-op.
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def notify(self, notification: Notification) -> int:
        """Deliver ``notification`` to every listener.

        Returns:
            Number of listeners that accepted it without raising
        """
        with self._lock:
            listeners = list(self._listeners)

        delivered = 0
        for listener in listeners:
            try:
                listener(notification)
                delivered += 1
            except Exception:
                logger.exception(f"Notification listener failed for notification={notification.id}")
        return delivered

    def create_notification(
        self,
        type: NotificationType,
        title: str,
        message: str,
        *,
        severity: ConflictSeverity | None = None,
        persistent: bool = False,
        actions: list[NotificationAction] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Notification:
        """Build a notification, dispatch it and return it."""
        notification = Notification(
            type=type,
            title=title,
            message=message,
            severity=severity,
            persistent=persistent,
            actions=list(actions or []),
            metadata=dict(metadata or {}),
        )
        self.notify(notification)
        return notification

    def notify_conflict(self, conflict: Conflict) -> Notification:
        """Dispatch a notification describing one conflict.

        Critical conflicts produce persistent notifications.
        """
        return self.create_notification(
            NotificationType.CONFLICT,
            conflict.title,
            conflict.description,
            severity=conflict.severity,
            persistent=conflict.severity == ConflictSeverity.CRITICAL,
            actions=conflict_actions(conflict),
            metadata={"conflict": conflict},
        )

    def notify_resolution(self, result: ConflictDetectionResult) -> Notification:
        """Dispatch one summary notification for a detection result."""
        severity = result.highest_severity
        metadata: dict[str, Any] = {"result": result}

        if result.can_proceed and not result.warnings:
            return self.create_notification(
                NotificationType.SUCCESS,
                "No conflicts detected",
                "The operation can proceed.",
                metadata=metadata,
            )

        if result.can_proceed:
            return self.create_notification(
                NotificationType.WARNING,
                "Proceed with caution",
                f"{len(result.warnings)} warning(s) found. The operation can proceed.",
                severity=severity,
                actions=[NotificationAction("Proceed", "proceed", ActionVariant.PRIMARY), CANCEL_ACTION],
                metadata=metadata,
            )

        actions: list[NotificationAction] = []
        suggestion = result.suggested_resolution
        if suggestion is not None and suggestion in _RESOLUTION_ACTIONS:
            actions.append(_RESOLUTION_ACTIONS[suggestion])
        actions.append(CANCEL_ACTION)
        message = f"{len(result.conflicts)} conflict(s) block this operation."
        if suggestion is not None:
            message += f" Suggested resolution: {suggestion.value.replace('_', ' ')}."
        return self.create_notification(
            NotificationType.CONFLICT,
            "Operation blocked",
            message,
            severity=severity,
            persistent=severity == ConflictSeverity.CRITICAL,
            actions=actions,
            metadata=metadata,
        )
