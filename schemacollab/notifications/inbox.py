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

"""Bounded per-session notification inbox."""

from __future__ import annotations

import threading
from collections import deque
from typing import TYPE_CHECKING

from .types import Notification

if TYPE_CHECKING:
    from ..storage.change_feed import Unsubscribe
    from .dispatcher import NotificationDispatcher

DEFAULT_CAPACITY = 50


class NotificationInbox:
    """Ring buffer of the most recent notifications, newest first.

    When full, the oldest notification is dropped. The inbox is local to one
    session and never synchronised with other clients.

    Example:
        >>> inbox = NotificationInbox(dispatcher, capacity=50)
        >>> dispatcher.create_notification(NotificationType.INFO, "Saved", "Table saved")
        >>> inbox.unread_count
        1
    """

    def __init__(self, dispatcher: NotificationDispatcher | None = None, *, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._items: deque[Notification] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._unsubscribe: Unsubscribe | None = None
        if dispatcher is not None:
            self.attach(dispatcher)

    @property
    def capacity(self) -> int:
        return self._items.maxlen or DEFAULT_CAPACITY

    def attach(self, dispatcher: NotificationDispatcher) -> None:
        """Start receiving notifications from ``dispatcher``."""
        self.detach()
        self._unsubscribe = dispatcher.add_listener(self.add)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def add(self, notification: Notification) -> None:
        with self._lock:
            self._items.appendleft(notification)

    def items(self) -> list[Notification]:
        with self._lock:
            return list(self._items)

    def get(self, notification_id: str) -> Notification | None:
        with self._lock:
            return next((n for n in self._items if n.id == notification_id), None)

    def mark_read(self, notification_id: str) -> bool:
        """Mark one notification read. Returns False if it is not in the inbox."""
        with self._lock:
            for notification in self._items:
                if notification.id == notification_id:
                    notification.read = True
                    return True
        return False

    def mark_all_read(self, *, include_persistent: bool = False) -> int:
        """Mark every unread notification read.

        Persistent notifications are skipped unless ``include_persistent``.

        Returns:
            Number of notifications marked
        """
        marked = 0
        with self._lock:
            for notification in self._items:
                if notification.read or (notification.persistent and not include_persistent):
                    continue
                notification.read = True
                marked += 1
        return marked

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    @property
    def unread_count(self) -> int:
        with self._lock:
            return sum(1 for n in self._items if not n.read)

    def __len__(self) -> int:
        return len(self._items)
