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

"""Client-local "last seen" timestamps used by the concurrent-edit check.

The cache is advisory: it may be stale, cleared or missing, and a missing
entry simply means no concurrent-edit warning is produced.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from ..storage.models import ResourceKind

logger = logging.getLogger(__name__)


def _key(resource_kind: ResourceKind, resource_id: str) -> str:
    return f"{resource_kind.value}:{resource_id}"


class LastSeenCache(ABC):
    """Maps ``(resource_kind, resource_id)`` to a nanosecond timestamp."""

    @abstractmethod
    def get(self, resource_kind: ResourceKind, resource_id: str) -> int | None: ...

    @abstractmethod
    def set(self, resource_kind: ResourceKind, resource_id: str, seen_at_ns: int) -> None: ...

    @abstractmethod
    def forget(self, resource_kind: ResourceKind, resource_id: str) -> None: ...


class InMemoryLastSeenCache(LastSeenCache):
    def __init__(self) -> None:
        self._entries: dict[str, int] = {}
        self._lock = threading.Lock()

    def get(self, resource_kind: ResourceKind, resource_id: str) -> int | None:
        with self._lock:
            return self._entries.get(_key(resource_kind, resource_id))

    def set(self, resource_kind: ResourceKind, resource_id: str, seen_at_ns: int) -> None:
        with self._lock:
            self._entries[_key(resource_kind, resource_id)] = seen_at_ns

    def forget(self, resource_kind: ResourceKind, resource_id: str) -> None:
        with self._lock:
            self._entries.pop(_key(resource_kind, resource_id), None)

    def __len__(self) -> int:
        return len(self._entries)


class JSONFileLastSeenCache(InMemoryLastSeenCache):
    """Last-seen cache persisted to a JSON object on disk.

    The file is read once on construction and rewritten after every change.
    An unreadable file is logged and treated as empty.
    """

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self._path = Path(path).expanduser()
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable last-seen cache at {self._path}: {e}")
            return
        if not isinstance(data, dict):
            logger.warning(f"Ignoring last-seen cache at {self._path}: root is not an object")
            return
        self._entries = {str(k): int(v) for k, v in data.items() if isinstance(v, int)}

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "w", encoding="utf-8") as f:
            json.dump(self._entries, f, indent=2, sort_keys=True)

    def set(self, resource_kind: ResourceKind, resource_id: str, seen_at_ns: int) -> None:
        with self._lock:
            self._entries[_key(resource_kind, resource_id)] = seen_at_ns
            self._save()

    def forget(self, resource_kind: ResourceKind, resource_id: str) -> None:
        with self._lock:
            if self._entries.pop(_key(resource_kind, resource_id), None) is not None:
                self._save()
