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

"""Caller identity as seen by the coordination layer.

Authentication is handled elsewhere; this module only defines the narrow
interface used to ask "who is acting".
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class Actor:
    id: str
    email: str | None = None
    display_name: str | None = None

    @property
    def label(self) -> str:
        """Best human readable name for messages."""
        return self.display_name or self.email or self.id


class IdentityProvider(ABC):
    @abstractmethod
    def current_actor(self) -> Actor:
        """Return the acting user.

        Raises:
            PermissionError: If no user is authenticated
        """
        ...


class StaticIdentityProvider(IdentityProvider):
    """Identity provider that always returns the same actor."""

    def __init__(self, actor: Actor | str):
        self._actor = Actor(id=actor) if isinstance(actor, str) else actor

    def current_actor(self) -> Actor:
        return self._actor
