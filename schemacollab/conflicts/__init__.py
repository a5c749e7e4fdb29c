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

"""Conflict detection and resolution advice for schema mutations."""

from .detector import ConflictDetector, RealTimeListener
from .last_seen import InMemoryLastSeenCache, JSONFileLastSeenCache, LastSeenCache
from .registry import EngineResourceRegistry, ResourceRegistry
from .resolution import available_resolutions, suggest_resolution
from .types import (
    Conflict,
    ConflictDetectionResult,
    ConflictSeverity,
    ConflictType,
    Operation,
    RealTimeEvent,
    RealTimeEventType,
    ResolutionStrategy,
)

__all__ = [
    # Detection
    "ConflictDetector",
    "RealTimeListener",
    "Operation",
    "Conflict",
    "ConflictDetectionResult",
    "ConflictSeverity",
    "ConflictType",
    "RealTimeEvent",
    "RealTimeEventType",
    # Resolution
    "ResolutionStrategy",
    "suggest_resolution",
    "available_resolutions",
    # Collaborators
    "ResourceRegistry",
    "EngineResourceRegistry",
    "LastSeenCache",
    "InMemoryLastSeenCache",
    "JSONFileLastSeenCache",
]
