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

"""Map detected conflicts to a resolution strategy."""

from __future__ import annotations

from collections.abc import Iterable

from .types import Conflict, ConflictType, ResolutionStrategy

_NAME_CONFLICTS = frozenset({ConflictType.SCHEMA_MODIFIED, ConflictType.FIELD_CONFLICT})

_ADVISORY_RESOLUTIONS = [
    ResolutionStrategy.MERGE_CHANGES,
    ResolutionStrategy.SAVE_AS_COPY,
    ResolutionStrategy.FORCE_OVERRIDE,
]


def suggest_resolution(conflicts: Iterable[Conflict]) -> ResolutionStrategy | None:
    """Pick one strategy for a set of conflicts.

    Only blocking entries count (severity above LOW, not CONCURRENT_EDIT).
    Precedence: a relationship dependency cancels the operation, then a
    foreign lock asks for the lock, then a name collision asks for a rename.
    Any other blocking conflict cancels.
    """
    blocking = {c.type for c in conflicts if c.blocking}
    if not blocking:
        return None
    if ConflictType.RELATIONSHIP_CONFLICT in blocking:
        return ResolutionStrategy.CANCEL_OPERATION
    if ConflictType.RESOURCE_LOCKED in blocking:
        return ResolutionStrategy.REQUEST_LOCK
    if blocking & _NAME_CONFLICTS:
        return ResolutionStrategy.RENAME_RESOURCE
    return ResolutionStrategy.CANCEL_OPERATION


def available_resolutions(conflicts: Iterable[Conflict]) -> list[ResolutionStrategy]:
    """Strategies a user may choose from, suggested one first.

    Advisory-only sets (concurrent edits, own locks) allow merging, saving a
    copy or overriding. Blocking sets allow the suggested strategy or
    cancelling.
    """
    conflicts = list(conflicts)
    if not conflicts:
        return []
    suggested = suggest_resolution(conflicts)
    if suggested is None:
        return list(_ADVISORY_RESOLUTIONS)
    if suggested == ResolutionStrategy.CANCEL_OPERATION:
        return [suggested]
    return [suggested, ResolutionStrategy.CANCEL_OPERATION]
