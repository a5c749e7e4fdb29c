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

"""Storage models.

All models inherit directly from SQLModel.

- LeaseModel: lease (table lock) record
- DataTableModel: schema designer table
- DataFieldModel: schema designer field
- RelationshipModel: relationship between two fields
"""

from .lease import LeaseModel, ns_to_datetime
from .schema import DataFieldModel, DataTableModel, RelationshipModel
from .types import LockKind, ResourceKind

__all__ = [
    "LeaseModel",
    "DataTableModel",
    "DataFieldModel",
    "RelationshipModel",
    "LockKind",
    "ResourceKind",
    "ns_to_datetime",
]
