"""Storage layer: ORM engines, stored records and the change feed."""

from .change_feed import ChangeEvent, ChangeEventType, ChangeFeed, ChangeListener, FeedingDatabaseEngine, Unsubscribe
from .models import DataFieldModel, DataTableModel, LeaseModel, LockKind, RelationshipModel, ResourceKind
from .orm import ConstraintViolationError, DatabaseEngine, InMemoryDatabaseEngine, SQLDatabaseEngine

__all__ = [
    # Models
    "LeaseModel",
    "DataTableModel",
    "DataFieldModel",
    "RelationshipModel",
    "LockKind",
    "ResourceKind",
    # ORM
    "DatabaseEngine",
    "InMemoryDatabaseEngine",
    "SQLDatabaseEngine",
    "ConstraintViolationError",
    # Change feed
    "ChangeFeed",
    "ChangeEvent",
    "ChangeEventType",
    "ChangeListener",
    "FeedingDatabaseEngine",
    "Unsubscribe",
]
