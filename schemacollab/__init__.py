from .config import CollabConfig, ConfigError
from .conflicts import ConflictDetector, Operation
from .identity import Actor, IdentityProvider, StaticIdentityProvider
from .locking import LockError, LockManager
from .notifications import NotificationDispatcher, NotificationInbox
from .session import CollaborationSession

__all__ = [
    "CollaborationSession",
    "CollabConfig",
    "ConfigError",
    "LockManager",
    "LockError",
    "ConflictDetector",
    "Operation",
    "NotificationDispatcher",
    "NotificationInbox",
    "Actor",
    "IdentityProvider",
    "StaticIdentityProvider",
]
