"""listsync - synchronization engine for shared curated lists."""

__version__ = "0.1.0"

from listsync.core.config import EngineConfig
from listsync.core.types import ResolutionStrategy, SyncOutcome, SyncSource, SyncState
from listsync.engine import SyncEngine

__all__ = [
    "EngineConfig",
    "ResolutionStrategy",
    "SyncEngine",
    "SyncOutcome",
    "SyncSource",
    "SyncState",
    "__version__",
]
