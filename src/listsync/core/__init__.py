"""Core module - Shared types, errors and configuration."""

from listsync.core.config import EngineConfig
from listsync.core.errors import (
    AlreadyInProgressError,
    AlreadyResolvedError,
    ConcurrentModificationError,
    ConfigurationError,
    ConflictNotFoundError,
    ExternalFailure,
    ExternalSourceError,
    InvalidResolutionError,
    InvalidSourceError,
    InvalidSyncConfigError,
    InvalidTransitionError,
    LeaseLostError,
    MissingExternalIDError,
    PartialResolutionError,
    StateError,
    SyncDisabledError,
    SyncError,
    is_transient,
)
from listsync.core.log import setup_logging
from listsync.core.types import (
    ConflictType,
    ResolutionStrategy,
    SyncOutcome,
    SyncSource,
    SyncState,
)

__all__ = [
    # Config
    "EngineConfig",
    "setup_logging",
    # Errors
    "AlreadyInProgressError",
    "AlreadyResolvedError",
    "ConcurrentModificationError",
    "ConfigurationError",
    "ConflictNotFoundError",
    "ExternalFailure",
    "ExternalSourceError",
    "InvalidResolutionError",
    "InvalidSourceError",
    "InvalidSyncConfigError",
    "InvalidTransitionError",
    "LeaseLostError",
    "MissingExternalIDError",
    "PartialResolutionError",
    "StateError",
    "SyncDisabledError",
    "SyncError",
    "is_transient",
    # Types
    "ConflictType",
    "ResolutionStrategy",
    "SyncOutcome",
    "SyncSource",
    "SyncState",
]
