"""Engine configuration for listsync.

Values come from keyword arguments or from ``LISTSYNC_*`` environment
variables (see ``EngineConfig.from_env``).
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields

from listsync.core.errors import InvalidSyncConfigError

ENV_PREFIX = "LISTSYNC_"


@dataclass
class EngineConfig:
    """Configuration for the reconciler, resolver and worker.

    Attributes:
        sync_interval: Seconds between scheduled reconciliation batches.
        purge_interval: Seconds between resolved-conflict purges.
        conflict_retention_days: Resolved conflicts older than this are purged.
        fetch_timeout: Timeout in seconds for external source calls.
        pass_lease_timeout: Seconds after which an in-flight pass lease is
            treated as abandoned.
        backoff_initial: First retry delay after an external source failure.
        backoff_max: Upper bound for the retry delay.
        backoff_multiplier: Growth factor of the retry delay.
    """

    sync_interval: float = 300.0
    purge_interval: float = 86400.0
    conflict_retention_days: int = 30
    fetch_timeout: float = 30.0
    pass_lease_timeout: float = 600.0
    backoff_initial: float = 60.0
    backoff_max: float = 3600.0
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        """Validate numeric bounds."""
        for name in (
            "sync_interval",
            "purge_interval",
            "fetch_timeout",
            "pass_lease_timeout",
            "backoff_initial",
            "backoff_max",
        ):
            if getattr(self, name) <= 0:
                raise InvalidSyncConfigError(f"{name} must be positive")
        if self.conflict_retention_days < 0:
            raise InvalidSyncConfigError("conflict_retention_days cannot be negative")
        if self.backoff_multiplier < 1.0:
            raise InvalidSyncConfigError("backoff_multiplier must be >= 1.0")
        if self.backoff_max < self.backoff_initial:
            raise InvalidSyncConfigError("backoff_max must be >= backoff_initial")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> EngineConfig:
        """Build a config from ``LISTSYNC_<FIELD>`` environment variables.

        Args:
            environ: Mapping to read from (default: ``os.environ``).

        Returns:
            EngineConfig with defaults for unset variables.

        Raises:
            InvalidSyncConfigError: If a variable cannot be parsed.
        """
        env = os.environ if environ is None else environ
        values: dict[str, float | int] = {}
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw.strip() == "":
                continue
            converter = int if f.type in (int, "int") else float
            try:
                values[f.name] = converter(raw)
            except ValueError as e:
                raise InvalidSyncConfigError(
                    f"{ENV_PREFIX}{f.name.upper()} is not a valid {converter.__name__}: {raw!r}"
                ) from e
        return cls(**values)
