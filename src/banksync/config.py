"""Configuration for banksync components.

Configuration is explicit: a SyncConfig is built once (usually from the
environment) and passed into each component at construction.
"""

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping, Optional

from banksync.domain.errors import ValidationError

ENV_PREFIX = "BANKSYNC_"
UP_API_BASE_URL = "https://api.up.com.au/api/v1"


@dataclass(frozen=True)
class SyncConfig:
    """Tunables for ingestion, the sync queue and the API client."""

    owner_id: str = "default"
    api_base_url: str = UP_API_BASE_URL
    http_timeout: float = 10.0

    # Retry and backoff (seconds)
    base_delay: float = 30.0
    max_delay: float = 3600.0
    jitter_ratio: float = 0.1
    max_attempts: int = 5
    rate_limit_floor: float = 900.0

    # Queue workers
    lease_timeout: float = 300.0
    batch_size: int = 50
    poll_interval: float = 5.0

    # UP Bank allows 1000 calls per hour; keep a margin for critical calls
    hourly_call_limit: int = 1000
    safety_margin: int = 50

    def __post_init__(self):
        if self.base_delay <= 0:
            raise ValidationError("base_delay must be positive")
        if self.max_delay < self.base_delay:
            raise ValidationError("max_delay must be >= base_delay")
        if not 0 <= self.jitter_ratio <= 1:
            raise ValidationError("jitter_ratio must be between 0 and 1")
        if self.max_attempts < 1:
            raise ValidationError("max_attempts must be at least 1")
        if self.lease_timeout <= 0:
            raise ValidationError("lease_timeout must be positive")
        if self.batch_size < 1:
            raise ValidationError("batch_size must be at least 1")
        if self.hourly_call_limit < 1 or self.safety_margin < 0:
            raise ValidationError("hourly_call_limit and safety_margin must be non-negative")

    def with_overrides(self, **overrides: Any) -> "SyncConfig":
        """Return a copy with the given fields replaced (None values ignored)."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SyncConfig":
        """Build a config from BANKSYNC_* environment variables.

        Example: BANKSYNC_MAX_ATTEMPTS=8 sets max_attempts.

        Raises:
            ValidationError: If a variable cannot be converted
        """
        if environ is None:
            environ = os.environ

        values: dict[str, Any] = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            kind = type(f.default)
            try:
                values[f.name] = kind(raw)
            except ValueError:
                raise ValidationError(
                    f"{ENV_PREFIX}{f.name.upper()} must be {kind.__name__}, got '{raw}'"
                )
        return cls(**values)
