"""
Configuration management for Trunk.

Runtime settings come from environment variables; the resource economy
(soil, water and sun constants) is a versioned table that ships with the
code so that every client derives identical state from the same log.

Invariants:
    - All settings have sensible defaults for local development
    - SoilConstants is never read from the environment
    - Secrets (API keys, access tokens) are never logged

How to change safely:
    - Changing any SoilConstants value changes derived state for existing
      logs; bump DERIVATION_VERSION and regenerate the shared fixtures
    - Add new settings with defaults that keep existing deployments working
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

logger = logging.getLogger(__name__)

# Bumped whenever a rule or constant that affects derive() output changes.
DERIVATION_VERSION = 2

# Bumped whenever the local cache layout changes; a mismatch forces a full resync.
CACHE_VERSION = 1

DAY_SECONDS = 86_400
WEEK_SECONDS = 7 * DAY_SECONDS


def _frozen(mapping: Mapping) -> Mapping:
    return MappingProxyType(dict(mapping))


@dataclass(frozen=True)
class SeasonSpec:
    """Duration and reward profile of a sprout season.

    Attributes:
        label: Human readable name
        duration_seconds: Time from planting to the end date
        base_reward: Base soil capacity reward on harvest
    """

    label: str
    duration_seconds: int
    base_reward: float


@dataclass(frozen=True)
class SoilConstants:
    """The resource economy table.

    Every derivation rule reads its numbers from an instance of this class,
    passed in explicitly. The defaults are the canonical values shared by
    all clients.

    Attributes:
        starting_capacity: Soil capacity (and availability) of an empty log
        max_capacity: Hard ceiling for soil capacity
        water_recovery: Soil credited per watering
        sun_recovery: Soil credited per sun reflection
        uproot_refund_rate: Fraction of the planting cost returned on uproot
        water_daily_capacity: Waterings available per day
        sun_weekly_capacity: Sun reflections available per week
        reset_hour: Local hour at which water and sun reset
        sun_reset_weekday: Weekday of the sun reset (Monday == 0)
        water_credits_per_sprout_per_day: Soil credits one sprout can earn
            from watering per local calendar date; None (the default)
            credits every watering
        end_date_hour: Local hour of a sprout's end date
        decimal_places: Precision applied to every soil quantity
        planting_costs: season -> environment -> soil cost
        environment_multipliers: environment -> harvest multiplier
        result_multipliers: result (1..5) -> harvest multiplier
        seasons: season -> SeasonSpec
        diminishing_exponent: Exponent of the harvest diminishing-returns curve
    """

    starting_capacity: float = 10.0
    max_capacity: float = 120.0
    water_recovery: float = 0.05
    sun_recovery: float = 0.35
    uproot_refund_rate: float = 0.25
    water_daily_capacity: int = 3
    sun_weekly_capacity: int = 1
    reset_hour: int = 6
    sun_reset_weekday: int = 0
    water_credits_per_sprout_per_day: int | None = None
    end_date_hour: int = 9
    decimal_places: int = 2
    planting_costs: Mapping[str, Mapping[str, float]] = field(
        default_factory=lambda: _frozen({
            "2w": _frozen({"fertile": 2, "firm": 3, "barren": 4}),
            "1m": _frozen({"fertile": 3, "firm": 5, "barren": 6}),
            "3m": _frozen({"fertile": 5, "firm": 8, "barren": 10}),
            "6m": _frozen({"fertile": 8, "firm": 12, "barren": 16}),
            "1y": _frozen({"fertile": 12, "firm": 18, "barren": 24}),
        })
    )
    environment_multipliers: Mapping[str, float] = field(
        default_factory=lambda: _frozen({"fertile": 1.1, "firm": 1.75, "barren": 2.4})
    )
    result_multipliers: Mapping[int, float] = field(
        default_factory=lambda: _frozen({1: 0.4, 2: 0.55, 3: 0.7, 4: 0.85, 5: 1.0})
    )
    seasons: Mapping[str, SeasonSpec] = field(
        default_factory=lambda: _frozen({
            "2w": SeasonSpec("2 weeks", 14 * DAY_SECONDS, 0.26),
            "1m": SeasonSpec("1 month", 30 * DAY_SECONDS, 0.56),
            "3m": SeasonSpec("3 months", 90 * DAY_SECONDS, 1.95),
            "6m": SeasonSpec("6 months", 180 * DAY_SECONDS, 4.16),
            "1y": SeasonSpec("1 year", 365 * DAY_SECONDS, 8.84),
        })
    )
    diminishing_exponent: float = 1.5

    @property
    def season_names(self) -> tuple[str, ...]:
        return tuple(self.seasons)

    @property
    def environment_names(self) -> tuple[str, ...]:
        return tuple(self.environment_multipliers)


DEFAULT_CONSTANTS = SoilConstants()


@dataclass(frozen=True)
class CacheConfig:
    """Local cache configuration.

    Attributes:
        data_dir: Directory holding the per-user SQLite cache files
        db_pattern: File name pattern for a user's cache
        busy_timeout_ms: SQLite busy timeout in milliseconds
        wal_mode: Enable SQLite WAL journal mode
    """

    data_dir: str = "~/.trunk"
    db_pattern: str = "events_{user_id}.db"
    busy_timeout_ms: int = 5000
    wal_mode: bool = True

    @classmethod
    def from_env(cls) -> CacheConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("TRUNK_DATA_DIR", "~/.trunk"),
            db_pattern=os.getenv("TRUNK_DB_PATTERN", "events_{user_id}.db"),
            busy_timeout_ms=int(os.getenv("TRUNK_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            wal_mode=os.getenv("TRUNK_SQLITE_WAL_MODE", "true").lower() == "true",
        )


@dataclass(frozen=True)
class RemoteConfig:
    """Remote event store connection settings.

    Attributes:
        url: Base URL of the REST endpoint (empty disables the remote)
        api_key: Project API key sent with every request
        table: Name of the events table/resource
        access_token: Session token for the current user
        user_id: Current user id (events are scoped to it)
        poll_interval_seconds: Realtime feed polling interval
    """

    url: str = ""
    api_key: str | None = None
    table: str = "events"
    access_token: str | None = None
    user_id: str | None = None
    poll_interval_seconds: float = 5.0

    @classmethod
    def from_env(cls) -> RemoteConfig:
        """Load configuration from environment variables."""
        return cls(
            url=os.getenv("TRUNK_REMOTE_URL", ""),
            api_key=os.getenv("TRUNK_REMOTE_API_KEY"),
            table=os.getenv("TRUNK_REMOTE_TABLE", "events"),
            access_token=os.getenv("TRUNK_ACCESS_TOKEN"),
            user_id=os.getenv("TRUNK_USER_ID"),
            poll_interval_seconds=float(os.getenv("TRUNK_POLL_INTERVAL_SECONDS", "5.0")),
        )

    @property
    def enabled(self) -> bool:
        return bool(self.url)


@dataclass(frozen=True)
class SyncConfig:
    """Sync coordinator configuration.

    Attributes:
        request_timeout_seconds: Upper bound for any single remote call
        interval_seconds: Period of the background sync loop
        backoff_base_seconds: First retry delay after a failed push
        backoff_max_seconds: Ceiling for the retry delay
        backoff_jitter: Random extra delay as a fraction of the delay
        max_backoff_attempts: Cap on the backoff attempt counter
    """

    request_timeout_seconds: float = 15.0
    interval_seconds: float = 60.0
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 30.0
    backoff_jitter: float = 0.2
    max_backoff_attempts: int = 3

    @classmethod
    def from_env(cls) -> SyncConfig:
        """Load configuration from environment variables."""
        return cls(
            request_timeout_seconds=float(os.getenv("TRUNK_SYNC_TIMEOUT_SECONDS", "15.0")),
            interval_seconds=float(os.getenv("TRUNK_SYNC_INTERVAL_SECONDS", "60.0")),
            backoff_base_seconds=float(os.getenv("TRUNK_BACKOFF_BASE_SECONDS", "1.0")),
            backoff_max_seconds=float(os.getenv("TRUNK_BACKOFF_MAX_SECONDS", "30.0")),
            backoff_jitter=float(os.getenv("TRUNK_BACKOFF_JITTER", "0.2")),
            max_backoff_attempts=int(os.getenv("TRUNK_BACKOFF_MAX_ATTEMPTS", "3")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("TRUNK_LOG_LEVEL", "INFO"),
            log_format=os.getenv("TRUNK_LOG_FORMAT", "text"),
        )


@dataclass
class TrunkConfig:
    """Complete client configuration.

    Attributes:
        constants: Resource economy table
        cache: Local cache configuration
        remote: Remote event store configuration
        sync: Sync coordinator configuration
        observability: Logging configuration
    """

    constants: SoilConstants = field(default_factory=SoilConstants)
    cache: CacheConfig = field(default_factory=CacheConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> TrunkConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            cache=CacheConfig.from_env(),
            remote=RemoteConfig.from_env(),
            sync=SyncConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.sync.request_timeout_seconds <= 0:
            raise ValueError("TRUNK_SYNC_TIMEOUT_SECONDS must be positive")
        if self.sync.backoff_base_seconds <= 0:
            raise ValueError("TRUNK_BACKOFF_BASE_SECONDS must be positive")
        if self.sync.backoff_max_seconds < self.sync.backoff_base_seconds:
            raise ValueError("TRUNK_BACKOFF_MAX_SECONDS must be >= TRUNK_BACKOFF_BASE_SECONDS")
        if self.remote.enabled and not self.remote.user_id:
            raise ValueError("TRUNK_USER_ID is required when TRUNK_REMOTE_URL is set")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid TRUNK_LOG_FORMAT '{self.observability.log_format}'. "
                "Must be one of: json, text"
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Trunk configuration loaded",
            extra={
                "data_dir": self.cache.data_dir,
                "remote_url": self.remote.url or None,
                "remote_table": self.remote.table,
                "user_id": self.remote.user_id,
                "has_api_key": self.remote.api_key is not None,
                "has_access_token": self.remote.access_token is not None,
                "sync_timeout_seconds": self.sync.request_timeout_seconds,
                "sync_interval_seconds": self.sync.interval_seconds,
                "derivation_version": DERIVATION_VERSION,
                "cache_version": CACHE_VERSION,
                "log_level": self.observability.log_level,
            },
        )
