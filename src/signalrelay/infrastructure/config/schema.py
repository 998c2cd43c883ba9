"""Pydantic configuration models with validation."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import (
    AliasChoices,
    AliasPath,
    BaseModel,
    Field,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from .defaults import DESKTOP_USER_AGENT, ENTRY_DOMAINS

Environment = Literal["dev", "test", "prod"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
LogFormat = Literal["json", "console"]


def _normalize_path(value: Any) -> Path:
    """
    Normalize a path-like value without causing filesystem side-effects.

    This function MUST NOT create directories or files.
    """
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise TypeError(f"Expected path-like value, got: {type(value)!r}")


class CacheConfig(BaseSettings):
    """Key-value backend for mapping rows (backend-agnostic)."""

    backend: Literal["diskcache", "redis"] = Field(
        default="diskcache",
        description="Cache backend: 'diskcache' (SQLite) or 'redis'",
    )

    # Diskcache settings
    directory: Path = Field(
        default=Path("./.cache/signalrelay"),
        alias="dir",
        description="Diskcache SQLite DB path",
    )

    # Redis settings
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL (only when backend=redis)",
    )

    max_concurrent: int = Field(
        default=10,
        description="Max parallel cache ops (semaphore limit)",
    )

    model_config = SettingsConfigDict(
        env_prefix="SIGNALRELAY_CACHE_",
        case_sensitive=False,
        populate_by_name=True,
    )

    @field_validator("directory", mode="before")
    @classmethod
    def _validate_directory(cls, v: Any) -> Path:
        return _normalize_path(v)


class ResolverConfig(BaseModel):
    """Page walking and candidate worker pool."""

    max_hops: int = Field(
        default=4,
        description="Maximum documents fetched per candidate.",
    )
    worker_pool_size: int = Field(
        default=2,
        description="Concurrent candidate workers per resolution request.",
    )
    resolve_timeout_seconds: float = Field(
        default=45.0,
        description="Overall budget for one resolution request.",
    )
    entry_domains: list[str] = Field(
        default_factory=lambda: list(ENTRY_DOMAINS),
        description="Entry mirrors probed during channel discovery.",
    )
    stream_host: str = Field(
        default="cloud.yumixiu768.com",
        description="Media host used when a player page only carries a path.",
    )
    cipher_key: str = Field(
        default="ABCDEFGHIJKLMNOPQRSTUVWX",
        description="Static key of the embedded cipher marker.",
    )

    @field_validator("max_hops", "worker_pool_size")
    @classmethod
    def _validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("resolve_timeout_seconds")
    @classmethod
    def _validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("resolve_timeout_seconds must be > 0")
        return v

    @field_validator("entry_domains", mode="before")
    @classmethod
    def _split_domains(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [d.strip().rstrip("/") for d in v.split(",") if d.strip()]
        return v


class RankingConfig(BaseModel):
    """Host ranking and failover thresholds."""

    window_hours: float = Field(
        default=6.0,
        description="Rolling window for per-host success rates.",
    )
    prior_score: float = Field(
        default=0.1,
        description="Score of hosts without recent outcomes.",
    )
    disable_fail_threshold: int = Field(
        default=5,
        description="Failures a host must exceed before it can be disabled.",
    )
    disable_fail_rate: float = Field(
        default=0.7,
        description="Failure rate a host must exceed before it is disabled.",
    )
    promote_success_threshold: int = Field(
        default=10,
        description="Successes after which a host is promoted one priority step.",
    )


class RefreshConfig(BaseModel):
    """Background mapping refresh."""

    enabled: bool = Field(default=True)
    interval_minutes: float = Field(default=20.0)
    min_age_minutes: float = Field(
        default=20.0,
        description="Mappings verified more recently than this are skipped.",
    )
    max_age_minutes: float = Field(
        default=120.0,
        description="Mappings older than this are considered stale matches.",
    )
    batch_size: int = Field(default=50)
    item_delay_seconds: float = Field(
        default=0.5,
        description="Pause between refreshed mappings (upstream politeness).",
    )
    initial_delay_seconds: float = Field(default=10.0)

    @model_validator(mode="after")
    def _validate_window(self) -> "RefreshConfig":
        if self.min_age_minutes >= self.max_age_minutes:
            raise ValueError("refresh.min_age_minutes must be < max_age_minutes")
        if self.interval_minutes <= 0:
            raise ValueError("refresh.interval_minutes must be > 0")
        if self.batch_size < 1:
            raise ValueError("refresh.batch_size must be >= 1")
        return self


class ProxyConfig(BaseModel):
    """Manifest/segment proxy."""

    timeout_seconds: float = Field(default=15.0)
    manifest_cache_ttl_seconds: float = Field(default=5.0)
    manifest_cache_max: int = Field(default=500)
    segment_cache_ttl_seconds: float = Field(default=15.0)
    segment_cache_max: int = Field(default=200)
    segment_cache_max_bytes: int = Field(default=64 * 1024 * 1024)
    default_referer: str = Field(default="http://play.jgdhds.com/")
    force_referer: bool = Field(
        default=False,
        description="Send the decoded referer upstream (most CDNs reject it).",
    )
    session_ttl_seconds: int = Field(default=900)

    @field_validator("session_ttl_seconds")
    @classmethod
    def _validate_session_ttl(cls, v: int) -> int:
        return max(v, 60)


class MappingConfig(BaseModel):
    retention_days: int = Field(
        default=7,
        description="TTL applied to persisted mapping rows.",
    )


class AppConfig(BaseModel):
    """
    Canonical application configuration (validated, final).

    Note:
    - YAML is expected to be sectioned (http/logging/cache/resolver/...).
    - Environment variables are handled by EnvOverrides(BaseSettings) to allow strict
      precedence control (defaults < YAML < ENV < CLI) in load.py.
    """

    # General
    app_name: str = Field(default="signalrelay", description="Application name.")
    environment: Environment = Field(
        default="dev",
        description="Runtime environment (affects defaults like log format).",
    )

    # HTTP (YAML section: http.*)
    http_timeout_seconds: float = Field(
        default=8.0,
        validation_alias=AliasChoices(
            "http_timeout_seconds",
            AliasPath("http", "timeout_seconds"),
        ),
        description="Upstream page fetch timeout in seconds.",
    )
    http_user_agent: str = Field(
        default=DESKTOP_USER_AGENT,
        validation_alias=AliasChoices(
            "http_user_agent",
            AliasPath("http", "user_agent"),
        ),
        description="User-Agent for upstream page fetches.",
    )
    http_default_referer: str = Field(
        default="https://www.jrs80.com/",
        validation_alias=AliasChoices(
            "http_default_referer",
            AliasPath("http", "default_referer"),
        ),
        description="Referer sent with the first hop of a resolution.",
    )

    # Logging (YAML section: logging.*)
    log_level: LogLevel = Field(
        default="INFO",
        validation_alias=AliasChoices(
            "log_level",
            AliasPath("logging", "level"),
        ),
        description="Log level.",
    )
    log_format: Optional[LogFormat] = Field(
        default=None,
        validation_alias=AliasChoices(
            "log_format",
            AliasPath("logging", "format"),
        ),
        description=(
            "Log renderer format (console/json). If unset, derived from environment."
        ),
    )

    cache: CacheConfig = Field(default_factory=CacheConfig)
    resolver: ResolverConfig = Field(default_factory=ResolverConfig)
    ranking: RankingConfig = Field(default_factory=RankingConfig)
    refresh: RefreshConfig = Field(default_factory=RefreshConfig)
    proxy: ProxyConfig = Field(default_factory=ProxyConfig)
    mapping: MappingConfig = Field(default_factory=MappingConfig)

    @field_validator("http_timeout_seconds")
    @classmethod
    def _validate_http_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("http_timeout_seconds must be > 0")
        return v

    @model_validator(mode="after")
    def _derive_defaults(self) -> "AppConfig":
        # Default log format: console in dev/test, json in prod.
        if self.log_format is None:
            self.log_format = "json" if self.environment == "prod" else "console"
        return self

    def to_sectioned_dict(self) -> dict[str, Any]:
        """
        Dump configuration in the sectioned shape used by config.yaml/docs.
        """
        return {
            "app_name": self.app_name,
            "environment": self.environment,
            "http": {
                "timeout_seconds": self.http_timeout_seconds,
                "user_agent": self.http_user_agent,
                "default_referer": self.http_default_referer,
            },
            "logging": {"level": self.log_level, "format": self.log_format},
            "cache": {
                "backend": self.cache.backend,
                "dir": str(self.cache.directory),
                "redis_url": self.cache.redis_url,
                "max_concurrent": self.cache.max_concurrent,
            },
            "resolver": self.resolver.model_dump(),
            "ranking": self.ranking.model_dump(),
            "refresh": self.refresh.model_dump(),
            "proxy": self.proxy.model_dump(),
            "mapping": self.mapping.model_dump(),
        }


class EnvOverrides(BaseSettings):
    """
    Environment-variable overrides (all optional).

    Intended usage:
    - load.py creates EnvOverrides() to read SIGNALRELAY_* variables,
      converts to dict of set values, merges into YAML/defaults,
      then validates AppConfig.

    Supported env var examples (flat, explicit):
    - SIGNALRELAY_HTTP_TIMEOUT_SECONDS
    - SIGNALRELAY_WORKER_POOL_SIZE
    - SIGNALRELAY_MANIFEST_CACHE_TTL_SECONDS
    - SIGNALRELAY_REFRESH_INTERVAL_MINUTES
    - SIGNALRELAY_LOG_LEVEL
    """

    model_config = SettingsConfigDict(
        env_prefix="SIGNALRELAY_",
        extra="ignore",
        case_sensitive=False,
    )

    app_name: Optional[str] = None
    environment: Optional[Environment] = None

    http_timeout_seconds: Optional[float] = None
    http_user_agent: Optional[str] = None
    http_default_referer: Optional[str] = None

    log_level: Optional[LogLevel] = None
    log_format: Optional[LogFormat] = None

    cache_backend: Optional[Literal["diskcache", "redis"]] = None
    cache_dir: Optional[Path] = None
    cache_redis_url: Optional[str] = None

    max_hops: Optional[int] = None
    worker_pool_size: Optional[int] = None
    resolve_timeout_seconds: Optional[float] = None

    window_hours: Optional[float] = None
    disable_fail_threshold: Optional[int] = None
    disable_fail_rate: Optional[float] = None

    refresh_enabled: Optional[bool] = None
    refresh_interval_minutes: Optional[float] = None
    refresh_min_age_minutes: Optional[float] = None
    refresh_max_age_minutes: Optional[float] = None
    refresh_batch_size: Optional[int] = None

    manifest_cache_ttl_seconds: Optional[float] = None
    manifest_cache_max: Optional[int] = None
    segment_cache_ttl_seconds: Optional[float] = None
    segment_cache_max: Optional[int] = None
    proxy_default_referer: Optional[str] = None
    proxy_force_referer: Optional[bool] = None

    @field_validator("cache_dir", mode="before")
    @classmethod
    def _validate_paths(cls, v: Any) -> Any:
        if v is None:
            return None
        return _normalize_path(v)

    def to_update_dict(self) -> dict[str, Any]:
        """
        Return only values that were actually provided (non-None), for merging.
        """
        return self.model_dump(exclude_none=True)
