"""
livecount configuration

Two layers:
- Settings: process settings loaded from environment variables (LIVECOUNT_*)
- EngineConfig: the explicit wiring handed to the engine at construction
  (storage handle, deferral hook, resolvers, clock). Built once, read-only.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from livecount.deferred import Deferrer
from livecount.exceptions import ConfigurationError
from livecount.storage import StorageBackend


class Settings(BaseSettings):
    """Settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_prefix="LIVECOUNT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================================================
    # REDIS
    # ========================================================================
    REDIS_URL: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL for counter storage"
    )
    REDIS_MAX_CONNECTIONS: int = Field(default=50)
    REDIS_SOCKET_TIMEOUT: int = Field(default=5)

    # ========================================================================
    # ENGINE
    # ========================================================================
    WINDOW_MONTHS: int = Field(
        default=24,
        description="Trailing window for monthly series when no start is known"
    )
    DEFERRED_WORKERS: int = Field(
        default=0,
        description="Thread pool size for deferred execution (0 = inline)"
    )
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    @field_validator("WINDOW_MONTHS")
    @classmethod
    def validate_window(cls, v):
        if v < 0:
            raise ValueError("WINDOW_MONTHS must be >= 0")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, v):
        return v.upper()


ScopeResolver = Callable[[Mapping[str, Any]], Sequence[Any]]
SubjectResolver = Callable[[str, Mapping[str, Any]], Any]


@dataclass(frozen=True)
class EngineConfig:
    """Explicit engine wiring, created once at process start"""
    storage: StorageBackend
    deferrer: Optional[Deferrer] = None
    scope_resolver: Optional[ScopeResolver] = None
    subject_resolver: Optional[SubjectResolver] = None
    window_months: int = 24
    clock: Callable[[], datetime] = field(default=datetime.now)

    def __post_init__(self):
        if self.storage is None:
            raise ConfigurationError("EngineConfig requires a storage backend")
        if self.window_months < 0:
            raise ConfigurationError("window_months must be >= 0")

    def now(self) -> datetime:
        return self.clock()


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Apply LOG_LEVEL to the livecount logger hierarchy"""
    settings = settings or Settings()
    level = logging.getLevelName(settings.LOG_LEVEL)
    if not isinstance(level, int):
        raise ConfigurationError(f"Unknown log level: {settings.LOG_LEVEL}")

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("livecount").setLevel(level)


def settings_summary(settings: Settings) -> Dict[str, Any]:
    """Settings without connection secrets, for startup logs"""
    data = settings.model_dump()
    url = data.get("REDIS_URL", "")
    if "@" in url:
        scheme, _, rest = url.partition("://")
        data["REDIS_URL"] = f"{scheme}://***@{rest.split('@', 1)[1]}"
    return data
