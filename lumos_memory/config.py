"""Lumos Memory — Configuration.

Configuration is loaded from (in order of increasing priority):
    1. Built-in defaults (this file)
    2. System config: /etc/lumos-memory/config.yaml
    3. User config:   ~/.lumos/config.yaml
    4. An explicit config file passed to ``Settings.load()``

Environment variables prefixed with LUMOS_MEMORY_ (``__`` as the nested
delimiter) fill in whatever the YAML files leave unset.

Call ``Settings.load()`` once at startup and pass the sub-configs to
``MemoryStore.from_config`` / ``MemoryManager``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ---------------------------------------------------------------------------
# Sub-configuration blocks
# ---------------------------------------------------------------------------


class StoreConfig(BaseModel):
    db_path: Path = Path("~/.lumos/memory.db")
    journal_mode: Literal["wal", "delete", "truncate"] = Field(
        default="wal",
        description=(
            "SQLite journal mode. WAL keeps recall reads non-blocking while "
            "a write (or prune) holds the write lock."
        ),
    )
    synchronous: Literal["normal", "full"] = "normal"
    busy_timeout_seconds: Annotated[float, Field(ge=0.0, le=300.0)] = Field(
        default=5.0,
        description="Maximum seconds to wait for a lock held by another process.",
    )

    @field_validator("db_path", mode="after")
    @classmethod
    def expand_db_path(cls, v: Path) -> Path:
        return v.expanduser()


class ManagerConfig(BaseModel):
    agent_id: str = Field(default="default-agent", min_length=1)
    default_user_id: str = Field(default="default-user", min_length=1)
    default_ttl_seconds: int | None = Field(
        default=None,
        ge=1,
        description="Lifetime applied to new session memories. None = never expire.",
    )
    default_limit: Annotated[int, Field(ge=1, le=10_000)] = 50


class PruneConfig(BaseModel):
    enabled: bool = False
    interval_seconds: Annotated[float, Field(ge=1.0, le=7 * 86_400)] = Field(
        default=3600.0,
        description="Seconds between background prune passes.",
    )


class LoggingConfig(BaseModel):
    level: Literal["debug", "info", "warning", "error", "critical"] = "info"
    format: Literal["json", "console"] = "console"
    file: Path | None = None


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="LUMOS_MEMORY_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    store: StoreConfig = Field(default_factory=StoreConfig)
    manager: ManagerConfig = Field(default_factory=ManagerConfig)
    prune: PruneConfig = Field(default_factory=PruneConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_file: Path | None = None) -> "Settings":
        """Load settings from YAML files + environment variables."""
        data: dict[str, Any] = {}

        candidates = [
            Path("/etc/lumos-memory/config.yaml"),
            Path.home() / ".lumos" / "config.yaml",
        ]
        if config_file:
            candidates.append(config_file)

        for path in candidates:
            if path.exists():
                import yaml

                with path.open() as f:
                    loaded = yaml.safe_load(f) or {}
                _deep_update(data, loaded)

        return cls(**data)


def _deep_update(target: dict[str, Any], source: dict[str, Any]) -> None:
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_update(target[key], value)
        else:
            target[key] = value


# Module-level singleton; replaced by ``Settings.load()`` at startup.
_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def override_settings(settings: Settings) -> None:
    """Replace the module-level singleton. Used in tests."""
    global _settings
    _settings = settings
