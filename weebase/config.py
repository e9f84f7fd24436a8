"""weebase — Configuration.

Configuration is loaded from:
    1. Built-in defaults (this file)
    2. Environment variables prefixed with WEEBASE_ (nested with ``__``,
       e.g. ``WEEBASE_SAFETY__READ_ONLY_MODE=true``)
    3. System config: /etc/weebase/config.yaml
    4. User config:   ~/.weebase/config.yaml
    5. An explicit config file passed to ``Settings.load()``

Top-level blocks found in a YAML file replace the environment for that block.

All settings are immutable after load.  Call ``Settings.load()`` once at
startup and hand the instance to :class:`weebase.console.Console`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from weebase.dialects import Dialect, normalize

# ---------------------------------------------------------------------------
# Sub-configuration blocks
# ---------------------------------------------------------------------------


class SafetyConfig(BaseModel):
    safe_mode_default: bool = Field(
        default=True,
        description=(
            "Require an explicit confirmation for row mutations and block "
            "DROP/ALTER/TRUNCATE in the SQL console."
        ),
    )
    read_only_mode: bool = Field(
        default=False,
        description="Reject every statement that is not SELECT/WITH/SHOW/PRAGMA/EXPLAIN.",
    )


class ConsoleConfig(BaseModel):
    max_rows: Annotated[int, Field(ge=1, le=10_000)] = Field(
        default=200,
        description="Hard cap on rows returned by the SQL console and EXPLAIN.",
    )
    browse_limit: Annotated[int, Field(ge=1, le=10_000)] = 50
    tables_limit: Annotated[int, Field(ge=1, le=10_000)] = 50
    tables_limit_max: Annotated[int, Field(ge=1, le=10_000)] = 500


class DriversConfig(BaseModel):
    enabled: list[str] = Field(
        default_factory=lambda: [d.value for d in Dialect],
        description="Driver names users may connect with (aliases accepted).",
    )

    @field_validator("enabled")
    @classmethod
    def _normalize_enabled(cls, v: list[str]) -> list[str]:
        return [str(normalize(name)) for name in v if name.strip()]


class SessionConfig(BaseModel):
    idle_timeout_seconds: Annotated[int, Field(ge=0, le=7 * 24 * 3600)] = Field(
        default=3600,
        description="Sessions idle longer than this are expired (0 = never).",
    )


class ProfilesConfig(BaseModel):
    path: Path | None = Field(
        default=None,
        description="JSON file backing saved connection profiles. None = in-memory.",
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
        env_prefix="WEEBASE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    safety: SafetyConfig = Field(default_factory=SafetyConfig)
    console: ConsoleConfig = Field(default_factory=ConsoleConfig)
    drivers: DriversConfig = Field(default_factory=DriversConfig)
    sessions: SessionConfig = Field(default_factory=SessionConfig)
    profiles: ProfilesConfig = Field(default_factory=ProfilesConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("profiles", mode="before")
    @classmethod
    def expand_profile_path(cls, v: object) -> object:
        if isinstance(v, dict) and isinstance(v.get("path"), str):
            v["path"] = Path(v["path"]).expanduser()
        return v

    @classmethod
    def load(cls, config_file: Path | None = None) -> "Settings":
        """Load settings from file + environment variables."""
        data: dict[str, object] = {}

        candidates = [
            Path("/etc/weebase/config.yaml"),
            Path.home() / ".weebase" / "config.yaml",
        ]
        if config_file:
            candidates.append(config_file)

        for path in candidates:
            if path.exists():
                import yaml

                with path.open() as f:
                    loaded = yaml.safe_load(f) or {}
                    data.update(loaded)

        return cls(**data)


# Module-level singleton, replaced by ``Settings.load()`` at startup.
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
