"""Dialect registry.

Canonical dialect names, alias normalization, and the driver profiles that
tell the connection layer which SQLAlchemy driver backs each dialect.

Built-in profiles (postgres, mysql, sqlite, sqlserver) are registered at the
bottom of this file and are always available.  Extra dialects can be added
at runtime::

    from weebase.dialects import DialectRegistry
    DialectRegistry.register("oracle", sqlalchemy_driver="oracle+oracledb", default_port=1521)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from weebase.exceptions import ConfigurationError

logger = logging.getLogger("weebase.dialects")


class Dialect(str, Enum):
    POSTGRES = "postgres"
    MYSQL = "mysql"
    SQLITE = "sqlite"
    SQLSERVER = "sqlserver"

    def __str__(self) -> str:
        return self.value


_ALIASES: dict[str, Dialect] = {
    "postgres": Dialect.POSTGRES,
    "postgresql": Dialect.POSTGRES,
    "pg": Dialect.POSTGRES,
    "pgx": Dialect.POSTGRES,
    "mysql": Dialect.MYSQL,
    "mariadb": Dialect.MYSQL,
    "sqlite": Dialect.SQLITE,
    "sqlite3": Dialect.SQLITE,
    "sqlserver": Dialect.SQLSERVER,
    "mssql": Dialect.SQLSERVER,
}


def normalize(driver: str | Dialect) -> Dialect | str:
    """Map a free-form driver name to its canonical :class:`Dialect`.

    Total: an unrecognised name comes back lower-cased as an opaque token so
    that callers can still quote identifiers with a sensible default.
    """
    if isinstance(driver, Dialect):
        return driver
    key = (driver or "").strip().lower()
    return _ALIASES.get(key, key)


def require_dialect(driver: str | Dialect, operation: str = "") -> Dialect:
    """Return the canonical dialect or raise where a dialect branch is required."""
    dialect = normalize(driver)
    if not isinstance(dialect, Dialect):
        suffix = f" for {operation}" if operation else ""
        raise ConfigurationError(
            f"unsupported driver{suffix}: {driver}",
            context={"driver": driver, "operation": operation},
        )
    return dialect


# ---------------------------------------------------------------------------
# Driver profiles
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DriverProfile:
    """Describes how to reach one dialect through SQLAlchemy."""

    name: str
    """Canonical dialect name, e.g. ``"postgres"``."""

    sqlalchemy_driver: str
    """SQLAlchemy ``drivername``, e.g. ``"postgresql+psycopg2"``."""

    default_port: int | None = None

    engine_kwargs: dict[str, Any] = field(default_factory=dict)
    """Extra keyword arguments passed to ``sqlalchemy.create_engine()``."""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("DriverProfile.name must be non-empty")
        if not self.sqlalchemy_driver:
            raise ValueError("DriverProfile.sqlalchemy_driver must be non-empty")
        if self.default_port is not None and not (1 <= self.default_port <= 65535):
            raise ValueError(
                f"DriverProfile.default_port must be 1-65535, got {self.default_port}"
            )


class DialectRegistry:
    """Class-level registry of :class:`DriverProfile` objects keyed by dialect."""

    _profiles: dict[str, DriverProfile] = {}

    @classmethod
    def register(
        cls,
        name: str,
        *,
        sqlalchemy_driver: str,
        default_port: int | None = None,
        engine_kwargs: dict[str, Any] | None = None,
    ) -> None:
        key = str(normalize(name))
        if key in cls._profiles:
            logger.warning("Overwriting existing driver profile for '%s'", key)
        cls._profiles[key] = DriverProfile(
            name=key,
            sqlalchemy_driver=sqlalchemy_driver,
            default_port=default_port,
            engine_kwargs=engine_kwargs or {},
        )

    @classmethod
    def get(cls, driver: str | Dialect) -> DriverProfile:
        key = str(normalize(driver))
        profile = cls._profiles.get(key)
        if profile is None:
            raise ConfigurationError(
                f"unsupported driver: {driver}. Available drivers: {cls.list()}",
                context={"driver": driver},
            )
        return profile

    @classmethod
    def list(cls) -> list[str]:
        return sorted(cls._profiles)

    @classmethod
    def unregister(cls, name: str) -> None:
        """Drop a non-built-in profile. **For testing only.**"""
        cls._profiles.pop(str(normalize(name)), None)


class EnabledDrivers:
    """The subset of drivers an operator allows users to connect with."""

    def __init__(self, enabled: Iterable[str]) -> None:
        self._enabled = {str(normalize(n)) for n in enabled if n and n.strip()}

    def is_enabled(self, driver: str | Dialect) -> bool:
        return str(normalize(driver)) in self._enabled

    def validate(self, driver: str | Dialect) -> None:
        if not self.is_enabled(driver):
            raise ConfigurationError(
                f"unsupported driver: {driver}",
                context={"driver": driver, "enabled": self.list()},
            )

    def list(self) -> list[str]:
        return sorted(self._enabled)


# Built-in profiles
DialectRegistry.register(
    Dialect.POSTGRES, sqlalchemy_driver="postgresql+psycopg2", default_port=5432
)
DialectRegistry.register(
    Dialect.MYSQL, sqlalchemy_driver="mysql+mysqlconnector", default_port=3306
)
DialectRegistry.register(Dialect.SQLITE, sqlalchemy_driver="sqlite")
DialectRegistry.register(
    Dialect.SQLSERVER, sqlalchemy_driver="mssql+pymssql", default_port=1433
)
