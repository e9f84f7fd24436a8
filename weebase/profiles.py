"""Saved connection profiles.

A profile is a named ``(driver, dsn)`` pair for quick reconnects.  Two
stores are provided: an in-memory one (the default) and a JSON file store
selected with ``profiles.path`` in the configuration.
"""

from __future__ import annotations

import json
import os
import secrets
import tempfile
import threading
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from weebase.exceptions import ConfigurationError, ProfileNotFoundError
from weebase.logging import get_logger

log = get_logger(__name__)


class ConnectionProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: secrets.token_hex(16))
    name: str
    driver: str
    dsn: str = Field(repr=False)


class ProfileStore(Protocol):
    def list(self) -> list[ConnectionProfile]: ...

    def save(self, profile: ConnectionProfile) -> ConnectionProfile: ...

    def get(self, profile_id: str) -> ConnectionProfile: ...


class InMemoryProfileStore:
    def __init__(self) -> None:
        self._profiles: dict[str, ConnectionProfile] = {}
        self._lock = threading.Lock()

    def list(self) -> list[ConnectionProfile]:
        with self._lock:
            return sorted(self._profiles.values(), key=lambda p: p.name.lower())

    def save(self, profile: ConnectionProfile) -> ConnectionProfile:
        with self._lock:
            self._profiles[profile.id] = profile
        return profile

    def get(self, profile_id: str) -> ConnectionProfile:
        with self._lock:
            profile = self._profiles.get(profile_id)
        if profile is None:
            raise ProfileNotFoundError(profile_id)
        return profile


class JsonFileProfileStore(InMemoryProfileStore):
    """Profiles persisted as a JSON array.

    The whole file is rewritten on every save through a temporary file and
    ``os.replace`` so a crash never leaves a truncated file behind.  The file
    holds DSNs (and therefore passwords) and is created with mode 0600.
    """

    def __init__(self, path: Path) -> None:
        super().__init__()
        self._path = Path(path).expanduser()
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8") or "[]")
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(
                f"cannot read profiles file {self._path}: {exc}",
                context={"path": str(self._path)},
            ) from exc
        for item in raw:
            profile = ConnectionProfile.model_validate(item)
            self._profiles[profile.id] = profile
        log.debug("profiles_loaded", path=str(self._path), count=len(self._profiles))

    def save(self, profile: ConnectionProfile) -> ConnectionProfile:
        with self._lock:
            self._profiles[profile.id] = profile
            self._flush()
        return profile

    def _flush(self) -> None:
        """Write all profiles. Must be called under ``_lock``."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(
            [p.model_dump() for p in self._profiles.values()], indent=2
        )
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".profiles-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.chmod(tmp, 0o600)
            os.replace(tmp, self._path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise


def build_profile_store(path: Path | None) -> ProfileStore:
    return JsonFileProfileStore(path) if path else InMemoryProfileStore()
