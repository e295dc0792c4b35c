"""
Sync configuration.

Configuration can be provided directly, via environment variables or
via a YAML settings file:

```yaml
sync:
  namespace: tt
  store_backend: sqlite          # memory | file | sqlite
  local_path: ~/.plant_care_sync
  remote_url: https://xyz.example.co
  remote_api_key: "..."
  photo_bucket: plant-photos
  remote_timeout_s: 30
  auto_sync_interval_s: 30
  strict_queue_durability: false
  tables:
    plant: plants
```
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml

from .exceptions import ConfigError

STORE_BACKENDS = ("memory", "file", "sqlite")

DEFAULT_LOCAL_PATH = Path.home() / ".plant_care_sync"

DEFAULT_TABLES = {
    "location": "locations",
    "plant": "plants",
    "action": "actions",
}

ENV_PREFIX = "PLANT_SYNC_"


def _default_tables() -> dict[str, str]:
    return dict(DEFAULT_TABLES)


def _parse_bool(field_name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off", ""):
        return False
    raise ConfigError(field_name, f"expected a boolean, got {value!r}")


def _parse_float(field_name: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(field_name, f"expected a number, got {value!r}") from None


@dataclass
class SyncConfig:
    """Configuration for the local store, the remote adapter and the sync engine.

    Environment Variables:
        PLANT_SYNC_NAMESPACE: Local store namespace (default: tt)
        PLANT_SYNC_STORE_BACKEND: memory, file or sqlite (default: file)
        PLANT_SYNC_LOCAL_PATH: Directory for local state (default: ~/.plant_care_sync)
        PLANT_SYNC_REMOTE_URL: Base URL of the hosted backend
        PLANT_SYNC_REMOTE_API_KEY: API key for the hosted backend
        PLANT_SYNC_PHOTO_BUCKET: Object storage bucket (default: plant-photos)
        PLANT_SYNC_REMOTE_TIMEOUT_S: Timeout per remote call (default: 30)
        PLANT_SYNC_AUTO_SYNC_INTERVAL_S: Interval trigger period (default: 30)
        PLANT_SYNC_STRICT_QUEUE_DURABILITY: Raise when a queued mutation cannot be persisted
        PLANT_SYNC_CONNECTIVITY_HOST: Host probed for connectivity (default: remote host)

    Attributes:
        namespace: Prefix isolating this app's keys in the local store
        store_backend: Local store implementation
        local_path: Directory for file/sqlite backends
        remote_url: Base URL of the hosted backend
        remote_api_key: API key for the hosted backend
        photo_bucket: Bucket that receives offline photos
        tables: Entity type -> remote table name
        remote_timeout_s: Timeout applied to every remote call
        auto_sync_interval_s: Period of the interval trigger
        strict_queue_durability: Surface queue persistence failures to callers
        connectivity_host: Host used by the connectivity probe
    """

    namespace: str = "tt"
    store_backend: str = "file"
    local_path: str | None = None
    remote_url: str | None = None
    remote_api_key: str | None = None
    photo_bucket: str = "plant-photos"
    tables: dict[str, str] = field(default_factory=_default_tables)
    remote_timeout_s: float = 30.0
    auto_sync_interval_s: float = 30.0
    strict_queue_durability: bool = False
    connectivity_host: str | None = None

    def __post_init__(self) -> None:
        if self.store_backend not in STORE_BACKENDS:
            raise ConfigError(
                "store_backend", f"must be one of {', '.join(STORE_BACKENDS)}, got {self.store_backend!r}"
            )
        if not self.namespace:
            raise ConfigError("namespace", "must not be empty")
        if self.remote_timeout_s <= 0:
            raise ConfigError("remote_timeout_s", "must be positive")
        if self.auto_sync_interval_s <= 0:
            raise ConfigError("auto_sync_interval_s", "must be positive")
        self.tables = {**DEFAULT_TABLES, **(self.tables or {})}

    @property
    def base_path(self) -> Path:
        """Directory holding local state."""
        if self.local_path:
            return Path(self.local_path).expanduser()
        return DEFAULT_LOCAL_PATH

    @property
    def probe_host(self) -> str | None:
        """Host checked by the connectivity probe."""
        if self.connectivity_host:
            return self.connectivity_host
        if self.remote_url:
            return urlparse(self.remote_url).hostname
        return None

    def table_for(self, entity_type: str) -> str:
        """Remote table for an entity type."""
        try:
            return self.tables[entity_type]
        except KeyError:
            raise ConfigError("tables", f"no table configured for {entity_type}") from None

    @classmethod
    def from_dict(cls, values: dict[str, Any]) -> SyncConfig:
        """Create configuration from a mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {k: v for k, v in values.items() if k in known and v is not None}

        for name in ("remote_timeout_s", "auto_sync_interval_s"):
            if name in kwargs:
                kwargs[name] = _parse_float(name, kwargs[name])
        if "strict_queue_durability" in kwargs:
            kwargs["strict_queue_durability"] = _parse_bool(
                "strict_queue_durability", kwargs["strict_queue_durability"]
            )
        if "tables" in kwargs and not isinstance(kwargs["tables"], dict):
            raise ConfigError("tables", "expected a mapping of entity type to table name")
        for name in ("namespace", "store_backend", "local_path", "remote_url",
                     "remote_api_key", "photo_bucket", "connectivity_host"):
            if name in kwargs:
                kwargs[name] = str(kwargs[name])

        return cls(**kwargs)

    @classmethod
    def from_environment(cls) -> SyncConfig:
        """Create configuration from PLANT_SYNC_* environment variables."""
        values: dict[str, Any] = {}
        for f in fields(cls):
            if f.name == "tables":
                continue
            raw = os.environ.get(f"{ENV_PREFIX}{f.name.upper()}")
            if raw is not None:
                values[f.name] = raw
        return cls.from_dict(values)

    @classmethod
    def from_yaml(cls, path: Path | str) -> SyncConfig:
        """Create configuration from the ``sync`` section of a YAML file.

        A missing file yields the defaults.
        """
        config_path = Path(path).expanduser()
        if not config_path.exists():
            return cls()

        try:
            content = yaml.safe_load(config_path.read_text()) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError("file", f"cannot read {config_path}: {e}") from e

        if not isinstance(content, dict):
            raise ConfigError("file", f"{config_path} must contain a mapping")
        section = content.get("sync", {}) or {}
        if not isinstance(section, dict):
            raise ConfigError("sync", "expected a mapping")
        return cls.from_dict(section)
