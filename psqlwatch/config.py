"""App configuration loading helpers."""

from __future__ import annotations

import logging
from pathlib import Path

import tomllib

from pydantic import BaseModel, Field, ValidationError

from .models import ConnectionProfile, Manifest

LOG = logging.getLogger(__name__)

CONFIG_FILE = Path.home() / ".config" / "psqlwatch" / "config.toml"


class ManifestConfig(BaseModel):
    """Application identity stored in config.toml."""

    app_id: str = Field(default="com.example.psqlwatch", min_length=1)
    display_name: str = Field(default="psqlwatch", min_length=1)
    version: str = Field(default="1.0.0", min_length=1)

    def to_manifest(self) -> Manifest:
        return Manifest(app_id=self.app_id, display_name=self.display_name, version=self.version)


class ConnectionProfileConfig(BaseModel):
    """Connection profile configuration stored in config.toml."""

    name: str = "Local"
    dsn: str | None = None
    host: str | None = "localhost"
    port: int | None = 5432
    database: str | None = "postgres"
    user: str | None = "postgres"
    password: str | None = None
    connect_timeout: float = Field(default=5.0, gt=0)

    def to_profile(self) -> ConnectionProfile:
        return ConnectionProfile(
            name=self.name,
            dsn=self.dsn,
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
            connect_timeout=self.connect_timeout,
        )


class RetryConfig(BaseModel):
    """Retry policy knobs. ``max_retries=None`` retries forever."""

    retry_timeout_ms: int = Field(default=0, ge=0)
    max_retries: int | None = Field(default=None, ge=0)

    @property
    def delay_seconds(self) -> float:
        return self.retry_timeout_ms / 1000


class WatchConfig(BaseModel):
    """Settings for the channel watcher work function."""

    channel: str = Field(default="events", min_length=1)
    resubscribe_after_s: float = Field(default=10.0, ge=0)
    idle_interval_s: float = Field(default=1.0, ge=0)
    max_cycles: int | None = Field(default=None, ge=1)


class AppConfig(BaseModel):
    """Shape of the application configuration file."""

    manifest: ManifestConfig = Field(default_factory=ManifestConfig)
    profile: ConnectionProfileConfig = Field(default_factory=ConnectionProfileConfig)
    retry: RetryConfig = Field(default_factory=lambda: RetryConfig(retry_timeout_ms=1000))
    watch: WatchConfig = Field(default_factory=WatchConfig)
    demo: bool = False

    def with_demo(self, enabled: bool) -> AppConfig:
        """Return a copy with the demo provider toggled."""

        return self.model_copy(update={"demo": enabled})


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    try:
        data = _read_config_file(path or CONFIG_FILE)
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError):
        return AppConfig()
    try:
        return AppConfig.model_validate(data)
    except ValidationError as exc:
        LOG.warning("Ignoring invalid config file: %s", exc.errors()[0].get("msg", exc))
        return AppConfig()


def _read_config_file(path: Path) -> dict[str, object]:
    with path.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    for section in ("manifest", "profile", "retry", "watch"):
        value = raw.get(section)
        if isinstance(value, dict):
            data[section] = value
    demo = raw.get("demo")
    if isinstance(demo, bool):
        data["demo"] = demo
    return data


__all__ = [
    "AppConfig",
    "CONFIG_FILE",
    "ConnectionProfileConfig",
    "ManifestConfig",
    "RetryConfig",
    "WatchConfig",
    "load_config",
]
