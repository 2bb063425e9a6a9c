"""Shared dataclasses used across connection/runner modules."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Manifest:
    """Identity presented to the service when a connection is opened."""

    app_id: str
    display_name: str
    version: str

    def __post_init__(self) -> None:
        for field_name in ("app_id", "display_name", "version"):
            value = getattr(self, field_name)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"Manifest.{field_name} must be a non-empty string.")

    @property
    def application_name(self) -> str:
        """Label reported to PostgreSQL as ``application_name``."""

        # Server truncates application_name to NAMEDATALEN - 1 bytes.
        name = f"{self.app_id}@{self.version}".encode()[:63]
        return name.decode("utf-8", errors="ignore")


@dataclass(frozen=True, slots=True)
class ConnectionProfile:
    """Runtime representation of a connection profile."""

    name: str
    dsn: str | None = None
    host: str | None = None
    port: int | None = None
    database: str | None = None
    user: str | None = None
    password: str | None = None
    connect_timeout: float = 5.0


__all__ = ["ConnectionProfile", "Manifest"]
