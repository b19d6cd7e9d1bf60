from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


class SourceConfig(BaseModel):
    kind: str = Field(default="standalone", description="Registrierter Quelltyp (standalone, miniflux).")
    url: Optional[str] = Field(default=None, description="Basis-URL der Gegenstelle (nur miniflux).")
    token: Optional[str] = Field(default=None, description="API-Token (nur miniflux).")
    timeout_s: float = Field(default=30.0, gt=0)
    user_agent: str = Field(default="feedsync")

    @field_validator("kind")
    @classmethod
    def _lower(cls, value: str) -> str:
        return value.lower()

    @model_validator(mode="after")
    def _remote_needs_url(self) -> "SourceConfig":
        if self.kind != "standalone" and not self.url:
            raise ValueError(f"source.url fehlt für Quelltyp '{self.kind}'.")
        return self


class StoreConfig(BaseModel):
    backend: Literal["memory", "redis"] = "memory"
    redis_dsn: str = Field(default="redis://localhost:6379/0", description="redis:// URI.")
    namespace: str = Field(default="feedsync")
    conf_path: Optional[str] = Field(default="feedsync-conf.yml", description="Ablage der Lese-Einstellungen.")


class SyncConfig(BaseModel):
    max_parallel_fetches: int = Field(default=4, ge=1)
    page_size: int = Field(default=100, ge=1, le=1000)


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    dir: Optional[str] = Field(default="logs", description="Ohne Verzeichnis nur Konsole.")
    file: str = Field(default="feedsync.log")
    max_bytes: int = Field(default=10 * 1024 * 1024, ge=1024)
    backup_count: int = Field(default=5, ge=0)

    @field_validator("level")
    @classmethod
    def _validate_level(cls, value: str) -> str:
        value = value.upper()
        if value in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            return value
        raise ValueError("level muss DEBUG, INFO, WARNING, ERROR oder CRITICAL sein.")


class AppConfig(BaseModel):
    source: SourceConfig = Field(default_factory=SourceConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(path: str | Path) -> AppConfig:
    """Lädt die YAML-Konfiguration und validiert sie über Pydantic."""
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"Konfigdatei nicht gefunden: {file_path}")
    with file_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    return AppConfig.model_validate(raw)
