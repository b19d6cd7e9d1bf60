from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

import yaml
from pydantic import ValidationError

from ..core.flow import StateFlow
from ..core.models import Conf
from ..errors import StoreError

logger = logging.getLogger("feedsync.conf")


class ConfStore:
    """Einzelner Konfigurationsdatensatz, als YAML-Datei persistiert.

    Ohne Pfad lebt die Konfiguration nur im Speicher. ``synced_on_startup``
    gilt pro Prozess und wird beim Öffnen immer zurückgesetzt.
    """

    def __init__(self, path: Optional[str | Path] = None) -> None:
        self._path = Path(path) if path is not None else None
        self.conf: StateFlow[Conf] = StateFlow(self._load().transform(synced_on_startup=False))

    def _load(self) -> Conf:
        if self._path is None or not self._path.exists():
            return Conf()
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                raw = yaml.safe_load(handle) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise StoreError(f"Konfiguration nicht lesbar: {self._path}: {exc}") from exc
        try:
            return Conf.model_validate(raw)
        except ValidationError as exc:
            raise StoreError(f"Konfiguration ungültig: {self._path}: {exc}") from exc

    def _save(self, conf: Conf) -> None:
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("w", encoding="utf-8") as handle:
                yaml.safe_dump(conf.model_dump(mode="json"), handle, sort_keys=True)
        except OSError as exc:
            raise StoreError(f"Konfiguration nicht speicherbar: {self._path}: {exc}") from exc

    def update(self, transform: Callable[[Conf], Conf]) -> Conf:
        """Wendet ``transform`` synchron an, speichert und benachrichtigt."""
        conf = transform(self.conf.value)
        if conf != self.conf.value:
            self._save(conf)
            logger.debug("conf updated %s", conf.model_dump(mode="json"))
        self.conf.set(conf)
        return conf
