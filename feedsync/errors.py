from __future__ import annotations

from typing import Optional


class FeedSyncError(Exception):
    """Basis für erwartbare Laufzeitfehler (Netz, Format, Speicher)."""


class TransportError(FeedSyncError):
    """Gegenstelle nicht erreichbar oder Antwort ohne 2xx-Status."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ParseError(FeedSyncError):
    """Antwort der Gegenstelle ist nicht lesbar."""


class StoreError(FeedSyncError):
    """Persistenz fehlgeschlagen."""


class InvariantError(RuntimeError):
    """Programmierfehler. Wird nie als Sync-Fehler behandelt."""
