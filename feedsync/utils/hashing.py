from __future__ import annotations

import hashlib


def stable_id(*parts: str) -> str:
    """Erzeugt eine stabile ID aus den übergebenen Bestandteilen."""
    return hashlib.sha256(":".join(parts).encode()).hexdigest()[:16]
