"""
Synchronisierung eines lokalen Feed-Caches mit einer entfernten Quelle.

Dieses Paket deklariert nur die öffentlich verfügbaren Einstiegspunkte
für den Orchestrator und die Konfig-Ladefunktion.
"""

from .config import AppConfig, load_config
from .orchestrator import FeedSyncOrchestrator

__all__ = ["AppConfig", "FeedSyncOrchestrator", "load_config"]
