"""Persistence and configuration services."""

from .settings import Settings, SettingsStore, SecretVault
from .storage import JsonFileStorage, MemoryStorage, StorageScope, StorageService, StorageTarget

__all__ = [
    "Settings",
    "SettingsStore",
    "SecretVault",
    "JsonFileStorage",
    "MemoryStorage",
    "StorageScope",
    "StorageService",
    "StorageTarget",
]
