"""Key/value persistence backends used by the thread store."""

from __future__ import annotations

import enum
import json
import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

__all__ = [
    "StorageScope",
    "StorageTarget",
    "StorageService",
    "MemoryStorage",
    "JsonFileStorage",
]

LOGGER = logging.getLogger(__name__)
_DEFAULT_STORAGE_PATH = Path.home() / ".threadweaver" / "storage.json"


class StorageScope(str, enum.Enum):
    """Visibility of a stored value."""

    APPLICATION = "application"
    WORKSPACE = "workspace"


class StorageTarget(str, enum.Enum):
    """Durability class of a stored value."""

    USER = "user"
    MACHINE = "machine"


@runtime_checkable
class StorageService(Protocol):
    """Minimal string key/value store."""

    def get(self, key: str, scope: StorageScope) -> str | None:
        ...

    def store(self, key: str, value: str, scope: StorageScope, target: StorageTarget) -> None:
        ...


class MemoryStorage:
    """In-process storage, mainly for tests and ephemeral sessions."""

    def __init__(self, initial: dict[tuple[str, StorageScope], str] | None = None) -> None:
        self._values: dict[tuple[str, StorageScope], str] = dict(initial or {})
        self.writes: list[tuple[str, StorageScope, StorageTarget]] = []

    def get(self, key: str, scope: StorageScope) -> str | None:
        return self._values.get((key, scope))

    def store(self, key: str, value: str, scope: StorageScope, target: StorageTarget) -> None:
        self._values[(key, scope)] = value
        self.writes.append((key, scope, target))


class JsonFileStorage:
    """Storage backed by a single JSON document on disk.

    The document maps each scope name to a ``{key: value}`` object. Every
    ``store`` call rewrites the file through a temporary sibling and an atomic
    rename, so the file on disk always matches the last completed write.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or _DEFAULT_STORAGE_PATH
        self._cache: dict[str, dict[str, str]] = self._read()

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    def get(self, key: str, scope: StorageScope) -> str | None:
        value = self._cache.get(scope.value, {}).get(key)
        return value if isinstance(value, str) else None

    def store(self, key: str, value: str, scope: StorageScope, target: StorageTarget) -> None:
        bucket = dict(self._cache.get(scope.value, {}))
        bucket[key] = value
        updated = {**self._cache, scope.value: bucket}
        self._write(updated)
        self._cache = updated
        LOGGER.debug("Stored %s (%s/%s, %d chars)", key, scope.value, target.value, len(value))

    def _read(self) -> dict[str, dict[str, str]]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning("Storage file %s is unreadable: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Storage file %s does not contain an object; ignoring", self._path)
            return {}
        return {scope: dict(bucket) for scope, bucket in payload.items() if isinstance(bucket, dict)}

    def _write(self, payload: dict[str, dict[str, str]]) -> None:
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
