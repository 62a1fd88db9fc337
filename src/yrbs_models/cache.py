"""Memoization of expensive tuning and fitting results.

Keys are content hashes of whatever identifies the computation (workflow
definition, dataset, hyperparameters), so a changed recipe or grid never
reuses a stale artifact.
"""

import os
from typing import Any, Callable, Dict

import joblib

from .utils.logger import get_logger

_MISSING = object()


def make_key(*parts: Any) -> str:
    return joblib.hash(parts)


class MemoryBackend:
    def __init__(self):
        self._store: Dict[str, Any] = {}

    def get(self, key: str, default: Any = _MISSING) -> Any:
        return self._store.get(key, default)

    def put(self, key: str, value: Any) -> None:
        self._store[key] = value

    def __contains__(self, key: str) -> bool:
        return key in self._store


class DiskBackend:
    """One joblib file per key under `directory`."""

    def __init__(self, directory: str):
        self.directory = directory

    def _path(self, key: str) -> str:
        return os.path.join(self.directory, f"{key}.joblib")

    def get(self, key: str, default: Any = _MISSING) -> Any:
        path = self._path(key)
        if not os.path.exists(path):
            return default
        return joblib.load(path)

    def put(self, key: str, value: Any) -> None:
        os.makedirs(self.directory, exist_ok=True)
        joblib.dump(value, self._path(key))

    def __contains__(self, key: str) -> bool:
        return os.path.exists(self._path(key))


class ArtifactCache:
    def __init__(self, backend=None):
        self.backend = backend if backend is not None else MemoryBackend()
        self.logger = get_logger(self.__class__.__name__)

    def get_or_compute(self, tag: str, key_parts: tuple, compute: Callable[[], Any]) -> Any:
        key = make_key(tag, *key_parts)
        value = self.backend.get(key)
        if value is not _MISSING:
            self.logger.info(f"Loaded cached {tag} ({key[:8]})")
            return value
        self.logger.info(f"Computing {tag} ({key[:8]})")
        value = compute()
        self.backend.put(key, value)
        return value
