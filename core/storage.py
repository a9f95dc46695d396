"""
Object storage collaborators.

The core only needs two operations from storage: download a package by
path and upload a finished artifact. Both accept a Deadline so a slow
backend cannot stall a concatenation run indefinitely.

Implementations:
    - LocalObjectStorage: objects are files under a root directory
    - MemoryObjectStorage: process-local dict, used by tests and demos
"""

from __future__ import annotations

import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional

from .deadline import Deadline
from .exceptions import NotFoundError, RemoteIOError, StorageConflictError
from logging_config import get_logger


logger = get_logger(__name__)


def normalize_key(path: str) -> str:
    """
    Normalize a storage key to a relative POSIX path.

    Raises:
        RemoteIOError: If the key is empty or escapes the storage root
    """
    if not path or not path.strip():
        raise RemoteIOError("Storage path is empty", path=path)

    key = PurePosixPath(path.replace("\\", "/").lstrip("/"))
    if any(part == ".." for part in key.parts):
        raise RemoteIOError("Storage path escapes the storage root", path=path)
    return str(key)


class ObjectStorage(ABC):
    """Download/upload interface consumed by the core."""

    @abstractmethod
    def download(self, path: str, deadline: Optional[Deadline] = None) -> bytes:
        """
        Fetch an object.

        Raises:
            NotFoundError: If no object exists at ``path``
            RemoteIOError: On backend failure
            OperationTimeoutError: If the deadline has passed
        """

    @abstractmethod
    def upload(
        self,
        path: str,
        data: bytes,
        deadline: Optional[Deadline] = None,
        upsert: bool = False,
    ) -> str:
        """
        Store an object and return its normalized key.

        Raises:
            StorageConflictError: If the object exists and ``upsert`` is False
            RemoteIOError: On backend failure
            OperationTimeoutError: If the deadline has passed
        """

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Whether an object is stored at ``path``."""


class LocalObjectStorage(ObjectStorage):
    """Objects stored as files beneath ``root``."""

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info(f"LocalObjectStorage rooted at {self.root}")

    def _resolve(self, path: str) -> Path:
        return self.root / normalize_key(path)

    def download(self, path: str, deadline: Optional[Deadline] = None) -> bytes:
        deadline = deadline or Deadline.unbounded()
        deadline.check("storage download", path=path)

        target = self._resolve(path)
        if not target.is_file():
            raise NotFoundError("Object", path)

        try:
            data = target.read_bytes()
        except OSError as e:
            raise RemoteIOError(f"Failed to read object: {e}", path=path) from e

        deadline.check("storage download", path=path)
        logger.debug(f"Downloaded {path} ({len(data)} bytes)")
        return data

    def upload(
        self,
        path: str,
        data: bytes,
        deadline: Optional[Deadline] = None,
        upsert: bool = False,
    ) -> str:
        deadline = deadline or Deadline.unbounded()
        deadline.check("storage upload", path=path)

        key = normalize_key(path)
        target = self.root / key
        if target.exists() and not upsert:
            raise StorageConflictError(key)

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp = target.with_name(target.name + ".part")
            tmp.write_bytes(data)
            os.replace(tmp, target)
        except OSError as e:
            raise RemoteIOError(f"Failed to write object: {e}", path=key) from e

        logger.info(f"Uploaded {key} ({len(data)} bytes)")
        return key

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()


class MemoryObjectStorage(ObjectStorage):
    """Dictionary-backed storage. Thread-safe."""

    def __init__(self, objects: Optional[Dict[str, bytes]] = None):
        self._objects: Dict[str, bytes] = {}
        self._lock = threading.Lock()
        for path, data in (objects or {}).items():
            self._objects[normalize_key(path)] = data

    def download(self, path: str, deadline: Optional[Deadline] = None) -> bytes:
        deadline = deadline or Deadline.unbounded()
        deadline.check("storage download", path=path)

        key = normalize_key(path)
        with self._lock:
            data = self._objects.get(key)
        if data is None:
            raise NotFoundError("Object", path)
        return data

    def upload(
        self,
        path: str,
        data: bytes,
        deadline: Optional[Deadline] = None,
        upsert: bool = False,
    ) -> str:
        deadline = deadline or Deadline.unbounded()
        deadline.check("storage upload", path=path)

        key = normalize_key(path)
        with self._lock:
            if key in self._objects and not upsert:
                raise StorageConflictError(key)
            self._objects[key] = bytes(data)
        return key

    def exists(self, path: str) -> bool:
        with self._lock:
            return normalize_key(path) in self._objects

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._objects)


def create_storage(backend: str, root: Optional[str] = None) -> ObjectStorage:
    """Build the configured storage backend ("local" or "memory")."""
    backend = (backend or "local").lower()
    if backend == "memory":
        return MemoryObjectStorage()
    if backend == "local":
        if not root:
            raise ValueError("STORAGE_ROOT is required for local storage")
        return LocalObjectStorage(root)
    raise ValueError(f"Unknown storage backend: {backend}")
