"""Persisted descriptor stores: in-memory and one JSON file per model."""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Dict, List, Tuple
from urllib.parse import quote, unquote

from model_errors import CollaboratorFailure, DescriptorNotFound


logger = logging.getLogger("modelkit.descriptors")

_SUFFIX = ".json"


class MemoryDescriptorStore:
    def __init__(self, blobs: Dict[str, str] | None = None) -> None:
        self._blobs: Dict[str, str] = dict(blobs or {})
        self._lock = threading.Lock()

    def list_all(self) -> List[Tuple[str, str]]:
        with self._lock:
            return list(self._blobs.items())

    def read_one(self, name: str) -> str | None:
        with self._lock:
            return self._blobs.get(name)

    def write_one(self, name: str, blob: str) -> None:
        with self._lock:
            self._blobs[name] = blob

    def delete_one(self, name: str) -> None:
        with self._lock:
            if name not in self._blobs:
                raise DescriptorNotFound(f"Descriptor '{name}' not found", path="name")
            del self._blobs[name]


class FileDescriptorStore:
    """Stores each descriptor as ``<dir>/<quoted name>.json``."""

    def __init__(self, directory: str | os.PathLike) -> None:
        self._dir = Path(directory)

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, name: str) -> Path:
        return self._dir / f"{quote(name, safe='')}{_SUFFIX}"

    def list_all(self) -> List[Tuple[str, bytes | None]]:
        """Raw bytes per descriptor file; ``None`` for a file that could not be read."""
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            paths = sorted(p for p in self._dir.iterdir() if p.name.endswith(_SUFFIX))
        except OSError as exc:
            raise CollaboratorFailure(f"Failed to list descriptors: {exc}", detail={"dir": str(self._dir)}) from exc
        entries: List[Tuple[str, bytes | None]] = []
        for path in paths:
            name = unquote(path.name[: -len(_SUFFIX)])
            try:
                entries.append((name, path.read_bytes()))
            except OSError as exc:
                logger.warning("descriptor_unreadable name=%s path=%s error=%s", name, path, exc)
                entries.append((name, None))
        return entries

    def read_one(self, name: str) -> str | None:
        path = self._path(name)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise CollaboratorFailure(f"Failed to read descriptor '{name}': {exc}") from exc

    def write_one(self, name: str, blob: str) -> None:
        path = self._path(name)
        tmp = path.with_suffix(path.suffix + ".tmp")
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            tmp.write_text(blob, encoding="utf-8")
            tmp.replace(path)
        except OSError as exc:
            raise CollaboratorFailure(f"Failed to write descriptor '{name}': {exc}") from exc
        logger.info("descriptor_written name=%s path=%s", name, path)

    def delete_one(self, name: str) -> None:
        path = self._path(name)
        try:
            path.unlink()
        except FileNotFoundError:
            raise DescriptorNotFound(f"Descriptor '{name}' not found", path="name") from None
        except OSError as exc:
            raise CollaboratorFailure(f"Failed to delete descriptor '{name}': {exc}") from exc
