"""Process-wide model registry backed by a descriptor store."""

from __future__ import annotations

import copy
import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Tuple

from modelkit.canonical_json import JsonValueError, document_dumps
from modelkit.descriptor_hash import descriptor_hash
from model_errors import DescriptorNotFound, InvalidSchema, ModelAlreadyExists, ModelNotFound
from schema_validator import model_key, validate_and_normalize


logger = logging.getLogger("modelkit.registry")

_STAMP_STEP = timedelta(milliseconds=1)


def _format_stamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def _parse_stamp(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _next_stamp(previous: Any) -> str:
    """Current UTC time at millisecond precision, strictly after ``previous``."""
    now = datetime.now(timezone.utc)
    now = now.replace(microsecond=now.microsecond // 1000 * 1000)
    prev = _parse_stamp(previous)
    if prev is not None and now <= prev:
        now = prev + _STAMP_STEP
    return _format_stamp(now)


@dataclass
class LoadResult:
    loaded: List[str] = field(default_factory=list)
    failures: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class ModelRegistry:
    """In-memory map of model key -> canonical descriptor.

    Stored descriptors are never mutated in place: writes build a new dict
    and swap it in, and readers receive deep copies. Writes to the same
    model name are serialized by a per-name lock.
    """

    def __init__(self, descriptor_store) -> None:
        self._store = descriptor_store
        self._models: Dict[str, dict] = {}
        self._map_lock = threading.Lock()
        # key -> [lock, holders]; entries live only while someone holds or waits
        self._name_locks: Dict[str, list] = {}

    @contextmanager
    def _locked(self, key: str):
        with self._map_lock:
            entry = self._name_locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._map_lock:
                entry[1] -= 1
                if entry[1] == 0:
                    self._name_locks.pop(key, None)

    def load_all(self) -> LoadResult:
        result = LoadResult()
        models: Dict[str, dict] = {}
        for name, blob in self._store.list_all():
            try:
                if blob is None:
                    raise InvalidSchema("descriptor could not be read", path="$")
                if isinstance(blob, (bytes, bytearray)):
                    blob = blob.decode("utf-8")
                descriptor = validate_and_normalize(json.loads(blob))
            except (ValueError, TypeError, InvalidSchema) as exc:
                logger.warning("model_load_failed name=%s error=%s", name, exc)
                result.failures.append((name, str(exc)))
                continue
            models[model_key(descriptor["name"])] = descriptor
            result.loaded.append(descriptor["name"])
        with self._map_lock:
            self._models = models
        logger.info("models_loaded count=%s failed=%s", len(models), len(result.failures))
        return result

    def get(self, name: str) -> dict | None:
        if not isinstance(name, str):
            return None
        descriptor = self._models.get(model_key(name))
        return copy.deepcopy(descriptor) if descriptor is not None else None

    def require(self, name: str) -> dict:
        descriptor = self.get(name)
        if descriptor is None:
            raise ModelNotFound(f"Model '{name}' not found", path="model_name")
        return descriptor

    def exists(self, name: str) -> bool:
        return isinstance(name, str) and model_key(name) in self._models

    def get_all(self) -> list[dict]:
        return [copy.deepcopy(d) for d in list(self._models.values())]

    def count(self) -> int:
        return len(self._models)

    def snapshot(self) -> Dict[str, str]:
        return {key: descriptor_hash(d) for key, d in list(self._models.items())}

    def save(self, raw: Any) -> dict:
        return self._save(raw, mode="upsert")

    def publish(self, raw: Any) -> dict:
        return self._save(raw, mode="create")

    def update(self, name: str, raw: Any) -> dict:
        if isinstance(raw, dict):
            raw = {**raw, "name": name}
        return self._save(raw, mode="update")

    def delete(self, name: str) -> None:
        key = model_key(name)
        with self._locked(key):
            try:
                self._store.delete_one(key)
            except DescriptorNotFound as exc:
                raise ModelNotFound(f"Model '{name}' not found", path="name") from exc
            with self._map_lock:
                self._models.pop(key, None)
        logger.info("model_deleted name=%s", name)

    def _save(self, raw: Any, mode: str) -> dict:
        descriptor = validate_and_normalize(raw)
        name = descriptor["name"]
        key = model_key(name)
        with self._locked(key):
            existing = self._models.get(key)
            if mode == "create" and existing is not None:
                raise ModelAlreadyExists(f"Model '{name}' already exists", path="name")
            if mode == "update" and existing is None:
                raise ModelNotFound(f"Model '{name}' not found", path="name")
            previous = existing or {}
            descriptor["updatedAt"] = _next_stamp(previous.get("updatedAt"))
            descriptor["createdAt"] = previous.get("createdAt") or descriptor.get("createdAt") or descriptor["updatedAt"]
            try:
                blob = document_dumps(descriptor)
            except JsonValueError as exc:
                raise InvalidSchema(f"descriptor is not JSON-serializable: {exc}", path="$") from exc
            self._store.write_one(key, blob)
            with self._map_lock:
                self._models[key] = descriptor
        logger.info("model_saved name=%s mode=%s fields=%s", name, mode, len(descriptor["fields"]))
        return copy.deepcopy(descriptor)
