"""In-memory record store."""

from __future__ import annotations

import copy
import threading
import uuid
from typing import Dict

from model_errors import RecordNotFound


class MemoryRecordStore:
    def __init__(self) -> None:
        self._records: Dict[str, Dict[str, dict]] = {}
        self._lock = threading.Lock()

    def _bucket(self, model_key: str) -> Dict[str, dict]:
        return self._records.setdefault(model_key, {})

    def insert(self, model_key: str, record: dict) -> dict:
        record = copy.deepcopy(record)
        record_id = str(record.get("id") or uuid.uuid4())
        record["id"] = record_id
        with self._lock:
            self._bucket(model_key)[record_id] = record
        return copy.deepcopy(record)

    def find_all(self, model_key: str) -> list[dict]:
        with self._lock:
            items = list(self._bucket(model_key).values())
        return [copy.deepcopy(r) for r in items]

    def find_one(self, model_key: str, record_id: str) -> dict | None:
        with self._lock:
            record = self._bucket(model_key).get(record_id)
        return copy.deepcopy(record) if record else None

    def merge(self, model_key: str, record_id: str, partial: dict) -> dict:
        with self._lock:
            bucket = self._bucket(model_key)
            if record_id not in bucket:
                raise RecordNotFound("Record not found", path="id")
            record = copy.deepcopy(bucket[record_id])
            record.update(copy.deepcopy(partial))
            record["id"] = record_id
            bucket[record_id] = record
        return copy.deepcopy(record)

    def remove(self, model_key: str, record_id: str) -> None:
        with self._lock:
            bucket = self._bucket(model_key)
            if record_id not in bucket:
                raise RecordNotFound("Record not found", path="id")
            del bucket[record_id]
