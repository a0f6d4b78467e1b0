"""Generic record CRUD over a RecordStore, driven by a model descriptor."""

from __future__ import annotations

import copy
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from access_decision import SUPER_ROLE
from modelkit.field_values import FieldValueError, coerce_value
from model_errors import InvalidRecord
from schema_validator import model_key


logger = logging.getLogger("modelkit.records")

_RESERVED_KEYS = ("id",)


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _fields_by_name(model: dict) -> dict:
    return {f.get("name"): f for f in model.get("fields") or [] if isinstance(f, dict) and f.get("name")}


def apply_defaults(model: dict, data: dict) -> dict:
    updated = dict(data)
    for name, field in _fields_by_name(model).items():
        if field.get("default") is None:
            continue
        if updated.get(name) is None:
            updated[name] = copy.deepcopy(field["default"])
    return updated


def coerce_payload(model: dict, data: Any) -> dict:
    """Coerce declared fields to their kinds; undeclared keys pass through."""
    if not isinstance(data, dict):
        raise InvalidRecord("Record data must be an object", path="$")
    fields = _fields_by_name(model)
    errors = []
    out: dict = {}
    for key, value in data.items():
        if key in _RESERVED_KEYS:
            continue
        field = fields.get(key)
        if field is None:
            out[key] = copy.deepcopy(value)
            continue
        try:
            out[key] = coerce_value(field.get("type"), value)
        except FieldValueError as exc:
            errors.append({"field": key, "type": field.get("type"), "message": f"{key} {exc.message}"})
    if errors:
        raise InvalidRecord(errors[0]["message"], path=errors[0]["field"], detail={"errors": errors})
    return out


class RecordService:
    """Performs no authorization; callers decide before invoking it."""

    def __init__(self, record_store) -> None:
        self._store = record_store

    def create(self, model_name: str, payload: Any, caller_id: Any, model: dict, caller_role: Any = None) -> dict:
        data = apply_defaults(model, coerce_payload(model, payload))
        owner_field = model.get("ownerField")
        # only Admin may create a record on behalf of another owner
        if owner_field and caller_id is not None and (caller_role != SUPER_ROLE or data.get(owner_field) is None):
            data[owner_field] = caller_id
        if model.get("timestamps", True):
            now = _now()
            data["createdAt"] = now
            data["updatedAt"] = now
        data["id"] = str(uuid.uuid4())
        record = self._store.insert(model_key(model_name), data)
        logger.info("record_created model=%s id=%s", model_key(model_name), record.get("id"))
        return record

    def find_all(self, model_name: str, caller_id: Any = None, caller_role: Any = None, model: dict | None = None) -> list[dict]:
        # visibility is governed by rbac alone; ownership only gates mutation
        return self._store.find_all(model_key(model_name))

    def find_by_id(self, model_name: str, record_id: str) -> dict | None:
        return self._store.find_one(model_key(model_name), record_id)

    def update(self, model_name: str, record_id: str, payload: Any, model: dict, caller_role: Any = None) -> dict:
        partial = coerce_payload(model, payload)
        owner_field = model.get("ownerField")
        if owner_field and caller_role != SUPER_ROLE:
            partial.pop(owner_field, None)
        if model.get("timestamps", True):
            partial.pop("createdAt", None)
            partial["updatedAt"] = _now()
        record = self._store.merge(model_key(model_name), record_id, partial)
        logger.info("record_updated model=%s id=%s fields=%s", model_key(model_name), record_id, sorted(partial.keys()))
        return record

    def delete(self, model_name: str, record_id: str) -> None:
        self._store.remove(model_key(model_name), record_id)
        logger.info("record_deleted model=%s id=%s", model_key(model_name), record_id)
