"""Validation and normalization of raw model descriptors."""

from __future__ import annotations

import copy
from typing import Any, Dict, List

from modelkit.field_values import FIELD_KINDS, FieldValueError, coerce_value
from model_errors import InvalidSchema


PERMISSIONS = ("create", "read", "update", "delete", "all")


def _fail(message: str, path: str | None = None, detail: dict | None = None) -> None:
    raise InvalidSchema(message, detail=detail, path=path)


def _is_name(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def _normalize_field(field: Any, idx: int) -> dict:
    path = f"fields[{idx}]"
    if not isinstance(field, dict):
        _fail("field must be an object", path)
    if not _is_name(field.get("name")):
        _fail("field name required", f"{path}.name")
    name = field["name"]
    kind = field.get("type")
    if kind not in FIELD_KINDS:
        _fail(
            f"invalid field type: {kind}. Must be one of: {', '.join(FIELD_KINDS)}",
            f"{path}.type",
            {"field": name, "type": kind, "valid_types": list(FIELD_KINDS)},
        )

    out = copy.deepcopy(field)
    for flag in ("required", "unique"):
        value = out.get(flag)
        if value is None:
            out[flag] = False
        elif not isinstance(value, bool):
            _fail(f"field {flag} must be a boolean", f"{path}.{flag}", {"field": name})

    if out.get("default") is not None:
        try:
            out["default"] = coerce_value(kind, out["default"])
        except FieldValueError as exc:
            _fail(f"invalid default for field {name}: {exc.message}", f"{path}.default", {"field": name, "type": kind})

    relation = out.get("relation")
    if relation is not None:
        if not isinstance(relation, dict) or not _is_name(relation.get("model")) or not _is_name(relation.get("field")):
            _fail("field relation must name a model and a field", f"{path}.relation", {"field": name})
    return out


def _normalize_rbac(rbac: Any) -> Dict[str, List[str]]:
    if not isinstance(rbac, dict):
        _fail("rbac required", "rbac")
    out: Dict[str, List[str]] = {}
    for role, perms in rbac.items():
        if not _is_name(role):
            _fail("rbac role names must be non-empty strings", "rbac")
        if not isinstance(perms, (list, tuple)):
            _fail(f"rbac entry for {role} must be a list of permissions", f"rbac.{role}")
        seen: List[str] = []
        for perm in perms:
            if perm not in PERMISSIONS:
                _fail(
                    f"invalid permission: {perm}. Must be one of: {', '.join(PERMISSIONS)}",
                    f"rbac.{role}",
                    {"role": role, "permission": perm},
                )
            if perm not in seen:
                seen.append(perm)
        out[role] = seen
    return out


def validate_and_normalize(raw: Any) -> dict:
    """Return the canonical form of ``raw`` or raise InvalidSchema.

    The input is left untouched. The result always carries ``tableName``,
    ``timestamps``, ``rbac`` and per-field ``required``/``unique`` flags.
    """
    if not isinstance(raw, dict):
        _fail("model descriptor must be an object", "$")
    if not _is_name(raw.get("name")):
        _fail("name required", "name")

    fields = raw.get("fields")
    if not isinstance(fields, list) or not fields:
        _fail("at least one field required", "fields")
    normalized_fields = [_normalize_field(field, idx) for idx, field in enumerate(fields)]

    if "rbac" not in raw or raw.get("rbac") is None:
        _fail("rbac required", "rbac")
    rbac = _normalize_rbac(raw["rbac"])

    descriptor = copy.deepcopy(raw)
    descriptor["fields"] = normalized_fields
    descriptor["rbac"] = rbac

    if not descriptor.get("tableName"):
        descriptor["tableName"] = descriptor["name"].lower() + "s"
    elif not isinstance(descriptor["tableName"], str):
        _fail("tableName must be a string", "tableName")

    if descriptor.get("timestamps") is None:
        descriptor["timestamps"] = True
    elif not isinstance(descriptor["timestamps"], bool):
        _fail("timestamps must be a boolean", "timestamps")

    owner_field = descriptor.get("ownerField")
    if owner_field is not None and not _is_name(owner_field):
        _fail("ownerField must be a non-empty string", "ownerField")
    return descriptor


def model_key(name: str) -> str:
    """Canonical storage key for a model name."""
    return name.lower()
