"""Role and ownership authorization decisions for model operations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from model_errors import Forbidden


SUPER_ROLE = "Admin"
OPERATIONS = ("create", "read", "update", "delete")
_OWNED_OPERATIONS = ("update", "delete")

DENY_PERMISSION = "Insufficient permissions for this operation"
DENY_OWNER = "Not the owner of this record"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str | None = None
    code: str | None = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def role_permissions(model: dict, role: Any) -> list:
    rbac = model.get("rbac") if isinstance(model, dict) else None
    if not isinstance(rbac, dict) or not isinstance(role, str):
        return []
    perms = rbac.get(role)
    return list(perms) if isinstance(perms, (list, tuple, set)) else []


def decide(role: Any, user_id: Any, model: dict, operation: str, target_record: dict | None = None) -> Decision:
    if operation not in OPERATIONS:
        raise ValueError(f"unknown operation: {operation}")
    if role == SUPER_ROLE:
        return ALLOW

    permissions = role_permissions(model, role)
    if "all" not in permissions and operation not in permissions:
        return Decision(False, DENY_PERMISSION, "INSUFFICIENT_PERMISSIONS")

    owner_field = model.get("ownerField")
    if operation in _OWNED_OPERATIONS and owner_field and target_record is not None:
        if target_record.get(owner_field) != user_id:
            return Decision(False, DENY_OWNER, "NOT_OWNER")
    return ALLOW


def needs_target_record(model: dict, role: Any, operation: str) -> bool:
    """True when ``decide`` would consult the target record."""
    return role != SUPER_ROLE and operation in _OWNED_OPERATIONS and bool(model.get("ownerField"))


def authorize(actor: dict, model: dict, operation: str, target_record: dict | None = None) -> None:
    decision = decide(actor.get("role"), actor.get("id"), model, operation, target_record)
    if not decision.allowed:
        raise Forbidden(
            decision.reason or DENY_PERMISSION,
            detail={"operation": operation, "role": actor.get("role"), "reason": decision.code},
        )
