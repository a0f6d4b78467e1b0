"""Error taxonomy for the dynamic schema engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


@dataclass
class ModelError(Exception):
    message: str
    detail: Dict[str, Any] | None = None
    path: str | None = None

    code = "MODEL_ERROR"
    status = 500

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    def as_issue(self) -> dict:
        return {"code": self.code, "message": self.message, "path": self.path, "detail": self.detail}


class InvalidSchema(ModelError):
    code = "INVALID_SCHEMA"
    status = 400


class InvalidRecord(ModelError):
    code = "INVALID_RECORD"
    status = 400


class ModelAlreadyExists(ModelError):
    code = "MODEL_EXISTS"
    status = 400


class Unauthenticated(ModelError):
    code = "AUTH_REQUIRED"
    status = 401


class InvalidToken(Unauthenticated):
    code = "AUTH_INVALID_TOKEN"


class Forbidden(ModelError):
    code = "FORBIDDEN"
    status = 403


class ModelNotFound(ModelError):
    code = "MODEL_NOT_FOUND"
    status = 404


class RecordNotFound(ModelError):
    code = "RECORD_NOT_FOUND"
    status = 404


class DescriptorNotFound(ModelError):
    """Raised by descriptor stores; the registry maps it to ModelNotFound."""

    code = "DESCRIPTOR_NOT_FOUND"
    status = 404


class CollaboratorFailure(ModelError):
    code = "COLLABORATOR_FAILURE"
    status = 500
