"""modelkit kernel utilities."""

from .canonical_json import JsonValueError, canonical_dumps, check_json_value, document_dumps
from .descriptor_hash import descriptor_hash
from .field_values import FIELD_KINDS, FieldValueError, coerce_value

__all__ = [
    "FIELD_KINDS",
    "FieldValueError",
    "JsonValueError",
    "canonical_dumps",
    "check_json_value",
    "coerce_value",
    "descriptor_hash",
    "document_dumps",
]
