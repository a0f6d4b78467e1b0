"""JSON serialization for descriptors and record payloads."""

from __future__ import annotations

import json
import math
from typing import Any


class JsonValueError(TypeError):
    """Raised when a value is not representable as plain JSON."""


def check_json_value(obj: Any, path: str = "$") -> None:
    """Walk ``obj`` and raise JsonValueError at the first non-JSON node."""
    if isinstance(obj, dict):
        for key, value in obj.items():
            if not isinstance(key, str):
                raise JsonValueError(f"Unsupported key type at {path}: {type(key).__name__}")
            check_json_value(value, f"{path}.{key}")
        return
    if isinstance(obj, (list, tuple)):
        for idx, item in enumerate(obj):
            check_json_value(item, f"{path}[{idx}]")
        return
    if obj is None or isinstance(obj, (str, bool, int)):
        return
    if isinstance(obj, float):
        if not math.isfinite(obj):
            raise JsonValueError(f"Non-finite float at {path}: {obj!r}")
        return
    raise JsonValueError(f"Unsupported type at {path}: {type(obj).__name__}")


def canonical_dumps(obj: Any) -> str:
    """Serialize to deterministic JSON.

    Keys are sorted recursively, list order is kept, non-ASCII is
    preserved and no whitespace is emitted, so equal documents produce
    equal strings.
    """
    check_json_value(obj)
    return json.dumps(obj, sort_keys=True, ensure_ascii=False, separators=(",", ":"), allow_nan=False)


def document_dumps(obj: Any) -> str:
    """Serialize a persisted document: indented, insertion key order."""
    check_json_value(obj)
    return json.dumps(obj, indent=2, ensure_ascii=False, allow_nan=False)
