"""Descriptor fingerprints."""

from __future__ import annotations

import hashlib
from typing import Any

from .canonical_json import canonical_dumps


def descriptor_hash(descriptor: Any) -> str:
    """Return ``sha256:<hex>`` over the canonical JSON of a descriptor."""
    digest = hashlib.sha256(canonical_dumps(descriptor).encode("utf-8")).hexdigest()
    return f"sha256:{digest}"
