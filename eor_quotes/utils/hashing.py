"""
Content fingerprints for the enhancement cache keys.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any


def stable_json_hash(payload: Any, length: int = 16) -> str:
    """SHA-256 of *payload* serialized with sorted keys, truncated to *length* hex chars."""
    serialized = json.dumps(payload, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()[:length]
