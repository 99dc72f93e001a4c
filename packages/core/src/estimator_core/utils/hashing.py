from __future__ import annotations

import hashlib
from typing import Any

import orjson


def sha256_canonical_json(obj: Any) -> str:
    """Return SHA256 hex digest of canonical JSON serialization."""
    payload = orjson.dumps(obj, option=orjson.OPT_SORT_KEYS)
    return hashlib.sha256(payload).hexdigest()
