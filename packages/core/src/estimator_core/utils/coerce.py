from __future__ import annotations

import math
import re
from typing import Any

TRUTHY_STRINGS = {"true", "yes", "y", "1"}
FALSY_STRINGS = {"false", "no", "n", "0"}
# Larger magnitudes cannot be priced to the cent within Decimal precision.
MAX_NUMBER = 1e9


def normalize_label(value: str) -> str:
    """Fold format variations: case, underscores, brackets and repeated spaces."""
    cleaned = value.lower().replace("_", " ")
    cleaned = re.sub(r"[()<>]", "", cleaned)
    return re.sub(r"\s+", " ", cleaned).strip()


def humanize_key(key: str) -> str:
    return key.replace("_", " ").strip()


def title_key(key: str) -> str:
    return " ".join(word.capitalize() for word in humanize_key(key).split())


def coerce_to_number(value: Any) -> float | None:
    """Coerce form input to a number; handles "30" and "2,400". Booleans are not numbers.

    Non-finite values and magnitudes above ``MAX_NUMBER`` are rejected.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        cleaned = value.replace(",", "").strip()
        if not cleaned:
            return None
        try:
            number = float(cleaned)
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number) or abs(number) > MAX_NUMBER:
        return None
    return number


def coerce_to_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if value in (0, 1):
            return bool(value)
        return None
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUTHY_STRINGS:
            return True
        if lowered in FALSY_STRINGS:
            return False
    return None


def is_truthy(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        as_bool = coerce_to_bool(value)
        if as_bool is not None:
            return as_bool
        return bool(value.strip())
    return bool(value)
