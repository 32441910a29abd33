"""
Output normalization for model payloads.

Model output is untrusted: confidences can be strings, out of range or
missing, and reasoning can be any JSON type. These helpers coerce both into
the shapes the result models accept.
"""

import math
from typing import Any

DEFAULT_CONFIDENCE = 0.5
DEFAULT_REASONING = "No reasoning provided"


def normalize_confidence(value: Any, default: float = DEFAULT_CONFIDENCE) -> float:
    """Numeric value within [0, 1], else ``default``."""
    if isinstance(value, bool):
        return default
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return default
    if not isinstance(value, (int, float)):
        return default
    number = float(value)
    if math.isnan(number) or number < 0.0 or number > 1.0:
        return default
    return number


def normalize_reasoning(value: Any, default: str = DEFAULT_REASONING) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def normalize_field_list(value: Any) -> list[str]:
    """List of non-empty strings; anything else becomes an empty list."""
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if isinstance(item, str) and item.strip()]
