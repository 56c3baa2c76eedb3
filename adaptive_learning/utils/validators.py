"""
Input coercion for loosely-formed inbound events
Event delivery is not guaranteed well-formed, so every helper here returns
None (or a default) instead of raising
"""
import logging
import math
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

import numpy as np

logger = logging.getLogger(__name__)


def first_present(event: Mapping[str, Any], *keys: str) -> Any:
    """Return the first key present with a non-None value"""
    for key in keys:
        value = event.get(key)
        if value is not None:
            return value
    return None


def to_float(value: Any) -> Optional[float]:
    """Coerce to a finite float, or None"""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if np.isnan(result) or np.isinf(result):
        return None
    return result


def to_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and not math.isnan(value):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ('true', 'yes', '1', 'correct'):
            return True
        if lowered in ('false', 'no', '0', 'incorrect'):
            return False
    return None


def to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _local_naive(value: datetime) -> datetime:
    """Timestamps are kept as naive local time throughout"""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def to_datetime(value: Any) -> Optional[datetime]:
    """Accept datetimes, epoch seconds/milliseconds and ISO strings"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return _local_naive(value)
    number = to_float(value)
    if number is not None:
        # Millisecond epochs are far beyond any plausible second epoch
        if number > 1e11:
            number /= 1000.0
        try:
            return datetime.fromtimestamp(number)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            return None
        return _local_naive(parsed)
    return None


def to_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    if isinstance(value, (str, bytes, Mapping)):
        return [value]
    if isinstance(value, Iterable):
        return list(value)
    return [value]


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))
