from __future__ import annotations

from typing import Any


def to_timestamp(value: Any, default: int = 0) -> int:
    """
    Coerce a protocol timestamp to integer seconds.

    Protobuf JSON renders 64-bit integers as strings (fractional seconds are
    truncated), and some producers hand over `{"low": ..., "high": ...}` long
    objects; both are accepted.
    """

    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        raw = value.strip()
        try:
            return int(raw)
        except ValueError:
            pass
        try:
            return int(float(raw))
        except (ValueError, OverflowError):
            return default
    if isinstance(value, dict):
        low = value.get("low")
        if isinstance(low, int):
            high = value.get("high")
            if isinstance(high, int) and high:
                return (high << 32) | (low & 0xFFFFFFFF)
            return low
    return default
