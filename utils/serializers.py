"""
utils/serializers.py — Convert engine results to JSON-ready structures.

Flask's default JSON provider writes dates in HTTP format
("Mon, 17 Mar 2025 00:00:00 GMT"); the API uses ISO 8601 instead.
"""

from dataclasses import asdict, is_dataclass
from datetime import date, datetime


def to_json(value, float_digits=4):
    """Recursively turn dataclasses, dates and tuples into JSON-friendly values."""
    if hasattr(value, 'to_dict'):
        return to_json(value.to_dict(), float_digits)
    if is_dataclass(value) and not isinstance(value, type):
        return to_json(asdict(value), float_digits)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, float):
        return round(value, float_digits)
    if isinstance(value, dict):
        return {str(k): to_json(v, float_digits) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json(v, float_digits) for v in value]
    return value
