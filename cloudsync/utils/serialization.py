import math
from datetime import date, datetime
from decimal import Decimal
from typing import Any


def make_json_safe(value: Any) -> Any:
    """
    Convert store rows and config payloads into JSON-serialisable structures,
    preserving as much fidelity as possible.
    """
    if isinstance(value, dict):
        return {str(key): make_json_safe(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [make_json_safe(item) for item in value]
    if isinstance(value, Decimal):
        # Keep integers as ints, otherwise convert to string to avoid precision loss
        if value == value.to_integral():
            return int(value)
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.decode(errors="ignore")
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, (int, float, str, bool)) or value is None:
        return value
    # Fallback to string representation for unsupported types
    return str(value)
