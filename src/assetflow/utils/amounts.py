"""Parsing helpers for loosely typed backend payloads."""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional


def to_decimal(value: Any) -> Optional[Decimal]:
    """Parse a number, numeric string or Decimal. None/empty/garbage -> None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not result.is_finite():
        return None
    return result


def parse_timestamp(value: Any) -> Optional[float]:
    """Parse epoch seconds, epoch milliseconds or ISO-8601 into epoch seconds."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            try:
                return datetime.fromisoformat(text.replace("Z", "+00:00")).timestamp()
            except ValueError:
                return None
    else:
        return None
    # Anything past year 33658 in seconds is really milliseconds.
    if number > 1e12:
        number /= 1000.0
    return number


def first_present(data: dict, *keys: str) -> Any:
    """Value of the first key present with a non-empty value."""
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None


def to_json_number(value: Decimal):
    """Decimal as a JSON-serialisable int or float for request bodies."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def optional_str(value: Any) -> Optional[str]:
    """Backend scalar as a string; None and empty strings stay None."""
    if value is None or value == "":
        return None
    return str(value)
