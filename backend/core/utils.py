"""
Utility functions for the workflow automation engine.

Includes:
- UTC datetime helpers
- Lenient date parsing for node configuration values
- Number coercion used by conditions, formulas and collection helpers
"""

from datetime import date, datetime, timezone
from typing import Any, Optional

# Tried in order after ISO-8601
_DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y",
    "%d-%m-%Y %H:%M:%S",
    "%d-%m-%Y",
)


def utc_now() -> datetime:
    """
    Get the current UTC datetime.

    Returns:
        Current datetime in UTC timezone
    """
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> datetime:
    """
    Convert a config or variable value into an aware UTC datetime.

    Accepts datetime, date, epoch milliseconds and strings in ISO-8601 or
    one of a handful of common formats. Naive values are taken as UTC.

    Raises:
        ValueError: If the value cannot be interpreted as a date
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            parsed = None
            for fmt in _DATE_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
            if parsed is None:
                raise ValueError(f"Unable to parse date: {value}")
    else:
        raise ValueError(f"Unsupported date value: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_number(value: Any) -> Optional[float]:
    """Return value as a float, or None when it is not numeric."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except ValueError:
        return None


def is_truthy(value: Any) -> bool:
    """Truthiness for workflow values: "true"/"yes"/"1" strings count, "false"/"" do not."""
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value != 0
    return bool(value)
