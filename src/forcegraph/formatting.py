"""Value formatting shared by node labels, link labels and tooltips."""
from __future__ import annotations

import math
from datetime import date, datetime
from typing import Any, Optional, Tuple

DEFAULT_DATE_FORMAT = "%m/%d/%Y"
DEFAULT_DATETIME_FORMAT = "%m/%d/%Y %H:%M:%S"
BLANK_LABEL = "(Blank)"

AUTO_DISPLAY_UNITS = 0
NO_DISPLAY_UNITS = 1

DISPLAY_UNIT_SUFFIXES = {
    1: "",
    1_000: "K",
    1_000_000: "M",
    1_000_000_000: "bn",
    1_000_000_000_000: "T",
}
SUPPORTED_DISPLAY_UNITS = frozenset({AUTO_DISPLAY_UNITS, *DISPLAY_UNIT_SUFFIXES})


def resolve_display_units(value: float, display_units: int) -> Tuple[int, str]:
    """Return ``(divisor, suffix)`` for ``display_units``; 0 picks by magnitude."""
    if display_units in DISPLAY_UNIT_SUFFIXES:
        return display_units, DISPLAY_UNIT_SUFFIXES[display_units]
    magnitude = abs(value)
    for divisor in sorted(DISPLAY_UNIT_SUFFIXES, reverse=True):
        if magnitude >= divisor:
            return divisor, DISPLAY_UNIT_SUFFIXES[divisor]
    return 1, ""


def format_number(
    value: float,
    *,
    display_units: int = AUTO_DISPLAY_UNITS,
    decimal_places: Optional[int] = None,
) -> str:
    if isinstance(value, float) and not math.isfinite(value):
        return str(value)
    divisor, suffix = resolve_display_units(value, display_units)
    scaled = value / divisor
    if decimal_places is None:
        text = _trim_decimals(scaled)
    else:
        text = f"{scaled:.{max(0, decimal_places)}f}"
    return f"{text}{suffix}"


def format_value(
    value: Any,
    format_string: Optional[str] = None,
    *,
    display_units: int = NO_DISPLAY_UNITS,
    decimal_places: Optional[int] = None,
) -> str:
    """Format a raw cell value for display.

    Dates always go through ``strftime`` with ``format_string`` (or the
    default short pattern), so a raw timestamp never leaks into labels.
    """
    if value is None:
        return BLANK_LABEL
    if isinstance(value, datetime):
        return value.strftime(format_string or DEFAULT_DATETIME_FORMAT)
    if isinstance(value, date):
        return value.strftime(format_string or DEFAULT_DATE_FORMAT)
    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, (int, float)):
        return format_number(value, display_units=display_units, decimal_places=decimal_places)
    return str(value)


def truncate(text: str, max_length: int, ellipsis: str = "...") -> str:
    if max_length <= 0 or len(text) <= max_length:
        return text
    return text[:max_length] + ellipsis


def _trim_decimals(value: float) -> str:
    if math.isclose(value, round(value)):
        return str(int(round(value)))
    return f"{value:.2f}".rstrip("0").rstrip(".")
