from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Mapping

from openpyxl.utils.datetime import from_excel

# Header aliases, probed in order; the first non-blank value wins.
NAME_COLUMNS = ("name", "Name", "NAME", "Customer Name", "customer name")
MOBILE_COLUMNS = ("mobile", "Mobile", "MOBILE", "Mobile Number", "mobile number")
DOB_COLUMNS = ("dob", "DOB", "Date of Birth", "date of birth", "dateOfBirth", "DateOfBirth")

_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%Y/%m/%d", "%d-%b-%Y", "%d %b %Y", "%b %d, %Y")


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def first_value(row: Mapping[str, Any], names: tuple[str, ...]) -> Any:
    for n in names:
        v = row.get(n)
        if not is_blank(v):
            return v
    return None


def coerce_text(value: Any) -> str:
    """
    Render a cell value as trimmed text.

    Whole-number floats lose their ".0" so a mobile typed into a numeric cell
    (9990001111.0) reads the same as one typed as text.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).strip()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def parse_date_value(value: Any) -> date | None:
    """Parse an Excel date cell, serial number or date string. Unparseable input gives None."""
    if is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            converted = from_excel(value)
        except (ValueError, OverflowError, TypeError):
            return None
        return converted.date() if isinstance(converted, datetime) else None
    s = str(value).strip()
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return None


def mobile_search_prefix(query: str) -> str:
    """Strip leading zeros so "0999..." and "999..." find the same customer."""
    return re.sub(r"^0+", "", (query or "").strip())
