from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Optional

import pandas as pd


def to_float(v: Any) -> Optional[float]:
    """Parse a numeric field; None for blanks and garbage."""
    if v in (None, ""):
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


def to_calendar_date(v: Any) -> Optional[date]:
    """
    Accepts str | date | datetime | None and returns the calendar date.
    The grower API sends plant dates as '2019-05-01T00:00:00'; unparseable values become None.
    """
    if v in (None, ""):
        return None
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, date):
        return v
    ts = pd.to_datetime(v, errors="coerce")
    if pd.isna(ts):
        return None
    return ts.date()


def sanitize_filename(name: str) -> str:
    """'Smith & Sons, LLC' -> 'Smith_Sons_LLC'"""
    return re.sub(r"[^A-Za-z0-9]+", "_", name).strip("_")
