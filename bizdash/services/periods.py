"""Period keys: date bucketing, labels and compare-period resolution.

Canonical keys per cadence:

    daily      2026-01-28
    weekly     2026-W05   (ISO week; the year is the ISO week-year)
    monthly    2026-01
    quarterly  2026-Q1
    yearly     2026

Every function here is total: bad input yields ``None`` (or the key
itself for labels), never an exception.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping
from datetime import date, datetime, timedelta, timezone

from bizdash.models.entities import Cadence, CompareMode

MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)

MONTH_NAME_MAP: dict[str, int] = {name.lower(): index for index, name in enumerate(MONTH_NAMES, start=1)}
MONTH_NAME_MAP.update(
    {
        "jan": 1,
        "feb": 2,
        "mar": 3,
        "apr": 4,
        "jun": 6,
        "jul": 7,
        "aug": 8,
        "sep": 9,
        "sept": 9,
        "oct": 10,
        "nov": 11,
        "dec": 12,
    }
)

_DAILY_KEY = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$", re.ASCII)
_WEEKLY_KEY = re.compile(r"^(\d{4})-W(\d{2})$", re.ASCII)
_MONTHLY_KEY = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$", re.ASCII)
_QUARTERLY_KEY = re.compile(r"^(\d{4})-Q([1-4])$", re.ASCII)
_YEARLY_KEY = re.compile(r"^(\d{4})$", re.ASCII)

_ISO_DATETIME = re.compile(r"^\d{4}-\d{2}-\d{2}[T ]")

_MONTH_DASH_YEAR = re.compile(r"^([a-z]+)-(\d{2}|\d{4})$", re.IGNORECASE)
_MONTH_SPACE_YEAR = re.compile(r"^([a-z]+)\s+(\d{2}|\d{4})$", re.IGNORECASE)
_QUARTER_FIRST = re.compile(r"^Q([1-4])[-\s]+(\d{2}|\d{4})$", re.IGNORECASE)
_QUARTER_NUMBER_FIRST = re.compile(r"^([1-4])Q\s*(\d{2}|\d{4})$", re.IGNORECASE)
_FISCAL_YEAR = re.compile(r"^FY\s*(\d{2}|\d{4})$", re.IGNORECASE)
_TWO_DIGIT_YEAR = re.compile(r"^(\d{2})$")
_US_DATE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{2}|\d{4})$")
_MONTH_DAY_YEAR = re.compile(r"^([a-z]+)\s+(\d{1,2}),?\s*(\d{4})$", re.IGNORECASE)
_DAY_MONTH_YEAR = re.compile(r"^(\d{1,2})\s+([a-z]+)\s+(\d{4})$", re.IGNORECASE)


def coerce_cadence(cadence: Cadence | str) -> Cadence | None:
    try:
        return Cadence(cadence)
    except ValueError:
        return None


def _expand_year(text: str) -> int:
    # Two-digit years are read as 20YY.
    year = int(text)
    return 2000 + year if len(text) == 2 else year


def weeks_in_iso_year(year: int) -> int:
    """Number of ISO weeks (52 or 53) in ``year``."""

    return date(year, 12, 28).isocalendar()[1]


# ---------- Key generation ----------
def period_key_from_date(value: date, cadence: Cadence) -> str:
    if isinstance(value, datetime):
        value = value.date()

    if cadence is Cadence.DAILY:
        return value.isoformat()
    if cadence is Cadence.WEEKLY:
        iso_year, iso_week, _ = value.isocalendar()
        return f"{iso_year:04d}-W{iso_week:02d}"
    if cadence is Cadence.MONTHLY:
        return f"{value.year:04d}-{value.month:02d}"
    if cadence is Cadence.QUARTERLY:
        return f"{value.year:04d}-Q{(value.month - 1) // 3 + 1}"
    return f"{value.year:04d}"


def _parse_key(period_key: str, cadence: Cadence) -> tuple[int, ...] | None:
    """Split a canonical key into integers, or None when it is not canonical."""

    if cadence is Cadence.DAILY:
        match = _DAILY_KEY.fullmatch(period_key)
        if match is None:
            return None
        year, month, day = (int(part) for part in match.groups())
        try:
            date(year, month, day)
        except ValueError:
            return None
        return year, month, day

    if cadence is Cadence.WEEKLY:
        match = _WEEKLY_KEY.fullmatch(period_key)
        if match is None:
            return None
        year, week = int(match.group(1)), int(match.group(2))
        if year < 1 or week < 1 or week > weeks_in_iso_year(year):
            return None
        return year, week

    pattern = {
        Cadence.MONTHLY: _MONTHLY_KEY,
        Cadence.QUARTERLY: _QUARTERLY_KEY,
        Cadence.YEARLY: _YEARLY_KEY,
    }[cadence]
    match = pattern.fullmatch(period_key)
    if match is None:
        return None
    parts = tuple(int(part) for part in match.groups())
    if parts[0] < 1:
        return None
    return parts


def is_valid_period_key(period_key: str, cadence: Cadence | str) -> bool:
    resolved = coerce_cadence(cadence)
    if resolved is None or not isinstance(period_key, str):
        return False
    return _parse_key(period_key, resolved) is not None


def _key_from_epoch(value: int | float, cadence: Cadence) -> str | None:
    if isinstance(value, float) and not math.isfinite(value):
        return None
    # Numeric dates are Unix timestamps in milliseconds, read as UTC.
    try:
        moment = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
    return period_key_from_date(moment.date(), cadence)


def _parse_iso_date(text: str) -> date | None:
    match = _DAILY_KEY.match(text)
    if match is not None:
        try:
            return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        except ValueError:
            return None

    if _ISO_DATETIME.match(text):
        normalized = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
        try:
            return datetime.fromisoformat(normalized).date()
        except ValueError:
            return None
    return None


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _parse_friendly_date(text: str) -> date | None:
    """US-style and spelled-out day formats: ``1/15/26``, ``Jan 15, 2026``, ``15 Jan 2026``."""

    match = _US_DATE.match(text)
    if match is not None:
        month, day = int(match.group(1)), int(match.group(2))
        return _safe_date(_expand_year(match.group(3)), month, day)

    match = _MONTH_DAY_YEAR.match(text)
    if match is not None:
        month = MONTH_NAME_MAP.get(match.group(1).lower())
        if month is None:
            return None
        return _safe_date(int(match.group(3)), month, int(match.group(2)))

    match = _DAY_MONTH_YEAR.match(text)
    if match is not None:
        month = MONTH_NAME_MAP.get(match.group(2).lower())
        if month is None:
            return None
        return _safe_date(int(match.group(3)), month, int(match.group(1)))
    return None


def _parse_friendly_month(text: str) -> str | None:
    for pattern in (_MONTH_DASH_YEAR, _MONTH_SPACE_YEAR):
        match = pattern.match(text)
        if match is None:
            continue
        month = MONTH_NAME_MAP.get(match.group(1).lower())
        if month is not None:
            return f"{_expand_year(match.group(2)):04d}-{month:02d}"
    return None


def _parse_friendly_quarter(text: str) -> str | None:
    match = _QUARTER_FIRST.match(text) or _QUARTER_NUMBER_FIRST.match(text)
    if match is None:
        return None
    return f"{_expand_year(match.group(2)):04d}-Q{int(match.group(1))}"


def _parse_friendly_year(text: str) -> str | None:
    match = _FISCAL_YEAR.match(text) or _TWO_DIGIT_YEAR.match(text)
    if match is None:
        return None
    return f"{_expand_year(match.group(1)):04d}"


def _key_from_string(text: str, cadence: Cadence) -> str | None:
    if not text:
        return None
    if _parse_key(text, cadence) is not None:
        return text

    parsed = _parse_iso_date(text)
    if parsed is not None:
        return period_key_from_date(parsed, cadence)

    # A bare YYYY-MM buckets as the first day of that month.
    match = _MONTHLY_KEY.match(text)
    if match is not None:
        return period_key_from_date(date(int(match.group(1)), int(match.group(2)), 1), cadence)

    if cadence in (Cadence.DAILY, Cadence.WEEKLY):
        friendly = _parse_friendly_date(text)
        return period_key_from_date(friendly, cadence) if friendly is not None else None
    if cadence is Cadence.MONTHLY:
        return _parse_friendly_month(text)
    if cadence is Cadence.QUARTERLY:
        return _parse_friendly_quarter(text)
    return _parse_friendly_year(text)


def period_key_from_value(value: object, cadence: Cadence | str) -> str | None:
    """Bucket a date-like value at ``cadence``.

    Accepts ``date``/``datetime`` objects, epoch milliseconds, ISO strings and
    a handful of spreadsheet-style formats. Returns None for anything else.
    Feeding a returned key back in yields the same key.
    """

    resolved = coerce_cadence(cadence)
    if resolved is None or value is None or isinstance(value, bool):
        return None
    if isinstance(value, date):
        return period_key_from_date(value, resolved)
    if isinstance(value, (int, float)):
        return _key_from_epoch(value, resolved)
    if isinstance(value, str):
        return _key_from_string(value.strip(), resolved)
    return None


# ---------- Navigation ----------
def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def _step(period_key: str, cadence: Cadence, delta: int) -> str | None:
    parts = _parse_key(period_key, cadence)
    if parts is None:
        return None
    try:
        if cadence is Cadence.DAILY:
            return period_key_from_date(date(*parts) + timedelta(days=delta), cadence)
        if cadence is Cadence.WEEKLY:
            monday = date.fromisocalendar(parts[0], parts[1], 1)
            return period_key_from_date(monday + timedelta(weeks=delta), cadence)
        if cadence is Cadence.MONTHLY:
            year, month = _shift_month(parts[0], parts[1], delta)
            return f"{year:04d}-{month:02d}" if year >= 1 else None
        if cadence is Cadence.QUARTERLY:
            index = parts[0] * 4 + (parts[1] - 1) + delta
            year, quarter = index // 4, index % 4 + 1
            return f"{year:04d}-Q{quarter}" if year >= 1 else None
        year = parts[0] + delta
        return f"{year:04d}" if year >= 1 else None
    except (OverflowError, ValueError):
        return None


def previous_period_key(period_key: str, cadence: Cadence | str) -> str | None:
    resolved = coerce_cadence(cadence)
    return _step(period_key, resolved, -1) if resolved is not None else None


def next_period_key(period_key: str, cadence: Cadence | str) -> str | None:
    resolved = coerce_cadence(cadence)
    return _step(period_key, resolved, 1) if resolved is not None else None


def same_period_last_year_key(period_key: str, cadence: Cadence | str) -> str | None:
    """Same bucket one year earlier.

    Not invertible at the edges: ``2024-02-29`` maps to ``2023-02-28`` (clamped),
    and ISO week 53 has no counterpart when the previous ISO year has 52 weeks.
    """

    resolved = coerce_cadence(cadence)
    if resolved is None:
        return None
    parts = _parse_key(period_key, resolved)
    if parts is None or parts[0] <= 1:
        return None

    year = parts[0] - 1
    if resolved is Cadence.DAILY:
        month, day = parts[1], parts[2]
        if month == 2 and day == 29:
            day = 28
        return date(year, month, day).isoformat()
    if resolved is Cadence.WEEKLY:
        week = parts[1]
        if week > weeks_in_iso_year(year):
            return None
        return f"{year:04d}-W{week:02d}"
    if resolved is Cadence.MONTHLY:
        return f"{year:04d}-{parts[1]:02d}"
    if resolved is Cadence.QUARTERLY:
        return f"{year:04d}-Q{parts[1]}"
    return f"{year:04d}"


def resolve_compare_period(
    period_key: str,
    cadence: Cadence | str,
    compare_mode: CompareMode | str,
) -> str | None:
    """Compare bucket for ``period_key``; None when there is none to compare against."""

    try:
        mode = CompareMode(compare_mode)
    except ValueError:
        return None
    if mode is CompareMode.MOM:
        return previous_period_key(period_key, cadence)
    if mode is CompareMode.YOY:
        return same_period_last_year_key(period_key, cadence)
    return None


# ---------- Labels and enumeration ----------
def label_for_period_key(period_key: str, cadence: Cadence | str) -> str:
    resolved = coerce_cadence(cadence)
    parts = _parse_key(period_key, resolved) if resolved is not None else None
    if parts is None:
        return period_key

    if resolved is Cadence.DAILY:
        year, month, day = parts
        return f"{MONTH_NAMES[month - 1][:3]} {day}, {year}"
    if resolved is Cadence.WEEKLY:
        return f"Week {parts[1]}, {parts[0]}"
    if resolved is Cadence.MONTHLY:
        return f"{MONTH_NAMES[parts[1] - 1]} {parts[0]}"
    if resolved is Cadence.QUARTERLY:
        return f"Q{parts[1]} {parts[0]}"
    return period_key


def period_options(keys: Iterable[str], cadence: Cadence | str) -> list[dict[str, str]]:
    """Distinct keys, most recent first, with their labels."""

    return [
        {"key": key, "label": label_for_period_key(key, cadence)}
        for key in sorted(set(keys), reverse=True)
    ]


def get_periods_from_rows(
    rows: Iterable[Mapping[str, object]],
    date_column_key: str,
    cadence: Cadence | str,
) -> list[dict[str, str]]:
    keys = (period_key_from_value(row.get(date_column_key), cadence) for row in rows)
    return period_options((key for key in keys if key is not None), cadence)


def recent_periods(cadence: Cadence | str, count: int = 24, today: date | None = None) -> list[dict[str, str]]:
    """The ``count`` periods ending with the one containing ``today``."""

    resolved = coerce_cadence(cadence)
    if resolved is None or count <= 0:
        return []

    key: str | None = period_key_from_date(today or date.today(), resolved)
    keys: list[str] = []
    while key is not None and len(keys) < count:
        keys.append(key)
        key = previous_period_key(key, resolved)
    return period_options(keys, resolved)
