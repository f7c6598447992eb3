from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from bizdash.models.entities import Cadence, CompareMode
from bizdash.services.periods import (
    get_periods_from_rows,
    is_valid_period_key,
    label_for_period_key,
    next_period_key,
    period_key_from_value,
    previous_period_key,
    recent_periods,
    resolve_compare_period,
    same_period_last_year_key,
    weeks_in_iso_year,
)


@pytest.mark.parametrize(
    ("value", "cadence", "expected"),
    [
        ("2026-01-28", Cadence.DAILY, "2026-01-28"),
        ("2026-01-28T23:15:00Z", Cadence.DAILY, "2026-01-28"),
        ("2026-01-28 08:00:00", Cadence.MONTHLY, "2026-01"),
        (date(2026, 1, 28), Cadence.WEEKLY, "2026-W05"),
        (datetime(2026, 2, 14, 9, 30), Cadence.QUARTERLY, "2026-Q1"),
        ("2026-03", Cadence.MONTHLY, "2026-03"),
        ("2026-03", Cadence.QUARTERLY, "2026-Q1"),
        ("Jan-26", Cadence.MONTHLY, "2026-01"),
        ("January 2026", Cadence.MONTHLY, "2026-01"),
        ("Q1-26", Cadence.QUARTERLY, "2026-Q1"),
        ("Q3 2025", Cadence.QUARTERLY, "2025-Q3"),
        ("1Q26", Cadence.QUARTERLY, "2026-Q1"),
        ("FY26", Cadence.YEARLY, "2026"),
        ("FY 2025", Cadence.YEARLY, "2025"),
        ("26", Cadence.YEARLY, "2026"),
        ("1/15/26", Cadence.DAILY, "2026-01-15"),
        ("01-15-2026", Cadence.DAILY, "2026-01-15"),
        ("Jan 15, 2026", Cadence.DAILY, "2026-01-15"),
        ("15 Jan 2026", Cadence.DAILY, "2026-01-15"),
        ("2026", "annual", "2026"),
    ],
)
def test_period_key_from_value_formats(value: object, cadence: Cadence | str, expected: str) -> None:
    assert period_key_from_value(value, cadence) == expected


def test_period_key_from_epoch_milliseconds_is_utc() -> None:
    moment = datetime(2024, 2, 1, 0, 30, tzinfo=timezone.utc)
    millis = int(moment.timestamp() * 1000)

    assert period_key_from_value(millis, Cadence.DAILY) == "2024-02-01"
    assert period_key_from_value(float(millis), Cadence.MONTHLY) == "2024-02"


@pytest.mark.parametrize(
    "value",
    [None, "", "   ", "not a date", "2026-13-01", "2026-02-30", True, False, float("nan"), {"d": 1}, ["2026-01"]],
)
def test_period_key_from_value_returns_none_for_garbage(value: object) -> None:
    assert period_key_from_value(value, Cadence.MONTHLY) is None


def test_period_key_from_value_rejects_unknown_cadence() -> None:
    assert period_key_from_value("2026-01-01", "fortnightly") is None


@pytest.mark.parametrize("cadence", list(Cadence))
@pytest.mark.parametrize(
    "value",
    ["2024-02-29", "2024-12-30T10:00:00Z", "2021-01-03", date(2020, 12, 31), "Q4 2024", "Dec-24", "FY24"],
)
def test_period_key_from_value_is_idempotent(value: object, cadence: Cadence) -> None:
    key = period_key_from_value(value, cadence)
    if key is not None:
        assert period_key_from_value(key, cadence) == key
        assert is_valid_period_key(key, cadence)


def test_weekly_keys_use_iso_week_year() -> None:
    assert period_key_from_value("2021-01-03", Cadence.WEEKLY) == "2020-W53"
    assert period_key_from_value("2024-12-30", Cadence.WEEKLY) == "2025-W01"
    assert weeks_in_iso_year(2020) == 53
    assert weeks_in_iso_year(2021) == 52


@pytest.mark.parametrize(
    ("key", "cadence", "label"),
    [
        ("2026-01-28", Cadence.DAILY, "Jan 28, 2026"),
        ("2026-W05", Cadence.WEEKLY, "Week 5, 2026"),
        ("2026-01", Cadence.MONTHLY, "January 2026"),
        ("2026-Q1", Cadence.QUARTERLY, "Q1 2026"),
        ("2026", Cadence.YEARLY, "2026"),
        ("garbage", Cadence.MONTHLY, "garbage"),
        ("2026-01", Cadence.DAILY, "2026-01"),
    ],
)
def test_label_for_period_key(key: str, cadence: Cadence, label: str) -> None:
    assert label_for_period_key(key, cadence) == label


@pytest.mark.parametrize(
    ("key", "cadence", "expected"),
    [
        ("2026-03-01", Cadence.DAILY, "2026-02-28"),
        ("2021-W01", Cadence.WEEKLY, "2020-W53"),
        ("2026-01", Cadence.MONTHLY, "2025-12"),
        ("2026-Q1", Cadence.QUARTERLY, "2025-Q4"),
        ("2026", Cadence.YEARLY, "2025"),
    ],
)
def test_mom_resolves_previous_bucket(key: str, cadence: Cadence, expected: str) -> None:
    assert resolve_compare_period(key, cadence, CompareMode.MOM) == expected


def test_monthly_mom_round_trips_with_next_period() -> None:
    key = "2024-01"
    for _ in range(30):
        previous = resolve_compare_period(key, Cadence.MONTHLY, "mom")
        assert previous is not None
        assert next_period_key(previous, Cadence.MONTHLY) == key
        key = previous

    assert key == "2021-07"


@pytest.mark.parametrize("cadence", list(Cadence))
def test_next_and_previous_are_inverse(cadence: Cadence) -> None:
    key = period_key_from_value("2024-02-29", cadence)
    assert key is not None
    assert previous_period_key(next_period_key(key, cadence), cadence) == key


@pytest.mark.parametrize(
    ("key", "cadence", "expected"),
    [
        ("2025-02-28", Cadence.DAILY, "2024-02-28"),
        ("2026-W05", Cadence.WEEKLY, "2025-W05"),
        ("2026-01", Cadence.MONTHLY, "2025-01"),
        ("2026-Q2", Cadence.QUARTERLY, "2025-Q2"),
        ("2026", Cadence.YEARLY, "2025"),
    ],
)
def test_yoy_resolves_same_bucket_last_year(key: str, cadence: Cadence, expected: str) -> None:
    assert resolve_compare_period(key, cadence, CompareMode.YOY) == expected


def test_yoy_leap_day_asymmetry() -> None:
    # Feb 29 clamps to Feb 28 of the prior year...
    assert same_period_last_year_key("2024-02-29", Cadence.DAILY) == "2023-02-28"
    # ...but nothing maps onto Feb 29.
    assert same_period_last_year_key("2025-02-28", Cadence.DAILY) == "2024-02-28"
    assert same_period_last_year_key("2025-03-01", Cadence.DAILY) == "2024-03-01"


def test_yoy_week_53_without_counterpart_is_none() -> None:
    assert resolve_compare_period("2020-W53", Cadence.WEEKLY, CompareMode.YOY) is None
    assert resolve_compare_period("2021-W52", Cadence.WEEKLY, CompareMode.YOY) == "2020-W52"


@pytest.mark.parametrize("mode", [CompareMode.NONE, "none", "bogus"])
def test_compare_none_or_unknown_mode_is_none(mode: CompareMode | str) -> None:
    assert resolve_compare_period("2026-01", Cadence.MONTHLY, mode) is None


def test_compare_invalid_key_is_none() -> None:
    assert resolve_compare_period("January", Cadence.MONTHLY, CompareMode.MOM) is None
    assert resolve_compare_period("2026-01-15", Cadence.MONTHLY, CompareMode.YOY) is None


def test_get_periods_from_rows_is_distinct_and_descending() -> None:
    rows = [
        {"date": "2024-01-15"},
        {"date": "2024-02-03"},
        {"date": "2024-02-20"},
        {"date": "garbage"},
        {"other": "2024-03-01"},
    ]

    assert get_periods_from_rows(rows, "date", Cadence.MONTHLY) == [
        {"key": "2024-02", "label": "February 2024"},
        {"key": "2024-01", "label": "January 2024"},
    ]


def test_recent_periods_end_at_today() -> None:
    periods = recent_periods(Cadence.QUARTERLY, count=3, today=date(2026, 2, 10))

    assert [period["key"] for period in periods] == ["2026-Q1", "2025-Q4", "2025-Q3"]
    assert periods[0]["label"] == "Q1 2026"
    assert recent_periods(Cadence.MONTHLY, count=0) == []


@pytest.mark.parametrize(
    ("key", "cadence"),
    [
        ("2024\n", Cadence.YEARLY),
        ("２０２４", Cadence.YEARLY),
        ("2024-02\n", Cadence.MONTHLY),
        ("２０２４-０２-０１", Cadence.DAILY),
    ],
)
def test_canonical_keys_are_plain_ascii(key: str, cadence: Cadence) -> None:
    assert is_valid_period_key(key, cadence) is False
