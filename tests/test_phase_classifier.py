"""Phase classification by month distance and day-of-month.

Run: pytest tests/test_phase_classifier.py -v
"""
from __future__ import annotations

from datetime import date

import pytest

from cycle_config import PhaseSettings
from product_cycle import (
    PHASE_ARCHIVED,
    PHASE_PREORDER,
    PHASE_PUBLIC,
    PHASE_UPCOMING,
    classify,
    month_diff,
)

DEFAULT = PhaseSettings()


@pytest.mark.parametrize(
    "ref, today, expected",
    [
        (date(2025, 6, 5), date(2025, 6, 3), PHASE_PUBLIC),
        (date(2025, 7, 5), date(2025, 6, 3), PHASE_UPCOMING),
        (date(2025, 5, 20), date(2025, 6, 3), PHASE_ARCHIVED),
        (date(2025, 7, 5), date(2025, 6, 10), PHASE_PREORDER),
        (date(2025, 6, 5), date(2025, 6, 10), PHASE_ARCHIVED),
        (date(2026, 1, 15), date(2025, 12, 20), PHASE_PREORDER),
    ],
)
def test_documented_scenarios(ref, today, expected):
    assert classify(ref, today, DEFAULT) == expected


def test_month_diff_crosses_year_boundary():
    assert month_diff(date(2026, 1, 1), date(2025, 12, 31)) == 1
    assert month_diff(date(2024, 12, 31), date(2025, 1, 1)) == -1
    assert month_diff(date(2027, 3, 1), date(2025, 3, 31)) == 24


@pytest.mark.parametrize("today_day", [1, 7, 8, 15, 28])
def test_two_or_more_months_ahead_is_upcoming(today_day):
    today = date(2025, 11, today_day)
    for ref in (date(2026, 1, 1), date(2026, 1, 31), date(2026, 6, 15), date(2030, 2, 2)):
        assert classify(ref, today, DEFAULT) == PHASE_UPCOMING


@pytest.mark.parametrize("today_day", range(1, 31))
def test_next_month_preorder_from_preorder_start_day(today_day):
    today = date(2025, 6, today_day)
    expected = PHASE_PREORDER if today_day >= 8 else PHASE_UPCOMING
    assert classify(date(2025, 7, 1), today, DEFAULT) == expected
    assert classify(date(2025, 7, 31), today, DEFAULT) == expected


@pytest.mark.parametrize("today_day", range(1, 31))
def test_current_month_window(today_day):
    settings = PhaseSettings(public_start_day=3, public_end_day=9, preorder_start_day=12)
    today = date(2025, 6, today_day)
    if 3 <= today_day <= 9:
        expected = PHASE_PUBLIC
    elif today_day > 9:
        expected = PHASE_ARCHIVED
    else:
        expected = PHASE_UPCOMING
    assert classify(date(2025, 6, 20), today, settings) == expected


def test_current_month_before_public_start_is_upcoming():
    settings = PhaseSettings(public_start_day=5, public_end_day=10, preorder_start_day=15)
    assert classify(date(2025, 6, 1), date(2025, 6, 4), settings) == PHASE_UPCOMING


@pytest.mark.parametrize("today_day", [1, 7, 8, 31])
def test_past_months_are_archived(today_day):
    today = date(2025, 1, today_day)
    for ref in (date(2024, 12, 31), date(2024, 1, 1), date(2019, 7, 7)):
        assert classify(ref, today, DEFAULT) == PHASE_ARCHIVED


def test_reference_day_is_ignored():
    today = date(2025, 6, 3)
    phases = {classify(date(2025, 6, d), today, DEFAULT) for d in range(1, 31)}
    assert phases == {PHASE_PUBLIC}
