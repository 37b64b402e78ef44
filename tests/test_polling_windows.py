#!/usr/bin/env python3
"""
Rolling poll window tests.

The prefix-sum implementation must give exactly what averaging the last N
polls on or before each day by hand gives.
"""

import sys
from datetime import date, timedelta
from pathlib import Path

import numpy as np
import pandas as pd

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from chamber_odds.polling import (
    latest_window_poll,
    rolling_national_series,
    seat_poll_matrix,
    to_day_array,
    trailing_window_means,
    validate_national_series,
)
from chamber_odds.signals import NationalPoint, PollObservation

START = date(2026, 1, 1)


def brute_force_means(obs_dates, values, query_dates, window):
    """Reference: sort, filter, slice, average."""
    order = sorted(range(len(obs_dates)), key=lambda i: obs_dates[i])
    out = []
    for q in query_dates:
        eligible = [i for i in order if obs_dates[i] <= q]
        recent = eligible[-window:]
        out.append(np.mean(values[recent], axis=0) if recent else np.full(values.shape[1], np.nan))
    return np.array(out)


def test_trailing_window_matches_brute_force():
    """Prefix-sum window means equal brute-force means on random polls."""
    print("\n" + "=" * 60)
    print("TEST: Trailing window vs brute force")
    print("=" * 60)

    rng = np.random.default_rng(17)
    n_polls = 120
    # Several polls share a date to exercise tie handling
    obs_dates = [START + timedelta(days=int(d)) for d in rng.integers(0, 60, size=n_polls)]
    values = np.column_stack([rng.uniform(40, 52, n_polls), rng.uniform(40, 52, n_polls)])
    query = [START + timedelta(days=d) for d in range(-3, 70)]

    for window in (1, 6, 24):
        means, counts = trailing_window_means(to_day_array(obs_dates), values, to_day_array(query), window)
        expected = brute_force_means(obs_dates, values, query, window)

        assert means.shape == (len(query), 2)
        assert np.allclose(means, expected, equal_nan=True), f"Window {window}: means differ from brute force"
        assert counts.max() <= window
        assert np.all(np.isnan(means[:3])), "No poll exists before the first poll date"

    print("✓ PASSED")


def test_rolling_national_series():
    """Daily series runs from the first poll through end_date."""
    print("\n" + "=" * 60)
    print("TEST: Rolling national series")
    print("=" * 60)

    polls = pd.DataFrame({
        "date": ["2026-01-05", "2026-01-01", "2026-01-03", "2026-01-03"],
        "dem": [46.0, 44.0, 45.0, 47.0],
        "rep": [44.0, 46.0, 45.0, 43.0],
    })
    series = rolling_national_series(polls, window=2, end_date=date(2026, 1, 8))

    assert [p.date for p in series] == [date(2026, 1, d) for d in range(1, 9)]
    assert series[0].dem == 44.0 and series[0].count == 1
    # Jan 3: last two polls are the two Jan 3 polls
    assert series[2].dem == 46.0 and series[2].rep == 44.0 and series[2].count == 2
    # Jan 5 onward: Jan 3 (second) + Jan 5
    assert series[4].dem == 46.5
    assert series[-1].dem == series[4].dem, "Days after the last poll carry the final window"

    assert rolling_national_series(pd.DataFrame(columns=["date", "dem", "rep"]), window=24) == []

    print(f"  {len(series)} days, latest D {series[-1].dem:.1f} / R {series[-1].rep:.1f}")
    print("✓ PASSED")


def test_validate_national_series():
    """Out-of-order series are sorted and duplicate dates keep the last point."""
    print("\n" + "=" * 60)
    print("TEST: National series validation")
    print("=" * 60)

    ordered = [NationalPoint(START + timedelta(days=i), 45, 45) for i in range(3)]
    assert validate_national_series(ordered) == ordered

    messy = [
        NationalPoint(date(2026, 1, 3), 40, 50),
        NationalPoint(date(2026, 1, 1), 45, 45),
        NationalPoint(date(2026, 1, 3), 42, 48),
    ]
    cleaned = validate_national_series(messy)
    assert [p.date for p in cleaned] == [date(2026, 1, 1), date(2026, 1, 3)]
    assert cleaned[-1].dem == 42, "Duplicate dates keep the last point"

    print("✓ PASSED")


def test_latest_window_poll():
    """Current seat poll is the mean of the last W dated polls."""
    print("\n" + "=" * 60)
    print("TEST: Latest window poll")
    print("=" * 60)

    polls = [
        PollObservation(START + timedelta(days=i), dem=40.0 + i, rep=50.0, sigma=float("nan") if i == 7 else 2.0)
        for i in range(8)
    ]
    polls.append(PollObservation(None, dem=99.0, rep=1.0))  # undated, ignored

    latest = latest_window_poll(polls, window=6, default_sigma=3.0)
    assert latest.date == START + timedelta(days=7)
    assert latest.dem == np.mean([42, 43, 44, 45, 46, 47])
    assert abs(latest.sigma - (5 * 2.0 + 3.0) / 6) < 1e-12

    assert latest_window_poll([PollObservation(None, 50, 50)], window=6) is None

    print("✓ PASSED")


def test_seat_poll_matrix():
    """Per-seat daily means are NaN before a seat's first poll."""
    print("\n" + "=" * 60)
    print("TEST: Seat poll matrix")
    print("=" * 60)

    days = to_day_array([START + timedelta(days=i) for i in range(5)])
    seat_polls = {
        "AZ": [PollObservation(START + timedelta(days=2), 48.0, 47.0)],
        "GA": [],
    }
    dem, rep = seat_poll_matrix(["AZ", "GA"], seat_polls, days, window=6)

    assert dem.shape == (5, 2)
    assert np.all(np.isnan(dem[:2, 0])) and np.all(dem[2:, 0] == 48.0)
    assert np.all(rep[2:, 0] == 47.0)
    assert np.all(np.isnan(dem[:, 1]))

    print("✓ PASSED")


def run_all_tests():
    """Run all rolling window tests."""
    all_passed = True
    for test in (
        test_trailing_window_matches_brute_force,
        test_rolling_national_series,
        test_validate_national_series,
        test_latest_window_poll,
        test_seat_poll_matrix,
    ):
        try:
            test()
        except AssertionError as e:
            print(f"✗ FAILED: {e}")
            all_passed = False

    print("\n" + "=" * 60)
    print("ALL TESTS PASSED ✓" if all_passed else "SOME TESTS FAILED ✗")
    print("=" * 60)
    return all_passed


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
