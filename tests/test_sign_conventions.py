#!/usr/bin/env python3
"""
Validation tests for model sign conventions.

These tests verify that the model's fundamental assumptions are correct:
1. A more Republican margin lowers the Democratic win probability
2. An R-leaning seat ratio projects to a positive (R-leaning) margin
3. A Democratic-leaning poll pulls the combined margin toward Democrats
4. More Democratic margins produce more Democratic seats in simulation

MARGIN SIGN CONVENTION: margin = rep - dem (positive = R-leaning)

If any of these tests fail, the model has a critical sign error.
"""

import sys
from pathlib import Path

import numpy as np

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from chamber_odds.combiner import SeatSignals, weighted_combine
from chamber_odds.config import ChamberRules, SignalWeights
from chamber_odds.probability import WinProbabilityTable, win_probability
from chamber_odds.signals import PartisanPair, SeatRatio, project_pair
from chamber_odds.simulation import SeatSimulator


def make_rules(n_seats: int, threshold: int) -> ChamberRules:
    """Small all-contested chamber for testing."""
    return ChamberRules(
        name="test",
        total_seats=n_seats,
        control_threshold=threshold,
        held_dem=0,
        held_rep=0,
        tie_goes_to_dem=False,
    )


def test_margin_direction():
    """
    Test: A more Republican margin should LOWER the Democratic win probability.
    """
    print("\n" + "=" * 60)
    print("TEST: Margin Direction")
    print("=" * 60)

    r_plus_10 = win_probability(10.0)
    even = win_probability(0.0)
    d_plus_10 = win_probability(-10.0)

    print(f"P(D) at R+10: {r_plus_10:.3f}")
    print(f"P(D) at even: {even:.3f}")
    print(f"P(D) at D+10: {d_plus_10:.3f}")

    assert d_plus_10 > even > r_plus_10, \
        f"CRITICAL ERROR: P(D) should fall as the margin moves toward R " \
        f"(D+10 {d_plus_10:.3f}, even {even:.3f}, R+10 {r_plus_10:.3f})"
    assert even == 0.5, f"Even margin should be exactly 0.5, got {even}"
    assert abs(r_plus_10 + d_plus_10 - 1.0) < 1e-12, "Win probability should be symmetric"

    print("✓ PASSED: Margin direction is correct")


def test_ratio_projection_direction():
    """
    Test: An R-leaning ratio (rep weight > dem weight) should project an even
    national environment onto a positive margin.
    """
    print("\n" + "=" * 60)
    print("TEST: Ratio Projection Direction")
    print("=" * 60)

    national = PartisanPair.normalize(50, 50)
    r_seat = project_pair(national, SeatRatio(dem=0.8, rep=1.2))
    d_seat = project_pair(national, SeatRatio(dem=1.2, rep=0.8))

    print(f"R-leaning seat: D {r_seat.dem:.1f} / R {r_seat.rep:.1f} (margin {r_seat.margin:+.1f})")
    print(f"D-leaning seat: D {d_seat.dem:.1f} / R {d_seat.rep:.1f} (margin {d_seat.margin:+.1f})")

    assert r_seat.margin > 0, f"R-leaning ratio should give positive margin, got {r_seat.margin:+.1f}"
    assert d_seat.margin < 0, f"D-leaning ratio should give negative margin, got {d_seat.margin:+.1f}"
    assert abs(r_seat.margin - 20.0) < 1e-9, f"Expected R+20, got {r_seat.margin:+.2f}"

    print("✓ PASSED: Ratio projection direction is correct")


def test_poll_pulls_margin():
    """
    Test: Adding a Democratic-leaning poll should move the combined margin
    toward Democrats (lower margin), never away.
    """
    print("\n" + "=" * 60)
    print("TEST: Poll Direction")
    print("=" * 60)

    weights = SignalWeights()
    gb = PartisanPair.normalize(48, 52)  # R+4
    dem_poll = PartisanPair.normalize(54, 46)  # D+8

    without_poll = weighted_combine(SeatSignals(generic_ballot=gb), weights)
    with_poll = weighted_combine(SeatSignals(generic_ballot=gb, poll=dem_poll), weights)

    print(f"Margin without poll: {without_poll.margin:+.2f}")
    print(f"Margin with D+8 poll: {with_poll.margin:+.2f}")

    assert with_poll.margin < without_poll.margin, \
        "CRITICAL ERROR: A Democratic poll should lower the (rep - dem) margin"
    # 35/85 * R+4 + 50/85 * D+8
    expected = (35 * 4 + 50 * -8) / 85
    assert abs(with_poll.margin - expected) < 1e-9, \
        f"Combined margin wrong: expected {expected:+.3f}, got {with_poll.margin:+.3f}"

    print("✓ PASSED: Poll direction is correct")


def test_simulation_seat_direction():
    """
    Test: A chamber of D-leaning seats should produce more Democratic seats
    than the same chamber of R-leaning seats.
    """
    print("\n" + "=" * 60)
    print("TEST: Simulation Seat Direction")
    print("=" * 60)

    rules = make_rules(n_seats=10, threshold=6)
    table = WinProbabilityTable.build()
    seat_ids = [f"S{i:02d}" for i in range(10)]

    d_sim = SeatSimulator(rules, table, n_simulations=2000, rng=np.random.default_rng(42))
    r_sim = SeatSimulator(rules, table, n_simulations=2000, rng=np.random.default_rng(42))
    d_result = d_sim.run(seat_ids, [-5.0] * 10)
    r_result = r_sim.run(seat_ids, [5.0] * 10)

    print(f"D+5 chamber: E[D seats] {d_result.expected_dem_seats:.2f}, P(D control) {d_result.prob_dem:.3f}")
    print(f"R+5 chamber: E[D seats] {r_result.expected_dem_seats:.2f}, P(D control) {r_result.prob_dem:.3f}")

    assert d_result.expected_dem_seats > r_result.expected_dem_seats, \
        "CRITICAL ERROR: D-leaning seats should produce more Democratic seats"
    assert d_result.prob_dem > r_result.prob_dem, \
        "CRITICAL ERROR: D-leaning seats should produce higher Democratic control odds"

    print("✓ PASSED: Simulation seat direction is correct")


def run_all_tests():
    """Run all sign convention tests."""
    print("\n" + "=" * 60)
    print("SIGN CONVENTION VALIDATION TESTS")
    print("=" * 60)
    print("\nMARGIN SIGN CONVENTION: margin = rep - dem (positive = R-leaning)")

    all_passed = True
    for test in (
        test_margin_direction,
        test_ratio_projection_direction,
        test_poll_pulls_margin,
        test_simulation_seat_direction,
    ):
        try:
            test()
        except AssertionError as e:
            print(f"✗ FAILED: {e}")
            all_passed = False

    print("\n" + "=" * 60)
    if all_passed:
        print("ALL TESTS PASSED ✓")
        print("Sign conventions are correct.")
    else:
        print("SOME TESTS FAILED ✗")
        print("CRITICAL: Sign errors detected. Do not use model until fixed.")
    print("=" * 60)

    return all_passed


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
