#!/usr/bin/env python3
"""
Monte Carlo seat simulator.

Model structure (per trial):
    swing ~ Uniform(-R, +R)                        one draw, shared by every seat
    p_i   = P(D wins | margin_i + swing)           win-probability table lookup
    win_i ~ Bernoulli(p_i)                          independent per seat
    dem_seats = held_dem + sum_i win_i

The shared swing is what correlates seats: a wave moves every race in the
same direction at once. Without it the seat total would be a sum of
independent coin flips and its spread would be far too narrow.

MARGIN SIGN CONVENTION: margin = rep - dem (positive = R-leaning).
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np

from .config import ChamberRules
from .probability import WinProbabilityTable

logger = logging.getLogger(__name__)


def pad_margins(margins: Sequence[float], n_contested: int, chamber: str = "") -> np.ndarray:
    """
    Fit per-seat margins into exactly `n_contested` slots.

    Seats without a usable margin count as toss-ups (margin 0) rather than
    being dropped, so the chamber's seat accounting stays fixed. Extra seats
    beyond the contested pool are cut off.
    """
    values = np.asarray(margins, dtype=float)
    if len(values) > n_contested:
        logger.warning(
            f"  {chamber}: {len(values)} seats with data but only {n_contested} contested; "
            f"ignoring the last {len(values) - n_contested}"
        )
        values = values[:n_contested]
    padded = np.zeros(n_contested)
    padded[:len(values)] = np.where(np.isfinite(values), values, 0.0)
    return padded


def binned_histogram(samples: np.ndarray, bin_size: int, bin_offset: int = 0) -> dict:
    """Fixed-width bins aligned at `bin_offset`, spanning the sampled range."""
    samples = np.floor(np.asarray(samples)).astype(int)
    bin_size = max(1, int(bin_size))
    if samples.size == 0:
        lo = hi = 0
    else:
        lo, hi = int(samples.min()), int(samples.max())

    def bin_start(v):
        return (v - bin_offset) // bin_size * bin_size + bin_offset

    min_bin = bin_start(lo)
    max_bin = bin_start(hi)
    n_bins = max(1, (max_bin - min_bin) // bin_size + 1)
    idx = (bin_start(samples) - min_bin) // bin_size
    counts = np.bincount(idx, minlength=n_bins) if samples.size else np.zeros(n_bins, dtype=int)

    return {
        "counts": counts.tolist(),
        "min": int(min_bin),
        "max": int(min_bin + (n_bins - 1) * bin_size + (bin_size - 1)),
        "total": int(samples.size),
        "bin_size": bin_size,
        "bin_offset": int(bin_offset),
    }


def range_histogram(samples: np.ndarray, show_min: int, show_max: int) -> dict:
    """
    One bin per seat count over [show_min, show_max].

    Samples outside the display range land in the edge bins, so the counts
    always add up to the number of trials.
    """
    samples = np.floor(np.asarray(samples)).astype(int)
    show_min, show_max = int(show_min), int(show_max)
    clipped = np.clip(samples, show_min, show_max) - show_min
    counts = np.bincount(clipped, minlength=show_max - show_min + 1)

    return {
        "counts": counts.tolist(),
        "min": show_min,
        "max": show_max,
        "total": int(samples.size),
        "bin_size": 1,
    }


def build_histogram(samples: np.ndarray, rules: ChamberRules) -> dict:
    """Seat histogram in the chamber's display layout."""
    policy = rules.histogram
    if policy.kind == "binned":
        return binned_histogram(samples, policy.bin_size, policy.bin_offset)
    show_min, show_max = rules.histogram_range()
    return range_histogram(samples, show_min, show_max)


@dataclass
class SeatOutcomeEnsemble:
    """Aggregated results of N trials for one chamber."""
    chamber: str
    prob_dem: float
    prob_rep: float
    expected_dem_seats: float
    n_simulations: int
    seat_ids: list[str]
    seat_margins: np.ndarray  # Shape: (n_named_seats,)
    seat_prob_dem: np.ndarray  # Shape: (n_named_seats,) per-seat win frequency
    histogram: dict
    seat_simulations: np.ndarray = field(repr=False)  # Shape: (n_simulations,)

    @property
    def median_dem_seats(self) -> int:
        return int(np.median(self.seat_simulations))

    def seat_results(self) -> dict:
        return {
            seat_id: {
                "prob_dem": round(float(p), 4),
                "margin": round(float(m), 2),
            }
            for seat_id, p, m in zip(self.seat_ids, self.seat_prob_dem, self.seat_margins)
        }

    def to_dict(self) -> dict:
        return {
            "prob_dem": round(self.prob_dem, 4),
            "prob_rep": round(self.prob_rep, 4),
            "expected_dem_seats": round(self.expected_dem_seats, 1),
            "n_simulations": self.n_simulations,
            "seats": self.seat_results(),
            "seat_distribution": self.histogram,
        }


class SeatSimulator:
    """
    Per-trial Monte Carlo for one chamber.

    Trials are drawn in batches of shape (batch, n_seats) to keep memory flat
    for the 435-seat House.
    """

    def __init__(
        self,
        rules: ChamberRules,
        table: WinProbabilityTable,
        n_simulations: int = 10000,
        swing_range: float = 7.0,
        rng: Optional[np.random.Generator] = None,
        batch_size: int = 2000,
    ):
        """
        Initialize the simulator.

        Args:
            rules: Chamber seat accounting and control rule
            table: Shared win-probability lookup table
            n_simulations: Number of Monte Carlo trials
            swing_range: Half-width R of the uniform national swing
            rng: Random generator (fresh entropy when None)
            batch_size: Trials simulated per vectorized batch
        """
        self.rules = rules
        self.table = table
        self.n_simulations = n_simulations
        self.swing_range = swing_range
        self.rng = rng if rng is not None else np.random.default_rng()
        self.batch_size = max(1, batch_size)

    def draw_trials(self, margins: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """
        Simulate all trials against fixed contested-seat margins.

        Returns:
            (dem_seat_totals, seat_wins): totals per trial including held
            seats, and the number of trials each contested seat was won
        """
        margins = np.asarray(margins, dtype=float)
        totals = np.empty(self.n_simulations, dtype=int)
        seat_wins = np.zeros(len(margins), dtype=np.int64)

        for start in range(0, self.n_simulations, self.batch_size):
            n = min(self.batch_size, self.n_simulations - start)
            swings = self.rng.uniform(-self.swing_range, self.swing_range, size=n)
            probs = self.table.lookup(margins[np.newaxis, :] + swings[:, np.newaxis])
            wins = self.rng.random(probs.shape) < probs
            totals[start:start + n] = self.rules.held_dem + wins.sum(axis=1)
            seat_wins += wins.sum(axis=0)

        return totals, seat_wins

    def run(self, seat_ids: Sequence[str], margins: Sequence[float]) -> SeatOutcomeEnsemble:
        """
        Simulate the chamber.

        Args:
            seat_ids: Named seats, in the same order as `margins`
            margins: Combined margin per named seat (rep - dem)

        Returns:
            SeatOutcomeEnsemble
        """
        rules = self.rules
        seat_ids = list(seat_ids)
        padded = pad_margins(margins, rules.contested_seats, rules.name)
        n_named = min(len(seat_ids), rules.contested_seats)

        logger.info(
            f"Running {self.n_simulations:,} {rules.name} simulations "
            f"({n_named} named of {rules.contested_seats} contested seats, swing ±{self.swing_range:g})..."
        )

        totals, seat_wins = self.draw_trials(padded)
        control = rules.has_control(totals)
        prob_dem = float(np.mean(control))

        ensemble = SeatOutcomeEnsemble(
            chamber=rules.name,
            prob_dem=prob_dem,
            prob_rep=1.0 - prob_dem,
            expected_dem_seats=float(np.mean(totals)),
            n_simulations=self.n_simulations,
            seat_ids=seat_ids[:n_named],
            seat_margins=padded[:n_named].copy(),
            seat_prob_dem=seat_wins[:n_named] / self.n_simulations,
            histogram=build_histogram(totals, rules),
            seat_simulations=totals,
        )

        logger.info(f"  Median Dem seats: {ensemble.median_dem_seats}")
        logger.info(f"  90% CI: [{np.percentile(totals, 5):.0f}, {np.percentile(totals, 95):.0f}]")
        logger.info(f"  P(Dem control): {prob_dem:.1%}")
        return ensemble
