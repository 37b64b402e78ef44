#!/usr/bin/env python3
"""
Odds over time: replay the forecast for every day of the national series.

For each historical date:
1. National pair = that day's rolling generic-ballot estimate
2. Seat polls = trailing mean of each seat's last W polls as of that date
3. Signals are combined per seat (same weights as the current-day model)
4. The chamber is simulated

Two simulation methods, chosen per chamber in the rules table:

FULL (Senate, Governor): the per-trial Monte Carlo of simulation.py, run
fresh each day. Also yields per-seat daily win frequencies.

HYBRID (House): per-seat-per-trial draws for 435 seats x 10k trials x every
day are too slow, so the swing is discretized onto a grid. At each grid
point the seat total is a sum of independent Bernoullis, with
    mean = sum(p_i),  variance = sum(p_i * (1 - p_i))
Each trial picks a grid point uniformly and draws the seat total from the
normal approximation at that point, rounded and clamped to the valid range.
Cost drops from O(seats x trials) to O(seats x grid + trials) per day.
Rounding a continuous draw that lands on the control line is plain
half-up rounding; it is an approximation, not a tie rule.

Per-seat history for hybrid chambers is limited to seats that are within
the competitive band at any checkpoint (first, middle, last day) and is
computed analytically: with no simulation coupling, a seat's odds depend
only on its own margin.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Sequence

import numpy as np

from .combiner import combine_arrays, normalize_arrays
from .config import ChamberRules, ModelConfig
from .polling import seat_poll_matrix, to_day_array
from .probability import WinProbabilityTable, win_probability
from .signals import NEUTRAL_SHARE, NationalPoint, PartisanPair, PollObservation, SeatRatio
from .simulation import SeatSimulator, pad_margins

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 20


@dataclass(frozen=True)
class ChamberOddsPoint:
    """Chamber control odds on one date."""
    date: date
    prob_dem: float
    expected_dem_seats: float

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "prob_dem": round(self.prob_dem, 4),
            "expected_dem_seats": round(self.expected_dem_seats, 1),
        }


@dataclass(frozen=True)
class SeatOddsPoint:
    """One seat's odds on one date (values already rounded for output)."""
    date: date
    prob_dem: float
    margin: float


@dataclass
class OddsOverTime:
    """Daily chamber odds plus per-seat histories."""
    chamber: str
    method: str
    points: list[ChamberOddsPoint] = field(default_factory=list)
    seats: dict[str, list[SeatOddsPoint]] = field(default_factory=dict)

    def chamber_series(self) -> list[dict]:
        return [p.to_dict() for p in self.points]


def _seat_point(day: date, prob_dem: float, margin: float) -> SeatOddsPoint:
    return SeatOddsPoint(date=day, prob_dem=round(float(prob_dem), 4), margin=round(float(margin), 2))


class OddsOverTimeEngine:
    """Daily replay of one chamber's forecast over the national series."""

    def __init__(
        self,
        rules: ChamberRules,
        config: ModelConfig,
        table: WinProbabilityTable,
        rng: Optional[np.random.Generator] = None,
    ):
        self.rules = rules
        self.config = config
        self.table = table
        self.rng = rng if rng is not None else np.random.default_rng()

    def daily_margins(
        self,
        national_series: Sequence[NationalPoint],
        seat_ids: Sequence[str],
        ratios: dict[str, SeatRatio],
        seat_polls: dict[str, Sequence[PollObservation]],
        snapshot_polls: Optional[dict[str, PollObservation]] = None,
        indicator: Optional[PartisanPair] = None,
    ) -> np.ndarray:
        """
        Combined margin for every (day, seat).

        Returns:
            Array of shape (n_days, n_seats), margin = rep - dem
        """
        snapshot_polls = snapshot_polls or {}
        weights = self.config.weights
        n_seats = len(seat_ids)

        nat_dem, nat_rep = normalize_arrays(
            np.array([p.dem for p in national_series], dtype=float),
            np.array([p.rep for p in national_series], dtype=float),
        )
        # NaN national points are degenerate input, not a missing signal
        nat_dem = np.where(np.isnan(nat_dem), NEUTRAL_SHARE, nat_dem)
        nat_rep = np.where(np.isnan(nat_rep), NEUTRAL_SHARE, nat_rep)

        ratio_dem = np.ones(n_seats)
        ratio_rep = np.ones(n_seats)
        for i, seat_id in enumerate(seat_ids):
            ratio = ratios.get(seat_id)
            if ratio is not None and ratio.is_valid:
                ratio_dem[i] = ratio.dem
                ratio_rep[i] = ratio.rep

        # Generic ballot projected onto each seat: (n_days, n_seats)
        gb_dem, gb_rep = normalize_arrays(
            nat_dem[:, np.newaxis] * ratio_dem[np.newaxis, :],
            nat_rep[:, np.newaxis] * ratio_rep[np.newaxis, :],
        )

        # Rolling seat polls as of each day, falling back to undated snapshots
        days = to_day_array([p.date for p in national_series])
        poll_dem, poll_rep = seat_poll_matrix(seat_ids, seat_polls, days, self.config.seat_poll_window)
        for i, seat_id in enumerate(seat_ids):
            snapshot = snapshot_polls.get(seat_id)
            if snapshot is None:
                continue
            no_poll = np.isnan(poll_dem[:, i]) | np.isnan(poll_rep[:, i])
            poll_dem[no_poll, i] = snapshot.dem
            poll_rep[no_poll, i] = snapshot.rep
        unusable = ~(np.isfinite(poll_dem) & np.isfinite(poll_rep) & (poll_dem + poll_rep > 0))
        poll_dem[unusable] = np.nan
        poll_rep[unusable] = np.nan
        poll_dem, poll_rep = normalize_arrays(poll_dem, poll_rep)

        components = [
            (gb_dem, gb_rep, weights.generic_ballot),
            (poll_dem, poll_rep, weights.polls),
        ]
        if indicator is not None:
            ind_dem, ind_rep = normalize_arrays(indicator.dem * ratio_dem, indicator.rep * ratio_rep)
            components.append((ind_dem[np.newaxis, :], ind_rep[np.newaxis, :], weights.indicator))

        dem, rep = combine_arrays(components)
        return rep - dem

    def run(
        self,
        national_series: Sequence[NationalPoint],
        seat_ids: Sequence[str],
        ratios: dict[str, SeatRatio],
        seat_polls: dict[str, Sequence[PollObservation]],
        snapshot_polls: Optional[dict[str, PollObservation]] = None,
        indicator: Optional[PartisanPair] = None,
    ) -> OddsOverTime:
        """Replay the chamber over every date in the national series."""
        rules = self.rules
        result = OddsOverTime(chamber=rules.name, method=rules.timeseries_method)
        if not national_series:
            logger.info(f"  {rules.name} odds: empty national series, nothing to replay")
            return result

        seat_ids = list(seat_ids)[:rules.contested_seats]
        margins = self.daily_margins(national_series, seat_ids, ratios, seat_polls, snapshot_polls, indicator)
        dates = [p.date for p in national_series]

        if rules.timeseries_method == "hybrid":
            result.points = self.run_hybrid(dates, margins)
            result.seats = self.track_competitive_seats(dates, margins, seat_ids)
            logger.info(
                f"  {rules.name} odds: {len(dates)}/{len(dates)} days done "
                f"({len(result.seats)} competitive seats tracked)"
            )
        else:
            result.points, result.seats = self.run_full(dates, margins, seat_ids)
            logger.info(
                f"  {rules.name} odds: {len(dates)}/{len(dates)} days done "
                f"({len(seat_ids)} seats tracked per day)"
            )
        return result

    def run_full(
        self,
        dates: Sequence[date],
        margins: np.ndarray,
        seat_ids: Sequence[str],
    ) -> tuple[list[ChamberOddsPoint], dict[str, list[SeatOddsPoint]]]:
        """Full per-trial Monte Carlo for every day, with per-seat frequencies."""
        rules = self.rules
        simulator = SeatSimulator(
            rules,
            self.table,
            n_simulations=self.config.n_simulations,
            swing_range=self.config.swing_range,
            rng=self.rng,
            batch_size=self.config.trial_batch_size,
        )
        n_named = len(seat_ids)
        points = []
        seats = {seat_id: [] for seat_id in seat_ids}

        for day_idx, day in enumerate(dates):
            padded = pad_margins(margins[day_idx], rules.contested_seats, rules.name)
            totals, seat_wins = simulator.draw_trials(padded)
            points.append(ChamberOddsPoint(
                date=day,
                prob_dem=float(np.mean(rules.has_control(totals))),
                expected_dem_seats=float(np.mean(totals)),
            ))
            seat_freq = seat_wins[:n_named] / simulator.n_simulations
            for i, seat_id in enumerate(seat_ids):
                seats[seat_id].append(_seat_point(day, seat_freq[i], padded[i]))

            if day_idx % PROGRESS_EVERY == 0:
                logger.debug(f"  {rules.name} odds: {day_idx + 1}/{len(dates)}")

        return points, seats

    def swing_grid(self) -> np.ndarray:
        """Swing values from -R to +R in grid steps (just [0] when R is 0)."""
        n_steps = int(np.floor(self.config.swing_range / self.config.swing_grid_step + 1e-9))
        return np.arange(-n_steps, n_steps + 1) * self.config.swing_grid_step

    def seat_total_moments(self, margins: np.ndarray, grid: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Mean and variance of contested seats won at each swing grid point."""
        probs = self.table.lookup(margins[np.newaxis, :] + grid[:, np.newaxis])
        return probs.sum(axis=1), (probs * (1.0 - probs)).sum(axis=1)

    def run_hybrid(self, dates: Sequence[date], margins: np.ndarray) -> list[ChamberOddsPoint]:
        """Grid-over-swing, normal-approximation Monte Carlo for every day."""
        rules = self.rules
        n_sims = self.config.n_simulations
        grid = self.swing_grid()
        points = []

        for day_idx, day in enumerate(dates):
            padded = pad_margins(margins[day_idx], rules.contested_seats, rules.name)
            mu, var = self.seat_total_moments(padded, grid)

            j = self.rng.integers(0, len(grid), size=n_sims)
            z = self.rng.standard_normal(n_sims)
            spread = np.where(var[j] > 1e-9, np.sqrt(var[j]) * z, 0.0)
            won = np.floor(mu[j] + spread + 0.5)
            won = np.clip(won, 0, rules.contested_seats).astype(int)
            totals = rules.held_dem + won

            points.append(ChamberOddsPoint(
                date=day,
                prob_dem=float(np.mean(rules.has_control(totals))),
                expected_dem_seats=float(np.mean(totals)),
            ))

            if day_idx % PROGRESS_EVERY == 0:
                logger.debug(f"  {rules.name} odds: {day_idx + 1}/{len(dates)}")

        return points

    def track_competitive_seats(
        self,
        dates: Sequence[date],
        margins: np.ndarray,
        seat_ids: Sequence[str],
    ) -> dict[str, list[SeatOddsPoint]]:
        """Analytic daily odds for seats competitive at any checkpoint."""
        n_days = len(dates)
        if n_days == 0 or not seat_ids:
            return {}

        checkpoints = sorted({0, n_days // 2, n_days - 1})
        band = self.config.competitive_band
        at_checkpoints = margins[checkpoints, :len(seat_ids)]
        competitive = np.any(np.abs(np.where(np.isfinite(at_checkpoints), at_checkpoints, 0.0)) < band, axis=0)

        seats = {}
        for i, seat_id in enumerate(seat_ids):
            if not competitive[i]:
                continue
            seat_margins = np.where(np.isfinite(margins[:, i]), margins[:, i], 0.0)
            probs = win_probability(seat_margins, self.config.error_sd)
            seats[seat_id] = [_seat_point(day, p, m) for day, p, m in zip(dates, probs, seat_margins)]
        return seats
