#!/usr/bin/env python3
"""
Chamber control forecast.

ACTIVE PIPELINE (per chamber):
==============================
1. Current national pair = latest point of the rolling generic-ballot series
2. Current seat polls = mean of each seat's last W dated polls
   (undated snapshot poll when a seat has no dated polls)
3. Indicator = median national pair implied by the polled seats
4. Each seat combines GB-projected, poll and indicator signals (35/50/15)
5. SeatSimulator runs the current-day Monte Carlo
6. OddsOverTimeEngine replays steps 1-5 for every day of the series
7. Per-seat histories are downsampled and encoded columnar

Chambers differ only through their ChamberRules row (seat accounting,
control threshold, tie rule, histogram layout, time-series method).

MARGIN SIGN CONVENTION: margin = rep - dem (positive = R-leaning)
(e.g., R+10 = +10, D+5 = -5)
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from .combiner import SeatSignals, weighted_combine
from .compaction import downsample_seat_odds, encode_columnar
from .config import SEAT_RULES, ChamberRules, ModelConfig
from .polling import latest_window_poll, validate_national_series
from .probability import WinProbabilityTable, get_table, win_probability
from .signals import (
    NationalPoint,
    PartisanPair,
    PollObservation,
    SeatRatio,
    indicator_national,
    poll_pair,
    project_pair,
    resolve_signal_or_neutral,
)
from .simulation import SeatOutcomeEnsemble, SeatSimulator
from .timeseries import OddsOverTime, OddsOverTimeEngine

logger = logging.getLogger(__name__)


@dataclass
class ChamberInputs:
    """Read-only input snapshot for one chamber."""
    ratios: dict[str, SeatRatio]
    seat_polls: dict[str, list[PollObservation]] = field(default_factory=dict)
    snapshot_polls: dict[str, PollObservation] = field(default_factory=dict)
    national_series: list[NationalPoint] = field(default_factory=list)
    # Snapshot generic ballot, used only when the national series is empty
    fallback_national: Optional[PartisanPair] = None


@dataclass
class SeatModel:
    """Combined current-day estimate for a single seat."""
    seat_id: str
    signals: SeatSignals
    pair: PartisanPair
    prob_dem: float

    @property
    def margin(self) -> float:
        return self.pair.margin


class ChamberForecastModel:
    """
    Signal combination and simulation for one chamber.

    Everything is computed lazily and cached on the instance; inputs are
    never modified.
    """

    def __init__(
        self,
        rules: ChamberRules,
        inputs: ChamberInputs,
        config: Optional[ModelConfig] = None,
        table: Optional[WinProbabilityTable] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        """
        Initialize the chamber model.

        Args:
            rules: Seat accounting and control rule for this chamber
            inputs: Ratios, polls and national series
            config: Model configuration (defaults when None)
            table: Shared win-probability table (built from config when None)
            rng: Random generator; seeded from config.random_seed when None
        """
        self.rules = rules
        self.inputs = inputs
        self.config = config or ModelConfig()
        if table is None:
            table = get_table(
                self.config.error_sd,
                self.config.margin_table_min,
                self.config.margin_table_max,
                self.config.margin_table_step,
            )
        self.table = table
        self.rng = rng if rng is not None else np.random.default_rng(self.config.random_seed)

        self.national_series = validate_national_series(inputs.national_series)

        self._seat_ids: Optional[list[str]] = None
        self._current_polls: Optional[dict[str, PartisanPair]] = None
        self._indicator: Optional[PartisanPair] = None
        self._indicator_done = False
        self._seat_models: Optional[dict[str, SeatModel]] = None
        self.ensemble: Optional[SeatOutcomeEnsemble] = None
        self.odds: Optional[OddsOverTime] = None

    @property
    def seat_ids(self) -> list[str]:
        """Seats with a usable ratio, sorted by id."""
        if self._seat_ids is None:
            ids = []
            for seat_id in sorted(self.inputs.ratios):
                if self.inputs.ratios[seat_id].is_valid:
                    ids.append(seat_id)
                else:
                    logger.warning(f"  {self.rules.name}: skipping {seat_id} (invalid ratio)")
            self._seat_ids = ids
        return self._seat_ids

    def current_national(self) -> PartisanPair:
        """Latest point of the national series, else the snapshot pair, else 50/50."""
        if self.national_series:
            return self.national_series[-1].pair
        if self.inputs.fallback_national is None:
            logger.warning(f"  {self.rules.name}: no national series, using 50/50 generic ballot")
        return resolve_signal_or_neutral(self.inputs.fallback_national)

    def current_polls(self) -> dict[str, PartisanPair]:
        """Current poll pair per seat: window mean of dated polls, else snapshot."""
        if self._current_polls is None:
            polls = {}
            for seat_id in self.seat_ids:
                latest = latest_window_poll(
                    self.inputs.seat_polls.get(seat_id, ()),
                    self.config.seat_poll_window,
                    self.config.default_poll_sigma,
                )
                if latest is None:
                    latest = self.inputs.snapshot_polls.get(seat_id)
                if latest is None:
                    continue
                pair = poll_pair(latest.dem, latest.rep)
                if pair is not None:
                    polls[seat_id] = pair
            self._current_polls = polls
        return self._current_polls

    def indicator(self) -> Optional[PartisanPair]:
        """Cross-seat indicator from current polls (None when nothing is polled)."""
        if not self._indicator_done:
            ratios = {s: self.inputs.ratios[s] for s in self.seat_ids}
            self._indicator = indicator_national(ratios, self.current_polls())
            self._indicator_done = True
        return self._indicator

    def seat_models(self) -> dict[str, SeatModel]:
        """Combined estimate for every seat, keyed by seat id."""
        if self._seat_models is None:
            national = self.current_national()
            polls = self.current_polls()
            indicator = self.indicator()
            weights = self.config.weights

            models = {}
            for seat_id in self.seat_ids:
                ratio = self.inputs.ratios[seat_id]
                signals = SeatSignals(
                    generic_ballot=project_pair(national, ratio),
                    poll=polls.get(seat_id),
                    indicator=project_pair(indicator, ratio) if indicator is not None else None,
                )
                pair = weighted_combine(signals, weights)
                models[seat_id] = SeatModel(
                    seat_id=seat_id,
                    signals=signals,
                    pair=pair,
                    prob_dem=win_probability(pair.margin, self.config.error_sd),
                )
            self._seat_models = models
        return self._seat_models

    def simulate(self) -> SeatOutcomeEnsemble:
        """Run the current-day Monte Carlo."""
        models = self.seat_models()
        seat_ids = list(models)
        simulator = SeatSimulator(
            self.rules,
            self.table,
            n_simulations=self.config.n_simulations,
            swing_range=self.config.swing_range,
            rng=self.rng,
            batch_size=self.config.trial_batch_size,
        )
        self.ensemble = simulator.run(seat_ids, [models[s].margin for s in seat_ids])
        return self.ensemble

    def odds_over_time(self) -> OddsOverTime:
        """Replay the chamber over every day of the national series."""
        logger.info(f"Running {self.rules.name} odds over time ({len(self.national_series)} days, "
                    f"{self.rules.timeseries_method} method)...")
        engine = OddsOverTimeEngine(self.rules, self.config, self.table, rng=self.rng)
        ratios = {s: self.inputs.ratios[s] for s in self.seat_ids}
        self.odds = engine.run(
            self.national_series,
            self.seat_ids,
            ratios,
            self.inputs.seat_polls,
            self.inputs.snapshot_polls,
            self.indicator(),
        )
        return self.odds

    def current_result(self) -> dict:
        """Serializable current-day result for this chamber."""
        if self.ensemble is None:
            self.simulate()
        result = self.ensemble.to_dict()
        result["national"] = self.current_national().to_dict()
        indicator = self.indicator()
        result["indicator"] = indicator.to_dict() if indicator is not None else None
        return result

    def get_summary(self) -> dict:
        """Get summary statistics for the current-day forecast."""
        if self.ensemble is None:
            self.simulate()
        sims = self.ensemble.seat_simulations
        return {
            "chamber": self.rules.name,
            "prob_dem_control": self.ensemble.prob_dem,
            "prob_rep_control": self.ensemble.prob_rep,
            "median_dem_seats": int(np.median(sims)),
            "mean_dem_seats": float(np.mean(sims)),
            "ci_90_low": int(np.percentile(sims, 5)),
            "ci_90_high": int(np.percentile(sims, 95)),
            "ci_50_low": int(np.percentile(sims, 25)),
            "ci_50_high": int(np.percentile(sims, 75)),
            "n_seats_modeled": len(self.seat_ids),
            "n_seats_polled": len(self.current_polls()),
        }


def run_forecast(
    inputs_by_chamber: dict[str, ChamberInputs],
    rules_table: Optional[dict[str, ChamberRules]] = None,
    config: Optional[ModelConfig] = None,
    rng: Optional[np.random.Generator] = None,
) -> dict:
    """
    Run the full forecast pipeline for every chamber with inputs.

    Args:
        inputs_by_chamber: {chamber: ChamberInputs}
        rules_table: {chamber: ChamberRules} (SEAT_RULES when None)
        config: Model configuration (defaults when None)
        rng: Random generator shared by all chambers (seeded from config when None)

    Returns:
        {"current": {...}, "odds_over_time": {...}, "seat_odds_over_time": {...}}
    """
    rules_table = rules_table or SEAT_RULES
    config = config or ModelConfig()
    rng = rng if rng is not None else np.random.default_rng(config.random_seed)
    table = get_table(config.error_sd, config.margin_table_min, config.margin_table_max, config.margin_table_step)

    output = {"current": {}, "odds_over_time": {}, "seat_odds_over_time": {}}
    for chamber, rules in rules_table.items():
        inputs = inputs_by_chamber.get(chamber)
        if inputs is None:
            logger.warning(f"No inputs for {chamber}, skipping")
            continue

        model = ChamberForecastModel(rules, inputs, config=config, table=table, rng=rng)
        output["current"][chamber] = model.current_result()

        odds = model.odds_over_time()
        output["odds_over_time"][chamber] = odds.chamber_series()
        output["seat_odds_over_time"][chamber] = encode_columnar(downsample_seat_odds(odds.seats))

        summary = model.get_summary()
        logger.info(
            f"  {chamber}: D control {summary['prob_dem_control']:.1%}, "
            f"median D seats {summary['median_dem_seats']} "
            f"(90% CI [{summary['ci_90_low']}, {summary['ci_90_high']}], "
            f"50% CI [{summary['ci_50_low']}, {summary['ci_50_high']}]), "
            f"{summary['n_seats_polled']}/{summary['n_seats_modeled']} seats polled"
        )

    return output
