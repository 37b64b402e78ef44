#!/usr/bin/env python3
"""
Weighted combination of seat-level signals.

Up to three estimates exist per seat:
- generic ballot projected through the seat ratio
- the seat's own poll average
- the cross-seat indicator projected through the seat ratio

The combined pair is the weighted average of the signals that are PRESENT.
A missing signal gets zero weight and the remaining weights are renormalized;
it is never replaced by 50/50, which would drag every thinly polled seat
toward a toss-up. Only when no weighted signal exists at all does the seat
fall back to the neutral pair.
"""

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Optional

import numpy as np

from .config import SignalWeights
from .signals import NEUTRAL_SHARE, PartisanPair, resolve_signal_or_neutral

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeatSignals:
    """The signals available for one seat on one date."""
    generic_ballot: Optional[PartisanPair] = None
    poll: Optional[PartisanPair] = None
    indicator: Optional[PartisanPair] = None

    def components(self, weights: SignalWeights) -> list[tuple[Optional[PartisanPair], float]]:
        return [
            (self.generic_ballot, weights.generic_ballot),
            (self.poll, weights.polls),
            (self.indicator, weights.indicator),
        ]


def combine_components(components: Iterable[tuple[Optional[PartisanPair], float]]) -> PartisanPair:
    """Weighted average over (pair, weight) components that are present."""
    total_weight = 0.0
    dem = 0.0
    rep = 0.0
    for pair, weight in components:
        if pair is None or not math.isfinite(weight) or weight <= 0:
            continue
        total_weight += weight
        dem += weight * pair.dem
        rep += weight * pair.rep

    if total_weight <= 0:
        return resolve_signal_or_neutral(None)
    return PartisanPair.normalize(dem / total_weight, rep / total_weight)


def weighted_combine(signals: SeatSignals, weights: SignalWeights) -> PartisanPair:
    """Combine one seat's signals into a single pair."""
    return combine_components(signals.components(weights))


def normalize_arrays(dem: np.ndarray, rep: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """
    Vectorized PartisanPair.normalize.

    NaN inputs stay NaN (a missing signal); finite but degenerate totals
    become 50/50.
    """
    dem = np.asarray(dem, dtype=float)
    rep = np.asarray(rep, dtype=float)
    missing = np.isnan(dem) | np.isnan(rep)
    total = dem + rep
    valid = np.isfinite(total) & (total > 0)
    with np.errstate(divide="ignore", invalid="ignore"):
        out_dem = np.where(valid, 100.0 * dem / total, NEUTRAL_SHARE)
        out_rep = np.where(valid, 100.0 * rep / total, NEUTRAL_SHARE)
    out_dem[missing] = np.nan
    out_rep[missing] = np.nan
    return out_dem, out_rep


def combine_arrays(
    components: Iterable[tuple[np.ndarray, np.ndarray, float]],
) -> tuple[np.ndarray, np.ndarray]:
    """
    Vectorized weighted_combine.

    Args:
        components: (dem, rep, weight) triples; dem/rep are broadcastable
                    arrays of normalized shares where NaN marks an absent
                    signal

    Returns:
        (dem, rep) combined arrays, 50/50 wherever no signal was present
    """
    components = list(components)
    shape = np.broadcast_shapes(*[np.shape(d) for d, _, _ in components]) if components else ()
    total_weight = np.zeros(shape)
    dem_sum = np.zeros(shape)
    rep_sum = np.zeros(shape)

    for dem, rep, weight in components:
        if not math.isfinite(weight) or weight <= 0:
            continue
        dem = np.broadcast_to(np.asarray(dem, dtype=float), shape)
        rep = np.broadcast_to(np.asarray(rep, dtype=float), shape)
        present = np.isfinite(dem) & np.isfinite(rep)
        total_weight = total_weight + np.where(present, weight, 0.0)
        dem_sum = dem_sum + np.where(present, weight * dem, 0.0)
        rep_sum = rep_sum + np.where(present, weight * rep, 0.0)

    has_signal = total_weight > 0
    with np.errstate(divide="ignore", invalid="ignore"):
        mean_dem = np.where(has_signal, dem_sum / total_weight, NEUTRAL_SHARE)
        mean_rep = np.where(has_signal, rep_sum / total_weight, NEUTRAL_SHARE)
    return normalize_arrays(mean_dem, mean_rep)
