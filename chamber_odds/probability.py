#!/usr/bin/env python3
"""
Margin -> win probability.

MARGIN SIGN CONVENTION: margin = rep - dem (positive = R-leaning,
e.g. R+10 = +10, D+5 = -5).

The realized margin is treated as Normal(observed_margin, error_sd), so the
Democratic win probability is the normal survival function of margin/error_sd:

    P(D wins) = 1 - Phi(margin / error_sd)

This is evaluated seats x trials x days times, so simulations go through a
precomputed lookup table (nearest 0.1-point bucket over -40..+40) instead of
calling scipy on every draw.
"""

import functools
import logging
from dataclasses import dataclass

import numpy as np
from scipy import stats

logger = logging.getLogger(__name__)

DEFAULT_ERROR_SD = 7.0


def win_probability(margin, error_sd: float = DEFAULT_ERROR_SD):
    """
    Exact Democratic win probability for a margin (scalar or array).

    Non-finite margins map to exactly 0.5.
    """
    m = np.asarray(margin, dtype=float)
    finite = np.isfinite(m)
    p = np.where(finite, stats.norm.sf(np.where(finite, m, 0.0) / error_sd), 0.5)
    if p.ndim == 0:
        return float(p)
    return p


@dataclass(frozen=True, eq=False)
class WinProbabilityTable:
    """
    Read-only lookup table for win_probability.

    Built once and shared by reference; the backing array is flagged
    non-writeable.
    """
    error_sd: float
    margin_min: float
    margin_max: float
    step: float
    values: np.ndarray

    @classmethod
    def build(
        cls,
        error_sd: float = DEFAULT_ERROR_SD,
        margin_min: float = -40.0,
        margin_max: float = 40.0,
        step: float = 0.1,
    ) -> "WinProbabilityTable":
        n_buckets = int(round((margin_max - margin_min) / step)) + 1
        # Integer bucket offsets keep margin 0 exactly on a grid point
        margins = margin_min + np.arange(n_buckets) * step
        zero_idx = int(round(-margin_min / step))
        if 0 <= zero_idx < n_buckets:
            margins[zero_idx] = 0.0
        values = stats.norm.sf(margins / error_sd)
        values.setflags(write=False)
        logger.debug(f"Built win-probability table: {n_buckets} buckets, σ={error_sd}")
        return cls(
            error_sd=error_sd,
            margin_min=margin_min,
            margin_max=margin_max,
            step=step,
            values=values,
        )

    def lookup(self, margin):
        """
        Nearest-bucket Democratic win probability (scalar or array).

        Margins are clamped to the table range; non-finite margins give 0.5.
        """
        m = np.asarray(margin, dtype=float)
        finite = np.isfinite(m)
        clamped = np.clip(np.where(finite, m, 0.0), self.margin_min, self.margin_max)
        # Round half up to the nearest bucket
        idx = np.floor((clamped - self.margin_min) / self.step + 0.5).astype(np.intp)
        idx = np.clip(idx, 0, len(self.values) - 1)
        p = np.where(finite, self.values[idx], 0.5)
        if p.ndim == 0:
            return float(p)
        return p

    def __len__(self) -> int:
        return len(self.values)


@functools.lru_cache(maxsize=None)
def get_table(
    error_sd: float = DEFAULT_ERROR_SD,
    margin_min: float = -40.0,
    margin_max: float = 40.0,
    step: float = 0.1,
) -> WinProbabilityTable:
    """Process-wide table for a given error model (built on first use)."""
    return WinProbabilityTable.build(error_sd, margin_min, margin_max, step)
