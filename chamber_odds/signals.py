#!/usr/bin/env python3
"""
Seat-level signals and their projection from national estimates.

A national two-party pair is projected onto a seat by scaling each party's
share by that seat's partisan-lean ratio and renormalizing to 100. The same
mechanism projects the generic ballot and the cross-seat "indicator".

The indicator inverts the projection: each polled seat implies a national
pair (poll share / ratio); the median of those implied pairs across seats is
a national estimate built purely from seat-level polling.

MARGIN SIGN CONVENTION: margin = rep - dem (positive = R-leaning).
"""

import logging
import math
from dataclasses import dataclass
from datetime import date
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)

NEUTRAL_SHARE = 50.0
DEFAULT_POLL_SIGMA = 3.0


@dataclass(frozen=True)
class PartisanPair:
    """Two-party shares normalized to sum to 100."""
    dem: float
    rep: float

    @classmethod
    def normalize(cls, dem: float, rep: float) -> "PartisanPair":
        """Scale (dem, rep) to sum to 100; degenerate inputs give 50/50."""
        try:
            d = float(dem)
            r = float(rep)
        except (TypeError, ValueError):
            return cls.neutral()
        total = d + r
        if not math.isfinite(total) or total <= 0:
            return cls.neutral()
        return cls(dem=100.0 * d / total, rep=100.0 * r / total)

    @classmethod
    def neutral(cls) -> "PartisanPair":
        return cls(dem=NEUTRAL_SHARE, rep=NEUTRAL_SHARE)

    @property
    def margin(self) -> float:
        """rep - dem (positive = R-leaning)."""
        return self.rep - self.dem

    def to_dict(self, digits: int = 2) -> dict:
        return {"dem": round(self.dem, digits), "rep": round(self.rep, digits)}


def resolve_signal_or_neutral(pair: Optional[PartisanPair]) -> PartisanPair:
    """The single fallback policy: a missing signal becomes the neutral 50/50 pair."""
    return pair if pair is not None else PartisanPair.neutral()


@dataclass(frozen=True)
class SeatRatio:
    """Partisan-lean weights for one seat (multiplicative, not a probability)."""
    dem: float
    rep: float

    @property
    def is_valid(self) -> bool:
        return (
            math.isfinite(self.dem) and math.isfinite(self.rep)
            and self.dem > 0 and self.rep > 0
        )


@dataclass(frozen=True)
class PollObservation:
    """A single seat poll. `date` is None for undated snapshot polls."""
    date: Optional[date]
    dem: float
    rep: float
    sigma: float = DEFAULT_POLL_SIGMA


@dataclass(frozen=True)
class NationalPoint:
    """One day of the rolling national generic-ballot estimate."""
    date: date
    dem: float
    rep: float
    count: int = 0

    @property
    def pair(self) -> PartisanPair:
        return PartisanPair.normalize(self.dem, self.rep)


def poll_pair(dem: float, rep: float) -> Optional[PartisanPair]:
    """Normalized poll pair, or None when the poll is unusable."""
    try:
        d = float(dem)
        r = float(rep)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(d) or not math.isfinite(r) or d + r <= 0:
        return None
    return PartisanPair.normalize(d, r)


def project_pair(national: PartisanPair, ratio: SeatRatio) -> PartisanPair:
    """Project a national pair onto a seat via its partisan-lean ratio."""
    return PartisanPair.normalize(national.dem * ratio.dem, national.rep * ratio.rep)


def implied_national(seat_poll: PartisanPair, ratio: SeatRatio) -> tuple[float, float]:
    """Invert the projection: the national pair a seat poll implies."""
    with np.errstate(divide="ignore", invalid="ignore"):
        dem = np.divide(seat_poll.dem, ratio.dem)
        rep = np.divide(seat_poll.rep, ratio.rep)
    return float(dem), float(rep)


def indicator_national(
    ratios: dict[str, SeatRatio],
    polls: dict[str, PartisanPair],
) -> Optional[PartisanPair]:
    """
    Cross-seat indicator: median implied national pair over polled seats.

    Median rather than mean so one noisy single-seat poll cannot drag the
    estimate. Dem and rep medians are taken independently, then normalized.
    Returns None when no seat has both a ratio and a usable poll.
    """
    implied_dem = []
    implied_rep = []
    for seat_id, ratio in ratios.items():
        seat_poll = polls.get(seat_id)
        if seat_poll is None:
            continue
        dem, rep = implied_national(seat_poll, ratio)
        implied_dem.append(dem)
        implied_rep.append(rep)

    if not implied_dem:
        return None

    dem = np.asarray(implied_dem)
    rep = np.asarray(implied_rep)
    dem = dem[np.isfinite(dem)]
    rep = rep[np.isfinite(rep)]
    if dem.size == 0 or rep.size == 0:
        return None

    indicator = PartisanPair.normalize(np.median(dem), np.median(rep))
    logger.debug(f"Indicator from {len(implied_dem)} polled seats: D {indicator.dem:.1f} / R {indicator.rep:.1f}")
    return indicator
