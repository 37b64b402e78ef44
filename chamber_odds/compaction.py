#!/usr/bin/env python3
"""
Output compaction for per-seat odds histories.

Two passes shrink the serialized history:
1. Downsampling: seats whose odds barely move are thinned out
   (prob range < 2% -> every 7th day, < 5% -> every 3rd day).
   The first and last points are always kept.
2. Columnar encoding: one shared, sorted date list; each seat stores
   parallel prob/margin arrays plus either a start index (consecutive
   days) or an explicit index list (gaps left by downsampling).
"""

import logging
from datetime import date
from typing import Sequence

from .timeseries import SeatOddsPoint

logger = logging.getLogger(__name__)

COLUMNAR_FORMAT = "columnar-v1"

# (max prob range, keep every Nth point), checked in order
DOWNSAMPLE_STEPS = (
    (0.02, 7),
    (0.05, 3),
)


def downsample_step(points: Sequence[SeatOddsPoint]) -> int:
    """Sampling stride for one seat's history (1 = keep everything)."""
    probs = [p.prob_dem for p in points]
    spread = max(probs) - min(probs)
    for max_range, step in DOWNSAMPLE_STEPS:
        if spread < max_range:
            return step
    return 1


def downsample_series(points: Sequence[SeatOddsPoint]) -> list[SeatOddsPoint]:
    """Thin out a flat history; never adds points, always keeps both ends."""
    points = list(points)
    if len(points) <= 2:
        return points
    step = downsample_step(points)
    if step == 1:
        return points
    last = len(points) - 1
    return [p for i, p in enumerate(points) if i == 0 or i == last or i % step == 0]


def downsample_seat_odds(seat_odds: dict[str, Sequence[SeatOddsPoint]]) -> dict[str, list[SeatOddsPoint]]:
    """Downsample every seat's history and log the overall reduction."""
    result = {}
    before = 0
    after = 0
    for seat_id, points in seat_odds.items():
        thinned = downsample_series(points)
        result[seat_id] = thinned
        before += len(points)
        after += len(thinned)

    if before > 0:
        logger.info(f"  Downsampled: {before} -> {after} points ({1 - after / before:.0%} reduction)")
    return result


def _is_consecutive(indices: list[int]) -> bool:
    return all(b == a + 1 for a, b in zip(indices, indices[1:]))


def encode_columnar(seat_odds: dict[str, Sequence[SeatOddsPoint]]) -> dict:
    """
    Columnar encoding with a shared date axis.

    Returns:
        {"format": "columnar-v1",
         "dates": [ISO dates, sorted],
         "seats": {seat_id: {"s": start, "p": [...], "m": [...]}      # consecutive
                            {"i": [indices], "p": [...], "m": [...]}}  # gaps
        }
    """
    all_dates = sorted({p.date for points in seat_odds.values() for p in points})
    date_index = {d: i for i, d in enumerate(all_dates)}

    seats = {}
    for seat_id, points in seat_odds.items():
        points = sorted(points, key=lambda p: p.date)
        indices = [date_index[p.date] for p in points]
        column = {
            "p": [p.prob_dem for p in points],
            "m": [p.margin for p in points],
        }
        if indices and _is_consecutive(indices):
            seats[seat_id] = {"s": indices[0], **column}
        else:
            seats[seat_id] = {"i": indices, **column}

    return {
        "format": COLUMNAR_FORMAT,
        "dates": [d.isoformat() for d in all_dates],
        "seats": seats,
    }


def decode_columnar(encoded: dict) -> dict[str, list[SeatOddsPoint]]:
    """Inverse of encode_columnar."""
    fmt = encoded.get("format", COLUMNAR_FORMAT)
    if fmt != COLUMNAR_FORMAT:
        raise ValueError(f"Unsupported seat odds format: {fmt!r}")

    dates = [date.fromisoformat(d) for d in encoded.get("dates", [])]
    seat_odds = {}
    for seat_id, column in encoded.get("seats", {}).items():
        probs = column["p"]
        margins = column["m"]
        if "i" in column:
            indices = column["i"]
        else:
            indices = range(column["s"], column["s"] + len(probs))
        seat_odds[seat_id] = [
            SeatOddsPoint(date=dates[i], prob_dem=p, margin=m)
            for i, p, m in zip(indices, probs, margins)
        ]
    return seat_odds
