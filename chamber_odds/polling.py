#!/usr/bin/env python3
"""
Trailing-window poll averages.

Every rolling mean here is "the most recent N polls on or before date t".
Polls are sorted once, cumulative sums are taken once, and each query date
is answered with a binary search into the sorted poll dates, so building a
daily series is one pass over the polls plus O(log n) per day rather than
re-averaging the window for every day.
"""

import logging
from datetime import date
from typing import Iterable, Optional, Sequence

import numpy as np
import pandas as pd

from .signals import DEFAULT_POLL_SIGMA, NationalPoint, PollObservation

logger = logging.getLogger(__name__)


def to_day_array(dates: Iterable) -> np.ndarray:
    """Dates (date, Timestamp or ISO string) as a datetime64[D] array."""
    return pd.to_datetime(pd.Series(list(dates), dtype=object)).values.astype("datetime64[D]")


def trailing_window_means(
    obs_dates: np.ndarray,
    values: np.ndarray,
    query_dates: np.ndarray,
    window: int,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Mean of the last `window` observations on or before each query date.

    Args:
        obs_dates: datetime64[D] observation dates (any order)
        values: Array of shape (n_obs,) or (n_obs, k)
        query_dates: datetime64[D] query dates
        window: Maximum number of observations per mean

    Returns:
        (means, counts): means has shape (n_query, k) with NaN where no
        observation exists yet; counts has shape (n_query,)
    """
    obs_dates = np.asarray(obs_dates, dtype="datetime64[D]")
    query_dates = np.asarray(query_dates, dtype="datetime64[D]")
    values = np.asarray(values, dtype=float)
    if values.ndim == 1:
        values = values[:, np.newaxis]

    n_cols = values.shape[1] if values.ndim == 2 else 1
    means = np.full((len(query_dates), n_cols), np.nan)
    counts = np.zeros(len(query_dates), dtype=int)
    if len(obs_dates) == 0 or len(query_dates) == 0:
        return means, counts

    order = np.argsort(obs_dates, kind="stable")
    obs_dates = obs_dates[order]
    values = values[order]

    prefix = np.zeros((len(values) + 1, n_cols))
    np.cumsum(values, axis=0, out=prefix[1:])

    hi = np.searchsorted(obs_dates, query_dates, side="right")
    lo = np.maximum(hi - max(1, int(window)), 0)
    counts = hi - lo
    has = counts > 0
    means[has] = (prefix[hi[has]] - prefix[lo[has]]) / counts[has, np.newaxis]
    return means, counts


def dated_observations(observations: Sequence[PollObservation]) -> list[PollObservation]:
    """Dated polls with finite shares, in date order."""
    usable = [
        o for o in observations
        if o.date is not None and np.isfinite(o.dem) and np.isfinite(o.rep)
    ]
    return sorted(usable, key=lambda o: o.date)


def latest_window_poll(
    observations: Sequence[PollObservation],
    window: int,
    default_sigma: float = DEFAULT_POLL_SIGMA,
) -> Optional[PollObservation]:
    """
    Mean of the most recent `window` dated polls for one seat.

    The result carries the latest poll date and the mean sigma (missing
    sigmas count as `default_sigma`). None when the seat has no dated polls.
    """
    polls = dated_observations(observations)
    if not polls:
        return None
    recent = polls[-max(1, int(window)):]
    sigmas = [o.sigma if np.isfinite(o.sigma) and o.sigma > 0 else default_sigma for o in recent]
    return PollObservation(
        date=recent[-1].date,
        dem=float(np.mean([o.dem for o in recent])),
        rep=float(np.mean([o.rep for o in recent])),
        sigma=float(np.mean(sigmas)),
    )


def seat_poll_matrix(
    seat_ids: Sequence[str],
    seat_polls: dict[str, Sequence[PollObservation]],
    query_dates: np.ndarray,
    window: int,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Rolling per-seat poll means for every query date.

    Returns (dem, rep) arrays of shape (n_days, n_seats); NaN where a seat had
    no dated poll on or before that day.
    """
    n_days = len(query_dates)
    dem = np.full((n_days, len(seat_ids)), np.nan)
    rep = np.full((n_days, len(seat_ids)), np.nan)

    for i, seat_id in enumerate(seat_ids):
        polls = dated_observations(seat_polls.get(seat_id, ()))
        if not polls:
            continue
        obs_dates = to_day_array([o.date for o in polls])
        values = np.array([[o.dem, o.rep] for o in polls])
        means, _ = trailing_window_means(obs_dates, values, query_dates, window)
        dem[:, i] = means[:, 0]
        rep[:, i] = means[:, 1]

    return dem, rep


def rolling_national_series(
    polls: pd.DataFrame,
    window: int,
    end_date: Optional[date] = None,
) -> list[NationalPoint]:
    """
    Daily trailing mean of the last `window` national polls.

    Args:
        polls: DataFrame with `date`, `dem`, `rep` columns
        window: Number of most recent polls averaged for each day
        end_date: Extend the series through this date when it is later than
                  the last poll (typically today)

    Returns:
        One NationalPoint per calendar day from the first poll date onward
    """
    if polls is None or polls.empty:
        return []

    df = polls[["date", "dem", "rep"]].copy()
    df["date"] = pd.to_datetime(df["date"], errors="coerce")
    df["dem"] = pd.to_numeric(df["dem"], errors="coerce")
    df["rep"] = pd.to_numeric(df["rep"], errors="coerce")
    df = df.dropna().sort_values("date", kind="stable")
    if df.empty:
        return []

    first = df["date"].iloc[0].normalize()
    last = df["date"].iloc[-1].normalize()
    if end_date is not None and pd.Timestamp(end_date) > last:
        last = pd.Timestamp(end_date).normalize()
    days = pd.date_range(first, last, freq="D")

    means, counts = trailing_window_means(
        df["date"].values.astype("datetime64[D]"),
        df[["dem", "rep"]].values,
        days.values.astype("datetime64[D]"),
        window,
    )

    series = [
        NationalPoint(date=day.date(), dem=float(m[0]), rep=float(m[1]), count=int(c))
        for day, m, c in zip(days, means, counts)
        if c > 0
    ]
    logger.info(f"National series: {len(series)} days from {len(df)} polls (last {window} per day)")
    return series


def validate_national_series(series: Sequence[NationalPoint]) -> list[NationalPoint]:
    """
    Enforce strictly increasing dates.

    An out-of-order series is sorted; duplicate dates keep the last entry.
    """
    series = list(series)
    if not series:
        return []
    dates = [p.date for p in series]
    if all(a < b for a, b in zip(dates, dates[1:])):
        return series

    by_date = {}
    for point in series:
        by_date[point.date] = point
    cleaned = [by_date[d] for d in sorted(by_date)]
    logger.warning(
        f"National series was not strictly ordered: sorted and kept {len(cleaned)} of {len(series)} points"
    )
    return cleaned
