#!/usr/bin/env python3
"""
Load forecast inputs from the data directory.

Files (under data/raw/ by default):
- entries_all.csv: per-state rows for senate/governor with partisan-lean
  ratios (ratioD, ratioR), an optional undated snapshot poll
  (pollD, pollR, pollSigma) and an optional snapshot generic ballot (gbD, gbR)
- house_district_ratios_filled.csv: per-district ratios
  (state_name, congressional_district_number, d_ratio, r_ratio)
- state_polls_by_date.csv: dated state polls for every race
- polls.json: generic ballot polls ({"genericBallot": [...]}); a VoteHub-style
  generic_ballot.csv (date, pollster, dem_pct, rep_pct) is also accepted

Only polls from allowlisted pollsters feed the generic ballot series.
"""

import json
import logging
import re
import sys
from datetime import date
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from chamber_odds.config import ModelConfig
from chamber_odds.forecast import ChamberInputs
from chamber_odds.polling import rolling_national_series
from chamber_odds.signals import DEFAULT_POLL_SIGMA, PartisanPair, PollObservation, SeatRatio

DATA_DIR = PROJECT_ROOT / "data"

logger = logging.getLogger(__name__)

ENTRIES_FILE = "entries_all.csv"
HOUSE_RATIOS_FILE = "house_district_ratios_filled.csv"
STATE_POLLS_FILE = "state_polls_by_date.csv"
GENERIC_BALLOT_FILE = "polls.json"

STATE_CHAMBERS = ("senate", "governor")

# Generic ballot pollster allowlist, matched against normalized names
# (lowercase, "&" -> "and", non-alphanumerics removed)
ALLOWED_POLLSTER_PATTERNS = [
    re.compile(p) for p in (
        r"yougov", r"verasight", r"ipsos",
        r"americanresearchgroup|arg\b", r"tipp",
        r"emerson", r"gallup", r"marist",
        r"quinnipiac", r"apnorc|ap-norc|norc",
        r"marquette", r"cnnssrs|cnn/ssrs|ssrs",
        r"atlasintel|atlas", r"beaconresearch|shaw",
        r"hartresearch|publicopinionstrategies", r"pewresearch|pew",
        r"surveymonkey", r"leger",
        r"massachusetts|umass|departmentofpoliticalscience",
        r"siena|newyorktimes", r"foxnews",
        r"wallstreetjournal|wsj",
    )
]

USPS_TO_NAME = {
    "AL": "Alabama", "AK": "Alaska", "AZ": "Arizona", "AR": "Arkansas", "CA": "California",
    "CO": "Colorado", "CT": "Connecticut", "DE": "Delaware", "DC": "District of Columbia",
    "FL": "Florida", "GA": "Georgia", "HI": "Hawaii", "ID": "Idaho", "IL": "Illinois",
    "IN": "Indiana", "IA": "Iowa", "KS": "Kansas", "KY": "Kentucky", "LA": "Louisiana",
    "ME": "Maine", "MD": "Maryland", "MA": "Massachusetts", "MI": "Michigan", "MN": "Minnesota",
    "MS": "Mississippi", "MO": "Missouri", "MT": "Montana", "NE": "Nebraska", "NV": "Nevada",
    "NH": "New Hampshire", "NJ": "New Jersey", "NM": "New Mexico", "NY": "New York",
    "NC": "North Carolina", "ND": "North Dakota", "OH": "Ohio", "OK": "Oklahoma", "OR": "Oregon",
    "PA": "Pennsylvania", "RI": "Rhode Island", "SC": "South Carolina", "SD": "South Dakota",
    "TN": "Tennessee", "TX": "Texas", "UT": "Utah", "VT": "Vermont", "VA": "Virginia",
    "WA": "Washington", "WV": "West Virginia", "WI": "Wisconsin", "WY": "Wyoming",
}
NAME_TO_USPS = {name.lower(): usps for usps, name in USPS_TO_NAME.items()}

DEM_CHOICES = ("dem", "democrat", "democrats", "democratic")
REP_CHOICES = ("rep", "republican", "republicans", "gop")


def normalize_pollster(name) -> str:
    """Lowercase, '&' -> 'and', strip everything but letters and digits."""
    if name is None or (isinstance(name, float) and np.isnan(name)):
        return ""
    s = str(name).lower().replace("&", "and")
    return re.sub(r"[^a-z0-9]+", "", s)


def is_allowed_pollster(name) -> bool:
    """True if the pollster matches the generic ballot allowlist."""
    n = normalize_pollster(name)
    if not n:
        return False
    return any(p.search(n) for p in ALLOWED_POLLSTER_PATTERNS)


def house_district_code(usps: str, district_number: int) -> str:
    """District id like 'PA-07'; at-large districts (number 0) are 'WY-AL'."""
    if not usps:
        return ""
    if district_number == 0:
        return f"{usps}-AL"
    return f"{usps}-{int(district_number):02d}"


def normalize_race(value) -> str:
    """Map free-form race/office labels to a chamber id ('' if unknown)."""
    v = str(value or "").strip().lower()
    if not v or v == "nan":
        return ""
    if "senate" in v or re.search(r"\bsen\b", v):
        return "senate"
    if "governor" in v or re.search(r"\bgov\b", v):
        return "governor"
    if "house" in v:
        return "house"
    return ""


def _column(df: pd.DataFrame, *names: str) -> pd.Series:
    """First present column among `names` (all-NaN series if none)."""
    for name in names:
        if name in df.columns:
            return df[name]
    return pd.Series(np.nan, index=df.index)


def _numeric(df: pd.DataFrame, *names: str) -> pd.Series:
    """First present column that has any numeric value, coerced to float."""
    result = pd.Series(np.nan, index=df.index)
    for name in names:
        if name in df.columns:
            result = result.fillna(pd.to_numeric(df[name], errors="coerce"))
    return result


def _read_csv(path: Path, required: bool = True) -> Optional[pd.DataFrame]:
    path = Path(path)
    if not path.exists():
        if required:
            raise FileNotFoundError(f"Required input not found: {path}")
        logger.warning(f"{path.name} not found, skipping")
        return None
    return pd.read_csv(path, dtype=str, keep_default_na=True)


def load_seat_ratios(path: Path, chamber: str) -> dict[str, SeatRatio]:
    """
    Load partisan-lean ratios for one chamber.

    Senate/governor ratios come from the entries file rows whose `mode`
    matches the chamber, keyed by state code. House ratios come from the
    district ratio file, keyed by district code.
    """
    df = _read_csv(path)
    ratios = {}

    if chamber == "house":
        state_names = _column(df, "state_name", "stateName", "state").fillna("").str.strip()
        usps = _column(df, "usps").fillna("").str.strip().str.upper()
        cds = _numeric(df, "congressional_district_number", "cd", "district").fillna(0)
        d_ratio = _numeric(df, "d_ratio", "ratioD", "ratio_d", "D_ratio")
        r_ratio = _numeric(df, "r_ratio", "ratioR", "ratio_r", "R_ratio")

        for name, code, cd, d, r in zip(state_names, usps, cds, d_ratio, r_ratio):
            if len(code) != 2:
                code = NAME_TO_USPS.get(name.lower(), "")
            district_id = house_district_code(code, int(cd))
            if district_id and np.isfinite(d) and np.isfinite(r):
                ratios[district_id] = SeatRatio(dem=float(d), rep=float(r))
    else:
        modes = _column(df, "mode").fillna("").str.strip().str.lower()
        rows = df[modes == chamber]
        states = _column(rows, "state").fillna("").str.strip().str.upper()
        d_ratio = _numeric(rows, "ratioD")
        r_ratio = _numeric(rows, "ratioR")
        for state, d, r in zip(states, d_ratio, r_ratio):
            if state and np.isfinite(d) and np.isfinite(r):
                ratios[state] = SeatRatio(dem=float(d), rep=float(r))

    logger.info(f"Loaded {len(ratios)} {chamber} ratios from {Path(path).name}")
    return ratios


def load_snapshot_polls(path: Path, chamber: str) -> dict[str, PollObservation]:
    """Undated baseline polls (pollD, pollR, pollSigma) from the entries file."""
    df = _read_csv(path)
    modes = _column(df, "mode").fillna("").str.strip().str.lower()
    rows = df[modes == chamber]
    states = _column(rows, "state").fillna("").str.strip().str.upper()
    poll_d = _numeric(rows, "pollD")
    poll_r = _numeric(rows, "pollR")
    sigma = _numeric(rows, "pollSigma")

    polls = {}
    for state, d, r, s in zip(states, poll_d, poll_r, sigma):
        if state and np.isfinite(d) and np.isfinite(r):
            polls[state] = PollObservation(
                date=None,
                dem=float(d),
                rep=float(r),
                sigma=float(s) if np.isfinite(s) else DEFAULT_POLL_SIGMA,
            )
    return polls


def load_snapshot_national(path: Path) -> dict[str, Optional[PartisanPair]]:
    """
    Snapshot generic ballot (gbD, gbR) per chamber from the entries file.

    Each chamber takes the first finite pair among its own `mode` rows.
    Senate and governor fill in from each other when one has none; the
    House falls back to the senate pair, then the governor pair.
    """
    df = _read_csv(path)
    modes = _column(df, "mode").fillna("").str.strip().str.lower()
    gb_d = _numeric(df, "gbD")
    gb_r = _numeric(df, "gbR")

    snapshots = {chamber: None for chamber in (*STATE_CHAMBERS, "house")}
    for mode, d, r in zip(modes, gb_d, gb_r):
        if mode in snapshots and snapshots[mode] is None and np.isfinite(d) and np.isfinite(r):
            snapshots[mode] = PartisanPair.normalize(d, r)

    if snapshots["senate"] is None:
        snapshots["senate"] = snapshots["governor"]
    if snapshots["governor"] is None:
        snapshots["governor"] = snapshots["senate"]
    if snapshots["house"] is None:
        snapshots["house"] = snapshots["senate"] or snapshots["governor"]
    return snapshots


def load_state_polls(path: Path) -> dict[str, dict[str, list[PollObservation]]]:
    """
    Dated polls keyed by chamber, then state.

    Shares come from dem/rep columns, falling back to the candidate columns
    (candA_pct/candA_party, candB_pct/candB_party). Rows without a date,
    a recognizable race or both shares are dropped.
    """
    by_chamber = {"senate": {}, "governor": {}, "house": {}}
    df = _read_csv(path, required=False)
    if df is None or df.empty:
        return by_chamber

    race = _column(df, "race").fillna(_column(df, "office")).fillna(_column(df, "mode")).fillna(_column(df, "type"))
    chambers = race.map(normalize_race)
    states = _column(df, "state").fillna("").str.strip().str.upper()
    dates = pd.to_datetime(_column(df, "end_date").fillna(_column(df, "date")), errors="coerce", format="mixed")

    dem = _numeric(df, "dem", "D", "pollD")
    rep = _numeric(df, "rep", "R", "pollR")

    # Candidate-party fallback
    a_party = _column(df, "candA_party", "partyA").fillna("").str.strip().str.upper()
    b_party = _column(df, "candB_party", "partyB").fillna("").str.strip().str.upper()
    a_pct = _numeric(df, "candA_pct", "candAPct", "candA")
    b_pct = _numeric(df, "candB_pct", "candBPct", "candB")
    cand_dem = pd.Series(np.nan, index=df.index).mask(a_party == "D", a_pct).mask(b_party == "D", b_pct)
    cand_rep = pd.Series(np.nan, index=df.index).mask(a_party == "R", a_pct).mask(b_party == "R", b_pct)
    use_cand = dem.isna() | rep.isna()
    dem = dem.where(~use_cand, cand_dem)
    rep = rep.where(~use_cand, cand_rep)

    sigma = _numeric(df, "sigma")
    sigma = sigma.where(sigma > 0, DEFAULT_POLL_SIGMA)

    kept = 0
    for chamber, state, day, d, r, s in zip(chambers, states, dates, dem, rep, sigma):
        if chamber not in by_chamber or not state or pd.isna(day):
            continue
        if not (np.isfinite(d) and np.isfinite(r)):
            continue
        by_chamber[chamber].setdefault(state, []).append(
            PollObservation(date=day.date(), dem=float(d), rep=float(r), sigma=float(s))
        )
        kept += 1

    for polls in by_chamber.values():
        for state in polls:
            polls[state].sort(key=lambda o: o.date)

    logger.info(f"Loaded {kept} dated state polls from {Path(path).name} ({len(df) - kept} skipped)")
    return by_chamber


def _answer_pct(answers: list, choices: tuple) -> Optional[float]:
    """Share for the first answer matching `choices` (exact, then substring)."""
    def norm(s):
        return re.sub(r"\s+", " ", str(s or "").strip().lower())

    labelled = [(norm(a.get("choice")), a.get("pct")) for a in answers if isinstance(a, dict)]
    for label, pct in labelled:
        if label in choices:
            return pct
    for label, pct in labelled:
        if any(c in label for c in choices):
            return pct
    return None


def load_generic_ballot_polls(path: Path, strict: bool = True) -> pd.DataFrame:
    """
    Load generic ballot polls as a DataFrame with date, pollster, dem, rep.

    Args:
        path: polls.json ({"genericBallot": [...]}) or a generic_ballot.csv
        strict: Keep only allowlisted pollsters

    Returns:
        DataFrame sorted by date (empty when the file is missing)
    """
    path = Path(path)
    columns = ["date", "pollster", "dem", "rep"]
    if not path.exists():
        logger.warning(f"{path.name} not found, skipping generic ballot load")
        return pd.DataFrame(columns=columns)

    if path.suffix == ".json":
        with open(path) as f:
            raw = json.load(f)
        polls = raw.get("genericBallot", []) if isinstance(raw, dict) else []
        records = []
        for poll in polls:
            if not isinstance(poll, dict):
                continue
            answers = poll.get("answers") or []
            records.append({
                "date": poll.get("end_date") or poll.get("start_date") or poll.get("created_at"),
                "pollster": (
                    poll.get("pollster") or poll.get("pollster_name") or poll.get("pollsterName")
                    or poll.get("sponsor") or poll.get("firm") or poll.get("source") or ""
                ),
                "dem": _answer_pct(answers, DEM_CHOICES),
                "rep": _answer_pct(answers, REP_CHOICES),
            })
        df = pd.DataFrame(records, columns=columns)
    else:
        raw = pd.read_csv(path)
        df = pd.DataFrame({
            "date": _column(raw, "date", "end_date"),
            "pollster": _column(raw, "pollster").fillna(""),
            "dem": _column(raw, "dem_pct", "dem"),
            "rep": _column(raw, "rep_pct", "rep"),
        })

    df["date"] = pd.to_datetime(df["date"], errors="coerce", utc=True, format="mixed").dt.tz_localize(None).dt.normalize()
    df["dem"] = pd.to_numeric(df["dem"], errors="coerce")
    df["rep"] = pd.to_numeric(df["rep"], errors="coerce")
    df = df.dropna(subset=["date", "dem", "rep"])
    total = len(df)

    if strict:
        df = df[df["pollster"].map(is_allowed_pollster)]
    df = df.sort_values("date", kind="stable").reset_index(drop=True)

    logger.info(f"Loaded {len(df)} generic ballot polls from {path.name} ({total - len(df)} filtered by allowlist)")
    return df


def load_chamber_inputs(
    data_dir: Path = DATA_DIR,
    config: Optional[ModelConfig] = None,
    today: Optional[date] = None,
) -> dict[str, ChamberInputs]:
    """
    Assemble ChamberInputs for senate, governor and house.

    All chambers share one rolling national series built from the last
    `gb_window_polls` allowlisted polls for each day through `today`.
    """
    config = config or ModelConfig()
    today = today or date.today()
    raw_dir = Path(data_dir) / "raw"

    entries_path = raw_dir / ENTRIES_FILE
    gb_path = raw_dir / GENERIC_BALLOT_FILE
    if not gb_path.exists() and (raw_dir / "polling" / "generic_ballot.csv").exists():
        gb_path = raw_dir / "polling" / "generic_ballot.csv"

    gb_polls = load_generic_ballot_polls(gb_path)
    national_series = rolling_national_series(gb_polls, config.gb_window_polls, end_date=today)
    snapshot_national = load_snapshot_national(entries_path)
    if not national_series:
        logger.warning("No generic ballot series; chambers fall back to the snapshot generic ballot")

    state_polls = load_state_polls(raw_dir / STATE_POLLS_FILE)

    inputs = {}
    for chamber in STATE_CHAMBERS:
        inputs[chamber] = ChamberInputs(
            ratios=load_seat_ratios(entries_path, chamber),
            seat_polls=state_polls.get(chamber, {}),
            snapshot_polls=load_snapshot_polls(entries_path, chamber),
            national_series=national_series,
            fallback_national=snapshot_national[chamber],
        )

    inputs["house"] = ChamberInputs(
        ratios=load_seat_ratios(raw_dir / HOUSE_RATIOS_FILE, "house"),
        national_series=national_series,
        fallback_national=snapshot_national["house"],
    )
    return inputs
