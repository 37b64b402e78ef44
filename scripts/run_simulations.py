#!/usr/bin/env python3
"""
Daily chamber-odds simulation run.

Pipeline:
1. Load ratios, state polls, snapshot polls and generic ballot polls
2. Build the rolling generic ballot series (last 24 allowlisted polls per day)
3. Run the current-day Monte Carlo for senate, governor and house
4. Replay every chamber over the full series (odds over time)
5. Merge into the results file:
   - history: one snapshot per run date (same-day reruns replace it)
   - odds_over_time / seat_odds_over_time: fully replaced each run
   - run metadata

Run once daily:
    python scripts/run_simulations.py
"""

import argparse
import json
import logging
import sys
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from chamber_odds.config import SEAT_RULES, ChamberRules, ModelConfig, load_chamber_rules_file
from chamber_odds.forecast import run_forecast
from scripts.load_inputs import load_chamber_inputs

DATA_DIR = PROJECT_ROOT / "data"
OUTPUT_DIR = PROJECT_ROOT / "outputs"
RESULTS_FILE = OUTPUT_DIR / "simulation_results.json"

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def load_existing_results(path: Path) -> dict:
    """Existing results file, or a fresh structure when missing or unreadable."""
    path = Path(path)
    if not path.exists():
        return {"history": []}
    try:
        with open(path) as f:
            existing = json.load(f)
    except json.JSONDecodeError as e:
        logger.warning(f"Could not parse existing results file ({e}), starting fresh")
        return {"history": []}
    if not isinstance(existing, dict):
        logger.warning("Existing results file is not an object, starting fresh")
        return {"history": []}
    existing.setdefault("history", [])
    return existing


def merge_results(
    existing: dict,
    output: dict,
    config: ModelConfig,
    national_series_length: int,
    rules_table: Optional[dict[str, ChamberRules]] = None,
    run_date: Optional[date] = None,
    now: Optional[datetime] = None,
) -> dict:
    """
    Merge a forecast run into the results structure.

    The current-day result becomes the history entry for `run_date`,
    replacing an earlier entry for the same date. Time series are replaced
    wholesale. The rules table that produced the run is recorded in the
    metadata.
    """
    now = now or datetime.now(timezone.utc)
    run_date = run_date or now.date()
    day = run_date.isoformat()

    snapshot = {"date": day, "timestamp": now.isoformat(), **output["current"]}
    history = [h for h in existing.get("history", []) if h.get("date") != day]
    history.append(snapshot)
    history.sort(key=lambda h: h.get("date", ""))

    merged = dict(existing)
    merged["history"] = history
    merged["odds_over_time"] = output["odds_over_time"]
    merged["seat_odds_over_time"] = output["seat_odds_over_time"]
    merged["seat_odds_format"] = "columnar-v1"
    merged["metadata"] = {
        "last_updated": now.isoformat(),
        "last_run_date": day,
        "national_series_length": national_series_length,
        "n_simulations": config.n_simulations,
        "gb_window_polls": config.gb_window_polls,
        "gb_filter_strict": True,
        "chamber_rules": {name: rules.to_dict() for name, rules in (rules_table or SEAT_RULES).items()},
    }
    return merged


def save_results(results: dict, path: Path) -> None:
    """Write compact JSON (the file is loaded by the website)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(results, f, separators=(",", ":"))
    logger.info(f"Results saved to {path} ({path.stat().st_size / 1024 / 1024:.1f} MB)")


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Run daily chamber control simulations")
    parser.add_argument(
        "--simulations",
        type=int,
        default=None,
        help="Number of Monte Carlo simulations (default: 10000)"
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed (default: fresh entropy each run)"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="JSON model config to load instead of the defaults"
    )
    parser.add_argument(
        "--rules",
        type=Path,
        default=None,
        help="JSON chamber rules table to load instead of the defaults"
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=DATA_DIR,
        help="Data directory containing raw/ inputs"
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=RESULTS_FILE,
        help="Results JSON file to update"
    )
    args = parser.parse_args(argv)

    config = ModelConfig.load(args.config) if args.config else ModelConfig()
    overrides = config.to_dict()
    if args.simulations is not None:
        overrides["n_simulations"] = args.simulations
    if args.seed is not None:
        overrides["random_seed"] = args.seed
    config = ModelConfig.from_dict(overrides)

    rules_table = load_chamber_rules_file(args.rules) if args.rules else SEAT_RULES
    today = date.today()

    logger.info("=" * 60)
    logger.info(f"Running simulations for {today.isoformat()}")
    logger.info(f"Simulations: {config.n_simulations:,}  Seed: {config.random_seed}")
    logger.info(f"Chambers: {', '.join(rules_table)}")
    logger.info("=" * 60)

    logger.info("\n--- Loading Inputs ---")
    inputs = load_chamber_inputs(args.data_dir, config, today=today)
    series_length = max((len(i.national_series) for i in inputs.values()), default=0)
    logger.info(f"  GB series: {series_length} points")

    logger.info("\n--- Running Forecast ---")
    output = run_forecast(inputs, rules_table=rules_table, config=config)

    existing = load_existing_results(args.output)
    results = merge_results(existing, output, config, series_length, rules_table=rules_table, run_date=today)
    save_results(results, args.output)

    logger.info("\n" + "=" * 60)
    logger.info("SIMULATION SUMMARY")
    logger.info("=" * 60)
    logger.info(f"  History entries: {len(results['history'])}")
    for chamber, current in output["current"].items():
        logger.info(
            f"  {chamber}: P(Dem control) {current['prob_dem']:.1%}, "
            f"E[Dem seats] {current['expected_dem_seats']}, {len(current['seats'])} seats"
        )
    for chamber, encoded in output["seat_odds_over_time"].items():
        logger.info(f"  {chamber} seat histories: {len(encoded['seats'])} seats over {len(encoded['dates'])} dates")
    logger.info("Done.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
