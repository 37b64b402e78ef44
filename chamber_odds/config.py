#!/usr/bin/env python3
"""
Model configuration and chamber rules.

Everything the engine treats as fixed configuration lives here:
- ModelConfig: simulation sizes, polling error, swing range, signal weights
- ChamberRules: seat accounting and control rule for each chamber
- SEAT_RULES: the default rules table, keyed by chamber id

Chamber-specific behaviour (who wins a tie, which histogram layout, which
time-series method) is data in the rules table, never a code branch.

Configs round-trip through JSON the same way learned parameters do
(to_dict / from_dict / save / load).
"""

import json
import logging
import math
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent
DATA_CONFIG = PROJECT_ROOT / "data" / "config"

HISTOGRAM_KINDS = ("binned", "range")
TIMESERIES_METHODS = ("full", "hybrid")


class ConfigurationError(ValueError):
    """Raised when a config or rules table is structurally invalid."""


@dataclass(frozen=True)
class SignalWeights:
    """Fixed weights for the three seat-level signals."""
    generic_ballot: float = 35.0
    polls: float = 50.0
    indicator: float = 15.0

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, (int, float)) or not math.isfinite(value) or value < 0:
                raise ConfigurationError(f"Signal weight '{f.name}' must be a finite non-negative number, got {value!r}")

    def to_dict(self) -> dict:
        return {
            "generic_ballot": self.generic_ballot,
            "polls": self.polls,
            "indicator": self.indicator,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "SignalWeights":
        unknown = set(d) - {f.name for f in fields(cls)}
        if unknown:
            raise ConfigurationError(f"Unknown signal weight(s): {sorted(unknown)}")
        return cls(**d)


@dataclass(frozen=True)
class HistogramPolicy:
    """
    How seat totals are binned for display.

    kind="binned": fixed-width bins of `bin_size` aligned at `bin_offset`
    kind="range":  one bin per seat count over [show_min, show_max]; when the
                   bounds are None they default to the chamber's reachable range
    """
    kind: str = "range"
    bin_size: int = 1
    bin_offset: int = 0
    show_min: Optional[int] = None
    show_max: Optional[int] = None

    def __post_init__(self):
        if self.kind not in HISTOGRAM_KINDS:
            raise ConfigurationError(f"Unknown histogram kind '{self.kind}' (expected one of {HISTOGRAM_KINDS})")
        if self.bin_size < 1:
            raise ConfigurationError(f"Histogram bin_size must be >= 1, got {self.bin_size}")
        if (self.show_min is None) != (self.show_max is None):
            raise ConfigurationError("Histogram show_min and show_max must be set together")
        if self.show_min is not None and self.show_min > self.show_max:
            raise ConfigurationError(f"Histogram show_min {self.show_min} > show_max {self.show_max}")

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "bin_size": self.bin_size,
            "bin_offset": self.bin_offset,
            "show_min": self.show_min,
            "show_max": self.show_max,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "HistogramPolicy":
        return cls(**d)


@dataclass(frozen=True)
class ChamberRules:
    """
    Seat accounting and control rule for one chamber.

    Seats not up this cycle are split into `held_dem` and `held_rep`; the
    remainder is the contested pool that gets simulated.

    Control (for Democrats) means at least `control_threshold` seats. When
    `tie_goes_to_dem` is set, an exact even split of `total_seats` also counts
    as Democratic control (e.g. governorships, where the tie is scored for the
    party that holds the tiebreak).
    """
    name: str
    total_seats: int
    control_threshold: int
    held_dem: int
    held_rep: int
    tie_goes_to_dem: bool
    histogram: HistogramPolicy = field(default_factory=HistogramPolicy)
    timeseries_method: str = "full"

    REQUIRED_FIELDS = (
        "total_seats",
        "control_threshold",
        "held_dem",
        "held_rep",
        "tie_goes_to_dem",
    )

    def __post_init__(self):
        for name in ("total_seats", "control_threshold", "held_dem", "held_rep"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ConfigurationError(f"{self.name}: '{name}' must be a non-negative integer, got {value!r}")
        if not isinstance(self.tie_goes_to_dem, bool):
            raise ConfigurationError(f"{self.name}: 'tie_goes_to_dem' must be a boolean")
        if self.total_seats == 0:
            raise ConfigurationError(f"{self.name}: 'total_seats' must be positive")
        if self.held_dem + self.held_rep > self.total_seats:
            raise ConfigurationError(
                f"{self.name}: held seats ({self.held_dem} + {self.held_rep}) exceed total ({self.total_seats})"
            )
        if not 0 < self.control_threshold <= self.total_seats:
            raise ConfigurationError(
                f"{self.name}: control_threshold {self.control_threshold} outside 1..{self.total_seats}"
            )
        if self.timeseries_method not in TIMESERIES_METHODS:
            raise ConfigurationError(
                f"{self.name}: unknown timeseries_method '{self.timeseries_method}' "
                f"(expected one of {TIMESERIES_METHODS})"
            )

    @property
    def contested_seats(self) -> int:
        """Seats actually up for election this cycle."""
        return self.total_seats - self.held_dem - self.held_rep

    @property
    def tie_seats(self) -> Optional[int]:
        """Dem seat count that is an exact tie, if the chamber can tie."""
        if self.total_seats % 2:
            return None
        return self.total_seats // 2

    def histogram_range(self) -> tuple[int, int]:
        """Display range for range-style histograms."""
        if self.histogram.show_min is not None:
            return self.histogram.show_min, self.histogram.show_max
        return self.held_dem, self.held_dem + self.contested_seats

    def has_control(self, dem_seats):
        """
        Democratic control test for a seat count or an array of seat counts.

        Returns a bool for scalars and a boolean array for arrays.
        """
        seats = np.asarray(dem_seats)
        control = seats >= self.control_threshold
        if self.tie_goes_to_dem and self.tie_seats is not None:
            control = control | (seats == self.tie_seats)
        if control.ndim == 0:
            return bool(control)
        return control

    def to_dict(self) -> dict:
        return {
            "total_seats": self.total_seats,
            "control_threshold": self.control_threshold,
            "held_dem": self.held_dem,
            "held_rep": self.held_rep,
            "tie_goes_to_dem": self.tie_goes_to_dem,
            "histogram": self.histogram.to_dict(),
            "timeseries_method": self.timeseries_method,
        }

    @classmethod
    def from_dict(cls, name: str, d: dict) -> "ChamberRules":
        """Build rules from a table row; missing required fields are fatal."""
        if not isinstance(d, dict):
            raise ConfigurationError(f"{name}: rules entry must be a mapping, got {type(d).__name__}")
        missing = [k for k in cls.REQUIRED_FIELDS if k not in d]
        if missing:
            raise ConfigurationError(f"{name}: chamber rules missing required field(s): {missing}")
        histogram = d.get("histogram")
        try:
            histogram = HistogramPolicy.from_dict(histogram) if histogram else HistogramPolicy()
        except TypeError as e:
            raise ConfigurationError(f"{name}: invalid histogram policy: {e}") from e
        return cls(
            name=name,
            total_seats=d["total_seats"],
            control_threshold=d["control_threshold"],
            held_dem=d["held_dem"],
            held_rep=d["held_rep"],
            tie_goes_to_dem=d["tie_goes_to_dem"],
            histogram=histogram,
            timeseries_method=d.get("timeseries_method", "full"),
        )


# Default chamber rules for the 2026 cycle.
#   Senate: 34 D + 31 R seats not up; Dems need 51 (a 50-50 tie goes R).
#   Governor: 6 D + 8 R not up; 26 for a majority, a 25-25 split is scored D.
#   House: all 435 seats up; 218 for a majority.
SEAT_RULES = {
    "senate": ChamberRules(
        name="senate",
        total_seats=100,
        control_threshold=51,
        held_dem=34,
        held_rep=31,
        tie_goes_to_dem=False,
        histogram=HistogramPolicy(kind="range"),
        timeseries_method="full",
    ),
    "governor": ChamberRules(
        name="governor",
        total_seats=50,
        control_threshold=26,
        held_dem=6,
        held_rep=8,
        tie_goes_to_dem=True,
        histogram=HistogramPolicy(kind="range", show_min=21, show_max=31),
        timeseries_method="full",
    ),
    "house": ChamberRules(
        name="house",
        total_seats=435,
        control_threshold=218,
        held_dem=0,
        held_rep=0,
        tie_goes_to_dem=False,
        histogram=HistogramPolicy(kind="binned", bin_size=12, bin_offset=2),
        timeseries_method="hybrid",
    ),
}


def load_chamber_rules(table: dict) -> dict[str, ChamberRules]:
    """Validate a {chamber: fields} table into ChamberRules objects."""
    if not isinstance(table, dict) or not table:
        raise ConfigurationError("Chamber rules table must be a non-empty mapping")
    return {name: ChamberRules.from_dict(name, row) for name, row in table.items()}


def load_chamber_rules_file(path: Path) -> dict[str, ChamberRules]:
    """Load a chamber rules table from JSON."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"No chamber rules found at {path}")
    with open(path) as f:
        table = json.load(f)
    rules = load_chamber_rules(table)
    logger.info(f"Loaded rules for {len(rules)} chambers from {path}")
    return rules


@dataclass(frozen=True)
class ModelConfig:
    """Fixed model configuration (nothing here is fitted)."""
    # Monte Carlo
    n_simulations: int = 10000
    trial_batch_size: int = 2000
    random_seed: Optional[int] = None

    # Error model: margin ~ Normal(observed, error_sd)
    error_sd: float = 7.0
    swing_range: float = 7.0
    swing_grid_step: float = 0.1

    # Win-probability lookup table
    margin_table_min: float = -40.0
    margin_table_max: float = 40.0
    margin_table_step: float = 0.1

    # Signals
    weights: SignalWeights = field(default_factory=SignalWeights)
    gb_window_polls: int = 24
    seat_poll_window: int = 6
    default_poll_sigma: float = 3.0

    # House districts with |margin| below this are tracked over time
    competitive_band: float = 15.0

    INT_FIELDS = ("n_simulations", "trial_batch_size", "gb_window_polls", "seat_poll_window")
    FLOAT_FIELDS = (
        "error_sd", "swing_range", "swing_grid_step",
        "margin_table_min", "margin_table_max", "margin_table_step",
        "default_poll_sigma", "competitive_band",
    )

    def __post_init__(self):
        for name in self.INT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigurationError(f"'{name}' must be an integer, got {value!r}")
        for name in self.FLOAT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ConfigurationError(f"'{name}' must be a finite number, got {value!r}")
        if self.random_seed is not None and (
            isinstance(self.random_seed, bool) or not isinstance(self.random_seed, int) or self.random_seed < 0
        ):
            raise ConfigurationError(f"random_seed must be a non-negative integer or null, got {self.random_seed!r}")
        if not isinstance(self.weights, SignalWeights):
            raise ConfigurationError(f"weights must be a mapping of signal weights, got {self.weights!r}")
        if self.n_simulations < 1:
            raise ConfigurationError(f"n_simulations must be positive, got {self.n_simulations}")
        if self.trial_batch_size < 1:
            raise ConfigurationError(f"trial_batch_size must be positive, got {self.trial_batch_size}")
        if not self.error_sd > 0:
            raise ConfigurationError(f"error_sd must be positive, got {self.error_sd}")
        if self.swing_range < 0:
            raise ConfigurationError(f"swing_range must be non-negative, got {self.swing_range}")
        if not self.swing_grid_step > 0 or not self.margin_table_step > 0:
            raise ConfigurationError("Grid steps must be positive")
        if self.margin_table_min >= self.margin_table_max:
            raise ConfigurationError("margin_table_min must be below margin_table_max")
        if self.gb_window_polls < 1 or self.seat_poll_window < 1:
            raise ConfigurationError("Poll windows must hold at least one poll")

    def to_dict(self) -> dict:
        d = {f.name: getattr(self, f.name) for f in fields(self)}
        d["weights"] = self.weights.to_dict()
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "ModelConfig":
        if not isinstance(d, dict):
            raise ConfigurationError(f"Model config must be a mapping, got {type(d).__name__}")
        d = dict(d)
        unknown = set(d) - {f.name for f in fields(cls)}
        if unknown:
            raise ConfigurationError(f"Unknown config field(s): {sorted(unknown)}")
        if "weights" in d and isinstance(d["weights"], dict):
            d["weights"] = SignalWeights.from_dict(d["weights"])
        return cls(**d)

    def save(self, path: Optional[Path] = None) -> None:
        """Save config to JSON."""
        if path is None:
            path = DATA_CONFIG / "model_config.json"
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info(f"Saved model config to {path}")

    @staticmethod
    def load(path: Optional[Path] = None) -> "ModelConfig":
        """Load config from JSON."""
        if path is None:
            path = DATA_CONFIG / "model_config.json"
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"No model config found at {path}")
        with open(path) as f:
            data = json.load(f)
        return ModelConfig.from_dict(data)
