#!/usr/bin/env python3
"""
Configuration tests: defaults, validation and JSON round trips.
"""

import json
import sys
import tempfile
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from chamber_odds.config import (
    SEAT_RULES,
    ChamberRules,
    ConfigurationError,
    HistogramPolicy,
    ModelConfig,
    SignalWeights,
    load_chamber_rules,
    load_chamber_rules_file,
)


def expect_configuration_error(func, *args, **kwargs):
    try:
        func(*args, **kwargs)
    except ConfigurationError as e:
        print(f"  Rejected as expected: {e}")
        return
    raise AssertionError(f"{func.__name__}{args} should raise ConfigurationError")


def test_defaults():
    """Defaults match the documented model settings."""
    print("\n" + "=" * 60)
    print("TEST: Config defaults")
    print("=" * 60)

    config = ModelConfig()
    assert config.n_simulations == 10000
    assert config.error_sd == 7.0 and config.swing_range == 7.0
    assert config.weights == SignalWeights(35, 50, 15)
    assert config.gb_window_polls == 24 and config.seat_poll_window == 6
    assert config.competitive_band == 15.0
    assert config.random_seed is None

    house = SEAT_RULES["house"]
    assert house.histogram.kind == "binned" and house.histogram.bin_size == 12 and house.histogram.bin_offset == 2
    assert house.timeseries_method == "hybrid"
    assert SEAT_RULES["senate"].timeseries_method == "full"

    print("✓ PASSED")


def test_invalid_config_rejected():
    """Inconsistent values raise ConfigurationError at construction."""
    print("\n" + "=" * 60)
    print("TEST: Invalid config rejected")
    print("=" * 60)

    expect_configuration_error(ModelConfig, n_simulations=0)
    expect_configuration_error(ModelConfig, error_sd=0.0)
    expect_configuration_error(SignalWeights, polls=-1.0)
    expect_configuration_error(ModelConfig.from_dict, {"n_sims": 5})
    expect_configuration_error(HistogramPolicy, kind="pie")
    expect_configuration_error(HistogramPolicy, kind="range", show_min=5)

    assert issubclass(ConfigurationError, ValueError)
    print("✓ PASSED")


def test_wrong_types_rejected():
    """JSON values of the wrong type fail at load time, not inside numpy."""
    print("\n" + "=" * 60)
    print("TEST: Wrongly typed config values rejected")
    print("=" * 60)

    expect_configuration_error(ModelConfig.from_dict, {"n_simulations": 10000.0})
    expect_configuration_error(ModelConfig.from_dict, {"trial_batch_size": "2000"})
    expect_configuration_error(ModelConfig.from_dict, {"seat_poll_window": True})
    expect_configuration_error(ModelConfig.from_dict, {"weights": [35, 50, 15]})
    expect_configuration_error(ModelConfig.from_dict, {"weights": None})
    expect_configuration_error(ModelConfig.from_dict, {"error_sd": "7"})
    expect_configuration_error(ModelConfig.from_dict, {"swing_range": float("inf")})
    expect_configuration_error(ModelConfig.from_dict, {"random_seed": 1.5})
    expect_configuration_error(ModelConfig.from_dict, {"random_seed": -1})
    expect_configuration_error(ModelConfig.from_dict, [("n_simulations", 10)])

    # Integral values are fine where a float is expected
    config = ModelConfig.from_dict({"error_sd": 7, "swing_range": 0, "random_seed": 0})
    assert config.error_sd == 7 and config.random_seed == 0

    print("✓ PASSED")


def test_invalid_rules_rejected():
    """Missing or inconsistent chamber fields are fatal."""
    print("\n" + "=" * 60)
    print("TEST: Invalid chamber rules rejected")
    print("=" * 60)

    good = SEAT_RULES["governor"].to_dict()

    missing = dict(good)
    del missing["tie_goes_to_dem"]
    expect_configuration_error(ChamberRules.from_dict, "governor", missing)

    too_many_held = dict(good, held_dem=30, held_rep=30)
    expect_configuration_error(ChamberRules.from_dict, "governor", too_many_held)

    bad_method = dict(good, timeseries_method="weekly")
    expect_configuration_error(ChamberRules.from_dict, "governor", bad_method)

    bad_threshold = dict(good, control_threshold=0)
    expect_configuration_error(ChamberRules.from_dict, "governor", bad_threshold)

    expect_configuration_error(load_chamber_rules, {})

    print("✓ PASSED")


def test_json_round_trip():
    """Config and rules survive save/load unchanged."""
    print("\n" + "=" * 60)
    print("TEST: JSON round trip")
    print("=" * 60)

    config = ModelConfig(n_simulations=500, random_seed=7, weights=SignalWeights(30, 60, 10))

    with tempfile.TemporaryDirectory() as tmp:
        config_path = Path(tmp) / "model_config.json"
        config.save(config_path)
        assert ModelConfig.load(config_path) == config

        rules_path = Path(tmp) / "rules.json"
        with open(rules_path, "w") as f:
            json.dump({name: rules.to_dict() for name, rules in SEAT_RULES.items()}, f)
        loaded = load_chamber_rules_file(rules_path)
        assert loaded == SEAT_RULES

        try:
            ModelConfig.load(Path(tmp) / "missing.json")
        except FileNotFoundError:
            pass
        else:
            raise AssertionError("Loading a missing config should raise FileNotFoundError")

    print("✓ PASSED")


def run_all_tests():
    """Run all configuration tests."""
    all_passed = True
    for test in (
        test_defaults,
        test_invalid_config_rejected,
        test_wrong_types_rejected,
        test_invalid_rules_rejected,
        test_json_round_trip,
    ):
        try:
            test()
        except AssertionError as e:
            print(f"✗ FAILED: {e}")
            all_passed = False

    print("\n" + "=" * 60)
    print("ALL TESTS PASSED ✓" if all_passed else "SOME TESTS FAILED ✗")
    print("=" * 60)
    return all_passed


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
