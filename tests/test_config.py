"""Configuration defaults, YAML overrides and CLI precedence."""

import argparse
import logging

from co2_sarima.config_utils import DEFAULT_CONFIG, ConfigManager, get_config_value, load_config
from co2_sarima.estimation_utils import SarimaEstimator


def test_defaults():
    config = ConfigManager()
    assert config.get("data.season") == 12
    assert config.get("data.test_size") == 36
    assert config.get("forecast.interval_multiplier") == 2.0
    assert config.get("missing.key", "fallback") == "fallback"
    assert config.validate_configuration() == {}


def test_overrides_merge_with_defaults():
    config = ConfigManager({"estimation": {"maxiter": 50}})
    assert config.get("estimation.maxiter") == 50
    assert config.get("estimation.tol") == DEFAULT_CONFIG["estimation"]["tol"]
    # defaults are not mutated
    assert DEFAULT_CONFIG["estimation"]["maxiter"] == 500


def test_load_yaml_file(tmp_path):
    path = tmp_path / "analysis.yaml"
    path.write_text(
        "data:\n"
        "  test_size: 24\n"
        "diagnostics:\n"
        "  significance_level: 0.01\n"
    )

    config = load_config(path)

    assert config.get("data.test_size") == 24
    assert config.get("data.season") == 12
    assert config.get("diagnostics.significance_level") == 0.01
    assert config.source == path


def test_empty_yaml_file_means_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert load_config(path).to_dict() == DEFAULT_CONFIG


def test_missing_file_falls_back_to_defaults(tmp_path, caplog):
    with caplog.at_level(logging.WARNING):
        config = load_config(tmp_path / "nope.yaml")
    assert config.to_dict() == DEFAULT_CONFIG
    assert "not found" in caplog.text


def test_invalid_yaml_falls_back_to_defaults(tmp_path, caplog):
    path = tmp_path / "broken.yaml"
    path.write_text("data: [test_size: 24\n")
    with caplog.at_level(logging.ERROR):
        assert load_config(path).get("data.season") == 12
    assert "Failed to parse" in caplog.text


def test_non_mapping_yaml_falls_back_to_defaults(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- 1\n- 2\n")
    assert load_config(path).to_dict() == DEFAULT_CONFIG


def test_cli_over_file_over_default():
    config = ConfigManager({"data": {"test_size": 24}})
    args = argparse.Namespace(test_size=12, season=None)

    assert get_config_value("data.test_size", 36, args=args, cli_param="test_size", config=config) == 12
    assert get_config_value("data.season", 4, args=args, cli_param="season", config=config) == 12
    assert get_config_value("data.test_size", 36, config=config) == 24
    assert get_config_value("data.test_size", 36) == 36


def test_validation_reports_bad_values():
    config = ConfigManager({"diagnostics": {"significance_level": 1.5}, "estimation": {"maxiter": 0}})
    errors = config.validate_configuration()
    assert "diagnostics" in errors and "estimation" in errors


def test_estimator_reads_config_and_overrides():
    config = ConfigManager({"estimation": {"maxiter": 25, "max_retries": 0}})
    assert SarimaEstimator(config).settings["maxiter"] == 25
    assert SarimaEstimator(config, maxiter=10).settings["maxiter"] == 10
