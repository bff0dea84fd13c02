# co2_sarima/config_utils.py

import argparse
import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

logger = logging.getLogger(__name__)


DEFAULT_CONFIG: Dict[str, Any] = {
    "data": {
        "season": 12,
        "test_size": 36,
    },
    "identification": {
        "max_lag": 48,
        "max_order": 2,
        "max_seasonal_order": 1,
        "z_value": 1.96,
    },
    "estimation": {
        "maxiter": 500,
        "tol": 1e-9,
        "gtol": 1e-5,
        "max_retries": 2,
        "enforce_stationarity": True,
        "enforce_invertibility": True,
        "raise_on_violation": False,
    },
    "diagnostics": {
        "max_ar_order": 12,
        "arch_lm_lags": 12,
        "significance_level": 0.05,
        "reject_residual_ar": True,
    },
    "forecast": {
        "interval_multiplier": 2.0,
        "exact_quantile": False,
        "level": 0.95,
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigManager:
    """
    Read-only view over the analysis configuration.

    Values are looked up with dot notation (``"estimation.maxiter"``). The
    defaults in ``DEFAULT_CONFIG`` are overlaid by an optional YAML file and
    then by explicit overrides.
    """

    def __init__(self, overrides: Optional[Dict[str, Any]] = None, source: Optional[Path] = None):
        self._data = _deep_merge(DEFAULT_CONFIG, overrides or {})
        self.source = source

    def get(self, key_path: str, default: Any = None) -> Any:
        node: Any = self._data
        for part in key_path.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def section(self, name: str) -> Dict[str, Any]:
        return copy.deepcopy(self._data.get(name, {}))

    def with_overrides(self, overrides: Dict[str, Any]) -> "ConfigManager":
        return ConfigManager(_deep_merge(self._data, overrides), source=self.source)

    def validate_configuration(self) -> Dict[str, list]:
        """
        Check value ranges and return a mapping of section -> list of problems.

        An empty mapping means the configuration is usable.
        """
        errors: Dict[str, list] = {}

        def _add(section: str, message: str) -> None:
            errors.setdefault(section, []).append(message)

        if int(self.get("data.season", 0)) < 1:
            _add("data", "season must be >= 1")
        if int(self.get("data.test_size", -1)) < 0:
            _add("data", "test_size must be >= 0")
        if int(self.get("estimation.maxiter", 0)) < 1:
            _add("estimation", "maxiter must be >= 1")
        if float(self.get("estimation.tol", 0.0)) <= 0.0:
            _add("estimation", "tol must be positive")
        if int(self.get("estimation.max_retries", -1)) < 0:
            _add("estimation", "max_retries must be >= 0")
        alpha = float(self.get("diagnostics.significance_level", 0.05))
        if not 0.0 < alpha < 1.0:
            _add("diagnostics", "significance_level must lie in (0, 1)")
        level = float(self.get("forecast.level", 0.95))
        if not 0.0 < level < 1.0:
            _add("forecast", "level must lie in (0, 1)")
        if float(self.get("forecast.interval_multiplier", 2.0)) <= 0.0:
            _add("forecast", "interval_multiplier must be positive")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self._data)


def load_config(path: Optional[Union[str, Path]] = None) -> ConfigManager:
    """
    Build a configuration manager from an optional YAML file.

    A missing or unreadable file is logged and the defaults are used, so a
    run never depends on a configuration file being present. An empty file
    means no overrides.
    """
    if path is None:
        return ConfigManager()

    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as fh:
            overrides = yaml.safe_load(fh) or {}
    except FileNotFoundError:
        logger.warning("Configuration file %s not found - using defaults", path)
        return ConfigManager()
    except yaml.YAMLError as e:
        logger.error("Failed to parse configuration %s: %s. Using defaults.", path, e)
        return ConfigManager()
    if not isinstance(overrides, dict):
        logger.error("Configuration %s must be a mapping of sections, got %s. Using defaults.",
                     path, type(overrides).__name__)
        return ConfigManager()

    config = ConfigManager(overrides, source=path)
    validation_errors = config.validate_configuration()
    if validation_errors:
        logger.warning("Configuration validation warnings: %s", validation_errors)
    logger.info("Loaded configuration from %s", path)
    return config


def get_config_value(key_path: str,
                     default=None,
                     args: Optional[argparse.Namespace] = None,
                     cli_param: Optional[str] = None,
                     config: Optional[ConfigManager] = None):
    """
    Retrieves a configuration value, providing support for command-line overrides.
    The function prioritizes values in the following order:
    1. CLI argument (if provided)
    2. Configuration file
    3. Default value
    """
    if args is not None and cli_param and hasattr(args, cli_param):
        cli_value = getattr(args, cli_param)
        if cli_value is not None:
            return cli_value

    if config is not None:
        config_value = config.get(key_path, None)
        if config_value is not None:
            return config_value

    return default
