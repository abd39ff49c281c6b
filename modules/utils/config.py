"""
Centralized configuration manager.
Loads YAML configs and provides typed access with defaults.

    - Schema validation for the recognition, training and session fields
    - Type and range checks that warn instead of failing
    - Dot-path access and runtime overrides layered over built-in defaults
    - Reset support for testing
"""

import os
import yaml
import logging

logger = logging.getLogger(__name__)

_BASE_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
_CONFIG_DIR = os.path.join(_BASE_DIR, "config")

# Schema: required sections and their expected types
_CONFIG_SCHEMA = {
    "preprocessing": {
        "smoothing_window": int,
    },
    "dtw": {
        "min_threshold": float,
        "threshold_scale": float,
        "fallback_threshold": float,
        "min_exemplars_for_adaptive": int,
    },
    "training": {
        "epochs": int,
        "learning_rate": float,
    },
    "evaluation": {
        "test_fraction": float,
        "epochs": int,
        "learning_rate": float,
    },
    "session": {
        "status_interval_ms": int,
        "action_confidence_threshold": float,
    },
}

# Value ranges checked after the type check: key -> (predicate, description)
_RANGES = {
    "preprocessing.smoothing_window": (lambda v: v >= 1, ">= 1"),
    "dtw.min_threshold": (lambda v: v >= 0, ">= 0"),
    "dtw.threshold_scale": (lambda v: v > 0, "> 0"),
    "dtw.fallback_threshold": (lambda v: v > 0, "> 0"),
    "dtw.min_exemplars_for_adaptive": (lambda v: v >= 2, ">= 2"),
    "training.epochs": (lambda v: v >= 1, ">= 1"),
    "training.learning_rate": (lambda v: v > 0, "> 0"),
    "evaluation.test_fraction": (lambda v: 0 < v < 1, "strictly between 0 and 1"),
    "evaluation.epochs": (lambda v: v >= 1, ">= 1"),
    "evaluation.learning_rate": (lambda v: v > 0, "> 0"),
    "session.status_interval_ms": (lambda v: v > 0, "> 0"),
    "session.action_confidence_threshold": (lambda v: 0 <= v <= 1, "between 0 and 1"),
}

_DEFAULTS = {
    "preprocessing": {"smoothing_window": 3},
    "dtw": {
        "min_threshold": 0.3,
        "threshold_scale": 1.5,
        "fallback_threshold": 0.6,
        "min_exemplars_for_adaptive": 2,
    },
    "training": {"epochs": 250, "learning_rate": 0.08},
    "evaluation": {"test_fraction": 0.2, "epochs": 250, "learning_rate": 0.08, "seed": None},
    "session": {
        "status_interval_ms": 200,
        "action_confidence_threshold": 0.55,
        "async_actions": True,
    },
    "actions": {"enabled": True, "opener": "logging"},
    "logging": {"level": "INFO", "file": None, "max_size_mb": 10, "backup_count": 3},
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base dict."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _matches_type(value, expected_type) -> bool:
    # bool is an int subclass but never a valid number here; ints pass as floats
    if isinstance(value, bool):
        return expected_type is bool
    if expected_type is float:
        return isinstance(value, (int, float))
    return isinstance(value, expected_type)


class Config:
    """Singleton configuration manager."""

    _instance = None
    _data = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._data = _deep_merge({}, _DEFAULTS)
        return cls._instance

    def load(self, config_path=None, actions_path=None):
        """Load configuration from YAML files, layered over built-in defaults."""
        config_path = config_path or os.path.join(_CONFIG_DIR, "config.yaml")
        actions_path = actions_path or os.path.join(_CONFIG_DIR, "actions.yaml")

        try:
            with open(config_path, "r") as f:
                loaded = yaml.safe_load(f) or {}
            logger.info("Loaded config from %s", config_path)
        except FileNotFoundError:
            logger.warning("Config file not found: %s, using defaults", config_path)
            loaded = {}
        self._data = _deep_merge(_DEFAULTS, loaded)
        self._data["actions_file"] = actions_path

        self._validate(loaded)

        return self

    def update(self, overrides: dict):
        """Merge overrides on top of the current values (CLI flags, tests)."""
        self._data = _deep_merge(self._data, overrides)
        return self

    def _validate(self, data: dict):
        """Check loaded fields against the schema; problems are warnings, not errors."""
        warnings = []
        for section_name, fields in _CONFIG_SCHEMA.items():
            section = data.get(section_name)
            if section is None:
                warnings.append(f"Missing config section: '{section_name}' (using defaults)")
                continue
            if not isinstance(section, dict):
                warnings.append(f"Section '{section_name}' should be a dict, got {type(section).__name__}")
                continue
            for field_name, expected_type in fields.items():
                if field_name not in section:
                    continue
                value = section[field_name]
                key = f"{section_name}.{field_name}"
                if not _matches_type(value, expected_type):
                    warnings.append(
                        f"{key}: expected {expected_type.__name__}, "
                        f"got {type(value).__name__} ({value!r})"
                    )
                    continue
                check = _RANGES.get(key)
                if check is not None and not check[0](value):
                    warnings.append(f"{key}: {value!r} is out of range ({check[1]})")

        if warnings:
            for w in warnings:
                logger.warning("Config validation: %s", w)
        else:
            logger.debug("Config validation passed")
        return warnings

    def get(self, key_path: str, default=None):
        """Get nested config value using dot notation: 'dtw.min_threshold'."""
        keys = key_path.split(".")
        value = self._data
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def get_section(self, section: str) -> dict:
        """Get an entire config section."""
        return self._data.get(section, {})

    @property
    def preprocessing(self) -> dict:
        return self._data.get("preprocessing", {})

    @property
    def dtw(self) -> dict:
        return self._data.get("dtw", {})

    @property
    def training(self) -> dict:
        return self._data.get("training", {})

    @property
    def evaluation(self) -> dict:
        return self._data.get("evaluation", {})

    @property
    def session(self) -> dict:
        return self._data.get("session", {})

    @property
    def actions(self) -> dict:
        return self._data.get("actions", {})

    @property
    def logging_settings(self) -> dict:
        return self._data.get("logging", {})

    @property
    def actions_file(self) -> str:
        return self._data.get("actions_file") or os.path.join(_CONFIG_DIR, "actions.yaml")

    @property
    def base_dir(self) -> str:
        return _BASE_DIR

    @classmethod
    def reset(cls):
        """Reset singleton instance (for testing)."""
        cls._instance = None
        cls._data = {}
