"""
Configuration for the context optimizer.
"""

import copy
import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, cast

from context_optimizer.core.exceptions import ConfigurationError
from context_optimizer.core.logging import logger, masker, CONFIG_FILE_NAME

KNOWN_STRATEGIES = ("dedup", "prune", "summarize", "hybrid")
KNOWN_SEGMENT_MODES = ("auto", "block", "line")


class ConfigValidator:
    """
    Configuration validator with rules.

    Validations:
    1. Fractions and thresholds inside [0, 1]
    2. Positive free-tier limit
    3. Known default strategy
    4. Non-negative pricing
    """

    FRACTION_KEYS = (
        ("compression", "quality_threshold"),
        ("compression", "dedup", "threshold"),
        ("compression", "prune", "target_ratio"),
        ("compression", "prune", "min_retained_fraction"),
        ("compression", "quality", "similarity_weight"),
        ("learning", "pattern_match_threshold"),
        ("learning", "feedback_step"),
    )

    def validate_config(self, config: Dict[str, Any]) -> None:
        """
        Validate complete configuration.

        Raises:
            ConfigurationError: On the first invalid value found
        """
        for path in self.FRACTION_KEYS:
            value = _get_nested(config, path)
            if value is None:
                continue
            if not isinstance(value, (int, float)) or not 0.0 <= float(value) <= 1.0:
                logger.error("Invalid fraction configuration", key=".".join(path), value=value)
                raise ConfigurationError(
                    f"Invalid value for {'.'.join(path)}: {value} (expected 0.0-1.0)"
                )

        free_limit = _get_nested(config, ("quota", "free_limit"))
        if not isinstance(free_limit, int) or isinstance(free_limit, bool) or free_limit <= 0:
            logger.error("Invalid free-tier limit", free_limit=free_limit)
            raise ConfigurationError(f"quota.free_limit must be a positive integer: {free_limit}")

        strategy = _get_nested(config, ("compression", "default_strategy"))
        if strategy not in KNOWN_STRATEGIES:
            logger.error("Invalid default strategy", strategy=strategy)
            raise ConfigurationError(
                f"Unknown compression.default_strategy '{strategy}'. Allowed: {KNOWN_STRATEGIES}"
            )

        mode = _get_nested(config, ("compression", "segment_mode"))
        if mode not in KNOWN_SEGMENT_MODES:
            raise ConfigurationError(
                f"Unknown compression.segment_mode '{mode}'. Allowed: {KNOWN_SEGMENT_MODES}"
            )

        cost = _get_nested(config, ("pricing", "cost_per_1k_tokens"))
        if not isinstance(cost, (int, float)) or cost < 0:
            raise ConfigurationError(f"pricing.cost_per_1k_tokens must be >= 0: {cost}")

        for key in ("min_tokens", "excerpt_chars"):
            value = _get_nested(config, ("compression", "summarize", key))
            if not isinstance(value, int) or value <= 0:
                raise ConfigurationError(f"compression.summarize.{key} must be a positive integer")


class Settings:
    """
    Main system configuration.

    Priority (later wins):
    1. Default values
    2. .context_optimizer YAML file in the working directory
    3. Environment variables
    4. Explicit overrides (embedding callers, tests)
    """

    def __init__(
        self,
        overrides: Optional[Dict[str, Any]] = None,
        config_path: Optional[Path] = None,
    ) -> None:
        self._config_path = config_path
        self.config = self._load_config()
        if overrides:
            self._deep_merge(self.config, copy.deepcopy(overrides))
        self._validate_config()
        self.validator = ConfigValidator()
        self.validator.validate_config(self.config)
        logger.info(
            "Settings initialized",
            config_source=CONFIG_FILE_NAME if self._find_config_file() else "defaults",
        )

    def _get_default_config(self) -> Dict[str, Any]:
        """Default configuration (single source)."""
        return {
            "version": "1.0",
            "database": {
                "path": str(Path.home() / ".context-optimizer" / "context-optimizer.db"),
            },
            "logging": {"level": "INFO", "file": "debug.log", "debug_mode": False},
            "quota": {
                "free_limit": 100,
                "warning_thresholds": [0.75, 0.90],
            },
            "pricing": {"cost_per_1k_tokens": 0.002},
            "compression": {
                "default_strategy": "hybrid",
                "quality_threshold": 0.85,
                "store_snapshots": True,
                "segment_mode": "auto",
                "dedup": {"threshold": 0.9, "window": 0},
                "prune": {"target_ratio": 0.6, "min_retained_fraction": 0.25},
                "summarize": {"min_tokens": 120, "excerpt_chars": 240},
                "quality": {"similarity_weight": 0.7},
            },
            "learning": {
                "pattern_match_threshold": 0.9,
                "feedback_step": 0.1,
                "max_pattern_chars": 500,
            },
        }

    def _find_config_file(self) -> Optional[Path]:
        """Find the configuration file (explicit path first, then cwd)."""
        if self._config_path is not None:
            return self._config_path if self._config_path.exists() else None

        local_config = Path.cwd() / CONFIG_FILE_NAME
        if local_config.exists():
            return local_config
        return None

    def _load_config(self) -> Dict[str, Any]:
        """
        Load configuration in priority order.

        1. Defaults
        2. Config file
        3. Environment variables
        """
        defaults = self._get_default_config()

        config_path = self._find_config_file()
        if config_path:
            try:
                with open(config_path, encoding='utf-8') as f:
                    file_config = yaml.safe_load(f)
                    if file_config:
                        self._deep_merge(defaults, file_config)
                        logger.debug(
                            "Config loaded from file",
                            file=str(config_path),
                            keys=list(file_config.keys()),
                        )
            except (OSError, yaml.YAMLError) as e:
                logger.error(
                    "Error reading configuration file",
                    file=str(config_path),
                    error=masker.mask(str(e)),
                )
                raise ConfigurationError(f"Error reading configuration file: {e}", cause=e)

        env_overrides = {
            "CONTEXT_OPTIMIZER_DB_PATH": (("database", "path"), str),
            "CONTEXT_OPTIMIZER_LOG_LEVEL": (("logging", "level"), str),
            "CONTEXT_OPTIMIZER_FREE_LIMIT": (("quota", "free_limit"), int),
            "CONTEXT_OPTIMIZER_QUALITY_THRESHOLD": (("compression", "quality_threshold"), float),
        }

        for env_key, (path_tuple, convert) in env_overrides.items():
            env_value = os.getenv(env_key)
            if env_value:
                try:
                    value_to_set: Any = convert(env_value)
                except ValueError:
                    raise ConfigurationError(f"Invalid value for {env_key}: {env_value}")
                self._set_nested(defaults, path_tuple, value_to_set)

        return defaults

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> None:
        """Deep merge of dictionaries."""
        for key, value in update.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(cast(Dict[str, Any], base[key]), cast(Dict[str, Any], value))
            else:
                base[key] = value

    def _set_nested(self, data: Dict[str, Any], path: tuple[str, ...], value: Any) -> None:
        """Set value at nested path."""
        current = data
        for key in path[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]
        current[path[-1]] = value

    def _validate_config(self) -> None:
        """Restore any required section a config file removed."""
        required_sections = ["database", "quota", "pricing", "compression", "learning"]

        missing_sections = [section for section in required_sections if section not in self.config]

        if missing_sections:
            logger.warning(
                "Configuration missing required sections, using defaults",
                missing=missing_sections,
            )
            defaults = self._get_default_config()
            for section in missing_sections:
                self.config[section] = defaults[section]

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value with support for dotted paths ("quota.free_limit")."""
        if "." in key:
            value = _get_nested(self.config, tuple(key.split(".")))
            return default if value is None else value
        return self.config.get(key, default)

    def require(self, key: str) -> Any:
        """
        Get required value or raise exception.

        Useful for critical configs that must exist.
        """
        value = self.get(key)
        if value is None:
            logger.error("Required config missing", key=key)
            raise ConfigurationError(f"Missing required config: {key}")
        return value


def _get_nested(data: Dict[str, Any], path: tuple[str, ...]) -> Any:
    current: Any = data
    for part in path:
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return None
    return current
