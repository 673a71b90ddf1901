import copy
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional, List
import yaml

from utils.logger import setup_logger

logger = setup_logger(__name__)


class ConfigurationError(Exception):
    pass


DEFAULT_CONFIG: Dict[str, Any] = {
    "scoring": {
        "version": "heuristic-v1",
        "weights": {
            "behavior": 0.30,
            "prompt": 0.25,
            "performance": 0.20,
            "skill": 0.15,
            "context": 0.10,
        },
    },
    "experiments": {
        "significance": 0.05,
    },
    "monitoring": {
        "thresholds": {
            "accuracy": {"direction": "below", "warning": 0.75, "critical": 0.6},
            "latency": {"direction": "above", "warning": 1000, "critical": 2000},
            "error_rate": {"direction": "above", "warning": 0.05, "critical": 0.1},
            "memory_usage": {"direction": "above", "warning": 512, "critical": 1024},
            "cpu_usage": {"direction": "above", "warning": 70, "critical": 90},
        },
        "drift": {
            "threshold": 0.3,
            "bins": 10,
            "bands": {"warning": 0.7, "critical": 0.9},
        },
    },
}


class ConfigLoader:
    def __init__(self, config_path: Optional[Path] = None):
        if config_path is None:
            base_dir = Path(__file__).resolve().parent
            config_path = base_dir / "config.yaml"

        self.config_path = Path(config_path)
        self._config: Optional[Dict[str, Any]] = None
        self._last_loaded: Optional[float] = None

    def load(self, force_reload: bool = False) -> Dict[str, Any]:
        if not self.config_path.exists():
            raise ConfigurationError(f"config file not found: {self.config_path}")

        current_mtime = self.config_path.stat().st_mtime

        if not force_reload and self._config is not None and self._last_loaded == current_mtime:
            return self._config

        logger.info(
            "Loading configuration from file",
            extra={"config_path": str(self.config_path)}
        )

        with open(self.config_path, "r") as f:
            raw_config = yaml.safe_load(f)

        if raw_config is None:
            raise ConfigurationError("config file is empty")

        self._config = _merge(DEFAULT_CONFIG, self._interpolate_env_vars(raw_config))
        self._last_loaded = current_mtime

        logger.info("Configuration loaded successfully")

        return self._config

    def _interpolate_env_vars(self, config: Any) -> Any:
        if isinstance(config, dict):
            return {
                key: self._interpolate_env_vars(value)
                for key, value in config.items()
            }
        elif isinstance(config, list):
            return [self._interpolate_env_vars(item) for item in config]
        elif isinstance(config, str):
            return self._replace_env_vars_in_string(config)
        else:
            return config

    def _replace_env_vars_in_string(self, value: str) -> str:
        pattern = re.compile(r'\$\{([^}]+)\}')

        def replacer(match):
            env_var = match.group(1)
            env_value = os.getenv(env_var)

            if env_value is None:
                logger.warning(
                    f"Environment variable not found: {env_var}",
                    extra={"env_var": env_var}
                )
                return match.group(0)

            return env_value

        return pattern.sub(replacer, value)

    def get(self, path: str, default: Any = None) -> Any:
        if self._config is None:
            self.load()

        keys = path.split('.')
        current = self._config

        for key in keys:
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default

        return current

    def reload(self) -> Dict[str, Any]:
        logger.info("Reloading configuration")
        return self.load(force_reload=True)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class ConfigValidator:
    @staticmethod
    def validate_scoring_config(config: Dict[str, Any]) -> List[str]:
        errors = []

        weights = config.get('scoring', {}).get('weights', {})
        if not weights:
            return ["scoring weights are missing"]

        for name, value in weights.items():
            if not _is_number(value) or value < 0 or value > 1:
                errors.append(f"invalid scoring weight {name}: {value} (must be between 0 and 1)")

        if not errors:
            total = sum(weights.values())
            if abs(total - 1) > 1e-6:
                errors.append(f"scoring weights must sum to 1, got {total:.6f}")

        return errors

    @staticmethod
    def validate_experiment_config(config: Dict[str, Any]) -> List[str]:
        errors = []

        significance = config.get('experiments', {}).get('significance')
        if not _is_number(significance) or significance <= 0 or significance >= 1:
            errors.append(f"invalid significance: {significance} (must be in (0, 1))")

        return errors

    @staticmethod
    def validate_monitoring_config(config: Dict[str, Any]) -> List[str]:
        errors = []

        monitoring = config.get('monitoring', {})
        for metric, rule in monitoring.get('thresholds', {}).items():
            warning = rule.get('warning')
            critical = rule.get('critical')
            direction = rule.get('direction')
            if not _is_number(warning) or not _is_number(critical):
                errors.append(f"thresholds for {metric} must be numbers")
                continue
            if direction == 'below' and not critical < warning:
                errors.append(f"{metric}: critical ({critical}) must be below warning ({warning})")
            elif direction == 'above' and not warning < critical:
                errors.append(f"{metric}: warning ({warning}) must be below critical ({critical})")
            elif direction not in ('above', 'below'):
                errors.append(f"{metric}: invalid direction {direction} (must be above or below)")

        drift = monitoring.get('drift', {})
        threshold = drift.get('threshold')
        if not _is_number(threshold) or threshold <= 0 or threshold > 1:
            errors.append(f"invalid drift threshold: {threshold} (must be in (0, 1])")

        bins = drift.get('bins')
        if not isinstance(bins, int) or bins < 2:
            errors.append(f"invalid drift bins: {bins}")

        bands = drift.get('bands', {})
        warning = bands.get('warning')
        critical = bands.get('critical')
        if not _is_number(warning) or not _is_number(critical) or not 0 < warning < critical <= 1:
            errors.append(f"drift bands must be ascending within (0, 1]: warning={warning}, critical={critical}")

        return errors

    @staticmethod
    def validate(config: Dict[str, Any]) -> List[str]:
        all_errors = []

        all_errors.extend(ConfigValidator.validate_scoring_config(config))
        all_errors.extend(ConfigValidator.validate_experiment_config(config))
        all_errors.extend(ConfigValidator.validate_monitoring_config(config))

        return all_errors


def load_engine_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Validated engine configuration.

    A missing file is not an error: the built-in defaults are used instead.
    """
    loader = ConfigLoader(config_path=config_path)
    if not loader.config_path.exists():
        logger.info(
            "Configuration file not found, using built-in defaults",
            extra={"config_path": str(loader.config_path)}
        )
        return copy.deepcopy(DEFAULT_CONFIG)

    config = loader.load()

    validation_errors = ConfigValidator.validate(config)
    if validation_errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {err}" for err in validation_errors)
        logger.error(error_msg)
        raise ConfigurationError(error_msg)

    logger.info("Configuration validated successfully")

    return config
