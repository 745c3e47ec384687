"""
Configuration loader for the grid analytics system.

Reads config/config.yaml (or the file named by GRID_ANALYTICS_CONFIG),
expands ${VAR} / ${VAR:-default} placeholders from the environment and
initialises logging for command-line runs.
"""

import os
import re
import logging
import logging.handlers
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from dotenv import load_dotenv


# .env values are visible to placeholder expansion
load_dotenv()

CONFIG_ENV_VAR = "GRID_ANALYTICS_CONFIG"
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_PLACEHOLDER = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")

# HTTP client loggers are chatty at INFO during backfills
_QUIET_LOGGERS = ("urllib3", "requests")


def _resolve_config_path(config_path: Optional[Union[str, Path]]) -> Path:
    if config_path is None:
        config_path = os.getenv(CONFIG_ENV_VAR)
    if config_path is None:
        return Path(__file__).resolve().parents[2] / "config" / "config.yaml"
    return Path(config_path)


def load_config(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML file. If None, uses GRID_ANALYTICS_CONFIG
            or config/config.yaml at the project root.

    Returns:
        Configuration dictionary with placeholders expanded

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the config file is invalid YAML.
    """
    path = _resolve_config_path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path, 'r') as f:
        raw = yaml.safe_load(f) or {}

    return _substitute_env_vars(raw)


def _expand(value: str) -> Optional[str]:
    whole = _PLACEHOLDER.fullmatch(value)
    if whole:
        name, default = whole.groups()
        # An unset variable with no default becomes None so callers use their own default
        return os.getenv(name, default)

    return _PLACEHOLDER.sub(lambda m: os.getenv(m.group(1), m.group(2) or ""), value)


def _substitute_env_vars(config: Any) -> Any:
    """
    Recursively expand environment placeholders in config values.

    `${NAME}` is replaced by the variable's value; `${NAME:-fallback}` uses
    the fallback when NAME is unset. A value made only of an unset
    placeholder without fallback becomes None.
    """
    if isinstance(config, dict):
        return {key: _substitute_env_vars(value) for key, value in config.items()}
    if isinstance(config, list):
        return [_substitute_env_vars(item) for item in config]
    if isinstance(config, str) and "${" in config:
        return _expand(config)
    return config


def _build_handlers(log_config: Dict[str, Any], formatter: logging.Formatter) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler()]

    log_file = log_config.get("log_file", "logs/grid_analytics.log")
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        rotation = log_config.get("rotation", {})
        handlers.append(logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=rotation.get("max_bytes", 10 * 1024 * 1024),
            backupCount=rotation.get("backup_count", 5)
        ))

    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def setup_logging(config: Optional[Dict[str, Any]] = None) -> None:
    """
    Configure the root logger from the `logging` config section.

    Installs a console handler and, when `log_file` is set, a rotating
    file handler. LOG_LEVEL in the environment overrides the configured
    level.

    Raises:
        ValueError: If the level name is not a logging level
    """
    if config is None:
        config = load_config()

    log_config = config.get("logging", {}) or {}
    level_name = (os.getenv("LOG_LEVEL") or log_config.get("level", "INFO")).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {level_name}")

    formatter = logging.Formatter(
        log_config.get("format", DEFAULT_LOG_FORMAT),
        datefmt=log_config.get("date_format", "%Y-%m-%d %H:%M:%S")
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)
    for handler in _build_handlers(log_config, formatter):
        handler.setLevel(level)
        root_logger.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    root_logger.info(f"Logging initialized at {level_name}")


_config_instance: Optional[Dict[str, Any]] = None


def get_config() -> Dict[str, Any]:
    """
    Process-wide configuration, loaded (and logging initialised) on first use.
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = load_config()
        setup_logging(_config_instance)
    return _config_instance


def reset_config() -> None:
    """Drop the cached configuration so the next get_config() reloads it."""
    global _config_instance
    _config_instance = None


if __name__ == "__main__":
    config = load_config()
    setup_logging(config)
    log = logging.getLogger(__name__)

    log.info(f"Weather archive: {config['api']['open_meteo']['base_url']}")
    log.info(f"Scoring endpoint: {config['api']['scoring']['base_url']} "
             f"(key {'set' if config['api']['scoring'].get('api_key') else 'missing'})")
    log.info(f"Data path: {config['data']['processed_data_path']}")
    log.info(f"Capacity years: {sorted(config['grid']['capacity_by_year'])}")
    log.info(f"Forecast horizons: {config['forecasting']['horizons']}")
