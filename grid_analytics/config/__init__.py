"""Configuration loading and logging setup."""

from grid_analytics.config.load_config import get_config, load_config, reset_config, setup_logging

__all__ = ['get_config', 'load_config', 'reset_config', 'setup_logging']
