"""Configuration loading and validation."""

from procam.config.config_manager import ConfigManager
from procam.config.loader import load_config_file

__all__ = [
    "ConfigManager",
    "load_config_file",
]
