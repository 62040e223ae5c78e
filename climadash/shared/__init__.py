"""Shared utilities for climadash services."""

from .models import FirmwareArtifact, HistoryStats, LedStates, Reading
from .config import load_yaml_config, get_config_path
from .mqtt import MQTTConfig
from .logging import setup_logging

__all__ = [
    "FirmwareArtifact",
    "HistoryStats",
    "LedStates",
    "Reading",
    "load_yaml_config",
    "get_config_path",
    "MQTTConfig",
    "setup_logging",
]
