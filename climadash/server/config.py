"""Configuration for the climadash server."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from dotenv import load_dotenv

from climadash.firmware.registry import MAX_FIRMWARE_SIZE
from climadash.shared.config import (
    env_value,
    parse_bool,
    get_log_level,
    load_yaml_config,
    resolve_config_path,
)
from climadash.shared.mqtt import MQTTConfig
from climadash.telemetry.history import DEFAULT_CAPACITY

logger = logging.getLogger(__name__)

DEFAULT_CHANGELOG: List[Dict[str, Any]] = [
    {
        "version": "1.1.0",
        "date": "2025-01-15",
        "changes": [
            "More stable Wi-Fi reconnection",
            "Lower power consumption",
            "Fixed sensor read errors",
            "New diagnostic features",
        ],
    },
    {
        "version": "1.0.0",
        "date": "2025-01-01",
        "changes": [
            "Initial release",
            "Temperature-driven control of 3 LEDs",
            "MQTT and HTTPS connectivity",
            "Integrated web dashboard",
        ],
    },
]


@dataclass
class HTTPConfig:
    """HTTP listener settings."""
    host: str = "0.0.0.0"
    port: int = 3000


@dataclass
class FirmwareConfig:
    """OTA firmware storage settings."""
    directory: str = "uploads"
    max_size: int = MAX_FIRMWARE_SIZE
    changelog: List[Dict[str, Any]] = field(default_factory=lambda: list(DEFAULT_CHANGELOG))


@dataclass
class DeviceConfig:
    """Defaults for the single device this server tracks."""
    id: str = "unknown"
    default_version: str = "1.0"
    online_window: int = 300  # seconds since last reading


@dataclass
class Config:
    """Main configuration container."""
    mqtt: MQTTConfig = field(default_factory=MQTTConfig)
    http: HTTPConfig = field(default_factory=HTTPConfig)
    firmware: FirmwareConfig = field(default_factory=FirmwareConfig)
    device: DeviceConfig = field(default_factory=DeviceConfig)
    history_capacity: int = DEFAULT_CAPACITY
    heartbeat_interval: float = 30.0
    enable_test_data: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        """Create config from dictionary."""
        http_data = data.get("http", {}) or {}
        firmware_data = data.get("firmware", {}) or {}
        device_data = data.get("device", {}) or {}
        history_data = data.get("history", {}) or {}
        api_data = data.get("api", {}) or {}

        return cls(
            mqtt=MQTTConfig.from_dict(data.get("mqtt", {}) or {}),
            http=HTTPConfig(
                host=http_data.get("host", "0.0.0.0"),
                port=int(http_data.get("port", 3000)),
            ),
            firmware=FirmwareConfig(
                directory=str(firmware_data.get("directory", "uploads")),
                max_size=int(firmware_data.get("max_size", MAX_FIRMWARE_SIZE)),
                changelog=firmware_data.get("changelog") or list(DEFAULT_CHANGELOG),
            ),
            device=DeviceConfig(
                id=str(device_data.get("id", "unknown")),
                default_version=str(device_data.get("default_version", "1.0")),
                online_window=int(device_data.get("online_window", 300)),
            ),
            history_capacity=int(history_data.get("capacity", DEFAULT_CAPACITY)),
            heartbeat_interval=float(data.get("heartbeat_interval", 30.0)),
            enable_test_data=parse_bool(
                api_data.get("enable_test_data", False), "api.enable_test_data"
            ),
            log_level=get_log_level(data),
        )

    def validate(self) -> None:
        """Reject settings the server cannot run with.

        Raises:
            ValueError: On the first invalid setting found.
        """
        if self.history_capacity < 1:
            raise ValueError(f"history.capacity must be at least 1, got {self.history_capacity}")
        if self.firmware.max_size <= 0:
            raise ValueError(f"firmware.max_size must be positive, got {self.firmware.max_size}")
        if self.mqtt.reconnect_delay < 0:
            raise ValueError(f"mqtt.reconnect_delay must not be negative, got {self.mqtt.reconnect_delay}")
        if not self.mqtt.topic:
            raise ValueError("mqtt.topic is required")


# (variable, section, attribute, cast)
ENV_OVERRIDES = [
    ("MQTT_BROKER", "mqtt", "broker", str),
    ("MQTT_PORT", "mqtt", "port", int),
    ("MQTT_USERNAME", "mqtt", "username", str),
    ("MQTT_PASSWORD", "mqtt", "password", str),
    ("MQTT_TOPIC", "mqtt", "topic", str),
    ("HTTP_HOST", "http", "host", str),
    ("PORT", "http", "port", int),
    ("FIRMWARE_DIR", "firmware", "directory", str),
]


def _apply_env_overrides(config: Config) -> None:
    """Environment wins over YAML. Broker credentials normally live only here."""
    for variable, section, attribute, cast in ENV_OVERRIDES:
        value = env_value(variable, cast)
        if value is not None:
            setattr(getattr(config, section), attribute, value)
            logger.debug(f"{section}.{attribute} overridden by {variable}")

    log_level = env_value("LOG_LEVEL")
    if log_level is not None:
        config.log_level = log_level.upper()


def load_config(config_path: Optional[Union[str, Path]] = None) -> Config:
    """Load configuration from YAML file and environment variables.

    Args:
        config_path: Path to the YAML config. If not provided, looks for the
                    CLIMADASH_CONFIG env var, then config/climadash.yaml at
                    the repo root, then falls back to built-in defaults.

    Returns:
        Validated Config instance.

    Raises:
        FileNotFoundError: If an explicitly given config file is missing.
        ValueError: If a setting is invalid.
    """
    load_dotenv()

    path = resolve_config_path(config_path)
    if path is None:
        logger.debug("No configuration file found, using defaults")
        data = {}
    else:
        data = load_yaml_config(path, load_env=False)

    config = Config.from_dict(data)
    _apply_env_overrides(config)
    config.validate()
    return config
