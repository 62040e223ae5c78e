"""MQTT configuration and utilities."""

import json
import time
from dataclasses import dataclass
from typing import Optional

from .config import parse_bool


@dataclass
class MQTTConfig:
    """MQTT broker and subscription configuration."""
    broker: str = "localhost"
    port: int = 1883
    client_id: str = "climadash-server"
    keepalive: int = 60
    qos: int = 1
    username: Optional[str] = None
    password: Optional[str] = None
    tls: bool = False
    tls_insecure: bool = False
    topic: str = "climadash/device"
    diagnostic_topic: Optional[str] = None
    reconnect_delay: float = 5.0

    @classmethod
    def from_dict(cls, data: dict) -> "MQTTConfig":
        """Create config from dictionary."""
        return cls(
            broker=data.get("broker", "localhost"),
            port=int(data.get("port", 1883)),
            client_id=data.get("client_id", "climadash-server"),
            keepalive=int(data.get("keepalive", 60)),
            qos=int(data.get("qos", 1)),
            username=data.get("username"),
            password=data.get("password"),
            tls=parse_bool(data.get("tls", False), "mqtt.tls"),
            tls_insecure=parse_bool(data.get("tls_insecure", False), "mqtt.tls_insecure"),
            topic=data.get("topic", "climadash/device"),
            diagnostic_topic=data.get("diagnostic_topic"),
            reconnect_delay=float(data.get("reconnect_delay", 5.0)),
        )

    @property
    def topics(self) -> list:
        """Topics to subscribe to, device topic first."""
        topics = [self.topic]
        if self.diagnostic_topic and self.diagnostic_topic != self.topic:
            topics.append(self.diagnostic_topic)
        return topics


def create_telemetry_payload(
    temperature: Optional[float],
    humidity: Optional[float],
    device_id: str,
    version: str,
    state: str = "IDLE",
    leds: tuple = (0, 0, 0),
    timestamp: Optional[float] = None,
) -> bytes:
    """Create a payload shaped like the ones the device publishes.

    The device sends every value as a string under localized keys.

    Args:
        temperature: Temperature in degrees Celsius.
        humidity: Relative humidity in percent.
        device_id: Device identifier (the device calls it 'uuid').
        version: Firmware version running on the device.
        state: System state reported by the device.
        leds: (amber, green, red) LED values, 0 or 1.
        timestamp: Unix timestamp (defaults to current time).

    Returns:
        JSON payload bytes.
    """
    amber, green, red = leds
    payload = {
        "temperatura": None if temperature is None else str(temperature),
        "humedad": None if humidity is None else str(humidity),
        "led_amarillo": str(amber),
        "led_verde": str(green),
        "led_rojo": str(red),
        "estado": state,
        "timestamp": str(int(timestamp if timestamp is not None else time.time())),
        "version": version,
        "uuid": device_id,
    }
    return json.dumps(payload).encode("utf-8")
