"""Telemetry normalizer - turns raw device messages into Readings."""

import json
import logging
import math
import time
from typing import Any, Callable, Dict, Optional, Sequence

from climadash.shared.exceptions import MalformedPayload
from climadash.shared.models import DEFAULT_SYSTEM_STATE, LedStates, Reading

logger = logging.getLogger(__name__)

# Localized keys come first so they win when both spellings are present.
TEMPERATURE_KEYS = ("temperatura", "temperature")
HUMIDITY_KEYS = ("humedad", "humidity")
AMBER_LED_KEYS = ("led_amarillo", "led_amber", "led_yellow")
GREEN_LED_KEYS = ("led_verde", "led_green")
RED_LED_KEYS = ("led_rojo", "led_red")
STATE_KEYS = ("estado", "state", "system_state")
TIMESTAMP_KEYS = ("timestamp", "ts")
VERSION_KEYS = ("version", "firmware_version")
DEVICE_ID_KEYS = ("uuid", "device_id")

# Timestamps at or above this are epoch milliseconds
MILLISECONDS_THRESHOLD = 100_000_000_000
# 9999-12-31T23:59:59Z, the last second datetime can represent
MAX_TIMESTAMP = 253_402_300_799


def _first(data: Dict[str, Any], keys: Sequence[str]) -> Any:
    """Return the value of the first key present with a non-null value."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _to_float(value: Any) -> Optional[float]:
    """Coerce a number or numeric string to float, None if not possible."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (ValueError, TypeError):
        return None
    if not math.isfinite(result):
        return None
    return result


def _to_timestamp(value: Any) -> Optional[int]:
    """Coerce a device timestamp to epoch seconds.

    Millisecond timestamps are scaled down. Negative or unrepresentable
    values give None so the caller falls back to its own clock.
    """
    seconds = _to_float(value)
    if seconds is None:
        return None
    if seconds >= MILLISECONDS_THRESHOLD:
        seconds /= 1000
    if not 0 <= seconds <= MAX_TIMESTAMP:
        return None
    return int(seconds)


def _to_led(value: Any) -> bool:
    """LED values arrive as 0/1, "0"/"1" or booleans. Anything else is off."""
    if isinstance(value, bool):
        return value
    number = _to_float(value)
    if number is None:
        return False
    return int(number) != 0


def _to_text(value: Any, default: str) -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


class TelemetryNormalizer:
    """Parses device messages of either naming convention into Readings."""

    def __init__(
        self,
        default_version: str = "1.0",
        default_device_id: str = "unknown",
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the normalizer.

        Args:
            default_version: Firmware version assumed when a message omits it.
            default_device_id: Device id assumed when a message omits it.
            clock: Source of wall-clock seconds for messages without a timestamp.
        """
        self.default_version = default_version
        self.default_device_id = default_device_id
        self.clock = clock

    def decode(self, raw_payload: bytes) -> Dict[str, Any]:
        """Decode a raw payload into a JSON object.

        Raises:
            MalformedPayload: If the payload is not a UTF-8 JSON object.
        """
        try:
            text = raw_payload.decode("utf-8") if isinstance(raw_payload, bytes) else raw_payload
            data = json.loads(text)
        except (UnicodeDecodeError, json.JSONDecodeError, TypeError) as e:
            raise MalformedPayload(f"Payload is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise MalformedPayload(
                f"Payload must be a JSON object, got {type(data).__name__}"
            )
        return data

    def normalize(self, raw_payload: bytes) -> Reading:
        """Normalize one raw telemetry message.

        Args:
            raw_payload: Message body as received from the broker.

        Returns:
            The canonical Reading.

        Raises:
            MalformedPayload: If the payload cannot be decoded.
        """
        data = self.decode(raw_payload)

        raw_timestamp = _first(data, TIMESTAMP_KEYS)
        timestamp = _to_timestamp(raw_timestamp)
        if timestamp is None:
            if raw_timestamp is not None:
                logger.warning(f"Ignoring invalid timestamp {raw_timestamp!r}, using server time")
            timestamp = int(self.clock())

        reading = Reading(
            temperature=_to_float(_first(data, TEMPERATURE_KEYS)),
            humidity=_to_float(_first(data, HUMIDITY_KEYS)),
            led_states=LedStates(
                amber=_to_led(_first(data, AMBER_LED_KEYS)),
                green=_to_led(_first(data, GREEN_LED_KEYS)),
                red=_to_led(_first(data, RED_LED_KEYS)),
            ),
            system_state=_to_text(_first(data, STATE_KEYS), DEFAULT_SYSTEM_STATE),
            timestamp=timestamp,
            device_version=_to_text(_first(data, VERSION_KEYS), self.default_version),
            device_id=_to_text(_first(data, DEVICE_ID_KEYS), self.default_device_id),
        )
        logger.debug(f"Normalized reading: {reading}")
        return reading
