"""Core data models for telemetry readings and firmware artifacts."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

DEFAULT_SYSTEM_STATE = "IDLE"


@dataclass(frozen=True)
class LedStates:
    """On/off state of the device's three indicator LEDs."""
    amber: bool = False
    green: bool = False
    red: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {"amber": self.amber, "green": self.green, "red": self.red}


@dataclass(frozen=True)
class Reading:
    """One normalized telemetry sample from the device.

    Temperature and humidity are None when the device did not report them,
    never zero.
    """
    temperature: Optional[float]
    humidity: Optional[float]
    timestamp: int
    device_version: str
    device_id: str
    led_states: LedStates = field(default_factory=LedStates)
    system_state: str = DEFAULT_SYSTEM_STATE

    @property
    def observed_at(self) -> datetime:
        """Timestamp as an aware UTC datetime."""
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON responses."""
        return {
            "temperature": self.temperature,
            "humidity": self.humidity,
            "ledStates": self.led_states.to_dict(),
            "systemState": self.system_state,
            "timestamp": self.timestamp,
            "deviceVersion": self.device_version,
            "deviceId": self.device_id,
        }


@dataclass(frozen=True)
class HistoryStats:
    """Aggregate statistics over the retained history."""
    min_temp: Optional[float] = None
    max_temp: Optional[float] = None
    avg_temp: Optional[float] = None
    avg_humidity: Optional[float] = None
    count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "minTemp": self.min_temp,
            "maxTemp": self.max_temp,
            "avgTemp": self.avg_temp,
            "avgHumidity": self.avg_humidity,
            "count": self.count,
        }


@dataclass(frozen=True)
class FirmwareArtifact:
    """Metadata for one stored firmware binary."""
    version: Optional[str]
    size_bytes: int
    checksum: str
    uploaded_at: Optional[datetime]
    available: bool
    filename: Optional[str] = None

    @classmethod
    def unavailable(cls) -> "FirmwareArtifact":
        """Sentinel returned when no firmware is stored."""
        return cls(
            version=None,
            size_bytes=0,
            checksum="",
            uploaded_at=None,
            available=False,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON responses."""
        return {
            "version": self.version,
            "sizeBytes": self.size_bytes,
            "checksum": self.checksum,
            "uploadedAt": self.uploaded_at.isoformat() if self.uploaded_at else None,
            "available": self.available,
            "filename": self.filename,
        }

