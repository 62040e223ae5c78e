"""Telemetry ingestion - MQTT subscription, normalization and history."""

from .history import HistoryBuffer
from .ingest import IngestService
from .normalizer import TelemetryNormalizer
from .subscriber import ConnectionState, TelemetrySubscriber

__all__ = [
    "ConnectionState",
    "HistoryBuffer",
    "IngestService",
    "TelemetryNormalizer",
    "TelemetrySubscriber",
]
