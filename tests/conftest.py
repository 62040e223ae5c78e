"""Shared fixtures for climadash tests."""

import json

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from climadash.firmware.registry import FirmwareRegistry
from climadash.server.app import create_app
from climadash.server.config import Config, DeviceConfig, FirmwareConfig
from climadash.telemetry.history import HistoryBuffer
from climadash.telemetry.ingest import IngestService
from climadash.telemetry.normalizer import TelemetryNormalizer

FIXED_NOW = 1_700_000_000.0

ENV_VARS = [
    "CLIMADASH_CONFIG",
    "CLIMADASH_ENV",
    "MQTT_BROKER",
    "MQTT_PORT",
    "MQTT_USERNAME",
    "MQTT_PASSWORD",
    "MQTT_TOPIC",
    "HTTP_HOST",
    "PORT",
    "FIRMWARE_DIR",
    "LOG_LEVEL",
]


def payload(**fields) -> bytes:
    """Encode a telemetry message the way the device does."""
    return json.dumps(fields).encode("utf-8")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def normalizer():
    return TelemetryNormalizer(
        default_version="1.0",
        default_device_id="device-test",
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def ingest(normalizer):
    return IngestService(normalizer, HistoryBuffer(capacity=10))


@pytest.fixture
def registry(tmp_path):
    # Ignore the host disk level; the guard itself is tested separately
    return FirmwareRegistry(tmp_path / "firmware", disk_threshold=100)


@pytest.fixture
def config(tmp_path):
    return Config(
        firmware=FirmwareConfig(directory=str(tmp_path / "firmware")),
        device=DeviceConfig(id="device-test", default_version="1.0"),
        heartbeat_interval=0,
        enable_test_data=True,
    )


@pytest.fixture
def app(config, ingest, registry):
    return create_app(config, ingest, registry)


@pytest_asyncio.fixture
async def client(app):
    async with TestClient(TestServer(app)) as client:
        yield client
