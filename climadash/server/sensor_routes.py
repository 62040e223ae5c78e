"""Telemetry, status and firmware comparison endpoints."""

import logging
import time
from datetime import datetime, timezone

from aiohttp import web

from climadash import __version__
from climadash.firmware.versions import needs_update
from climadash.shared.executor import run_blocking
from climadash.shared.models import FirmwareArtifact
from climadash.shared.mqtt import create_telemetry_payload

from .keys import CONFIG_KEY, INGEST_KEY, REGISTRY_KEY, STARTED_AT_KEY, SUBSCRIBER_KEY

logger = logging.getLogger(__name__)

SERVER_NAME = "Climate Dashboard Server"
DEFAULT_HISTORY_LIMIT = 50

routes = web.RouteTableDef()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_limit(raw: str) -> int:
    try:
        limit = int(raw)
    except (TypeError, ValueError):
        return DEFAULT_HISTORY_LIMIT
    return limit if limit > 0 else DEFAULT_HISTORY_LIMIT


@routes.get("/api/sensor-data")
async def get_sensor_data(request: web.Request) -> web.Response:
    reading = request.app[INGEST_KEY].current
    return web.json_response({
        "success": True,
        "data": reading.to_dict() if reading else None,
        "lastUpdate": reading.observed_at.isoformat() if reading else None,
    })


@routes.post("/api/sensor-data")
async def post_sensor_data(request: web.Request) -> web.Response:
    """Legacy HTTP ingest. Telemetry now arrives over MQTT; the body is ignored."""
    body = await request.read()
    logger.warning(
        f"POST /api/sensor-data called but telemetry comes from MQTT; "
        f"ignoring {len(body)} bytes"
    )
    return web.json_response({
        "success": True,
        "message": "Endpoint available but data is received via MQTT",
        "note": "Dashboard data is updated automatically from the MQTT broker",
    })


@routes.get("/api/sensor-history")
async def get_sensor_history(request: web.Request) -> web.Response:
    limit = _parse_limit(request.query.get("limit", ""))
    readings = request.app[INGEST_KEY].history.recent(limit)
    return web.json_response({
        "success": True,
        "data": [r.to_dict() for r in readings],
        "count": len(readings),
    })


@routes.get("/api/sensor-stats")
async def get_sensor_stats(request: web.Request) -> web.Response:
    stats = request.app[INGEST_KEY].history.statistics()
    return web.json_response({"success": True, "data": stats.to_dict()})


@routes.get("/api/status")
async def get_status(request: web.Request) -> web.Response:
    app = request.app
    subscriber = app.get(SUBSCRIBER_KEY)
    if subscriber is None:
        mqtt_status = {"state": "disabled"}
    else:
        mqtt_status = {
            "state": subscriber.state.value,
            "connectedSince": (
                subscriber.connected_since.isoformat() if subscriber.connected_since else None
            ),
            "reconnectAttempts": subscriber.reconnect_attempts,
        }

    return web.json_response({
        "success": True,
        "server": SERVER_NAME,
        "version": __version__,
        "uptime": round(time.monotonic() - app[STARTED_AT_KEY], 3),
        "timestamp": _now_iso(),
        "dataPoints": len(app[INGEST_KEY].history),
        "mqtt": mqtt_status,
    })


@routes.get("/api/firmware-versions")
async def get_firmware_versions(request: web.Request) -> web.Response:
    """Compare the device's reported version with the stored firmware."""
    config = request.app[CONFIG_KEY]
    reading = request.app[INGEST_KEY].current
    artifacts = await run_blocking(request.app[REGISTRY_KEY].list_artifacts)
    # Newest first; the head is what /api/ota/firmware serves
    served = artifacts[0] if artifacts else FirmwareArtifact.unavailable()

    device_version = reading.device_version if reading else None
    last_seen = reading.observed_at.isoformat() if reading else None
    is_online = (
        reading is not None
        and int(time.time()) - reading.timestamp < config.device.online_window
    )

    advice = needs_update(device_version, served)

    logger.info(
        f"Firmware version check - device: {device_version or 'unknown'}, "
        f"files available: {len(artifacts)}"
    )

    return web.json_response({
        "success": True,
        "device": {
            "currentVersion": device_version,
            "deviceId": reading.device_id if reading else config.device.id,
            "lastSeen": last_seen,
            "isOnline": is_online,
        },
        "availableFirmware": [a.to_dict() for a in artifacts],
        "comparison": {
            **advice.to_dict(),
            "latestVersion": served.version,
        },
        "timestamp": _now_iso(),
    })


async def inject_test_data(request: web.Request) -> web.Response:
    """Push a canned reading through the ingest path, as if from the device."""
    config = request.app[CONFIG_KEY]
    payload = create_telemetry_payload(
        temperature=25.5,
        humidity=60.0,
        device_id=config.device.id,
        version=config.device.default_version,
        state="TEST",
        leds=(1, 0, 0),
    )
    reading = request.app[INGEST_KEY].ingest(payload, topic="test-data")
    logger.info("Injected test reading")
    return web.json_response({
        "success": True,
        "message": "Test data added",
        "data": reading.to_dict() if reading else None,
    })
