"""aiohttp application wiring for the climadash server."""

import asyncio
import logging
import time
from typing import Any, AsyncIterator, Dict, Optional

from aiohttp import web

from climadash.firmware.registry import FirmwareRegistry
from climadash.shared.exceptions import ClimadashError
from climadash.telemetry.history import HistoryBuffer
from climadash.telemetry.ingest import IngestService
from climadash.telemetry.normalizer import TelemetryNormalizer
from climadash.telemetry.subscriber import TelemetrySubscriber

from .config import Config
from .keys import CONFIG_KEY, INGEST_KEY, REGISTRY_KEY, STARTED_AT_KEY, SUBSCRIBER_KEY
from .ota_routes import routes as ota_routes
from .sensor_routes import inject_test_data, routes as sensor_routes

logger = logging.getLogger(__name__)


@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Render failures as ``{success: false, message}`` without leaking internals."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except ClimadashError as e:
        logger.info(f"{request.method} {request.path} rejected ({e.status}): {e.message}")
        if request.method == "HEAD":
            return web.Response(status=e.status)
        return web.json_response({"success": False, "message": e.message}, status=e.status)
    except Exception:
        logger.exception(f"Unhandled error serving {request.method} {request.path}")
        if request.method == "HEAD":
            return web.Response(status=500)
        return web.json_response(
            {"success": False, "message": "Internal server error"}, status=500
        )


def _log_unhandled(loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
    """Loop exception handler: log stray task errors instead of dying."""
    exc = context.get("exception")
    message = context.get("message", "Unhandled error in event loop")
    if exc is not None:
        logger.error(f"{message}: {exc!r}", exc_info=exc)
    else:
        logger.error(message)


async def heartbeat(app: web.Application) -> None:
    """Periodically log that the server is alive and what it holds."""
    config = app[CONFIG_KEY]
    ingest = app[INGEST_KEY]
    subscriber = app.get(SUBSCRIBER_KEY)

    while True:
        await asyncio.sleep(config.heartbeat_interval)
        logger.info(f"Server alive - readings in history: {len(ingest.history)}")
        if subscriber is None:
            continue
        if subscriber.is_connected:
            current = ingest.current
            age = f"{int(time.time()) - current.timestamp}s" if current else "N/A"
            logger.info(f"MQTT connected - last reading age: {age}")
        else:
            logger.warning(f"MQTT {subscriber.state.value}")


async def background_services(app: web.Application) -> AsyncIterator[None]:
    """Run the ingest worker, broker subscription and heartbeat with the app."""
    asyncio.get_running_loop().set_exception_handler(_log_unhandled)

    ingest = app[INGEST_KEY]
    await ingest.start()

    tasks = []
    subscriber = app.get(SUBSCRIBER_KEY)
    if subscriber is not None:
        tasks.append(asyncio.create_task(subscriber.run(), name="climadash-mqtt"))
    if app[CONFIG_KEY].heartbeat_interval > 0:
        tasks.append(asyncio.create_task(heartbeat(app), name="climadash-heartbeat"))

    yield

    if subscriber is not None:
        subscriber.stop()
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    await ingest.stop()


def create_app(
    config: Config,
    ingest: IngestService,
    registry: FirmwareRegistry,
    subscriber: Optional[TelemetrySubscriber] = None,
) -> web.Application:
    """Assemble the web application around already-built services.

    Args:
        config: Server configuration.
        ingest: Owner of the live reading and history.
        registry: Firmware artifact store.
        subscriber: Broker subscription; None runs the API without MQTT.

    Returns:
        The configured aiohttp application.
    """
    app = web.Application(middlewares=[error_middleware])
    app[CONFIG_KEY] = config
    app[INGEST_KEY] = ingest
    app[REGISTRY_KEY] = registry
    app[STARTED_AT_KEY] = time.monotonic()
    if subscriber is not None:
        app[SUBSCRIBER_KEY] = subscriber

    app.add_routes(sensor_routes)
    app.add_routes(ota_routes)
    if config.enable_test_data:
        app.router.add_post("/api/test-data", inject_test_data)

    app.cleanup_ctx.append(background_services)
    return app


def build_app(config: Config) -> web.Application:
    """Build every service from configuration and wire them into an app."""
    normalizer = TelemetryNormalizer(
        default_version=config.device.default_version,
        default_device_id=config.device.id,
    )
    ingest = IngestService(normalizer, HistoryBuffer(config.history_capacity))
    registry = FirmwareRegistry(config.firmware.directory, max_size=config.firmware.max_size)
    subscriber = TelemetrySubscriber(config.mqtt, on_message=ingest.submit)
    return create_app(config, ingest, registry, subscriber)
