"""Typed application keys for the services held by the web app."""

from aiohttp import web

from climadash.firmware.registry import FirmwareRegistry
from climadash.telemetry.ingest import IngestService
from climadash.telemetry.subscriber import TelemetrySubscriber

from .config import Config

CONFIG_KEY = web.AppKey("config", Config)
INGEST_KEY = web.AppKey("ingest", IngestService)
REGISTRY_KEY = web.AppKey("registry", FirmwareRegistry)
SUBSCRIBER_KEY = web.AppKey("subscriber", TelemetrySubscriber)
STARTED_AT_KEY = web.AppKey("started_at", float)
