"""climadash - device telemetry dashboard backend and OTA firmware server."""

__version__ = "0.1.0"
