"""HTTP server - telemetry query API and OTA firmware distribution."""

from .app import build_app, create_app
from .config import Config, load_config


def main():
    """Entry point for the climadash server."""
    import logging

    from aiohttp import web

    from climadash.shared.logging import setup_logging

    config = load_config()
    setup_logging(config.log_level)

    logger = logging.getLogger(__name__)
    logger.info(
        f"Starting climadash server on {config.http.host}:{config.http.port} "
        f"(broker {config.mqtt.broker}:{config.mqtt.port}, topic {config.mqtt.topic})"
    )

    app = build_app(config)
    web.run_app(app, host=config.http.host, port=config.http.port, print=None)


__all__ = ["Config", "build_app", "create_app", "load_config", "main"]
