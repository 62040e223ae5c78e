"""MQTT subscriber - keeps a connection to the broker and forwards telemetry."""

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

import paho.mqtt.client as mqtt
from paho.mqtt.enums import CallbackAPIVersion

from climadash.shared.exceptions import BrokerConnectionError
from climadash.shared.executor import run_blocking
from climadash.shared.mqtt import MQTTConfig

logger = logging.getLogger(__name__)

MessageCallback = Callable[[str, bytes], None]


class ConnectionState(Enum):
    """Broker connection states."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class TelemetrySubscriber:
    """Subscribes to the device topics and reconnects forever on failure.

    paho's automatic reconnect is disabled; ``run`` supervises the
    connection instead, waiting ``reconnect_delay`` seconds between
    attempts with no retry limit.
    """

    def __init__(self, config: MQTTConfig, on_message: MessageCallback):
        """Initialize the subscriber.

        Args:
            config: Broker, credentials and topic configuration.
            on_message: Called with (topic, payload) for every message. It
                runs on paho's network thread and must be thread-safe.
        """
        self.config = config
        self.on_message = on_message
        self.client: Optional[mqtt.Client] = None
        self.connected_since: Optional[datetime] = None
        self.reconnect_attempts = 0

        self._state = ConnectionState.DISCONNECTED
        self._running = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._disconnected: Optional[asyncio.Event] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        """Check if connected to MQTT broker."""
        return self._state is ConnectionState.CONNECTED

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            logger.debug(f"MQTT state {self._state.value} -> {state.value}")
        self._state = state
        if state is not ConnectionState.CONNECTED:
            self.connected_since = None

    def _create_client(self) -> mqtt.Client:
        """Create a paho client configured for this broker."""
        client = mqtt.Client(
            callback_api_version=CallbackAPIVersion.VERSION2,
            client_id=self.config.client_id,
            reconnect_on_failure=False,  # run() handles reconnection
        )
        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password)
        if self.config.tls:
            client.tls_set()
            if self.config.tls_insecure:
                client.tls_insecure_set(True)

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        return client

    def _signal_disconnected(self) -> None:
        """Wake the supervisor loop. Called from paho's network thread."""
        if self._loop is not None and self._disconnected is not None:
            self._loop.call_soon_threadsafe(self._disconnected.set)

    def _on_connect(self, client: mqtt.Client, userdata, flags, reason_code, properties):
        """Callback when connected to MQTT broker."""
        if reason_code == 0:
            logger.info(f"Connected to MQTT broker at {self.config.broker}:{self.config.port}")
            for topic in self.config.topics:
                client.subscribe(topic, qos=self.config.qos)
                logger.info(f"Subscribed to: {topic}")
            self._set_state(ConnectionState.CONNECTED)
            self.connected_since = datetime.now(timezone.utc)
        else:
            logger.error(f"Failed to connect to MQTT broker, reason: {reason_code}")
            self._set_state(ConnectionState.DISCONNECTED)
            self._signal_disconnected()

    def _on_disconnect(self, client: mqtt.Client, userdata, disconnect_flags, reason_code, properties):
        """Callback when disconnected from MQTT broker."""
        if reason_code != 0:
            logger.warning(f"Unexpected disconnection from MQTT broker (reason={reason_code})")
        else:
            logger.info("Disconnected from MQTT broker")
        self._set_state(ConnectionState.DISCONNECTED)
        self._signal_disconnected()

    def _on_message(self, client: mqtt.Client, userdata, msg: mqtt.MQTTMessage):
        """Callback when a message is received."""
        logger.debug(f"Message on {msg.topic} ({len(msg.payload)} bytes)")
        try:
            self.on_message(msg.topic, msg.payload)
        except Exception as e:
            logger.error(f"Error processing message from {msg.topic}: {e}")

    async def _connect_once(self) -> None:
        """Open one connection attempt and start paho's network loop.

        Raises:
            BrokerConnectionError: If the broker cannot be reached.
        """
        self._set_state(ConnectionState.CONNECTING)
        self.client = self._create_client()
        logger.info(f"Connecting to MQTT broker at {self.config.broker}:{self.config.port}")

        try:
            await run_blocking(
                self.client.connect,
                self.config.broker,
                self.config.port,
                self.config.keepalive,
            )
        except Exception as e:
            raise BrokerConnectionError(
                f"MQTT connection to {self.config.broker}:{self.config.port} failed: {e}"
            ) from e
        self.client.loop_start()

    def _teardown(self) -> None:
        if self.client is None:
            return
        self.client.loop_stop()
        self.client = None

    async def run(self) -> None:
        """Connect and stay connected until ``stop`` is called."""
        self._running = True
        self._loop = asyncio.get_running_loop()
        self._disconnected = asyncio.Event()

        while self._running:
            self._disconnected.clear()
            try:
                await self._connect_once()
            except BrokerConnectionError as e:
                logger.error(e.message)
                self._set_state(ConnectionState.DISCONNECTED)
            else:
                await self._disconnected.wait()
            self._teardown()

            if not self._running:
                break

            self.reconnect_attempts += 1
            logger.info(
                f"Reconnecting to MQTT broker in {self.config.reconnect_delay}s "
                f"(attempt {self.reconnect_attempts})"
            )
            await asyncio.sleep(self.config.reconnect_delay)

        self._set_state(ConnectionState.DISCONNECTED)

    def stop(self) -> None:
        """Disconnect and end the supervisor loop."""
        self._running = False
        if self.client is not None:
            try:
                self.client.disconnect()
            except Exception as e:
                logger.warning(f"Error disconnecting from MQTT broker: {e}")
        if self._disconnected is not None:
            self._disconnected.set()
