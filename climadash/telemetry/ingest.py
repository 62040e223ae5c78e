"""Ingest service - owns the live reading and the rolling history."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

from climadash.shared.exceptions import MalformedPayload
from climadash.shared.models import Reading

from .history import HistoryBuffer
from .normalizer import TelemetryNormalizer

logger = logging.getLogger(__name__)


class IngestService:
    """Normalizes inbound messages and records them.

    MQTT callbacks arrive on paho's network thread; they only hand the raw
    message to ``submit``, which queues it onto the event loop. A single
    worker task drains the queue, so readings are recorded in arrival order
    by exactly one writer.
    """

    def __init__(self, normalizer: TelemetryNormalizer, history: HistoryBuffer):
        self.normalizer = normalizer
        self.history = history
        self._current: Optional[Reading] = None
        self._last_update: Optional[datetime] = None
        self.received = 0
        self.dropped = 0

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional["asyncio.Queue[Tuple[str, bytes]]"] = None
        self._worker: Optional[asyncio.Task] = None

    @property
    def current(self) -> Optional[Reading]:
        """Most recent reading, None until the first message arrives."""
        return self._current

    @property
    def last_update(self) -> Optional[datetime]:
        """When the current reading was recorded."""
        return self._last_update

    def ingest(self, payload: bytes, topic: Optional[str] = None) -> Optional[Reading]:
        """Normalize and record one message.

        Args:
            payload: Raw message body.
            topic: Topic the message arrived on, used for logging only.

        Returns:
            The recorded reading, or None if the payload was malformed.
        """
        try:
            reading = self.normalizer.normalize(payload)
        except MalformedPayload as e:
            self.dropped += 1
            logger.warning(f"Dropping malformed message from {topic or 'unknown topic'}: {e}")
            return None

        # Current reading and history are updated together, no await between
        self._current = reading
        self.history.append(reading)
        self._last_update = datetime.now(timezone.utc)
        self.received += 1

        logger.debug(
            f"Recorded reading from {topic or 'direct'}: "
            f"temp={reading.temperature} humidity={reading.humidity} "
            f"(history {len(self.history)}/{self.history.capacity})"
        )
        return reading

    def submit(self, topic: str, payload: bytes) -> None:
        """Hand a message to the ingest worker. Safe to call from any thread."""
        if self._loop is None or self._queue is None:
            self.ingest(payload, topic)
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, (topic, payload))

    async def run(self) -> None:
        """Drain the ingest queue forever."""
        assert self._queue is not None
        while True:
            topic, payload = await self._queue.get()
            try:
                self.ingest(payload, topic)
            except Exception:
                logger.exception(f"Unexpected error ingesting message from {topic}")
            finally:
                self._queue.task_done()

    async def start(self) -> None:
        """Start the ingest worker on the running event loop."""
        if self._worker is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self.run(), name="climadash-ingest")
        logger.info("Ingest worker started")

    async def drain(self) -> None:
        """Wait until every queued message has been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self) -> None:
        """Stop the ingest worker. Queued messages that were not processed are lost."""
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        self._queue = None
        self._loop = None
        logger.info("Ingest worker stopped")
