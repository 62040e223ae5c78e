"""Bounded in-memory history of telemetry readings."""

import itertools
import logging
import math
import threading
from collections import deque
from typing import Deque, List, Optional, Tuple

from climadash.shared.models import HistoryStats, Reading

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100


def round_half_up(value: float, digits: int = 1) -> float:
    """Round to ``digits`` decimals, halves rounding up.

    Matches the dashboard's long-standing ``Math.round(x * 10) / 10``
    behaviour rather than Python's banker's rounding.
    """
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def _mean(values: List[float]) -> Optional[float]:
    if not values:
        return None
    return round_half_up(sum(values) / len(values))


class HistoryBuffer:
    """Fixed-capacity FIFO of readings, oldest first.

    Appends past capacity evict the oldest reading. All access goes through
    a lock so snapshots stay consistent if readers run on other threads.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError(f"History capacity must be at least 1, got {capacity}")
        self._capacity = capacity
        self._readings: Deque[Reading] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        with self._lock:
            return len(self._readings)

    def append(self, reading: Reading) -> None:
        """Append a reading, evicting the oldest one when full."""
        with self._lock:
            if len(self._readings) == self._capacity:
                logger.debug(f"History full ({self._capacity}), evicting oldest reading")
            self._readings.append(reading)

    def snapshot(self) -> Tuple[Reading, ...]:
        """All retained readings, oldest first."""
        with self._lock:
            return tuple(self._readings)

    def recent(self, n: int) -> Tuple[Reading, ...]:
        """Return the last ``min(n, size)`` readings, oldest first.

        Args:
            n: Number of readings wanted. Zero or negative returns nothing.

        Returns:
            A tuple copy; callers cannot mutate the stored history.
        """
        if n <= 0:
            return ()
        with self._lock:
            size = len(self._readings)
            start = max(0, size - n)
            return tuple(itertools.islice(self._readings, start, size))

    def clear(self) -> None:
        with self._lock:
            self._readings.clear()

    def statistics(self) -> HistoryStats:
        """Compute min/max/average statistics over the retained readings.

        Temperature and humidity are filtered for missing values
        independently, so a reading without humidity still counts toward the
        temperature figures.

        Returns:
            HistoryStats with averages rounded to one decimal place.
        """
        readings = self.snapshot()
        if not readings:
            return HistoryStats()

        temperatures = [r.temperature for r in readings if r.temperature is not None]
        humidities = [r.humidity for r in readings if r.humidity is not None]

        return HistoryStats(
            min_temp=min(temperatures) if temperatures else None,
            max_temp=max(temperatures) if temperatures else None,
            avg_temp=_mean(temperatures),
            avg_humidity=_mean(humidities),
            count=len(readings),
        )
