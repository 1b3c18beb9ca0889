# location_source.py
# Where raw GPS fixes come from, and the bounded channel that carries
# accepted fixes from the filter to the navigation state machine.

import logging
import queue
import threading
import time
from typing import Callable, Iterable, Iterator, List, Optional

import pandas as pd

from .errors import InputError, LocationError, LocationTimeout, SourceExhausted
from .models import Position
from .nav_config import NavConfig

logger = logging.getLogger(__name__)

# End-of-stream marker shared by PushLocationSource and PositionChannel
_CLOSED = object()


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

class LocationSource:
    """
    Interface of a location provider.

    read() blocks for the next fix and raises a LocationError subclass
    (PermissionDenied, PositionUnavailable, LocationTimeout) on failure.
    A source that simply runs out raises SourceExhausted.
    """

    def read(self, timeout: Optional[float] = None) -> Position:
        raise NotImplementedError

    def close(self) -> None:
        pass


class PushLocationSource(LocationSource):
    """
    A source fed by an external producer (GPS driver, NMEA reader, ...).

    Usage:
        source = PushLocationSource(config)
        source.push(Position(...))          # from the driver thread
        source.fail(PermissionDenied(...))  # to report a failure

    Args:
        config: NavConfig for the acquisition timeout and maximum fix age.
        clock:  Wall clock matching Position.timestamp, injectable for tests.
    """

    def __init__(
        self,
        config: Optional[NavConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or NavConfig()
        self._clock = clock
        self._queue: "queue.Queue" = queue.Queue()

    def push(self, position: Position) -> None:
        self._queue.put(position)

    def fail(self, error: LocationError) -> None:
        self._queue.put(error)

    def close(self) -> None:
        """Wake any blocked read(); further reads raise SourceExhausted."""
        self._queue.put(_CLOSED)

    def read(self, timeout: Optional[float] = None) -> Position:
        """
        Next fresh fix.

        Fixes older than config.location_max_age_s are skipped.

        Raises:
            LocationTimeout: nothing fresh arrived within the timeout.
            LocationError:   the producer reported a failure.
        """
        timeout = self.config.location_timeout_s if timeout is None else timeout
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise LocationTimeout(f"No position within {timeout}s")
            try:
                item = self._queue.get(timeout=remaining)
            except queue.Empty:
                raise LocationTimeout(f"No position within {timeout}s")

            if item is _CLOSED:
                self._queue.put(_CLOSED)
                raise SourceExhausted("Location source closed")
            if isinstance(item, LocationError):
                raise item
            age = self._clock() - item.timestamp
            if age > self.config.location_max_age_s:
                logger.debug(f"Skipping stale fix ({age:.1f}s old)")
                continue
            return item


class ReplayLocationSource(LocationSource):
    """
    Replays a recorded trace, e.g. for simulation.

    Args:
        positions: Fixes in arrival order.
        interval_s: Optional real-time pause between fixes.
    """

    CSV_COLUMNS = ("lat", "lng", "accuracy", "timestamp")
    OPTIONAL_COLUMNS = ("altitude", "heading", "speed")

    def __init__(self, positions: Iterable[Position], interval_s: float = 0.0) -> None:
        self._positions: List[Position] = list(positions)
        self._index = 0
        self.interval_s = interval_s

    @classmethod
    def from_csv(cls, path: str, interval_s: float = 0.0) -> "ReplayLocationSource":
        """
        Load a GPS trace with columns lat, lng, accuracy, timestamp and
        optionally altitude, heading, speed.

        Raises:
            InputError: missing columns or malformed coordinates.
        """
        df = pd.read_csv(path)
        missing = [c for c in cls.CSV_COLUMNS if c not in df.columns]
        if missing:
            raise InputError(f"Trace {path} is missing columns: {', '.join(missing)}")

        positions = []
        for row in df.itertuples(index=False):
            extras = {}
            for col in cls.OPTIONAL_COLUMNS:
                value = getattr(row, col, None)
                extras[col] = None if value is None or pd.isna(value) else float(value)
            positions.append(Position(
                lat=float(row.lat),
                lng=float(row.lng),
                accuracy=float(row.accuracy),
                timestamp=float(row.timestamp),
                **extras,
            ))
        logger.info(f"Loaded {len(positions)} fixes from {path}")
        return cls(positions, interval_s=interval_s)

    def __len__(self) -> int:
        return len(self._positions)

    def read(self, timeout: Optional[float] = None) -> Position:
        if self._index >= len(self._positions):
            raise SourceExhausted("Trace exhausted")
        if self.interval_s and self._index > 0:
            time.sleep(self.interval_s)
        position = self._positions[self._index]
        self._index += 1
        return position


# ---------------------------------------------------------------------------
# Channel between filter (producer) and state machine (consumer)
# ---------------------------------------------------------------------------

class ChannelClosed(Exception):
    """Raised by PositionChannel.get() once the channel is closed."""


class PositionChannel:
    """
    Bounded FIFO of accepted fixes.

    Arrival order is preserved. When full, the oldest queued fix is dropped
    so the producer never blocks on a slow consumer.
    """

    def __init__(self, maxsize: int = 64) -> None:
        self._queue: "queue.Queue" = queue.Queue(maxsize=maxsize)
        self._lock = threading.Lock()
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, item) -> None:
        with self._lock:
            if self._closed:
                return
            while True:
                try:
                    self._queue.put_nowait(item)
                    return
                except queue.Full:
                    try:
                        self._queue.get_nowait()
                        self.dropped += 1
                        logger.warning("Position channel full, dropped oldest fix.")
                    except queue.Empty:
                        pass

    def get(self, timeout: Optional[float] = None):
        """
        Next item, or None on timeout.

        Raises:
            ChannelClosed: the channel was closed.
        """
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)   # later readers see it too
            raise ChannelClosed()
        return item

    def close(self, discard: bool = False) -> None:
        """
        Refuse further puts and mark the end of the stream.

        Pending fixes are still delivered by get() before ChannelClosed,
        unless discard is set.

        Args:
            discard: Drop pending fixes instead of draining them.
        """
        with self._lock:
            if discard:
                # Also removes an earlier sentinel; it is re-queued below.
                while True:
                    try:
                        self._queue.get_nowait()
                    except queue.Empty:
                        break
            elif self._closed:
                return
            self._closed = True
            while True:
                try:
                    self._queue.put_nowait(_CLOSED)
                    return
                except queue.Full:
                    try:
                        self._queue.get_nowait()
                        self.dropped += 1
                        logger.warning("Position channel full on close, dropped oldest fix.")
                    except queue.Empty:
                        pass

    def __iter__(self) -> Iterator:
        while True:
            try:
                item = self.get()
            except ChannelClosed:
                return
            yield item
