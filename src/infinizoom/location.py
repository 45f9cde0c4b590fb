"""
Geolocation feed and the append-only location path.

A :class:`GeoLocationSource` produces ``LocationUpdate`` events; the
:class:`LocationTracker` consumes them, keeps the latest status and fix, and
records every status change or new fix as a :class:`PathPoint`. Signal loss
and re-acquisition are detected from the path and logged.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Callable, List, Optional, Tuple

import zmq
import zmq.asyncio

from infinizoom.constants import DEFAULT_LOCATION_ADDRESS, DEFAULT_LOCATION_TOPIC
from infinizoom.schemas import Capture, GPSCoordinates, LocationStatus, PathPoint

logger = logging.getLogger(__name__)

RECV_TIMEOUT = 1.0  # seconds, lets the listen loop notice stop()


@dataclass(frozen=True)
class LocationUpdate:
    status: LocationStatus
    coordinates: Optional[GPSCoordinates] = None

    @classmethod
    def from_dict(cls, data: dict) -> "LocationUpdate":
        """Parse ``{"status": ..., "latitude": ..., "longitude": ...}``.

        A message with coordinates and no status counts as a fix.

        Raises:
            ValueError: If the message is malformed
        """
        coords = data.get("coordinates") or data
        coordinates = None
        if coords.get("latitude") is not None and coords.get("longitude") is not None:
            coordinates = GPSCoordinates(latitude=float(coords["latitude"]), longitude=float(coords["longitude"]))

        status_value = data.get("status")
        if status_value is None:
            if coordinates is None:
                raise ValueError(f"Location message has neither status nor coordinates: {data}")
            status = LocationStatus.ACQUIRED
        else:
            status = LocationStatus(str(status_value).upper())

        if status == LocationStatus.ACQUIRED and coordinates is None:
            raise ValueError("ACQUIRED location message without coordinates")
        return cls(status=status, coordinates=coordinates)


class GeoLocationSource(ABC):
    """Asynchronous stream of location updates with an explicit stop."""

    @abstractmethod
    def updates(self) -> AsyncIterator[LocationUpdate]:
        pass

    @abstractmethod
    async def stop(self) -> None:
        pass


class ManualLocationSource(GeoLocationSource):
    """Updates pushed in-process, from the CLI or tests."""

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._stopped = False

    def push(self, status: LocationStatus, coordinates: Optional[GPSCoordinates] = None) -> None:
        if not self._stopped:
            self._queue.put_nowait(LocationUpdate(status, coordinates))

    def push_fix(self, latitude: float, longitude: float) -> None:
        self.push(LocationStatus.ACQUIRED, GPSCoordinates(latitude, longitude))

    def push_unavailable(self) -> None:
        self.push(LocationStatus.UNAVAILABLE)

    async def updates(self) -> AsyncIterator[LocationUpdate]:
        while True:
            update = await self._queue.get()
            if update is None:
                return
            yield update

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._queue.put_nowait(None)


class ZmqLocationSource(GeoLocationSource):
    """Subscribes to ``"<topic> <json>"`` location messages on a ZMQ publisher."""

    def __init__(self, address: str = DEFAULT_LOCATION_ADDRESS, topic: str = DEFAULT_LOCATION_TOPIC,
                 context: Optional[zmq.asyncio.Context] = None):
        self.address = address
        self.topic = topic
        self.context = context or zmq.asyncio.Context.instance()
        self.socket: Optional[zmq.asyncio.Socket] = None
        self._running = False

    def _connect(self) -> None:
        self.socket = self.context.socket(zmq.SUB)
        self.socket.connect(self.address)
        self.socket.setsockopt_string(zmq.SUBSCRIBE, self.topic)
        self._running = True
        logger.info(f"Subscribed to location updates on {self.address} topic '{self.topic}'")

    async def updates(self) -> AsyncIterator[LocationUpdate]:
        if self.socket is None:
            self._connect()

        while self._running:
            try:
                raw_message = await asyncio.wait_for(self.socket.recv_string(), timeout=RECV_TIMEOUT)
            except asyncio.TimeoutError:
                continue
            except zmq.ZMQError as e:
                if not self._running:
                    break
                logger.error(f"Error receiving location message: {e}")
                raise

            _, _, payload = raw_message.partition(" ")
            try:
                yield LocationUpdate.from_dict(json.loads(payload))
            except (json.JSONDecodeError, ValueError, AttributeError) as e:
                logger.error(f"Ignoring malformed location message: {e}")

    async def stop(self) -> None:
        self._running = False
        if self.socket is not None and not self.socket.closed:
            self.socket.close(linger=0)
            logger.debug("Closed location subscriber socket")


LocationListener = Callable[[LocationStatus, Optional[GPSCoordinates]], None]


class LocationTracker:
    """Latest location status and fix, plus the path of every change."""

    def __init__(self, source: Optional[GeoLocationSource] = None):
        self.source = source
        self.status = LocationStatus.IDLE
        self.coordinates: Optional[GPSCoordinates] = None
        self.path: List[PathPoint] = []
        self._listeners: List[LocationListener] = []
        self._task: Optional[asyncio.Task] = None
        self._permanently_unavailable = False
        self._disposed = False

    def add_listener(self, listener: LocationListener) -> None:
        self._listeners.append(listener)

    def start(self) -> None:
        """Begin watching the source. Without a source, location is permanently unavailable."""
        if self._task is not None or self._disposed:
            return
        if self.source is None:
            logger.warning("No location source available, captures will not be geo-tagged")
            self._permanently_unavailable = True
            self._set(LocationStatus.UNAVAILABLE, None)
            return

        self._set(LocationStatus.REQUESTING, None)
        self._task = asyncio.create_task(self._watch())

    async def _watch(self) -> None:
        try:
            async for update in self.source.updates():
                self.apply(update)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Location source failed: {e}", exc_info=True)
            self._permanently_unavailable = True
            self._set(LocationStatus.UNAVAILABLE, None)

    def apply(self, update: LocationUpdate) -> None:
        """Record one update from the source."""
        if self._permanently_unavailable:
            return

        if update.status == LocationStatus.ACQUIRED:
            if self.path and self.path[-1].status == LocationStatus.UNAVAILABLE:
                last_fix = self.last_good_fix()
                logger.info(f"Location re-acquired at {update.coordinates} "
                            f"(last good fix before loss: {last_fix})")
            self._set(LocationStatus.ACQUIRED, update.coordinates)
        elif update.status == LocationStatus.UNAVAILABLE:
            if self.status == LocationStatus.UNAVAILABLE:
                return
            logger.warning("Location signal lost")
            self._set(LocationStatus.UNAVAILABLE, None)
        elif update.status != self.status:
            self._set(update.status, None)

    def _set(self, status: LocationStatus, coordinates: Optional[GPSCoordinates]) -> None:
        self.status = status
        self.coordinates = coordinates
        self.path.append(PathPoint(coordinates=coordinates, status=status))
        for listener in list(self._listeners):
            try:
                listener(status, coordinates)
            except Exception as e:
                logger.error(f"Error in location listener: {e}", exc_info=True)

    @property
    def current_gps(self) -> Optional[GPSCoordinates]:
        """Latest fix, only while the signal is held."""
        return self.coordinates if self.status == LocationStatus.ACQUIRED else None

    def tag_capture(self, capture: Capture) -> Capture:
        """Stamp *capture* with the current status and, when acquired, the fix."""
        capture.gps = self.current_gps
        capture.location_status = self.status
        return capture

    def last_good_fix(self) -> Optional[GPSCoordinates]:
        """Most recent acquired coordinates in the path."""
        for point in reversed(self.path):
            if point.status == LocationStatus.ACQUIRED and point.coordinates is not None:
                return point.coordinates
        return None

    def transitions(self) -> List[Tuple[PathPoint, PathPoint]]:
        """Consecutive path points whose status differs."""
        return [(a, b) for a, b in zip(self.path, self.path[1:]) if a.status != b.status]

    async def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        if self.source is not None:
            await self.source.stop()
