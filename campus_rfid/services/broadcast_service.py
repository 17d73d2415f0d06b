"""
Event Fan-out for live dashboards.

Best-effort pub/sub: every publish runs as a detached task bounded by
BROADCAST_TIMEOUT_SECONDS, so a slow or unreachable broker never delays
the scan acknowledgement. Failures are logged, never raised.

Channels:
- dashboard-warden: every location update and mess entry
- dashboard-teacher: every location update
- subject-<id>: location updates of that student only
"""
import asyncio
import json
import logging
from collections import defaultdict
from typing import Dict, Any, List, Optional, Set

from redis.asyncio import Redis

from campus_rfid.config import settings
from campus_rfid.schemas.schemas import Role, LocationUpdate

logger = logging.getLogger(__name__)

WARDEN_CHANNEL = "dashboard-warden"
TEACHER_CHANNEL = "dashboard-teacher"

LOCATION_UPDATE_EVENT = "location-update"
MESS_ENTRY_EVENT = "mess-entry"


def subject_channel(user_id: str) -> str:
    return f"subject-{user_id}"


class Broadcaster:
    """Transport used by the fan-out; one message per channel."""

    async def publish(self, channel: str, message: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class RedisBroadcaster(Broadcaster):
    """Redis pub/sub; dashboard gateways subscribe to the channel names."""

    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.REDIS_URL
        self._redis: Optional[Redis] = None

    def _get_redis(self) -> Redis:
        if self._redis is None:
            self._redis = Redis.from_url(
                self.url,
                socket_connect_timeout=settings.BROADCAST_TIMEOUT_SECONDS,
                socket_timeout=settings.BROADCAST_TIMEOUT_SECONDS,
                decode_responses=True
            )
        return self._redis

    async def publish(self, channel: str, message: Dict[str, Any]) -> None:
        await self._get_redis().publish(channel, json.dumps(message, default=str))

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.close()
            self._redis = None


class MemoryBroadcaster(Broadcaster):
    """In-process recorder for local runs and tests."""

    def __init__(self):
        self.messages: Dict[str, List[Dict[str, Any]]] = defaultdict(list)

    async def publish(self, channel: str, message: Dict[str, Any]) -> None:
        self.messages[channel].append(message)


class EventFanout:
    """Routes dashboard events to channels without blocking the caller."""

    def __init__(self, broadcaster: Broadcaster, timeout: Optional[float] = None):
        self.broadcaster = broadcaster
        self.timeout = timeout if timeout is not None else settings.BROADCAST_TIMEOUT_SECONDS
        self._pending: Set[asyncio.Task] = set()

    @staticmethod
    def channels_for(user_id: str, role: Role) -> List[str]:
        channels = [WARDEN_CHANNEL, TEACHER_CHANNEL]
        if role == Role.student:
            channels.append(subject_channel(user_id))
        return channels

    def publish_location_update(self, update: LocationUpdate) -> None:
        message = {"event": LOCATION_UPDATE_EVENT, "data": update.model_dump(mode="json")}
        for channel in self.channels_for(update.user_id, update.user_role):
            self._schedule(channel, message)

    def publish_mess_entry(self, data: Dict[str, Any]) -> None:
        self._schedule(WARDEN_CHANNEL, {"event": MESS_ENTRY_EVENT, "data": data})

    def _schedule(self, channel: str, message: Dict[str, Any]) -> None:
        task = asyncio.create_task(self._send(channel, message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, channel: str, message: Dict[str, Any]) -> None:
        try:
            await asyncio.wait_for(self.broadcaster.publish(channel, message), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Broadcast to {channel} timed out after {self.timeout}s")
        except Exception:
            logger.exception(f"Broadcast to {channel} failed")

    async def drain(self) -> None:
        """Wait for in-flight publishes (used at shutdown and in tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        await self.broadcaster.close()


def build_broadcaster(backend: Optional[str] = None) -> Broadcaster:
    backend = (backend or settings.BROADCAST_BACKEND).lower()
    if backend == "memory":
        return MemoryBroadcaster()
    return RedisBroadcaster()


_fanout: Optional[EventFanout] = None


def get_event_fanout() -> EventFanout:
    """Process-wide fan-out, also usable as a FastAPI dependency."""
    global _fanout
    if _fanout is None:
        _fanout = EventFanout(build_broadcaster())
    return _fanout


async def close_event_fanout() -> None:
    global _fanout
    if _fanout is not None:
        await _fanout.close()
        _fanout = None
