import asyncio
from typing import Optional

from constants import SEND_TIMEOUT_SECONDS
from realtime.errors import DeliveryFailure
from realtime.registry import Connection, ConnectionRegistry
from logging_config import get_logger

logger = get_logger(__name__)


class BroadcastRouter:
    """Fans room-tagged events out to the live connections of that room."""

    def __init__(self, registry: ConnectionRegistry, send_timeout: float = SEND_TIMEOUT_SECONDS):
        self.registry = registry
        self.send_timeout = send_timeout

    async def broadcast(self, event: dict, exclude: Optional[Connection] = None) -> int:
        """Deliver event to every connection in event["roomId"] except exclude.

        The recipient list is taken before the first await. A recipient that
        closes while the fan-out is running fails its own send and is skipped;
        the others still get the event. Returns the number of deliveries.
        """
        room_id = event["roomId"]
        recipients = [conn for conn in self.registry.snapshot_by_room(room_id) if conn is not exclude]
        if not recipients:
            logger.debug(f"No recipients for {event.get('type')} in room {room_id}")
            return 0

        results = await asyncio.gather(*(self._deliver(conn, event) for conn in recipients))
        delivered = sum(results)
        logger.debug(f"Broadcasted {event.get('type')} to {delivered}/{len(recipients)} connections in room {room_id}")
        return delivered

    async def send_direct(self, connection: Connection, event: dict) -> bool:
        """Send a notice to one connection only, bypassing room routing."""
        return await self._deliver(connection, event)

    async def _deliver(self, connection: Connection, event: dict) -> bool:
        if connection.closed:
            logger.debug(f"Skipping closed {connection}")
            return False
        try:
            await asyncio.wait_for(connection.send(event), timeout=self.send_timeout)
            return True
        except Exception as e:
            failure = DeliveryFailure(connection.connection_id, e)
            logger.warning(str(failure))
            return False
