"""
Real-time fan-out settings: the WebSocket connection manager.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from fastapi import WebSocket

from runchecks.common.models.messages import WebsocketMessageType

logger = logging.getLogger(__name__)

SEND_TIMEOUT_SECONDS = 5.0


class ConnectionConfig:
    """Connection manager for WebSocket viewers.

    Delivery is best-effort: a client that misses an event catches up on its
    next full reload of ``/api/run_status``.
    """

    def __init__(self, send_timeout: float = SEND_TIMEOUT_SECONDS):
        self.connections: Dict[str, WebSocket] = {}
        self.send_timeout = send_timeout

    def add_connection(self, connection_id: str, connection: WebSocket):
        self.connections[connection_id] = connection
        logger.info("WebSocket connection added: %s (%d open)", connection_id, len(self.connections))

    def remove_connection(self, connection_id: str):
        self.connections.pop(str(connection_id), None)

    def get_connection(self, connection_id: str) -> Optional[WebSocket]:
        return self.connections.get(connection_id)

    async def close_connection(self, connection_id: str):
        """Close and remove a connection."""
        connection = self.get_connection(connection_id)
        if connection:
            try:
                await connection.close()
                logger.info("Connection closed: %s", connection_id)
            except Exception as e:
                # Usually already closed by the client.
                logger.debug("Error closing connection %s: %s", connection_id, e)
        self.remove_connection(connection_id)

    async def broadcast(self, message_type: WebsocketMessageType, data: Any) -> int:
        """Send ``{"type", "data"}`` to every connection; returns how many received it."""

        payload = json.dumps({"type": message_type.value, "data": data}, default=str)

        async def _send(connection_id: str, connection: WebSocket) -> bool:
            try:
                await asyncio.wait_for(connection.send_text(payload), timeout=self.send_timeout)
                return True
            except Exception as e:
                logger.error("Failed to send %s to %s: %s", message_type.value, connection_id, e)
                self.remove_connection(connection_id)
                return False

        results = await asyncio.gather(
            *(_send(connection_id, connection) for connection_id, connection in list(self.connections.items()))
        )
        delivered = sum(results)
        logger.debug("Broadcast %s to %d connection(s)", message_type.value, delivered)
        return delivered

    async def close_all(self):
        for connection_id in list(self.connections):
            await self.close_connection(connection_id)
