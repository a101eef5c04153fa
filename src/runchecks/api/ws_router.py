"""WebSocket API Router.

Viewers connect to ``/socket`` and receive ``runcheck:new`` events whenever a
batch of checks is submitted. Nothing is expected from the client.
"""

import logging
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

ws_router = APIRouter(tags=["WebSocket"])


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@ws_router.websocket("/socket")
async def run_check_updates(websocket: WebSocket):
    await websocket.accept()

    connections = websocket.app.state.connections
    connection_id = str(uuid.uuid4())
    connections.add_connection(connection_id, websocket)

    try:
        while True:
            # Keeps the connection open; incoming messages are ignored.
            message = await websocket.receive_text()
            logger.debug("Ignoring WebSocket message from %s: %s", connection_id, message)
    except WebSocketDisconnect:
        logger.info("Client disconnected: %s", connection_id)
    except Exception as e:
        logger.error("Error in WebSocket connection %s: %s", connection_id, e)
    finally:
        connections.remove_connection(connection_id)
