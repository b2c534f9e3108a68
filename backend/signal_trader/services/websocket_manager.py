"""
WebSocket Connection Manager for real-time engine events

Subscribed to the EventBus for every event; each event is wrapped as
{"type", "data", "timestamp"} and pushed to all /ws clients. A client gets
the current monitoring status as its first message.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)


def event_message(event: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": event,
        "data": jsonable_encoder(payload),
        "timestamp": datetime.utcnow().isoformat(),
    }


class WebSocketManager:
    """Fan-out of engine events to connected WebSocket clients"""

    def __init__(self):
        self.clients: Set[WebSocket] = set()

    @property
    def client_count(self) -> int:
        return len(self.clients)

    async def connect(self, websocket: WebSocket, status: Optional[Dict[str, Any]] = None):
        """Accept a client and send it the monitoring status snapshot"""
        await websocket.accept()
        self.clients.add(websocket)
        logger.info(f"WebSocket client connected ({self.client_count} total)")
        if status is not None:
            await self._send(websocket, event_message("monitoringStatus", status))

    async def disconnect(self, websocket: WebSocket):
        self.clients.discard(websocket)
        logger.info(f"WebSocket client disconnected ({self.client_count} total)")

    async def _send(self, websocket: WebSocket, message: Dict[str, Any]) -> bool:
        try:
            await websocket.send_json(message)
        except Exception as e:
            logger.warning(f"Dropping WebSocket client after failed send: {e}")
            self.clients.discard(websocket)
            return False
        return True

    async def broadcast(self, message: Dict[str, Any]) -> int:
        """
        Send one message to every client. Clients whose send fails are dropped.

        Returns:
            Number of clients that received the message
        """
        if not self.clients:
            return 0
        results = await asyncio.gather(*(self._send(ws, message) for ws in list(self.clients)))
        return sum(results)

    async def broadcast_event(self, event: str, payload: Dict[str, Any]):
        """EventBus handler"""
        await self.broadcast(event_message(event, payload))
