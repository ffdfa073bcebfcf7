"""
Real-time fan-out of complaint and message events to connected WebSocket clients.

Events are fire-and-forget: a client that is not connected when an event is
broadcast never sees it and has to reconcile through the read endpoints.
"""
import logging
from typing import Any, List

from fastapi import Request, WebSocket

logger = logging.getLogger(__name__)

COMPLAINT_CREATED = "complaintCreated"
COMPLAINT_UPDATED = "complaintUpdated"
COMPLAINT_DELETED = "complaintDeleted"
NEW_MESSAGE = "newMessage"


class ConnectionManager:
    def __init__(self):
        self.active: List[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active.append(websocket)
        logger.info("Client connected (%d active)", len(self.active))

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active:
            self.active.remove(websocket)
            logger.info("Client disconnected (%d active)", len(self.active))

    async def broadcast(self, event: str, data: Any):
        payload = {"type": event, "data": data}
        for ws in list(self.active):
            try:
                await ws.send_json(payload)
            except Exception as e:
                logger.warning("Dropping client after failed send of %s: %s", event, e)
                self.disconnect(ws)


def get_broadcaster(request: Request):
    """FastAPI dependency returning the broadcaster held on app.state."""
    return request.app.state.broadcaster
