"""WebSocket endpoint for real-time build updates."""

import asyncio
import logging
from typing import List

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from apk_forge.core.jobs import BuildJob

logger = logging.getLogger(__name__)
router = APIRouter()


class ConnectionManager:
    """Manage WebSocket connections."""

    def __init__(self):
        self.active_connections: List[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)
        logger.info(f"Client connected. Total: {len(self.active_connections)}")

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
            logger.info(f"Client disconnected. Total: {len(self.active_connections)}")

    async def broadcast(self, message: dict):
        """Send message to all connected clients."""
        if not self.active_connections:
            return

        disconnected = []
        for connection in list(self.active_connections):
            try:
                await connection.send_json(message)
            except Exception:
                disconnected.append(connection)

        for conn in disconnected:
            self.disconnect(conn)


manager = ConnectionManager()


def build_update_listener(job: BuildJob) -> None:
    """Scheduler listener: fan a build update out to connected clients."""
    if not manager.active_connections:
        return
    message = {
        "type": "BUILD_UPDATE",
        "payload": job.to_dict(),
    }
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.warning("Cannot broadcast build update: no running loop")
        return
    loop.create_task(manager.broadcast(message))


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await manager.connect(websocket)
    try:
        while True:
            # Keep connection alive; clients only listen
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(websocket)
