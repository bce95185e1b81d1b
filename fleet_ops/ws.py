from __future__ import annotations

"""
File: fleet_ops/ws.py
Purpose: WebSocket fan-out of fleet session events to dashboard clients.
Key responsibilities:
- Greet each new client with the current session snapshot.
- Broadcast vehicles.updated / deliveries.updated messages as compact JSON.
"""

import asyncio
import json
import logging
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger("fleet-ops.ws")


def encode(message: dict[str, Any]) -> str:
    return json.dumps(message, separators=(",", ":"), sort_keys=True)


class WSManager:
    """Dashboard clients of one fleet session."""
    def __init__(self) -> None:
        self.clients: set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, snapshot: dict[str, Any] | None = None) -> None:
        """Accept a client and send it the session state before any update."""
        await websocket.accept()
        if snapshot is not None:
            await websocket.send_text(encode(snapshot))
        async with self._lock:
            self.clients.add(websocket)
        logger.info("dashboard client connected clients=%s", len(self.clients))

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self.clients.discard(websocket)
        logger.info("dashboard client disconnected clients=%s", len(self.clients))

    async def broadcast(self, message: dict[str, Any]) -> None:
        """Send one session event to every client; clients that fail are dropped."""
        data = encode(message)
        async with self._lock:
            clients = list(self.clients)
        stale: list[WebSocket] = []
        for client in clients:
            try:
                await client.send_text(data)
            except Exception:  # noqa: BLE001
                stale.append(client)
        if stale:
            async with self._lock:
                for client in stale:
                    self.clients.discard(client)
            logger.info("dropped stale dashboard clients=%s", len(stale))
