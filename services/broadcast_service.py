import time
import uuid
from datetime import datetime, timezone
from functools import lru_cache
from typing import Dict

from fastapi import WebSocket


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class BroadcastService:
    """In-process fan-out of JSON events to every connected UI client."""

    def __init__(self):
        self.clients: Dict[str, WebSocket] = {}

    async def connect(self, websocket: WebSocket) -> str:
        await websocket.accept()
        client_id = f"client_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
        self.clients[client_id] = websocket
        print(f"[Relay] WebSocket client connected: {client_id}")
        await websocket.send_json(
            {
                "type": "connection",
                "clientId": client_id,
                "timestamp": _now(),
                "message": "Connected to WhatsApp Reply Assistant",
            }
        )
        return client_id

    def disconnect(self, client_id: str) -> None:
        if self.clients.pop(client_id, None) is not None:
            print(f"[Relay] WebSocket client disconnected: {client_id}")

    async def send_to_client(self, client_id: str, message: dict) -> bool:
        websocket = self.clients.get(client_id)
        if websocket is None:
            return False
        try:
            await websocket.send_json({**message, "timestamp": _now()})
            return True
        except Exception as e:
            print(f"[Relay] Send to {client_id} failed, dropping client: {e}")
            self.disconnect(client_id)
            return False

    async def broadcast(self, message: dict) -> int:
        """Send ``message`` to every client; returns how many received it."""
        payload = {**message, "timestamp": _now()}
        delivered = 0
        for client_id, websocket in list(self.clients.items()):
            try:
                await websocket.send_json(payload)
                delivered += 1
            except Exception as e:
                print(f"[Relay] Send to {client_id} failed, dropping client: {e}")
                self.disconnect(client_id)
        return delivered

    @property
    def connection_count(self) -> int:
        return len(self.clients)


@lru_cache(maxsize=1)
def get_broadcast_service() -> BroadcastService:
    return BroadcastService()
