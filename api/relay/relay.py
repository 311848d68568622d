# api/relay/relay.py
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from services.broadcast_service import BroadcastService, get_broadcast_service

router = APIRouter(tags=["relay"])


class NewMessageEvent(BaseModel):
    message: Optional[str] = None
    suggestions: List[str] = []
    chat_name: Optional[str] = None


class MigrationStatusEvent(BaseModel):
    migration_completed: bool = False
    processed_count: int = 0
    failed_count: int = 0
    workflow_type: Optional[str] = None


class SimilarityResultsEvent(BaseModel):
    query_message: Optional[str] = None
    similar_messages: Dict[str, Any] = {}
    workflow_type: Optional[str] = None


class HealthStatusEvent(BaseModel):
    system_health: Optional[str] = None
    services: Dict[str, Any] = {}
    timestamp: Optional[str] = None


def _received(delivered: int) -> dict:
    return {
        "status": "received",
        "delivered_to": delivered,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, broadcaster: BroadcastService = Depends(get_broadcast_service)):
    client_id = await broadcaster.connect(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError as e:
                print(f"[Relay] Invalid JSON from {client_id}: {e}")
                continue
            await websocket.send_json(
                {"type": "echo", "original": data, "timestamp": datetime.now(timezone.utc).isoformat()}
            )
    except WebSocketDisconnect:
        print(f"[Relay] {client_id} closed the connection")
    finally:
        broadcaster.disconnect(client_id)


@router.post("/api/webhooks/new-message")
async def new_message_webhook(
    event: NewMessageEvent, broadcaster: BroadcastService = Depends(get_broadcast_service)
):
    preview = (event.message or "")[:50]
    print(f"[Relay] New message webhook: chat={event.chat_name} message={preview}...")
    delivered = await broadcaster.broadcast(
        {
            "type": "new_message",
            "data": {**event.model_dump(), "source": "n8n_workflow"},
        }
    )
    return _received(delivered)


@router.post("/api/webhooks/migration-status")
async def migration_status_webhook(
    event: MigrationStatusEvent, broadcaster: BroadcastService = Depends(get_broadcast_service)
):
    print(f"[Relay] Migration status: processed={event.processed_count} failed={event.failed_count}")
    data = event.model_dump()
    data["workflow_type"] = event.workflow_type or "migration"
    delivered = await broadcaster.broadcast(
        {"type": "migration_progress", "data": {**data, "source": "n8n_workflow"}}
    )
    return _received(delivered)


@router.post("/api/webhooks/similarity-results")
async def similarity_results_webhook(
    event: SimilarityResultsEvent, broadcaster: BroadcastService = Depends(get_broadcast_service)
):
    documents = event.similar_messages.get("documents") or []
    print(f"[Relay] Similarity results: {len(documents)} document(s)")
    data = event.model_dump()
    data["workflow_type"] = event.workflow_type or "similarity"
    delivered = await broadcaster.broadcast(
        {"type": "similarity_results", "data": {**data, "source": "n8n_workflow"}}
    )
    return _received(delivered)


@router.post("/api/webhooks/health-status")
async def health_status_webhook(
    event: HealthStatusEvent, broadcaster: BroadcastService = Depends(get_broadcast_service)
):
    delivered = await broadcaster.broadcast(
        {
            "type": "health_status",
            "data": {
                "system_health": event.system_health,
                "services": event.services,
                "source": "n8n_health_workflow",
                "n8n_timestamp": event.timestamp,
            },
        }
    )
    return _received(delivered)
