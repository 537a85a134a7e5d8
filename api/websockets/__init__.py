"""WebSocket endpoints for real-time conversation updates."""

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query, status
from typing import Any, Dict
from uuid import UUID
import logging
import asyncio

from auth import AuthError, decode_token
from errors import MarketplaceError
from events import Subscription, conversation_topic

# Configure logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(
    prefix="/ws",
    tags=["WebSocket"]
)

class ConnectionManager:
    """Track open sockets per conversation."""

    def __init__(self):
        self.active_connections: Dict[str, set] = {}

    def connect(self, websocket: WebSocket, topic: str):
        self.active_connections.setdefault(topic, set()).add(websocket)
        logger.info(f"New connection established for {topic}")

    def disconnect(self, websocket: WebSocket, topic: str):
        connections = self.active_connections.get(topic)
        if not connections:
            return
        connections.discard(websocket)
        if not connections:
            del self.active_connections[topic]
        logger.info(f"Connection closed for {topic}")

    @property
    def connection_count(self) -> int:
        return sum(len(c) for c in self.active_connections.values())

manager = ConnectionManager()

async def forward_events(websocket: WebSocket, subscription: Subscription):
    """Push published events to the socket until cancelled."""
    while True:
        event = await subscription.get()
        await websocket.send_json({
            "type": "event",
            "event": event.model_dump(mode='json')
        })

async def handle_client_message(
    websocket: WebSocket,
    services,
    community_id: UUID,
    conversation_id: UUID,
    user_id: UUID,
    message: Dict[str, Any]
):
    kind = message.get("type")
    if kind == "ping":
        await websocket.send_json({"type": "pong"})
    elif kind == "message":
        try:
            sent = await services.conversations.send_message(
                community_id,
                conversation_id,
                user_id,
                message.get("content"),
                message_type=message.get("message_type", "text"),
                offer_amount=message.get("offer_amount")
            )
        except MarketplaceError as e:
            await websocket.send_json({"type": "error", "detail": str(e)})
            return
        await websocket.send_json({"type": "sent", "message_id": str(sent['id'])})
    else:
        await websocket.send_json({"type": "error", "detail": f"Unknown message type: {kind}"})

@router.websocket("/conversations/{conversation_id}")
async def conversation_socket(
    websocket: WebSocket,
    conversation_id: UUID,
    token: str = Query(...),
    community_id: UUID = Query(...)
):
    """Live feed of one conversation.

    The client authenticates with ``?token=`` and receives every event
    published on the conversation's topic. It may send
    ``{"type": "ping"}`` or ``{"type": "message", "content": ...}``.
    """
    services = getattr(websocket.app.state, 'services', None)
    if services is None:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    try:
        user_id = decode_token(token)
        conversation = await services.conversations.get_conversation(
            community_id, conversation_id, user_id
        )
    except (AuthError, MarketplaceError) as e:
        logger.info(f"Rejected socket for conversation {conversation_id}: {e}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    topic = conversation_topic(conversation['id'])
    # Subscribe before announcing so no event is missed
    subscription = services.events.subscribe(topic)
    manager.connect(websocket, topic)
    forwarder = asyncio.create_task(forward_events(websocket, subscription))
    try:
        await websocket.send_json({"type": "connected", "conversation_id": str(conversation['id'])})
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                await websocket.send_json({"type": "error", "detail": "Invalid JSON"})
                continue
            if not isinstance(message, dict):
                await websocket.send_json({"type": "error", "detail": "Expected a JSON object"})
                continue
            await handle_client_message(
                websocket, services, community_id, conversation['id'], user_id, message
            )
    except WebSocketDisconnect:
        pass
    finally:
        forwarder.cancel()
        try:
            await forwarder
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning(f"Event forwarding for {topic} stopped: {e}")
        subscription.close()
        manager.disconnect(websocket, topic)

__all__ = ['router', 'manager', 'ConnectionManager']
