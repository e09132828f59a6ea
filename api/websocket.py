"""
Room gateway（WebSocket）

Inbound（client -> server），JSON text frame：
    {"event": "join-room", "roomId": "..."}
    {"event": "leave-room", "roomId": "..."}

Outbound（server -> room 成員）：
    {"event": "connected", "connectionId": "..."}   （只送給新的 socket）
    {"event": "joined", "roomId": "...", "connectionId": "..."}
    {"event": "left", "roomId": "...", "connectionId": "..."}
    {"event": "offer_bound" | "offer_cleared", "roomId": "...", "offerId": "..."}
    {"event": "error", "detail": "..."}             （只送給發送者）

連線 / 斷線由 socket 的生命週期決定。
"""
from typing import Any, Dict
from uuid import uuid4
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from core.exceptions import LiveShopException

router = APIRouter(tags=["websocket"])
logger = logging.getLogger(__name__)

JOIN_ROOM = "join-room"
LEAVE_ROOM = "leave-room"


class WebSocketTransport:
    """Connection id -> WebSocket，dispatcher 的送出端"""

    def __init__(self):
        self._sockets: Dict[str, WebSocket] = {}

    def attach(self, connection_id: str, websocket: WebSocket) -> None:
        self._sockets[connection_id] = websocket

    async def send(self, connection_id: str, message: Dict[str, Any]) -> None:
        websocket = self._sockets.get(connection_id)
        if websocket is None:
            raise LookupError(f"No socket for connection {connection_id}")
        await websocket.send_json(message)

    def discard(self, connection_id: str) -> None:
        self._sockets.pop(connection_id, None)


@router.websocket("/ws/rooms")
async def rooms_gateway(websocket: WebSocket):
    """
    一個 socket = 一個連線

    流程：
    1. Accept、註冊、告訴 client 它的 connection id
    2. 處理 join-room / leave-room，直到 socket 關閉
    3. 斷線：離開 Room（其他成員收到 `left`），再丟棄 socket
    """
    services = websocket.app.state.services
    await websocket.accept()

    connection_id = str(uuid4())
    services.transport.attach(connection_id, websocket)
    services.registry.register(connection_id, transport=websocket)
    await websocket.send_json({"event": "connected", "connectionId": connection_id})

    try:
        while True:
            raw = await websocket.receive_text()
            await _handle_frame(services, connection_id, websocket, raw)
    except WebSocketDisconnect:
        logger.info(f"Connection {connection_id} closed by client")
    finally:
        await services.rooms.disconnect(connection_id)


async def _handle_frame(services, connection_id: str, websocket: WebSocket, raw: str) -> None:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        await websocket.send_json({"event": "error", "detail": "Frame is not valid JSON"})
        return

    if not isinstance(data, dict):
        await websocket.send_json({"event": "error", "detail": "Frame must be a JSON object"})
        return

    event = data.get("event")
    room_id = data.get("roomId")
    if event not in (JOIN_ROOM, LEAVE_ROOM):
        await websocket.send_json({"event": "error", "detail": f"Unknown event {event!r}"})
        return
    if not isinstance(room_id, str) or not room_id:
        await websocket.send_json({"event": "error", "detail": "roomId is required"})
        return

    try:
        if event == JOIN_ROOM:
            await services.rooms.join(connection_id, room_id)
        else:
            await services.rooms.leave(connection_id, room_id)
    except LiveShopException as e:
        await websocket.send_json({"event": "error", "detail": str(e)})
