"""WebSocket endpoint for realtime notifications."""

from __future__ import annotations

import json
from collections import defaultdict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from shareit.common.logging import get_logger
from shareit.common.security import decode_token

router = APIRouter(tags=["WebSocket"])

logger = get_logger("ws")


class ConnectionManager:
    """Open sockets per user id."""

    def __init__(self) -> None:
        self.active: dict[str, list[WebSocket]] = defaultdict(list)

    async def connect(self, user_id: str, ws: WebSocket) -> None:
        await ws.accept()
        self.active[user_id].append(ws)
        logger.info("WebSocket connected: user=%s (total=%d)", user_id, len(self.active[user_id]))

    def disconnect(self, user_id: str, ws: WebSocket) -> None:
        if ws in self.active.get(user_id, []):
            self.active[user_id].remove(ws)
        if user_id in self.active and not self.active[user_id]:
            del self.active[user_id]
        logger.info("WebSocket disconnected: user=%s", user_id)

    async def send_to_user(self, user_id: str, message: dict) -> None:
        if user_id not in self.active:
            return
        dead = []
        for ws in self.active[user_id]:
            try:
                await ws.send_json(message)
            except Exception:
                dead.append(ws)
        for ws in dead:
            self.disconnect(user_id, ws)

    @property
    def connected_users(self) -> int:
        return len(self.active)


manager = ConnectionManager()


@router.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    """Authenticate via token query param, then stream notifications."""
    token = ws.query_params.get("token", "")
    try:
        payload = decode_token(token)
    except ValueError:
        await ws.close(code=4001, reason="Invalid token")
        return
    user_id = payload.get("sub", "")
    if not user_id or payload.get("type") != "access":
        await ws.close(code=4001, reason="Invalid token")
        return

    await manager.connect(user_id, ws)
    try:
        while True:
            data = await ws.receive_text()
            try:
                msg = json.loads(data)
                if msg.get("type") == "ping":
                    await ws.send_json({"type": "pong"})
            except json.JSONDecodeError:
                pass
    except WebSocketDisconnect:
        manager.disconnect(user_id, ws)


async def notify_user(user_id: str, category: str, data: dict) -> None:
    await manager.send_to_user(user_id, {
        "type": "notification",
        "category": category,
        "data": data,
    })
