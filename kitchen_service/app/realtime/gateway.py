"""
Realtime fan-out gateway.

Holds authenticated WebSocket connections grouped into rooms:

- ``user-{id}``: private channel, joined automatically on connect
- ``role-{role}``: shared audience channel (admins join ``role-admin``)
- ``order-{id}``: ephemeral per-order channel, joined on client request

One instance is created in the application lifespan and passed by reference
to everything that publishes.
"""

import asyncio
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket

from ..utils.jwt_handler import JWTHandler, TokenData
from ..utils.logging import setup_kitchen_logging

logger = setup_kitchen_logging("kitchen_service.realtime")


def user_room(user_id: Any) -> str:
    return f"user-{user_id}"


def role_room(role: str) -> str:
    return f"role-{role}"


def order_room(order_id: Any) -> str:
    return f"order-{order_id}"


class RealtimeGateway:
    """Manages WebSocket connections and room membership"""

    def __init__(self, jwt_handler: JWTHandler):
        self.jwt_handler = jwt_handler
        self._rooms: Dict[str, List[WebSocket]] = {}
        self._memberships: Dict[WebSocket, Set[str]] = {}
        self._lock = asyncio.Lock()

    def authenticate(self, token: Optional[str]) -> Optional[TokenData]:
        if not token:
            return None
        try:
            return self.jwt_handler.decode_token(token)
        except ValueError as e:
            logger.warning(f"Realtime authentication failed: {e}")
            return None

    async def connect(self, websocket: WebSocket, token_data: TokenData) -> None:
        """Accept a connection and join its private and role channels"""
        await websocket.accept()
        await self.join(websocket, user_room(token_data.user_id))
        if token_data.role == "admin":
            await self.join(websocket, role_room("admin"))
        logger.info(
            "Realtime client connected",
            extra={"user_id": token_data.user_id, "user_role": token_data.role},
        )

    async def join(self, websocket: WebSocket, room: str) -> None:
        async with self._lock:
            members = self._rooms.setdefault(room, [])
            if websocket not in members:
                members.append(websocket)
            self._memberships.setdefault(websocket, set()).add(room)

    async def leave(self, websocket: WebSocket, room: str) -> None:
        async with self._lock:
            self._remove(websocket, room)

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            for room in list(self._memberships.get(websocket, ())):
                self._remove(websocket, room)
            self._memberships.pop(websocket, None)

    def _remove(self, websocket: WebSocket, room: str) -> None:
        members = self._rooms.get(room)
        if members and websocket in members:
            members.remove(websocket)
        if members is not None and not members:
            del self._rooms[room]
        rooms = self._memberships.get(websocket)
        if rooms is not None:
            rooms.discard(room)

    def room_size(self, room: str) -> int:
        return len(self._rooms.get(room, []))

    def connection_count(self) -> int:
        return len(self._memberships)

    async def route_to_user(self, user_id: Any, event: str, data: Dict[str, Any]) -> int:
        return await self._emit(user_room(user_id), event, data)

    async def route_to_role(self, role: str, event: str, data: Dict[str, Any]) -> int:
        return await self._emit(role_room(role), event, data)

    async def route_to_order_channel(
        self, order_id: Any, event: str, data: Dict[str, Any]
    ) -> int:
        return await self._emit(order_room(order_id), event, data)

    async def _emit(self, room: str, event: str, data: Dict[str, Any]) -> int:
        """Send to every socket in the room; dead sockets are dropped.

        Returns the number of sockets the frame was delivered to. Clients that
        are not connected simply miss the event.
        """
        delivered = 0
        for websocket in list(self._rooms.get(room, [])):
            try:
                await websocket.send_json({"event": event, "data": data})
                delivered += 1
            except Exception as e:
                logger.warning(
                    "Realtime send failed, dropping connection",
                    extra={"room": room, "realtime_event": event, "error": str(e)},
                )
                await self.disconnect(websocket)
        return delivered

    async def close_all(self) -> None:
        """Close every open connection during shutdown."""
        async with self._lock:
            sockets = list(self._memberships.keys())
            self._rooms.clear()
            self._memberships.clear()

        for websocket in sockets:
            try:
                await websocket.close(code=1001)
            except Exception as e:
                logger.debug(f"Ignoring close error during shutdown: {e}")

        logger.info("Realtime gateway closed", extra={"connections": len(sockets)})
