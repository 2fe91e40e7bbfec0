"""
Realtime WebSocket endpoint.

Clients connect to ``/ws?token=<access token>``. Frames from the client:

- ``{"action": "join-order", "order_id": N}`` / ``{"action": "leave-order", ...}``
- ``{"action": "ping"}``, answered with ``{"event": "pong"}``
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from ...realtime.gateway import RealtimeGateway, order_room
from ...utils.logging import setup_kitchen_logging

logger = setup_kitchen_logging("kitchen_service.api.realtime")

router = APIRouter()


async def _handle_frame(
    gateway: RealtimeGateway, websocket: WebSocket, frame: Dict[str, Any]
) -> None:
    action = frame.get("action")
    if action == "ping":
        await websocket.send_json({"event": "pong", "data": {}})
        return

    if action in ("join-order", "leave-order"):
        order_id = frame.get("order_id")
        if order_id is None:
            await websocket.send_json(
                {"event": "error", "data": {"message": "order_id is required"}}
            )
            return
        room = order_room(order_id)
        if action == "join-order":
            await gateway.join(websocket, room)
        else:
            await gateway.leave(websocket, room)
        await websocket.send_json({"event": action, "data": {"order_id": order_id}})
        return

    await websocket.send_json(
        {"event": "error", "data": {"message": f"Unknown action: {action}"}}
    )


@router.websocket("/ws")
async def realtime_websocket(
    websocket: WebSocket, token: Optional[str] = Query(None)
) -> None:
    gateway: RealtimeGateway = websocket.app.state.realtime_gateway
    token_data = gateway.authenticate(token)
    if token_data is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await gateway.connect(websocket, token_data)
    try:
        while True:
            frame = await websocket.receive_json()
            if isinstance(frame, dict):
                await _handle_frame(gateway, websocket, frame)
    except WebSocketDisconnect:
        logger.info(
            "Realtime client disconnected", extra={"user_id": token_data.user_id}
        )
    except ValueError:
        # Non-JSON frame
        await websocket.close(code=status.WS_1003_UNSUPPORTED_DATA)
    finally:
        await gateway.disconnect(websocket)
