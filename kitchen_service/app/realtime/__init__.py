"""
Realtime fan-out for Kitchen Service.
"""

from .gateway import RealtimeGateway, order_room, role_room, user_room
from .publisher import RealtimeEvent, RealtimeEventPublisher

__all__ = [
    "RealtimeGateway",
    "RealtimeEvent",
    "RealtimeEventPublisher",
    "order_room",
    "role_room",
    "user_room",
]
