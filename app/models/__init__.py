"""模型集合。"""

from .user import User, UserStats
from .room import ChatMessage, CurrentGame, Room, RoomStatistics, SeatedPlayer

__all__ = [
    "User",
    "UserStats",
    "Room",
    "CurrentGame",
    "SeatedPlayer",
    "ChatMessage",
    "RoomStatistics",
]
