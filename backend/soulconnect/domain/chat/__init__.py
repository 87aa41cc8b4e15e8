"""Chat domain exports."""

from .registry import PresenceRegistry
from .router import RoomRouter
from .service import ChatService

__all__ = ["ChatService", "PresenceRegistry", "RoomRouter"]
