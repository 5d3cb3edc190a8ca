"""Room catalog exports."""

from .models import CityRoomResult, Room
from .policy import RoomPolicyError
from .service import RoomCatalog, RoomRepository

__all__ = ["CityRoomResult", "Room", "RoomCatalog", "RoomPolicyError", "RoomRepository"]
