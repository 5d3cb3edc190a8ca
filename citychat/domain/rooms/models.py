"""Domain models for chat rooms."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from citychat.domain.common import Identifier


class Room(BaseModel):
	"""Row of the ``chat_rooms`` relation."""

	model_config = ConfigDict(frozen=True)

	id: Identifier
	name: str
	city: Optional[str] = None
	is_private: bool = False
	created_at: datetime

	def sort_key(self) -> tuple:
		return (self.created_at, self.id)


@dataclass(slots=True, frozen=True)
class CityRoomResult:
	room: Room
	created: bool
