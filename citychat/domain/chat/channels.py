"""Private Channel Resolver: one canonical channel per unordered user pair."""

from __future__ import annotations

import logging
from typing import Tuple

from citychat.domain.chat.models import PrivatePair
from citychat.domain.rooms.models import Room
from citychat.domain.rooms.service import RoomRepository
from citychat.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


class PrivateChannelResolver:
	"""Derives the shared scope two users converse in.

	``resolve`` is pure. ``materialize`` additionally backs the pair with a
	private ``chat_rooms`` row named ``<a>_<b>``, reusing a row stored under
	either ordering of the two ids.
	"""

	def __init__(self, rooms: RoomRepository | None = None) -> None:
		self._rooms = rooms or RoomRepository()

	def resolve(self, user_a: str, user_b: str) -> PrivatePair:
		return PrivatePair(str(user_a), str(user_b))

	@staticmethod
	def room_names(pair: PrivatePair) -> Tuple[str, str]:
		return (f"{pair.user_a}_{pair.user_b}", f"{pair.user_b}_{pair.user_a}")

	def room_name(self, pair: PrivatePair) -> str:
		return self.room_names(pair)[0]

	async def materialize(self, user_a: str, user_b: str) -> Room:
		pair = self.resolve(user_a, user_b)
		existing = await self._rooms.find_private_by_names(self.room_names(pair))
		if existing is not None:
			return existing
		room = await self._rooms.create_room(name=self.room_name(pair), city=None, is_private=True)
		obs_metrics.inc_room_created("private")
		logger.info("private room created room=%s", room.id)
		return room
