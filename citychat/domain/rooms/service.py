"""Room catalog: public city rooms plus private room rows."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Sequence

import ulid

from citychat.domain import notices
from citychat.domain.common import utcnow
from citychat.domain.notices import LoggingNotifier, Notice, Notifier
from citychat.domain.rooms import policy
from citychat.domain.rooms.models import CityRoomResult, Room
from citychat.infra.postgres import TRANSIENT_ERRORS, PoolMixin
from citychat.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

_ROOM_COLUMNS = "id, name, city, is_private, created_at"


class _MemoryStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.rooms: Dict[str, Room] = {}

	async def create_room(self, *, name: str, city: Optional[str], is_private: bool) -> Room:
		async with self._lock:
			room = Room(
				id=str(ulid.new()),
				name=name,
				city=city,
				is_private=is_private,
				created_at=utcnow(),
			)
			self.rooms[room.id] = room
			return room

	async def get_room(self, room_id: str) -> Optional[Room]:
		async with self._lock:
			return self.rooms.get(room_id)

	async def list_public(self) -> List[Room]:
		async with self._lock:
			rooms = [room for room in self.rooms.values() if not room.is_private]
			return sorted(rooms, key=Room.sort_key)

	async def find_city_room(self, city: str) -> Optional[Room]:
		async with self._lock:
			matches = [
				room
				for room in self.rooms.values()
				if not room.is_private and policy.same_city(room.city, city)
			]
			return min(matches, key=Room.sort_key) if matches else None

	async def find_private_by_names(self, names: Sequence[str]) -> Optional[Room]:
		async with self._lock:
			matches = [room for room in self.rooms.values() if room.is_private and room.name in names]
			return min(matches, key=Room.sort_key) if matches else None


_MEMORY = _MemoryStore()


class RoomRepository(PoolMixin):
	"""Reads and writes the ``chat_rooms`` relation."""

	async def create_room(self, *, name: str, city: Optional[str], is_private: bool) -> Room:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY.create_room(name=name, city=city, is_private=is_private)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				f"""
				INSERT INTO chat_rooms (name, city, is_private)
				VALUES ($1, $2, $3)
				RETURNING {_ROOM_COLUMNS}
				""",
				name,
				city,
				is_private,
			)
		return Room.model_validate(dict(row))

	async def get_room(self, room_id: str) -> Optional[Room]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY.get_room(room_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(f"SELECT {_ROOM_COLUMNS} FROM chat_rooms WHERE id = $1", room_id)
		return Room.model_validate(dict(row)) if row else None

	async def list_public(self) -> List[Room]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY.list_public()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				f"""
				SELECT {_ROOM_COLUMNS}
				FROM chat_rooms
				WHERE is_private = FALSE
				ORDER BY created_at ASC, id ASC
				"""
			)
		return [Room.model_validate(dict(row)) for row in rows]

	async def find_city_room(self, city: str) -> Optional[Room]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY.find_city_room(city)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				f"""
				SELECT {_ROOM_COLUMNS}
				FROM chat_rooms
				WHERE is_private = FALSE AND city = $1
				ORDER BY created_at ASC, id ASC
				LIMIT 1
				""",
				city,
			)
		return Room.model_validate(dict(row)) if row else None

	async def find_private_by_names(self, names: Sequence[str]) -> Optional[Room]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY.find_private_by_names(names)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				f"""
				SELECT {_ROOM_COLUMNS}
				FROM chat_rooms
				WHERE is_private = TRUE AND name = ANY($1::text[])
				ORDER BY created_at ASC, id ASC
				LIMIT 1
				""",
				list(names),
			)
		return Room.model_validate(dict(row)) if row else None


class RoomCatalog:
	"""Enumerates public rooms and lazily creates one room per city.

	Get-or-create is a check followed by an insert with no uniqueness
	constraint behind it: two clients racing on the same city can both
	insert. Readers pick the oldest room for a city.
	"""

	def __init__(
		self,
		repository: RoomRepository | None = None,
		*,
		notifier: Notifier | None = None,
	) -> None:
		self._repo = repository or RoomRepository()
		self._notifier = notifier or LoggingNotifier()
		self._known: Dict[str, Room] = {}

	def _remember(self, room: Room) -> Room:
		self._known[room.id] = room
		return room

	def _find_local(self, city: str) -> Optional[Room]:
		matches = [
			room
			for room in self._known.values()
			if not room.is_private and policy.same_city(room.city, city)
		]
		return min(matches, key=Room.sort_key) if matches else None

	async def list_public_rooms(self) -> List[Room]:
		try:
			rooms = await self._repo.list_public()
		except TRANSIENT_ERRORS:
			logger.exception("loading public rooms failed")
			await self._notifier.notify(Notice.error(notices.FAILED_LOAD_ROOMS))
			return []
		for room in rooms:
			self._remember(room)
		return rooms

	async def get_room(self, room_id: str) -> Optional[Room]:
		cached = self._known.get(str(room_id))
		if cached is not None:
			return cached
		try:
			room = await self._repo.get_room(str(room_id))
		except TRANSIENT_ERRORS:
			logger.exception("loading room failed room=%s", room_id)
			return None
		return self._remember(room) if room else None

	async def get_or_create_city_room(self, city: str) -> Optional[CityRoomResult]:
		city = policy.normalise_city(city)
		existing = self._find_local(city)
		try:
			if existing is None:
				existing = await self._repo.find_city_room(city)
			if existing is not None:
				self._remember(existing)
				await self._notifier.notify(notices.room_exists(city))
				return CityRoomResult(room=existing, created=False)
			room = await self._repo.create_room(
				name=policy.city_room_name(city),
				city=city,
				is_private=False,
			)
		except TRANSIENT_ERRORS:
			logger.exception("get-or-create city room failed")
			await self._notifier.notify(Notice.error(notices.FAILED_CREATE_ROOM))
			return None
		self._remember(room)
		obs_metrics.inc_room_created("city")
		logger.info("city room created room=%s", room.id)
		await self._notifier.notify(notices.room_created(city))
		return CityRoomResult(room=room, created=True)


async def reset_memory_state() -> None:
	"""Test helper to clear in-memory store state."""
	async with _MEMORY._lock:  # type: ignore[attr-defined]
		_MEMORY.rooms.clear()
