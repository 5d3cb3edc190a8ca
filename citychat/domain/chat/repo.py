"""Message persistence; every insert is published on the live feed."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

import ulid

from citychat.domain.chat.schemas import MessageRecord, OutgoingMessage
from citychat.domain.common import utcnow
from citychat.infra.postgres import TRANSIENT_ERRORS, PoolMixin
from citychat.infra.realtime import LiveFeed, get_feed

logger = logging.getLogger(__name__)

MESSAGES_RELATION = "messages"

_MESSAGE_COLUMNS = "id, content, sender_id, created_at, room_id, recipient_id, is_private"


def _most_recent(records: List[MessageRecord], limit: Optional[int]) -> List[MessageRecord]:
	ordered = sorted(records, key=MessageRecord.sort_key)
	if limit is not None:
		ordered = ordered[-limit:] if limit > 0 else []
	return ordered


class _MemoryStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.messages: Dict[str, MessageRecord] = {}

	async def insert(self, outgoing: OutgoingMessage) -> MessageRecord:
		async with self._lock:
			record = MessageRecord(id=str(ulid.new()), created_at=utcnow(), **outgoing.model_dump())
			self.messages[record.id] = record
			return record

	async def list_room(self, room_id: str, limit: Optional[int]) -> List[MessageRecord]:
		async with self._lock:
			matches = [m for m in self.messages.values() if m.room_id == room_id]
		return _most_recent(matches, limit)

	async def list_private(self, user_a: str, user_b: str, limit: Optional[int]) -> List[MessageRecord]:
		async with self._lock:
			matches = [
				m
				for m in self.messages.values()
				if m.recipient_id is not None
				and {m.sender_id, m.recipient_id} == {user_a, user_b}
				and (m.sender_id != m.recipient_id)
			]
		return _most_recent(matches, limit)


_MEMORY = _MemoryStore()


class MessageRepository(PoolMixin):
	"""Reads and writes the ``messages`` relation."""

	def __init__(self, feed: LiveFeed | None = None) -> None:
		super().__init__()
		self._feed = feed

	@property
	def feed(self) -> LiveFeed:
		return self._feed or get_feed()

	async def insert(self, outgoing: OutgoingMessage) -> MessageRecord:
		pool = await self._pool_or_none()
		if pool is None:
			record = await _MEMORY.insert(outgoing)
		else:
			async with pool.acquire() as conn:
				row = await conn.fetchrow(
					f"""
					INSERT INTO messages (content, sender_id, room_id, recipient_id, is_private)
					VALUES ($1, $2, $3, $4, $5)
					RETURNING {_MESSAGE_COLUMNS}
					""",
					outgoing.content,
					outgoing.sender_id,
					outgoing.room_id,
					outgoing.recipient_id,
					outgoing.is_private,
				)
			record = MessageRecord.model_validate(dict(row))
		try:
			await self.feed.publish_insert(MESSAGES_RELATION, record.model_dump())
		except TRANSIENT_ERRORS:
			# The row is committed; subscribers catch up on the next history load.
			logger.exception("publishing message insert failed message=%s", record.id)
		return record

	async def list_room(self, room_id: str, *, limit: Optional[int] = None) -> List[MessageRecord]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY.list_room(room_id, limit)
		async with pool.acquire() as conn:
			if limit is None:
				rows = await conn.fetch(
					f"""
					SELECT {_MESSAGE_COLUMNS} FROM messages
					WHERE room_id = $1
					ORDER BY created_at ASC, id ASC
					""",
					room_id,
				)
			else:
				rows = await conn.fetch(
					f"""
					SELECT {_MESSAGE_COLUMNS} FROM messages
					WHERE room_id = $1
					ORDER BY created_at DESC, id DESC
					LIMIT $2
					""",
					room_id,
					limit,
				)
		return _most_recent([MessageRecord.model_validate(dict(row)) for row in rows], None)

	async def list_private(self, user_a: str, user_b: str, *, limit: Optional[int] = None) -> List[MessageRecord]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY.list_private(user_a, user_b, limit)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				f"""
				SELECT {_MESSAGE_COLUMNS} FROM messages
				WHERE is_private = TRUE
				  AND ((sender_id = $1 AND recipient_id = $2)
				    OR (sender_id = $2 AND recipient_id = $1))
				ORDER BY created_at DESC, id DESC
				LIMIT $3
				""",
				user_a,
				user_b,
				limit,
			)
		return _most_recent([MessageRecord.model_validate(dict(row)) for row in rows], None)


async def reset_memory_state() -> None:
	"""Test helper to clear in-memory store state."""
	async with _MEMORY._lock:  # type: ignore[attr-defined]
		_MEMORY.messages.clear()
