"""Friendship state machine: none -> pending -> accepted, or pending -> deleted."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional
from uuid import uuid4

from citychat.domain import notices
from citychat.domain.notices import LoggingNotifier, Notice, Notifier
from citychat.domain.profiles.schemas import Profile
from citychat.domain.profiles.service import ProfileService
from citychat.domain.social import policy
from citychat.domain.social.exceptions import FriendshipGone, FriendshipNotFound
from citychat.domain.social.models import (
	FriendRequestOutcome,
	Friendship,
	FriendshipStatus,
	PendingRequest,
	RequestResult,
)
from citychat.infra.auth import AuthenticatedUser
from citychat.infra.postgres import TRANSIENT_ERRORS, PoolMixin
from citychat.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

_FRIENDSHIP_COLUMNS = "id, user1_id, user2_id, status"


class _MemoryStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.friendships: Dict[str, Friendship] = {}

	async def find_between(self, user_a: str, user_b: str) -> List[Friendship]:
		async with self._lock:
			pair = {user_a, user_b}
			return [f for f in self.friendships.values() if {f.user1_id, f.user2_id} == pair]

	async def insert_pending(self, requester_id: str, recipient_id: str) -> Friendship:
		async with self._lock:
			friendship = Friendship(
				id=str(uuid4()),
				user1_id=requester_id,
				user2_id=recipient_id,
				status=FriendshipStatus.PENDING,
			)
			self.friendships[friendship.id] = friendship
			return friendship

	async def get(self, friendship_id: str) -> Optional[Friendship]:
		async with self._lock:
			return self.friendships.get(friendship_id)

	async def mark_accepted(self, friendship_id: str, recipient_id: str) -> Optional[Friendship]:
		async with self._lock:
			current = self.friendships.get(friendship_id)
			if (
				current is None
				or current.user2_id != recipient_id
				or current.status is not FriendshipStatus.PENDING
			):
				return None
			updated = current.model_copy(update={"status": FriendshipStatus.ACCEPTED})
			self.friendships[friendship_id] = updated
			return updated

	async def delete_pending(self, friendship_id: str, recipient_id: str) -> bool:
		async with self._lock:
			current = self.friendships.get(friendship_id)
			if (
				current is None
				or current.user2_id != recipient_id
				or current.status is not FriendshipStatus.PENDING
			):
				return False
			del self.friendships[friendship_id]
			return True

	async def list_accepted(self, user_id: str) -> List[Friendship]:
		async with self._lock:
			return [
				f
				for f in self.friendships.values()
				if f.status is FriendshipStatus.ACCEPTED and f.involves(user_id)
			]

	async def list_pending_incoming(self, user_id: str) -> List[Friendship]:
		async with self._lock:
			return [
				f
				for f in self.friendships.values()
				if f.status is FriendshipStatus.PENDING and f.user2_id == user_id
			]


_MEMORY = _MemoryStore()


class FriendshipRepository(PoolMixin):
	"""Reads and writes the ``friendships`` relation."""

	async def find_between(self, user_a: str, user_b: str) -> List[Friendship]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY.find_between(user_a, user_b)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				f"""
				SELECT {_FRIENDSHIP_COLUMNS} FROM friendships
				WHERE (user1_id = $1 AND user2_id = $2)
				   OR (user1_id = $2 AND user2_id = $1)
				""",
				user_a,
				user_b,
			)
		return [Friendship.model_validate(dict(row)) for row in rows]

	async def insert_pending(self, requester_id: str, recipient_id: str) -> Friendship:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY.insert_pending(requester_id, recipient_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				f"""
				INSERT INTO friendships (user1_id, user2_id, status)
				VALUES ($1, $2, 'pending')
				RETURNING {_FRIENDSHIP_COLUMNS}
				""",
				requester_id,
				recipient_id,
			)
		return Friendship.model_validate(dict(row))

	async def get(self, friendship_id: str) -> Optional[Friendship]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY.get(friendship_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				f"SELECT {_FRIENDSHIP_COLUMNS} FROM friendships WHERE id = $1",
				friendship_id,
			)
		return Friendship.model_validate(dict(row)) if row else None

	async def mark_accepted(self, friendship_id: str, recipient_id: str) -> Optional[Friendship]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY.mark_accepted(friendship_id, recipient_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				f"""
				UPDATE friendships
				SET status = 'accepted'
				WHERE id = $1 AND user2_id = $2 AND status = 'pending'
				RETURNING {_FRIENDSHIP_COLUMNS}
				""",
				friendship_id,
				recipient_id,
			)
		return Friendship.model_validate(dict(row)) if row else None

	async def delete_pending(self, friendship_id: str, recipient_id: str) -> bool:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY.delete_pending(friendship_id, recipient_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"""
				DELETE FROM friendships
				WHERE id = $1 AND user2_id = $2 AND status = 'pending'
				RETURNING id
				""",
				friendship_id,
				recipient_id,
			)
		return row is not None

	async def list_accepted(self, user_id: str) -> List[Friendship]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY.list_accepted(user_id)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				f"""
				SELECT {_FRIENDSHIP_COLUMNS} FROM friendships
				WHERE status = 'accepted' AND (user1_id = $1 OR user2_id = $1)
				""",
				user_id,
			)
		return [Friendship.model_validate(dict(row)) for row in rows]

	async def list_pending_incoming(self, user_id: str) -> List[Friendship]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY.list_pending_incoming(user_id)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				f"""
				SELECT {_FRIENDSHIP_COLUMNS} FROM friendships
				WHERE status = 'pending' AND user2_id = $1
				""",
				user_id,
			)
		return [Friendship.model_validate(dict(row)) for row in rows]


class FriendshipService:
	def __init__(
		self,
		repository: FriendshipRepository | None = None,
		*,
		profiles: ProfileService | None = None,
		notifier: Notifier | None = None,
	) -> None:
		self._repo = repository or FriendshipRepository()
		self._notifier = notifier or LoggingNotifier()
		self._profiles = profiles or ProfileService(notifier=self._notifier)

	async def request_friend(self, actor: AuthenticatedUser, target_id: str) -> FriendRequestOutcome:
		"""Create a pending request unless any record already links the pair.

		The existence check and the insert are separate round trips, so two
		clients requesting each other at the same instant can both insert.
		"""
		requester_id = str(actor.id)
		target_id = str(target_id)
		policy.guard_not_self(requester_id, target_id)
		try:
			existing = await self._repo.find_between(requester_id, target_id)
			if existing:
				obs_metrics.inc_friend_request(RequestResult.ALREADY_EXISTS.value)
				await self._notifier.notify(notices.REQUEST_EXISTS)
				return FriendRequestOutcome(RequestResult.ALREADY_EXISTS, existing[0])
			friendship = await self._repo.insert_pending(requester_id, target_id)
		except TRANSIENT_ERRORS:
			logger.exception("friend request failed")
			obs_metrics.inc_friend_request(RequestResult.FAILED.value)
			await self._notifier.notify(Notice.error(notices.FAILED_SEND_REQUEST))
			return FriendRequestOutcome(RequestResult.FAILED)
		obs_metrics.inc_friend_request(RequestResult.CREATED.value)
		logger.info("friend request created friendship=%s", friendship.id)
		await self._notifier.notify(notices.REQUEST_SENT)
		return FriendRequestOutcome(RequestResult.CREATED, friendship)

	async def accept(self, actor: AuthenticatedUser, request_id: str) -> Optional[Friendship]:
		"""Accept a pending request; accepting an accepted record is a no-op."""
		try:
			friendship = await self._repo.get(str(request_id))
			if friendship is None:
				raise FriendshipNotFound()
			policy.ensure_recipient(friendship, actor)
			if friendship.status is FriendshipStatus.ACCEPTED:
				return friendship
			updated = await self._repo.mark_accepted(friendship.id, str(actor.id))
		except TRANSIENT_ERRORS:
			logger.exception("accept friend request failed request=%s", request_id)
			await self._notifier.notify(Notice.error(notices.FAILED_ACCEPT_REQUEST))
			return None
		if updated is None:
			# Rejected or accepted elsewhere between the read and the write.
			raise FriendshipGone()
		obs_metrics.inc_friendship_transition("accept")
		await self._notifier.notify(notices.FRIEND_ADDED)
		return updated

	async def reject(self, actor: AuthenticatedUser, request_id: str) -> bool:
		"""Delete a pending request. Returns False when nothing was deleted."""
		try:
			friendship = await self._repo.get(str(request_id))
			if friendship is None:
				return False
			policy.ensure_recipient(friendship, actor)
			policy.ensure_pending(friendship)
			deleted = await self._repo.delete_pending(friendship.id, str(actor.id))
		except TRANSIENT_ERRORS:
			logger.exception("reject friend request failed request=%s", request_id)
			await self._notifier.notify(Notice.error(notices.FAILED_REJECT_REQUEST))
			return False
		if deleted:
			obs_metrics.inc_friendship_transition("reject")
			await self._notifier.notify(notices.REQUEST_REJECTED)
		return deleted

	async def list_friends(self, user_id: str) -> List[Profile]:
		user_id = str(user_id)
		try:
			records = await self._repo.list_accepted(user_id)
		except TRANSIENT_ERRORS:
			logger.exception("loading friends failed")
			await self._notifier.notify(Notice.error(notices.FAILED_LOAD_FRIENDS))
			return []
		friend_ids = [record.other_party(user_id) for record in records]
		resolved = await self._profiles.resolve_many(friend_ids)
		return list(resolved.values())

	async def list_pending_incoming(self, user_id: str) -> List[PendingRequest]:
		user_id = str(user_id)
		try:
			records = await self._repo.list_pending_incoming(user_id)
		except TRANSIENT_ERRORS:
			logger.exception("loading pending requests failed")
			await self._notifier.notify(Notice.error(notices.FAILED_LOAD_REQUESTS))
			return []
		requesters = await self._profiles.resolve_many(record.requester_id for record in records)
		return [
			PendingRequest(friendship=record, requester=requesters[record.requester_id])
			for record in records
		]


async def reset_memory_state() -> None:
	"""Test helper to clear in-memory store state."""
	async with _MEMORY._lock:  # type: ignore[attr-defined]
		_MEMORY.friendships.clear()
