"""Profile directory: batched id -> profile resolution plus owner edits."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List, Optional

import asyncpg

from citychat.domain import notices
from citychat.domain.common import unique_ids, utcnow
from citychat.domain.notices import LoggingNotifier, Notice, Notifier
from citychat.domain.profiles.exceptions import ProfileConflict, ProfileForbidden
from citychat.domain.profiles.schemas import Profile, ProfileUpdate
from citychat.infra.auth import AuthenticatedUser
from citychat.infra.postgres import TRANSIENT_ERRORS, PoolMixin
from citychat.obs import metrics as obs_metrics
from citychat.settings import settings

logger = logging.getLogger(__name__)

_PROFILE_COLUMNS = "id, username, display_name, city, bio, updated_at"


class _MemoryStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.profiles: Dict[str, Profile] = {}

	async def put(self, profile: Profile) -> Profile:
		async with self._lock:
			self.profiles[profile.id] = profile
			return profile

	async def fetch_many(self, ids: List[str]) -> List[Profile]:
		async with self._lock:
			return [self.profiles[i] for i in ids if i in self.profiles]

	async def search(self, term: str, exclude_id: str, limit: int) -> List[Profile]:
		async with self._lock:
			needle = term.casefold()
			matches = [
				p
				for p in self.profiles.values()
				if p.id != exclude_id and needle in p.username.casefold()
			]
			matches.sort(key=lambda p: p.username.casefold())
			return matches[:limit]

	async def update(self, user_id: str, changes: dict) -> Optional[Profile]:
		async with self._lock:
			current = self.profiles.get(user_id)
			if current is None:
				return None
			username = changes.get("username")
			if username and any(
				p.username == username and p.id != user_id for p in self.profiles.values()
			):
				raise ProfileConflict()
			updated = current.model_copy(update={**changes, "updated_at": utcnow()})
			self.profiles[user_id] = updated
			return updated


_MEMORY = _MemoryStore()


def _escape_like(term: str) -> str:
	return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ProfileRepository(PoolMixin):
	"""Reads the ``profiles`` relation; falls back to memory without a pool."""

	async def fetch_many(self, ids: List[str]) -> List[Profile]:
		if not ids:
			return []
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY.fetch_many(ids)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				f"SELECT {_PROFILE_COLUMNS} FROM profiles WHERE id = ANY($1::uuid[])",
				ids,
			)
		return [Profile.model_validate(dict(row)) for row in rows]

	async def search(self, term: str, exclude_id: str, limit: int) -> List[Profile]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY.search(term, exclude_id, limit)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				f"""
				SELECT {_PROFILE_COLUMNS}
				FROM profiles
				WHERE username ILIKE '%' || $1 || '%' AND id <> $2
				ORDER BY username
				LIMIT $3
				""",
				_escape_like(term),
				exclude_id,
				limit,
			)
		return [Profile.model_validate(dict(row)) for row in rows]

	async def update(self, user_id: str, changes: dict) -> Optional[Profile]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY.update(user_id, changes)
		columns = list(changes)
		assignments = ", ".join(f"{column} = ${idx}" for idx, column in enumerate(columns, start=2))
		if assignments:
			assignments += ", "
		try:
			async with pool.acquire() as conn:
				row = await conn.fetchrow(
					f"""
					UPDATE profiles
					SET {assignments}updated_at = NOW()
					WHERE id = $1
					RETURNING {_PROFILE_COLUMNS}
					""",
					user_id,
					*[changes[column] for column in columns],
				)
		except asyncpg.UniqueViolationError as exc:
			raise ProfileConflict() from exc
		return Profile.model_validate(dict(row)) if row else None


class ProfileService:
	"""Profile Directory Resolver."""

	def __init__(
		self,
		repository: ProfileRepository | None = None,
		*,
		notifier: Notifier | None = None,
	) -> None:
		self._repo = repository or ProfileRepository()
		self._notifier = notifier or LoggingNotifier()

	async def resolve_many(self, ids: Iterable[object]) -> Dict[str, Profile]:
		"""Map every requested id to a profile with one store query.

		Ids the directory does not know, and every id when the lookup fails,
		map to the ``Profile.unknown`` sentinel.
		"""
		wanted = unique_ids(ids)
		if not wanted:
			return {}
		obs_metrics.inc_profile_lookup("batch")
		try:
			found = await self._repo.fetch_many(wanted)
		except TRANSIENT_ERRORS:
			logger.exception("profile batch lookup failed ids=%d", len(wanted))
			found = []
		by_id = {profile.id: profile for profile in found}
		return {user_id: by_id.get(user_id) or Profile.unknown(user_id) for user_id in wanted}

	async def resolve_one(self, user_id: object) -> Profile:
		key = str(user_id)
		obs_metrics.inc_profile_lookup("single")
		try:
			found = await self._repo.fetch_many([key])
		except TRANSIENT_ERRORS:
			logger.exception("profile lookup failed user=%s", key)
			found = []
		return found[0] if found else Profile.unknown(key)

	async def get_profile(self, user_id: str) -> Optional[Profile]:
		try:
			found = await self._repo.fetch_many([str(user_id)])
		except TRANSIENT_ERRORS:
			logger.exception("profile load failed user=%s", user_id)
			await self._notifier.notify(Notice.error(notices.FAILED_LOAD_PROFILE))
			return None
		return found[0] if found else None

	async def search(self, actor: AuthenticatedUser, query: str) -> List[Profile]:
		term = (query or "").strip()
		if not term:
			return []
		try:
			return await self._repo.search(term, actor.id, settings.profile_search_limit)
		except TRANSIENT_ERRORS:
			logger.exception("user search failed")
			await self._notifier.notify(Notice.error(notices.FAILED_SEARCH_USERS))
			return []

	async def update_profile(
		self,
		actor: AuthenticatedUser,
		user_id: str,
		payload: ProfileUpdate,
	) -> Optional[Profile]:
		if str(actor.id) != str(user_id):
			raise ProfileForbidden()
		changes = payload.changes()
		try:
			updated = await self._repo.update(str(user_id), changes)
		except TRANSIENT_ERRORS:
			logger.exception("profile update failed user=%s", user_id)
			await self._notifier.notify(Notice.error(notices.FAILED_UPDATE_PROFILE))
			return None
		if updated is not None:
			await self._notifier.notify(notices.PROFILE_UPDATED)
		return updated


async def seed_profile(profile: Profile) -> Profile:
	"""Insert a profile into the in-memory directory (provisioning is external)."""
	return await _MEMORY.put(profile)


async def reset_memory_state() -> None:
	"""Test helper to clear in-memory store state."""
	async with _MEMORY._lock:  # type: ignore[attr-defined]
		_MEMORY.profiles.clear()
