"""AsyncPG pool management for the remote store."""

from __future__ import annotations

import asyncio
from typing import Optional

import asyncpg
from redis.exceptions import RedisError

from citychat.settings import settings

_pool: Optional[asyncpg.pool.Pool] = None

# Failures that degrade a view instead of propagating to the caller.
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
	asyncpg.PostgresError,
	asyncpg.InterfaceError,
	OSError,
	asyncio.TimeoutError,
	RedisError,
)


async def init_pool() -> asyncpg.pool.Pool:
	global _pool
	if _pool is None:
		_pool = await asyncpg.create_pool(
			dsn=settings.postgres_url,
			min_size=settings.postgres_min_pool_size,
			max_size=settings.postgres_max_pool_size,
		)
	return _pool


async def get_pool() -> asyncpg.pool.Pool:
	if _pool is None:
		return await init_pool()
	return _pool


async def close_pool() -> None:
	global _pool
	if _pool is not None:
		await _pool.close()
		_pool = None


class PoolMixin:
	"""Resolves the shared pool per call; None selects the in-memory store.

	The memory store is chosen by configuration only. Pool errors propagate
	to the caller, which treats them as transient store failures.
	"""

	async def _pool_or_none(self) -> Optional[asyncpg.Pool]:
		if settings.use_memory_store:
			return None
		return await get_pool()
