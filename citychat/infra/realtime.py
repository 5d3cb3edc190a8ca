"""Live insert feed keyed by relation plus an optional equality filter.

Two transports share one contract:

- ``MemoryLiveFeed`` fans inserts out in-process and awaits each handler in
  subscription order. The in-memory stores and the tests use it.
- ``RedisLiveFeed`` rides on Redis pub/sub, one channel per relation, with a
  reader task per subscription.

The equality filter is the transport-level stage. It can only compare single
columns, so callers that need compound predicates re-check every row they
receive.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import suppress
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Protocol
from uuid import UUID

from redis.exceptions import RedisError

from citychat.infra.redis import redis_client
from citychat.settings import settings

logger = logging.getLogger(__name__)

InsertHandler = Callable[[Dict[str, Any]], Awaitable[None]]


def row_matches(row: Mapping[str, Any], filters: Optional[Mapping[str, Any]]) -> bool:
	"""Return True when every filter column equals the row's value."""
	if not filters:
		return True
	for column, expected in filters.items():
		if column not in row:
			return False
		actual = row[column]
		if isinstance(expected, bool) or isinstance(actual, bool):
			if actual is not expected:
				return False
		elif str(actual) != str(expected):
			return False
	return True


class Subscription:
	"""Handle for one live subscription; ``close()`` is idempotent."""

	def __init__(
		self,
		relation: str,
		handler: InsertHandler,
		*,
		filters: Optional[Mapping[str, Any]] = None,
		on_close: Optional[Callable[["Subscription"], Awaitable[None]]] = None,
	) -> None:
		self.relation = relation
		self.filters = dict(filters or {})
		self._handler = handler
		self._on_close = on_close
		self._closed = False

	@property
	def closed(self) -> bool:
		return self._closed

	async def deliver(self, row: Dict[str, Any]) -> bool:
		if self._closed or not row_matches(row, self.filters):
			return False
		try:
			await self._handler(row)
		except Exception:
			logger.exception("live handler failed relation=%s", self.relation)
		return True

	async def close(self) -> None:
		if self._closed:
			return
		self._closed = True
		if self._on_close is not None:
			await self._on_close(self)


class LiveFeed(Protocol):
	async def subscribe(
		self,
		relation: str,
		handler: InsertHandler,
		*,
		filters: Optional[Mapping[str, Any]] = None,
	) -> Subscription:
		...

	async def publish_insert(self, relation: str, row: Mapping[str, Any]) -> None:
		...


class MemoryLiveFeed:
	"""In-process feed; publish awaits delivery to every matching subscriber."""

	def __init__(self) -> None:
		self._subscriptions: Dict[str, List[Subscription]] = {}

	async def subscribe(
		self,
		relation: str,
		handler: InsertHandler,
		*,
		filters: Optional[Mapping[str, Any]] = None,
	) -> Subscription:
		subscription = Subscription(relation, handler, filters=filters, on_close=self._remove)
		self._subscriptions.setdefault(relation, []).append(subscription)
		return subscription

	async def _remove(self, subscription: Subscription) -> None:
		subscribers = self._subscriptions.get(subscription.relation, [])
		if subscription in subscribers:
			subscribers.remove(subscription)

	async def publish_insert(self, relation: str, row: Mapping[str, Any]) -> None:
		payload = dict(row)
		for subscription in list(self._subscriptions.get(relation, [])):
			await subscription.deliver(dict(payload))

	def subscriber_count(self, relation: str) -> int:
		return len(self._subscriptions.get(relation, []))


def _json_default(value: Any) -> Any:
	if isinstance(value, (datetime, date)):
		return value.isoformat()
	if isinstance(value, UUID):
		return str(value)
	raise TypeError(f"unserialisable value: {type(value).__name__}")


def encode_row(row: Mapping[str, Any]) -> str:
	return json.dumps(dict(row), default=_json_default, separators=(",", ":"))


def decode_row(data: Any) -> Dict[str, Any]:
	if isinstance(data, bytes):
		data = data.decode()
	decoded = json.loads(data)
	if not isinstance(decoded, dict):
		raise ValueError("row payload must be an object")
	return decoded


class RedisLiveFeed:
	"""Redis pub/sub transport: channel ``<prefix>:<relation>:insert``."""

	def __init__(self, client=None, *, prefix: Optional[str] = None) -> None:
		self._client = client or redis_client
		self._prefix = prefix or settings.realtime_channel_prefix
		self._readers: Dict[int, asyncio.Task] = {}

	def channel(self, relation: str) -> str:
		return f"{self._prefix}:{relation}:insert"

	async def subscribe(
		self,
		relation: str,
		handler: InsertHandler,
		*,
		filters: Optional[Mapping[str, Any]] = None,
	) -> Subscription:
		pubsub = self._client.pubsub()
		await pubsub.subscribe(self.channel(relation))

		async def _teardown(subscription: Subscription) -> None:
			task = self._readers.pop(id(subscription), None)
			if task is not None and task is not asyncio.current_task():
				task.cancel()
				with suppress(asyncio.CancelledError):
					await task
			try:
				await pubsub.unsubscribe()
			finally:
				await pubsub.aclose()

		subscription = Subscription(relation, handler, filters=filters, on_close=_teardown)
		self._readers[id(subscription)] = asyncio.create_task(
			self._read(pubsub, subscription),
			name=f"live-feed:{relation}",
		)
		return subscription

	async def _read(self, pubsub, subscription: Subscription) -> None:
		try:
			async for message in pubsub.listen():
				if message.get("type") != "message":
					continue
				try:
					row = decode_row(message["data"])
				except ValueError:
					logger.warning("dropping undecodable live row relation=%s", subscription.relation)
					continue
				await subscription.deliver(row)
				if subscription.closed:
					return
		except (RedisError, OSError):
			logger.exception("live feed reader stopped relation=%s", subscription.relation)

	async def publish_insert(self, relation: str, row: Mapping[str, Any]) -> None:
		await self._client.publish(self.channel(relation), encode_row(row))


_default_feed: Optional[LiveFeed] = None


def get_feed() -> LiveFeed:
	"""Return the process-wide feed, an in-memory one unless configured."""
	global _default_feed
	if _default_feed is None:
		_default_feed = MemoryLiveFeed()
	return _default_feed


def set_feed(feed: Optional[LiveFeed]) -> None:
	global _default_feed
	_default_feed = feed
