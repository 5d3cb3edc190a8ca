"""Message Stream Synchronizer.

Keeps one ordered, deduplicated log of messages for the active conversation
scope. History is loaded first and the live subscription is opened only once
it has been applied. Every activation carries a ``ScopeToken``; history rows,
subscriptions and live events that resolve under a superseded token are
dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from pydantic import ValidationError

from citychat.domain import notices
from citychat.domain.chat.models import ConversationScope, RoomScope, ScopeToken
from citychat.domain.chat.repo import MESSAGES_RELATION, MessageRepository
from citychat.domain.chat.schemas import ChatMessage, MessageRecord, OutgoingMessage
from citychat.domain.notices import LoggingNotifier, Notice, Notifier
from citychat.domain.profiles.service import ProfileService
from citychat.infra.postgres import TRANSIENT_ERRORS
from citychat.infra.realtime import LiveFeed, Subscription, get_feed
from citychat.obs import metrics as obs_metrics
from citychat.obs.logging import bind_context, reset_context

logger = logging.getLogger(__name__)

LogListener = Callable[[Tuple[ChatMessage, ...]], None]
MessageHandler = Callable[[ChatMessage], Any]


@dataclass(slots=True, frozen=True)
class SendOutcome:
	"""Result of a send attempt; ``draft`` is what the input box should hold."""

	sent: bool
	draft: str
	message: Optional[MessageRecord] = None


class MessageStreamSynchronizer:
	def __init__(
		self,
		repository: MessageRepository | None = None,
		*,
		feed: LiveFeed | None = None,
		profiles: ProfileService | None = None,
		notifier: Notifier | None = None,
	) -> None:
		self._feed = feed
		self._repo = repository or MessageRepository(feed=feed)
		self._notifier = notifier or LoggingNotifier()
		self._profiles = profiles or ProfileService(notifier=self._notifier)
		self._log: List[ChatMessage] = []
		self._seen: Set[str] = set()
		self._token: Optional[ScopeToken] = None
		self._generation = 0
		self._subscription: Optional[Subscription] = None
		self._listeners: List[LogListener] = []

	@property
	def feed(self) -> LiveFeed:
		return self._feed or get_feed()

	@property
	def active_scope(self) -> Optional[ConversationScope]:
		return self._token.scope if self._token is not None else None

	@property
	def messages(self) -> Tuple[ChatMessage, ...]:
		return tuple(self._log)

	def add_listener(self, listener: LogListener) -> Callable[[], None]:
		"""Call ``listener`` with the full log after every change; returns a remover."""
		self._listeners.append(listener)

		def _remove() -> None:
			if listener in self._listeners:
				self._listeners.remove(listener)

		return _remove

	def _emit(self) -> None:
		snapshot = self.messages
		for listener in list(self._listeners):
			try:
				listener(snapshot)
			except Exception:
				logger.exception("log listener failed")

	async def load_history(self, scope: ConversationScope) -> List[ChatMessage]:
		"""Fetch the scope's messages oldest first, decorated with sender profiles.

		Failures are logged and yield an empty list.
		"""
		limit = scope.history_limit()
		try:
			if isinstance(scope, RoomScope):
				records = await self._repo.list_room(scope.room_id, limit=limit)
			else:
				records = await self._repo.list_private(scope.user_a, scope.user_b, limit=limit)
		except TRANSIENT_ERRORS:
			logger.exception("history load failed scope=%s", scope.key)
			obs_metrics.inc_history_load(scope.kind, "failed")
			return []
		senders = await self._profiles.resolve_many(record.sender_id for record in records)
		obs_metrics.inc_history_load(scope.kind, "ok", len(records))
		return [ChatMessage.decorate(record, senders[record.sender_id]) for record in records]

	def _admit(self, scope: ConversationScope, row: Dict[str, Any]) -> Optional[MessageRecord]:
		try:
			record = MessageRecord.model_validate(row)
		except ValidationError:
			logger.warning("dropping malformed live row scope=%s", scope.key)
			obs_metrics.inc_live_event(scope.kind, "invalid")
			return None
		if not scope.matches(record):
			obs_metrics.inc_live_event(scope.kind, "irrelevant")
			return None
		return record

	async def subscribe(self, scope: ConversationScope, on_insert: MessageHandler) -> Subscription:
		"""Open a live feed for inserts relevant to ``scope``.

		The transport filter narrows rows as far as equality allows; every row
		that gets through is re-checked against the scope before ``on_insert``.
		"""

		async def _on_row(row: Dict[str, Any]) -> None:
			record = self._admit(scope, row)
			if record is None:
				return
			sender = await self._profiles.resolve_one(record.sender_id)
			await on_insert(ChatMessage.decorate(record, sender))

		return await self.feed.subscribe(MESSAGES_RELATION, _on_row, filters=scope.transport_filter())

	async def activate(self, scope: ConversationScope) -> None:
		# Claim the scope before releasing the old one so an activation that
		# starts while this one is closing supersedes it.
		self._generation += 1
		token = ScopeToken(scope, self._generation)
		self._token = token
		await self._release()
		if self._token is not token:
			return
		obs_metrics.inc_scope_switch(scope.kind)
		context = bind_context(scope=scope.key)
		try:
			history = await self.load_history(scope)
			if self._token is not token:
				logger.debug("discarding history of superseded scope=%s", scope.key)
				return
			self._apply_history(history)
			try:
				subscription = await self.subscribe(scope, partial(self._append, token))
			except TRANSIENT_ERRORS:
				logger.exception("live subscription failed scope=%s", scope.key)
				await self._notifier.notify(Notice.error(notices.FAILED_INIT_CHAT))
				return
			if self._token is not token:
				await subscription.close()
				return
			self._subscription = subscription
			obs_metrics.subscription_opened()
		finally:
			reset_context(context)

	def _apply_history(self, history: List[ChatMessage]) -> None:
		merged: Dict[str, ChatMessage] = {message.id: message for message in self._log}
		for message in history:
			merged[message.id] = message
		self._log = sorted(merged.values(), key=ChatMessage.sort_key)
		self._seen = set(merged)
		self._emit()

	async def _append(self, token: ScopeToken, message: ChatMessage) -> None:
		scope_kind = token.scope.kind
		if token is not self._token:
			obs_metrics.inc_live_event(scope_kind, "stale")
			return
		if message.id in self._seen:
			obs_metrics.inc_live_event(scope_kind, "duplicate")
			return
		# Feed order is trusted; no re-sort on append.
		self._log.append(message)
		self._seen.add(message.id)
		obs_metrics.inc_live_event(scope_kind, "accepted")
		self._emit()

	async def _release(self) -> None:
		subscription, self._subscription = self._subscription, None
		had_messages = bool(self._log)
		self._log = []
		self._seen = set()
		if had_messages:
			self._emit()
		if subscription is not None:
			try:
				await subscription.close()
			except TRANSIENT_ERRORS:
				logger.warning("closing live subscription failed", exc_info=True)
			obs_metrics.subscription_closed()

	async def teardown(self) -> None:
		"""Drop the active scope: close its subscription and discard the log."""
		self._token = None
		await self._release()

	async def close(self) -> None:
		await self.teardown()
		self._listeners.clear()

	async def send_message(
		self,
		scope: Optional[ConversationScope],
		author_id: str,
		content: str,
	) -> SendOutcome:
		"""Write one message for ``scope``.

		Blank content or a missing scope is rejected before any store call.
		Nothing is appended locally: the message shows up when the live feed
		delivers it. On failure the draft is handed back for retry.
		"""
		draft = content or ""
		text = draft.strip()
		if scope is None or not text:
			obs_metrics.inc_message_send("rejected")
			return SendOutcome(sent=False, draft=draft)
		outgoing = OutgoingMessage.for_scope(scope, author_id, text)
		try:
			record = await self._repo.insert(outgoing)
		except TRANSIENT_ERRORS:
			logger.exception("message send failed scope=%s", scope.key)
			obs_metrics.inc_message_send("failed")
			await self._notifier.notify(Notice.error(notices.FAILED_SEND_MESSAGE))
			return SendOutcome(sent=False, draft=draft)
		obs_metrics.inc_message_send("sent")
		return SendOutcome(sent=True, draft="", message=record)

