"""Conversation Selector: which scope the signed-in user is looking at."""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from citychat.domain import notices
from citychat.domain.chat.channels import PrivateChannelResolver
from citychat.domain.chat.models import ConversationScope, PrivatePair, RoomScope
from citychat.domain.chat.schemas import ChatMessage
from citychat.domain.chat.sync import MessageStreamSynchronizer, SendOutcome
from citychat.domain.notices import LoggingNotifier, Notice, Notifier
from citychat.domain.rooms import policy as room_policy
from citychat.domain.rooms.models import Room
from citychat.domain.rooms.service import RoomCatalog
from citychat.infra.auth import AuthenticatedUser
from citychat.infra.postgres import TRANSIENT_ERRORS
from citychat.obs import metrics as obs_metrics
from citychat.obs.logging import bind_context, reset_context
from citychat.settings import settings

logger = logging.getLogger(__name__)


class ConversationSelector:
	"""Switches the synchronizer between rooms and private pairs for one user.

	Every selection takes a ticket on entry and is abandoned, returning None,
	once a later selection, ``clear`` or ``close`` has taken a newer one.
	``active_room`` and the synchronizer scope only change for the current
	ticket. Overlapping selections are not queued; the latest one wins.
	"""

	def __init__(
		self,
		actor: AuthenticatedUser,
		*,
		synchronizer: MessageStreamSynchronizer | None = None,
		rooms: RoomCatalog | None = None,
		channels: PrivateChannelResolver | None = None,
		notifier: Notifier | None = None,
	) -> None:
		self.actor = actor
		self._notifier = notifier or LoggingNotifier()
		self._sync = synchronizer or MessageStreamSynchronizer(notifier=self._notifier)
		self._rooms = rooms or RoomCatalog(notifier=self._notifier)
		self._channels = channels or PrivateChannelResolver()
		self._active_room: Optional[Room] = None
		self._selection = 0

	@property
	def active_scope(self) -> Optional[ConversationScope]:
		return self._sync.active_scope

	@property
	def active_room(self) -> Optional[Room]:
		return self._active_room

	@property
	def messages(self) -> Tuple[ChatMessage, ...]:
		return self._sync.messages

	def _begin(self) -> int:
		self._selection += 1
		return self._selection

	def _stale(self, ticket: int) -> bool:
		if ticket != self._selection:
			obs_metrics.inc_selection_superseded()
			logger.debug("selection superseded ticket=%s current=%s", ticket, self._selection)
			return True
		return False

	async def _activate(self, ticket: int, scope: ConversationScope, room: Optional[Room]) -> bool:
		if self._stale(ticket):
			return False
		self._active_room = room
		context = bind_context(user_id=str(self.actor.id))
		try:
			await self._sync.activate(scope)
		finally:
			reset_context(context)
		return True

	async def select_room(self, room: Room) -> Optional[RoomScope]:
		scope = RoomScope(room.id)
		if not await self._activate(self._begin(), scope, room):
			return None
		return scope

	async def select_room_id(self, room_id: str) -> Optional[RoomScope]:
		ticket = self._begin()
		room = await self._rooms.get_room(room_id)
		if room is None:
			logger.warning("select unknown room=%s", room_id)
			return None
		scope = RoomScope(room.id)
		if not await self._activate(ticket, scope, room):
			return None
		return scope

	async def select_friend(self, friend_id: str) -> Optional[PrivatePair]:
		"""Open the private conversation with ``friend_id``.

		With ``materialize_private_rooms`` on, the pair's private room row is
		found or created first and exposed as ``active_room``.
		"""
		ticket = self._begin()
		pair = self._channels.resolve(self.actor.id, friend_id)
		room: Optional[Room] = None
		if settings.materialize_private_rooms:
			try:
				room = await self._channels.materialize(self.actor.id, friend_id)
			except TRANSIENT_ERRORS:
				logger.exception("private room setup failed")
				if not self._stale(ticket):
					await self._notifier.notify(Notice.error(notices.FAILED_INIT_CHAT))
				return None
		if not await self._activate(ticket, pair, room):
			return None
		return pair

	async def open_home_room(self) -> Optional[Room]:
		"""Select the public room for the actor's city, when one exists."""
		if not self.actor.city:
			return None
		ticket = self._begin()
		rooms = await self._rooms.list_public_rooms()
		home = next((room for room in rooms if room_policy.same_city(room.city, self.actor.city)), None)
		if home is None:
			return None
		if not await self._activate(ticket, RoomScope(home.id), home):
			return None
		return home

	async def create_city_room(self) -> Optional[Room]:
		ticket = self._begin()
		result = await self._rooms.get_or_create_city_room(self.actor.city)
		if result is None:
			return None
		if not await self._activate(ticket, RoomScope(result.room.id), result.room):
			return None
		return result.room

	async def send(self, content: str) -> SendOutcome:
		return await self._sync.send_message(self.active_scope, self.actor.id, content)

	async def clear(self) -> None:
		self._begin()
		self._active_room = None
		await self._sync.teardown()

	async def close(self) -> None:
		self._begin()
		self._active_room = None
		await self._sync.close()
