"""Conversation scopes: a public room or a canonical pair of users."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional, Tuple, Union

from citychat.domain.chat.exceptions import ScopeError
from citychat.settings import settings


@dataclass(slots=True, frozen=True)
class RoomScope:
	room_id: str

	kind: ClassVar[str] = "room"

	@property
	def key(self) -> str:
		return f"room:{self.room_id}"

	def transport_filter(self) -> Dict[str, Any]:
		return {"room_id": self.room_id}

	def matches(self, record) -> bool:
		return record.room_id is not None and str(record.room_id) == self.room_id

	def history_limit(self) -> Optional[int]:
		return settings.room_history_limit


@dataclass(slots=True, frozen=True)
class PrivatePair:
	"""Unordered pair of users; construction sorts the two ids.

	``PrivatePair(a, b) == PrivatePair(b, a)`` and both hash alike, so either
	participant derives the same scope and subscription key.
	"""

	user_a: str
	user_b: str

	kind: ClassVar[str] = "private"

	def __post_init__(self) -> None:
		first, second = str(self.user_a), str(self.user_b)
		if not first or not second:
			raise ScopeError("missing_participant")
		if first == second:
			raise ScopeError("self_pair")
		if second < first:
			first, second = second, first
		object.__setattr__(self, "user_a", first)
		object.__setattr__(self, "user_b", second)

	@property
	def key(self) -> str:
		return f"private:{self.user_a}:{self.user_b}"

	def participants(self) -> Tuple[str, str]:
		return (self.user_a, self.user_b)

	def other(self, user_id: str) -> str:
		user_id = str(user_id)
		if user_id == self.user_a:
			return self.user_b
		if user_id == self.user_b:
			return self.user_a
		raise ScopeError("not_participant")

	def transport_filter(self) -> Dict[str, Any]:
		# Equality is all the feed offers; the pair condition is checked in matches().
		return {"is_private": True}

	def matches(self, record) -> bool:
		if not record.is_private or record.recipient_id is None:
			return False
		sender, recipient = str(record.sender_id), str(record.recipient_id)
		return (sender == self.user_a and recipient == self.user_b) or (
			sender == self.user_b and recipient == self.user_a
		)

	def history_limit(self) -> Optional[int]:
		return settings.private_history_limit


ConversationScope = Union[RoomScope, PrivatePair]


@dataclass(slots=True, frozen=True, eq=False)
class ScopeToken:
	"""Tags async work with the activation that issued it.

	Tokens compare by identity: a re-activation of the same scope gets a new
	token, so results from the earlier activation are still discarded.
	"""

	scope: ConversationScope
	generation: int