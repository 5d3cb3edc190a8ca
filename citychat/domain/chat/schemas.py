"""Pydantic schemas for message rows crossing the store and feed boundary."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from citychat.domain.chat.exceptions import ScopeError
from citychat.domain.chat.models import ConversationScope, PrivatePair, RoomScope
from citychat.domain.common import Identifier
from citychat.domain.profiles.schemas import Profile


class MessageRecord(BaseModel):
	"""Row of ``messages``: room-scoped XOR recipient-scoped."""

	model_config = ConfigDict(frozen=True, extra="ignore")

	id: Identifier
	content: str
	sender_id: Identifier
	created_at: datetime
	room_id: Optional[Identifier] = None
	recipient_id: Optional[Identifier] = None
	is_private: bool = False

	@field_validator("content")
	@classmethod
	def _content_present(cls, value: str) -> str:
		if not value.strip():
			raise ValueError("content must not be blank")
		return value

	@field_validator("is_private", mode="before")
	@classmethod
	def _null_flag(cls, value):
		return bool(value) if value is not None else False

	@model_validator(mode="after")
	def _one_scope_form(self) -> "MessageRecord":
		if (self.room_id is None) == (self.recipient_id is None):
			raise ValueError("exactly one of room_id / recipient_id must be set")
		if self.recipient_id is not None and not self.is_private:
			raise ValueError("recipient-scoped messages must be private")
		return self

	def sort_key(self) -> tuple:
		return (self.created_at, self.id)


class ChatMessage(MessageRecord):
	"""A message in the in-memory log, decorated with its sender's profile."""

	sender: Profile

	@classmethod
	def decorate(cls, record: MessageRecord, sender: Profile) -> "ChatMessage":
		return cls(**record.model_dump(), sender=sender)


class OutgoingMessage(BaseModel):
	"""Insert payload for one new message."""

	model_config = ConfigDict(frozen=True)

	content: str
	sender_id: str
	room_id: Optional[str] = None
	recipient_id: Optional[str] = None
	is_private: bool = False

	@classmethod
	def for_scope(cls, scope: ConversationScope, author_id: str, content: str) -> "OutgoingMessage":
		author_id = str(author_id)
		if isinstance(scope, RoomScope):
			return cls(content=content, sender_id=author_id, room_id=scope.room_id)
		if isinstance(scope, PrivatePair):
			return cls(
				content=content,
				sender_id=author_id,
				recipient_id=scope.other(author_id),
				is_private=True,
			)
		raise ScopeError("unknown_scope")
