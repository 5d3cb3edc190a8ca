"""Domain models for friendships."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from citychat.domain.common import Identifier
from citychat.domain.profiles.schemas import Profile


class FriendshipStatus(str, Enum):
	"""Friendship states tracked in the store. Rejection deletes the row."""

	PENDING = "pending"
	ACCEPTED = "accepted"


class RequestResult(str, Enum):
	CREATED = "created"
	ALREADY_EXISTS = "already_exists"
	FAILED = "failed"


class Friendship(BaseModel):
	"""Row of ``friendships``: user1 requested, user2 received."""

	model_config = ConfigDict(frozen=True)

	id: Identifier
	user1_id: Identifier
	user2_id: Identifier
	status: FriendshipStatus

	@property
	def requester_id(self) -> str:
		return self.user1_id

	@property
	def recipient_id(self) -> str:
		return self.user2_id

	def involves(self, user_id: str) -> bool:
		return str(user_id) in (self.user1_id, self.user2_id)

	def other_party(self, user_id: str) -> str:
		if str(user_id) == self.user1_id:
			return self.user2_id
		if str(user_id) == self.user2_id:
			return self.user1_id
		raise ValueError("user is not part of this friendship")


@dataclass(slots=True, frozen=True)
class FriendRequestOutcome:
	result: RequestResult
	friendship: Optional[Friendship] = None

	@property
	def created(self) -> bool:
		return self.result is RequestResult.CREATED


@dataclass(slots=True, frozen=True)
class PendingRequest:
	friendship: Friendship
	requester: Profile
