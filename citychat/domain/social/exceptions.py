"""Domain-level exceptions for friendships."""

from __future__ import annotations


class FriendshipError(Exception):
	"""Base class for friendship errors."""

	reason: str = "unknown"

	def __init__(self, reason: str | None = None) -> None:
		super().__init__(reason or self.reason)
		if reason:
			self.reason = reason


class FriendshipSelfError(FriendshipError):
	reason = "self_request"


class FriendshipNotFound(FriendshipError):
	reason = "not_found"


class FriendshipForbidden(FriendshipError):
	reason = "not_recipient"


class FriendshipGone(FriendshipError):
	reason = "not_pending"
