"""Guard checks for friendship transitions."""

from __future__ import annotations

from citychat.domain.social.exceptions import FriendshipForbidden, FriendshipGone, FriendshipSelfError
from citychat.domain.social.models import Friendship, FriendshipStatus
from citychat.infra.auth import AuthenticatedUser


def guard_not_self(user_id: str, target_id: str) -> None:
	if str(user_id) == str(target_id):
		raise FriendshipSelfError()


def ensure_recipient(friendship: Friendship, actor: AuthenticatedUser) -> None:
	"""Only user2 may accept or reject a request."""
	if str(actor.id) != friendship.recipient_id:
		raise FriendshipForbidden()


def ensure_pending(friendship: Friendship) -> None:
	if friendship.status is not FriendshipStatus.PENDING:
		raise FriendshipGone()
