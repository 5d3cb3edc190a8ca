"""Social domain exports."""

from .models import FriendRequestOutcome, Friendship, FriendshipStatus, PendingRequest, RequestResult
from .service import FriendshipRepository, FriendshipService

__all__ = [
	"FriendRequestOutcome",
	"Friendship",
	"FriendshipRepository",
	"FriendshipService",
	"FriendshipStatus",
	"PendingRequest",
	"RequestResult",
]
