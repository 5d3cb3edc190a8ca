"""Conversation scopes, message sync and scope selection."""

from .channels import PrivateChannelResolver
from .exceptions import ChatError, ScopeError
from .models import ConversationScope, PrivatePair, RoomScope, ScopeToken
from .repo import MessageRepository
from .schemas import ChatMessage, MessageRecord, OutgoingMessage
from .selector import ConversationSelector
from .sync import MessageStreamSynchronizer, SendOutcome

__all__ = [
	"ChatError",
	"ChatMessage",
	"ConversationScope",
	"ConversationSelector",
	"MessageRecord",
	"MessageRepository",
	"MessageStreamSynchronizer",
	"OutgoingMessage",
	"PrivateChannelResolver",
	"PrivatePair",
	"RoomScope",
	"ScopeError",
	"ScopeToken",
	"SendOutcome",
]
