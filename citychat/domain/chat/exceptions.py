"""Domain-level exceptions for conversations."""

from __future__ import annotations


class ChatError(Exception):
	"""Base class for chat errors."""

	reason: str = "unknown"

	def __init__(self, reason: str | None = None) -> None:
		super().__init__(reason or self.reason)
		if reason:
			self.reason = reason


class ScopeError(ChatError):
	reason = "invalid_scope"
