"""Domain-level exceptions for profiles."""

from __future__ import annotations


class ProfileError(Exception):
	"""Base class for profile errors."""

	reason: str = "unknown"

	def __init__(self, reason: str | None = None) -> None:
		super().__init__(reason or self.reason)
		if reason:
			self.reason = reason


class ProfileForbidden(ProfileError):
	reason = "not_owner"


class ProfileInvalid(ProfileError):
	reason = "invalid"


class ProfileConflict(ProfileError):
	reason = "username_taken"
