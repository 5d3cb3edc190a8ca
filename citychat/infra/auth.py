"""Acting-user context passed explicitly into every core operation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(slots=True, frozen=True)
class AuthenticatedUser:
	"""The signed-in user on whose behalf an operation runs.

	Session issuance lives outside this package; callers build this from
	whatever their auth layer returns.
	"""

	id: str
	city: Optional[str] = None
	username: Optional[str] = None

	@classmethod
	def from_profile(cls, profile) -> "AuthenticatedUser":
		return cls(id=str(profile.id), city=profile.city, username=profile.username)
