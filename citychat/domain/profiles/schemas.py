"""Pydantic schemas for user profiles."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from citychat.domain.common import Identifier

UNKNOWN_USERNAME = "Unknown"


class Profile(BaseModel):
	model_config = ConfigDict(frozen=True)

	id: Identifier
	username: str
	city: str = ""
	display_name: Optional[str] = None
	bio: Optional[str] = None
	updated_at: Optional[datetime] = None
	placeholder: bool = Field(default=False, exclude=True)

	@field_validator("city", mode="before")
	@classmethod
	def _city_text(cls, value):
		return value or ""

	@classmethod
	def unknown(cls, user_id: str) -> "Profile":
		"""Sentinel used when the directory has no row for ``user_id``."""
		return cls(id=user_id, username=UNKNOWN_USERNAME, city="", placeholder=True)

	@property
	def label(self) -> str:
		return self.display_name or self.username


class ProfileUpdate(BaseModel):
	username: Optional[str] = Field(default=None, max_length=64)
	display_name: Optional[str] = Field(default=None, max_length=128)
	city: Optional[str] = Field(default=None, max_length=128)
	bio: Optional[str] = Field(default=None, max_length=2000)

	@field_validator("username")
	@classmethod
	def _username_not_blank(cls, value: Optional[str]) -> Optional[str]:
		if value is None:
			return value
		value = value.strip()
		if not value:
			raise ValueError("username must not be blank")
		return value

	def changes(self) -> dict:
		return self.model_dump(exclude_unset=True)
