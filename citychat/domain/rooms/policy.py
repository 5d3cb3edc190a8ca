"""Policy helpers for the room catalog."""

from __future__ import annotations

from citychat.settings import settings


class RoomPolicyError(RuntimeError):
	def __init__(self, code: str, *, message: str | None = None) -> None:
		super().__init__(message or code)
		self.code = code
		self.detail = message or code


def normalise_city(city: str | None) -> str:
	value = (city or "").strip()
	if not value:
		raise RoomPolicyError("missing_city")
	return value


def city_room_name(city: str) -> str:
	return f"{normalise_city(city)} {settings.city_room_suffix}"


def same_city(left: str | None, right: str | None) -> bool:
	if left is None or right is None:
		return False
	return left.strip() == right.strip()
