"""User-visible notices raised by the engine (the UI renders them as toasts)."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Literal, Protocol

logger = logging.getLogger(__name__)

NoticeVariant = Literal["default", "destructive"]


@dataclass(slots=True, frozen=True)
class Notice:
	title: str
	description: str
	variant: NoticeVariant = "default"

	@classmethod
	def info(cls, title: str, description: str) -> "Notice":
		return cls(title=title, description=description)

	@classmethod
	def error(cls, description: str) -> "Notice":
		return cls(title="Error", description=description, variant="destructive")

	@property
	def is_error(self) -> bool:
		return self.variant == "destructive"


class Notifier(Protocol):
	async def notify(self, notice: Notice) -> None:
		...


class LoggingNotifier:
	"""Default notifier: notices only reach the log."""

	async def notify(self, notice: Notice) -> None:
		level = logging.WARNING if notice.is_error else logging.INFO
		logger.log(level, "notice: %s - %s", notice.title, notice.description)


class QueueNotifier:
	"""Buffers notices for a UI loop to drain."""

	def __init__(self, maxsize: int = 0) -> None:
		self.queue: asyncio.Queue[Notice] = asyncio.Queue(maxsize=maxsize)

	async def notify(self, notice: Notice) -> None:
		try:
			self.queue.put_nowait(notice)
		except asyncio.QueueFull:
			logger.warning("notice dropped, queue full: %s", notice.title)

	def drain(self) -> List[Notice]:
		items: List[Notice] = []
		while not self.queue.empty():
			items.append(self.queue.get_nowait())
		return items


FAILED_SEND_MESSAGE = "Failed to send message. Please try again."
FAILED_LOAD_ROOMS = "Failed to load chat rooms."
FAILED_CREATE_ROOM = "Failed to create chat room."
FAILED_INIT_CHAT = "Failed to initialize chat."
FAILED_SEND_REQUEST = "Failed to send friend request."
FAILED_ACCEPT_REQUEST = "Failed to accept friend request."
FAILED_REJECT_REQUEST = "Failed to reject friend request."
FAILED_SEARCH_USERS = "Failed to search users."
FAILED_LOAD_PROFILE = "Failed to load profile."
FAILED_UPDATE_PROFILE = "Failed to update profile."
FAILED_LOAD_FRIENDS = "Failed to load friends."
FAILED_LOAD_REQUESTS = "Failed to load friend requests."

REQUEST_SENT = Notice.info("Request sent!", "Friend request has been sent.")
REQUEST_EXISTS = Notice.info("Request exists", "Friend request already sent or you're already friends.")
FRIEND_ADDED = Notice.info("Friend added!", "You are now friends.")
REQUEST_REJECTED = Notice.info("Request rejected", "Friend request has been rejected.")
PROFILE_UPDATED = Notice.info("Profile updated", "Your profile has been updated successfully.")


def room_created(city: str) -> Notice:
	return Notice.info("Room Created", f"{city} chat room has been created.")


def room_exists(city: str) -> Notice:
	return Notice.info("Room Exists", f"{city} chat room already exists.")
