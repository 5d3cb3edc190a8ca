"""Small helpers shared by the domain packages."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Iterable, List

from pydantic import BeforeValidator

# Store rows may carry UUID objects; the engine compares identifiers as text.
Identifier = Annotated[str, BeforeValidator(lambda value: str(value) if value is not None else value)]


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


def unique_ids(values: Iterable[object]) -> List[str]:
	"""Deduplicate identifiers, keeping first-seen order and dropping blanks."""
	seen: dict[str, None] = {}
	for value in values:
		if value is None:
			continue
		text = str(value).strip()
		if text and text not in seen:
			seen[text] = None
	return list(seen)
