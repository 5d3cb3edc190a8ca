"""Central registry for Prometheus metrics used across the engine."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

HISTORY_LOADS = Counter(
	"citychat_history_loads_total",
	"Conversation history loads",
	["scope_kind", "result"],
)

HISTORY_SIZE = Histogram(
	"citychat_history_messages",
	"Messages returned per history load",
	["scope_kind"],
	buckets=(0, 1, 10, 25, 50, 100, 250, 1000),
)

LIVE_EVENTS = Counter(
	"citychat_live_events_total",
	"Live insert events seen by the synchronizer",
	["scope_kind", "outcome"],
)

MESSAGES_SENT = Counter(
	"citychat_messages_sent_total",
	"Message send attempts",
	["result"],
)

FRIEND_REQUESTS = Counter(
	"citychat_friend_requests_total",
	"Friend requests",
	["result"],
)

FRIENDSHIP_TRANSITIONS = Counter(
	"citychat_friendship_transitions_total",
	"Friendship state transitions",
	["action"],
)

ROOMS_CREATED = Counter(
	"citychat_rooms_created_total",
	"Rooms created by this client",
	["kind"],
)

PROFILE_LOOKUPS = Counter(
	"citychat_profile_lookups_total",
	"Profile directory lookups",
	["mode"],
)

SCOPE_SWITCHES = Counter(
	"citychat_scope_switches_total",
	"Active conversation scope switches",
	["scope_kind"],
)

SELECTIONS_SUPERSEDED = Counter(
	"citychat_selections_superseded_total",
	"Conversation selections abandoned for a newer one",
)

ACTIVE_SUBSCRIPTIONS = Gauge(
	"citychat_live_subscriptions",
	"Open live feed subscriptions",
)


def inc_history_load(scope_kind: str, result: str, size: int = 0) -> None:
	HISTORY_LOADS.labels(scope_kind=scope_kind, result=result).inc()
	if result == "ok":
		HISTORY_SIZE.labels(scope_kind=scope_kind).observe(size)


def inc_live_event(scope_kind: str, outcome: str) -> None:
	LIVE_EVENTS.labels(scope_kind=scope_kind, outcome=outcome).inc()


def inc_message_send(result: str) -> None:
	MESSAGES_SENT.labels(result=result).inc()


def inc_friend_request(result: str) -> None:
	FRIEND_REQUESTS.labels(result=result).inc()


def inc_friendship_transition(action: str) -> None:
	FRIENDSHIP_TRANSITIONS.labels(action=action).inc()


def inc_room_created(kind: str = "city") -> None:
	ROOMS_CREATED.labels(kind=kind).inc()


def inc_profile_lookup(mode: str) -> None:
	PROFILE_LOOKUPS.labels(mode=mode).inc()


def inc_scope_switch(scope_kind: str) -> None:
	SCOPE_SWITCHES.labels(scope_kind=scope_kind).inc()


def inc_selection_superseded() -> None:
	SELECTIONS_SUPERSEDED.inc()


def subscription_opened() -> None:
	ACTIVE_SUBSCRIPTIONS.inc()


def subscription_closed() -> None:
	ACTIVE_SUBSCRIPTIONS.dec()
