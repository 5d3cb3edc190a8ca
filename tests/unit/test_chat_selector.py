import asyncio

import pytest
import pytest_asyncio

from citychat.domain.chat import ConversationSelector, PrivatePair, RoomScope, ScopeError
from citychat.domain.chat.channels import PrivateChannelResolver
from citychat.domain import notices
from citychat.domain.notices import QueueNotifier
from citychat.domain.profiles import Profile
from citychat.domain.profiles.service import seed_profile
from citychat.domain.rooms import RoomCatalog, RoomRepository
from citychat.infra.auth import AuthenticatedUser
from citychat.settings import settings

ALICE = AuthenticatedUser(id="alice", city="Rabat", username="alice")
BOB = AuthenticatedUser(id="bob", city="Rabat", username="bob")


class FailingRooms(RoomRepository):
    async def find_private_by_names(self, names):
        raise ConnectionError("store unreachable")


class GatedChannels(PrivateChannelResolver):
    def __init__(self):
        super().__init__()
        self.opened = asyncio.Event()

    async def materialize(self, user_a, user_b):
        await self.opened.wait()
        return await super().materialize(user_a, user_b)


class GatedRooms(RoomRepository):
    def __init__(self):
        super().__init__()
        self.opened = asyncio.Event()

    async def get_room(self, room_id):
        await self.opened.wait()
        return await super().get_room(room_id)


@pytest_asyncio.fixture(autouse=True)
async def seeded_profiles(reset_stores):
    for user in (ALICE, BOB):
        await seed_profile(Profile(id=user.id, username=user.username, city=user.city))


@pytest.mark.asyncio
async def test_create_city_room_selects_it():
    notifier = QueueNotifier()
    selector = ConversationSelector(ALICE, notifier=notifier)

    room = await selector.create_city_room()

    assert room.name == "Rabat Chat"
    assert selector.active_room == room
    assert selector.active_scope == RoomScope(room.id)
    assert notifier.drain() == [notices.room_created("Rabat")]


@pytest.mark.asyncio
async def test_open_home_room_picks_actor_city():
    repo = RoomRepository()
    await repo.create_room(name="Fes Chat", city="Fes", is_private=False)
    rabat = await repo.create_room(name="Rabat Chat", city="Rabat", is_private=False)
    selector = ConversationSelector(ALICE)

    home = await selector.open_home_room()

    assert home.id == rabat.id
    assert selector.active_scope == RoomScope(rabat.id)


@pytest.mark.asyncio
async def test_open_home_room_without_match_leaves_selection_empty():
    await RoomRepository().create_room(name="Fes Chat", city="Fes", is_private=False)
    selector = ConversationSelector(ALICE)

    assert await selector.open_home_room() is None
    assert selector.active_scope is None


@pytest.mark.asyncio
async def test_room_messages_flow_between_selectors():
    catalog = RoomCatalog()
    result = await catalog.get_or_create_city_room("Rabat")
    alice = ConversationSelector(ALICE)
    bob = ConversationSelector(BOB)
    await alice.select_room(result.room)
    await bob.select_room_id(result.room.id)

    outcome = await alice.send("  salam  ")

    assert outcome.sent
    assert [m.content for m in alice.messages] == ["salam"]
    assert [m.sender.username for m in bob.messages] == ["alice"]


@pytest.mark.asyncio
async def test_select_unknown_room_id_is_ignored():
    selector = ConversationSelector(ALICE)
    assert await selector.select_room_id("missing") is None
    assert selector.active_scope is None


@pytest.mark.asyncio
async def test_select_friend_uses_canonical_pair():
    alice = ConversationSelector(ALICE)
    bob = ConversationSelector(BOB)

    alice_scope = await alice.select_friend("bob")
    bob_scope = await bob.select_friend("alice")
    await bob.send("hey alice")

    assert alice_scope == bob_scope == PrivatePair("alice", "bob")
    assert [m.content for m in alice.messages] == ["hey alice"]
    assert alice.active_room is None


@pytest.mark.asyncio
async def test_select_friend_rejects_self():
    with pytest.raises(ScopeError):
        await ConversationSelector(ALICE).select_friend("alice")


@pytest.mark.asyncio
async def test_select_friend_materializes_private_room(monkeypatch):
    monkeypatch.setattr(settings, "materialize_private_rooms", True)
    selector = ConversationSelector(BOB)

    await selector.select_friend("alice")

    assert selector.active_room.name == "alice_bob"
    assert selector.active_room.is_private is True
    assert selector.active_scope == PrivatePair("alice", "bob")


@pytest.mark.asyncio
async def test_select_friend_materialize_failure_notifies(monkeypatch):
    monkeypatch.setattr(settings, "materialize_private_rooms", True)
    notifier = QueueNotifier()
    selector = ConversationSelector(
        ALICE,
        channels=PrivateChannelResolver(FailingRooms()),
        notifier=notifier,
    )

    assert await selector.select_friend("bob") is None
    assert selector.active_scope is None
    assert notifier.drain()[0].description == "Failed to initialize chat."


@pytest.mark.asyncio
async def test_switching_from_room_to_friend_drops_room_log():
    selector = ConversationSelector(ALICE)
    room = await selector.create_city_room()
    await selector.send("in the room")
    assert len(selector.messages) == 1

    await selector.select_friend("bob")

    assert selector.messages == ()
    assert selector.active_room is None
    assert selector.active_scope != RoomScope(room.id)


@pytest.mark.asyncio
async def test_send_without_selection_is_rejected():
    outcome = await ConversationSelector(ALICE).send("hello")
    assert outcome.sent is False
    assert outcome.draft == "hello"


@pytest.mark.asyncio
async def test_clear_and_close_release_subscription(live_feed):
    selector = ConversationSelector(ALICE)
    await selector.create_city_room()
    assert live_feed.subscriber_count("messages") == 1

    await selector.clear()
    assert selector.active_scope is None
    assert live_feed.subscriber_count("messages") == 0

    await selector.select_friend("bob")
    await selector.close()
    assert live_feed.subscriber_count("messages") == 0


@pytest.mark.asyncio
async def test_later_room_selection_wins_over_pending_friend(monkeypatch, live_feed):
    monkeypatch.setattr(settings, "materialize_private_rooms", True)
    rabat = await RoomRepository().create_room(name="Rabat Chat", city="Rabat", is_private=False)
    channels = GatedChannels()
    selector = ConversationSelector(ALICE, channels=channels)

    pending = asyncio.create_task(selector.select_friend("bob"))
    await asyncio.sleep(0)
    await selector.select_room(rabat)
    channels.opened.set()

    assert await pending is None
    assert selector.active_scope == RoomScope(rabat.id)
    assert selector.active_room == rabat
    assert live_feed.subscriber_count("messages") == 1


@pytest.mark.asyncio
async def test_later_friend_selection_wins_over_pending_room_lookup(live_feed):
    rabat = await RoomRepository().create_room(name="Rabat Chat", city="Rabat", is_private=False)
    rooms = GatedRooms()
    selector = ConversationSelector(ALICE, rooms=RoomCatalog(rooms))

    pending = asyncio.create_task(selector.select_room_id(rabat.id))
    await asyncio.sleep(0)
    pair = await selector.select_friend("bob")
    rooms.opened.set()

    assert await pending is None
    assert selector.active_scope == pair
    assert selector.active_room is None
    assert live_feed.subscriber_count("messages") == 1


@pytest.mark.asyncio
async def test_clear_abandons_pending_selection(live_feed):
    room = await RoomRepository().create_room(name="Rabat Chat", city="Rabat", is_private=False)
    rooms = GatedRooms()
    selector = ConversationSelector(ALICE, rooms=RoomCatalog(rooms))

    pending = asyncio.create_task(selector.select_room_id(room.id))
    await asyncio.sleep(0)
    await selector.clear()
    rooms.opened.set()

    assert await pending is None
    assert selector.active_scope is None
    assert selector.active_room is None
    assert live_feed.subscriber_count("messages") == 0
