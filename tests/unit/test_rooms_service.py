import asyncio

import pytest

from citychat.domain import notices
from citychat.domain.notices import QueueNotifier
from citychat.domain.rooms import RoomCatalog, RoomPolicyError, RoomRepository
from citychat.domain.rooms.policy import city_room_name, same_city
from citychat.settings import settings


class LockstepRepo(RoomRepository):
    """Holds every lookup until ``parties`` clients have all looked."""

    def __init__(self, parties: int) -> None:
        super().__init__()
        self._parties = parties
        self._arrived = 0
        self._gate = asyncio.Event()

    async def find_city_room(self, city):
        found = await super().find_city_room(city)
        self._arrived += 1
        if self._arrived >= self._parties:
            self._gate.set()
        await self._gate.wait()
        return found


class FailingRepo(RoomRepository):
    async def list_public(self):
        raise ConnectionError("store unreachable")

    async def find_city_room(self, city):
        raise ConnectionError("store unreachable")


@pytest.mark.asyncio
async def test_get_or_create_city_room_creates_named_room():
    notifier = QueueNotifier()
    catalog = RoomCatalog(notifier=notifier)

    result = await catalog.get_or_create_city_room("Rabat")

    assert result is not None
    assert result.created is True
    assert result.room.name == "Rabat Chat"
    assert result.room.city == "Rabat"
    assert result.room.is_private is False
    assert notifier.drain() == [notices.room_created("Rabat")]


@pytest.mark.asyncio
async def test_get_or_create_city_room_is_idempotent_once_visible():
    notifier = QueueNotifier()
    first = await RoomCatalog().get_or_create_city_room("Rabat")
    second_client = RoomCatalog(notifier=notifier)

    again = await second_client.get_or_create_city_room("  Rabat ")

    assert again is not None
    assert again.created is False
    assert again.room.id == first.room.id
    assert notifier.drain() == [notices.room_exists("Rabat")]
    assert len(await second_client.list_public_rooms()) == 1


@pytest.mark.asyncio
async def test_concurrent_get_or_create_may_create_two_rooms():
    repo = LockstepRepo(parties=2)
    client_a = RoomCatalog(repo)
    client_b = RoomCatalog(repo)

    first, second = await asyncio.gather(
        client_a.get_or_create_city_room("Rabat"),
        client_b.get_or_create_city_room("Rabat"),
    )

    assert first.created and second.created
    assert first.room.id != second.room.id
    rooms = await RoomCatalog().list_public_rooms()
    assert [room.name for room in rooms] == ["Rabat Chat", "Rabat Chat"]

    # Later lookups settle on the oldest of the duplicates.
    settled = await RoomCatalog().get_or_create_city_room("Rabat")
    assert settled.room.id == rooms[0].id


@pytest.mark.asyncio
async def test_list_public_rooms_oldest_first_and_skips_private():
    repo = RoomRepository()
    oldest = await repo.create_room(name="Fes Chat", city="Fes", is_private=False)
    await repo.create_room(name="alice_bob", city=None, is_private=True)
    newest = await repo.create_room(name="Rabat Chat", city="Rabat", is_private=False)

    rooms = await RoomCatalog(repo).list_public_rooms()

    assert [room.id for room in rooms] == [oldest.id, newest.id]


@pytest.mark.asyncio
async def test_list_public_rooms_failure_notifies_and_returns_empty():
    notifier = QueueNotifier()
    rooms = await RoomCatalog(FailingRepo(), notifier=notifier).list_public_rooms()
    assert rooms == []
    assert notifier.drain()[0].description == "Failed to load chat rooms."


@pytest.mark.asyncio
async def test_get_or_create_failure_notifies():
    notifier = QueueNotifier()
    result = await RoomCatalog(FailingRepo(), notifier=notifier).get_or_create_city_room("Rabat")
    assert result is None
    assert notifier.drain()[0].description == "Failed to create chat room."


@pytest.mark.asyncio
async def test_get_or_create_requires_city():
    with pytest.raises(RoomPolicyError) as exc:
        await RoomCatalog().get_or_create_city_room("  ")
    assert exc.value.code == "missing_city"


@pytest.mark.asyncio
async def test_get_room_uses_local_cache():
    catalog = RoomCatalog()
    created = await catalog.get_or_create_city_room("Tangier")
    assert await catalog.get_room(created.room.id) is created.room
    assert await catalog.get_room("missing") is None


def test_city_policy_helpers():
    assert city_room_name(" Rabat ") == "Rabat Chat"
    assert same_city("Rabat", " Rabat")
    assert not same_city("Rabat", "rabat")
    assert not same_city(None, "Rabat")


@pytest.mark.asyncio
async def test_unreachable_database_is_reported_not_replaced(monkeypatch):
    monkeypatch.setattr(settings, "use_memory_store", False)
    notifier = QueueNotifier()

    result = await RoomCatalog(notifier=notifier).get_or_create_city_room("Rabat")

    assert result is None
    assert notifier.drain()[0].description == "Failed to create chat room."
    monkeypatch.setattr(settings, "use_memory_store", True)
    assert await RoomCatalog().list_public_rooms() == []
