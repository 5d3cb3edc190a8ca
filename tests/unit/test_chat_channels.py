import pytest

from citychat.domain.chat import PrivateChannelResolver, PrivatePair, RoomScope, ScopeError
from citychat.domain.chat.models import ScopeToken
from citychat.domain.chat.schemas import MessageRecord, OutgoingMessage
from citychat.domain.common import utcnow
from citychat.domain.rooms import RoomRepository


def _record(**fields) -> MessageRecord:
    base = {"id": "m1", "content": "hi", "sender_id": "alice", "created_at": utcnow()}
    base.update(fields)
    return MessageRecord(**base)


def test_pair_is_canonical_regardless_of_order():
    resolver = PrivateChannelResolver()
    forward = resolver.resolve("bob", "alice")
    backward = resolver.resolve("alice", "bob")

    assert forward == backward
    assert hash(forward) == hash(backward)
    assert forward.key == backward.key == "private:alice:bob"
    assert forward.participants() == ("alice", "bob")


def test_pair_rejects_self_and_blank():
    with pytest.raises(ScopeError) as exc:
        PrivatePair("alice", "alice")
    assert exc.value.reason == "self_pair"
    with pytest.raises(ScopeError):
        PrivatePair("alice", "")


def test_pair_other_requires_participant():
    pair = PrivatePair("alice", "bob")
    assert pair.other("alice") == "bob"
    assert pair.other("bob") == "alice"
    with pytest.raises(ScopeError):
        pair.other("carol")


def test_transport_filters_are_equality_only():
    assert RoomScope("r1").transport_filter() == {"room_id": "r1"}
    assert PrivatePair("alice", "bob").transport_filter() == {"is_private": True}


def test_private_relevance_checks_full_pair():
    pair = PrivatePair("bob", "alice")

    assert pair.matches(_record(sender_id="alice", recipient_id="bob", is_private=True))
    assert pair.matches(_record(sender_id="bob", recipient_id="alice", is_private=True))
    assert not pair.matches(_record(sender_id="alice", recipient_id="carol", is_private=True))
    assert not pair.matches(_record(sender_id="carol", recipient_id="bob", is_private=True))
    assert not pair.matches(_record(room_id="r1"))


def test_room_relevance_checks_room_id():
    scope = RoomScope("r1")
    assert scope.matches(_record(room_id="r1"))
    assert not scope.matches(_record(room_id="r2"))
    assert not scope.matches(_record(recipient_id="bob", is_private=True))


def test_record_requires_exactly_one_scope_form():
    with pytest.raises(ValueError):
        _record()
    with pytest.raises(ValueError):
        _record(room_id="r1", recipient_id="bob", is_private=True)
    with pytest.raises(ValueError):
        _record(recipient_id="bob", is_private=False)
    with pytest.raises(ValueError):
        _record(room_id="r1", content="   ")


def test_outgoing_for_private_scope_targets_other_participant():
    pair = PrivatePair("bob", "alice")
    outgoing = OutgoingMessage.for_scope(pair, "bob", "hey")

    assert outgoing.recipient_id == "alice"
    assert outgoing.is_private is True
    assert outgoing.room_id is None
    with pytest.raises(ScopeError):
        OutgoingMessage.for_scope(pair, "carol", "hey")


def test_scope_tokens_compare_by_identity():
    scope = RoomScope("r1")
    assert ScopeToken(scope, 1) != ScopeToken(scope, 1)


@pytest.mark.asyncio
async def test_materialize_reuses_room_stored_under_either_order():
    repo = RoomRepository()
    legacy = await repo.create_room(name="bob_alice", city=None, is_private=True)
    resolver = PrivateChannelResolver(repo)

    assert (await resolver.materialize("alice", "bob")).id == legacy.id
    assert (await resolver.materialize("bob", "alice")).id == legacy.id


@pytest.mark.asyncio
async def test_materialize_creates_canonical_private_room():
    resolver = PrivateChannelResolver()

    room = await resolver.materialize("bob", "alice")

    assert room.name == "alice_bob"
    assert room.is_private is True
    assert room.city is None
    assert (await resolver.materialize("alice", "bob")).id == room.id
