import asyncio
from datetime import timedelta

import pytest

from conftest import RecordingTransport
from core.connection_registry import ConnectionRegistry
from core.entities import utcnow
from core.event_dispatcher import EventDispatcher
from core.exceptions import ConnectionNotFound, RoomNotFound, ValidationError
from core.room_manager import RoomManager, make_offer


@pytest.mark.asyncio
async def test_join_creates_room_and_notifies_joiner(registry, rooms, transport):
    registry.register("c1")

    room = await rooms.join("c1", "r1")

    assert room.members == {"c1"}
    assert registry.room_of("c1") == "r1"
    assert transport.events_for("c1") == [{"event": "joined", "roomId": "r1", "connectionId": "c1"}]


@pytest.mark.asyncio
async def test_second_join_is_broadcast_to_all_members(registry, rooms, transport):
    registry.register("c1")
    registry.register("c2")
    await rooms.join("c1", "r1")
    await rooms.join("c2", "r1")

    joined_c2 = {"event": "joined", "roomId": "r1", "connectionId": "c2"}
    assert joined_c2 in transport.events_for("c1")
    assert joined_c2 in transport.events_for("c2")
    assert rooms.get_room("r1").members == {"c1", "c2"}


@pytest.mark.asyncio
async def test_joining_another_room_leaves_the_first(registry, rooms, transport):
    registry.register("c1")
    registry.register("watcher")
    await rooms.join("watcher", "A")
    await rooms.join("c1", "A")
    transport.sent.clear()

    await rooms.join("c1", "B")

    assert registry.room_of("c1") == "B"
    assert rooms.get_room("A").members == {"watcher"}
    assert rooms.get_room("B").members == {"c1"}
    assert transport.event_names() == [
        ("left", "A", "watcher"),
        ("joined", "B", "c1"),
    ]


@pytest.mark.asyncio
async def test_leave_is_idempotent(registry, rooms, transport):
    registry.register("c1")
    registry.register("c2")
    await rooms.join("c1", "r1")
    await rooms.join("c2", "r1")
    transport.sent.clear()

    await rooms.leave("c2", "r1")
    await rooms.leave("c2", "r1")
    await rooms.leave("c2", "not-a-room")

    assert transport.event_names() == [("left", "r1", "c1")]
    assert registry.room_of("c2") is None


@pytest.mark.asyncio
async def test_last_leave_deletes_room_and_offer(registry, rooms):
    registry.register("c1")
    await rooms.join("c1", "r1")
    await rooms.bind_offer("r1", make_offer("o1", "r1", 10))

    await rooms.leave("c1", "r1")

    assert not rooms.has_room("r1")
    with pytest.raises(RoomNotFound):
        rooms.get_room("r1")

    # a new room with the same id starts without the old offer
    await rooms.join("c1", "r1")
    assert rooms.get_room("r1").offer is None
    assert rooms.active_offer_for("c1") is None


@pytest.mark.asyncio
async def test_disconnect_broadcasts_left_then_discards(registry, rooms, transport):
    registry.register("c1")
    registry.register("c2")
    await rooms.join("c1", "r1")
    await rooms.join("c2", "r1")
    transport.sent.clear()

    await rooms.disconnect("c2")
    await asyncio.sleep(0)

    assert transport.event_names() == [("left", "r1", "c1")]
    assert transport.discarded == ["c2"]
    assert not registry.is_registered("c2")
    assert rooms.get_room("r1").members == {"c1"}


@pytest.mark.asyncio
async def test_disconnect_of_connection_without_room(registry, rooms, transport):
    registry.register("c1")

    await rooms.disconnect("c1")
    await asyncio.sleep(0)

    assert transport.sent == []
    assert transport.discarded == ["c1"]


@pytest.mark.asyncio
async def test_join_requires_registered_connection(rooms):
    with pytest.raises(ConnectionNotFound):
        await rooms.join("ghost", "r1")
    assert not rooms.has_room("r1")


@pytest.mark.asyncio
async def test_events_of_one_room_keep_application_order(registry, rooms, transport):
    for cid in ("c1", "c2", "c3"):
        registry.register(cid)
    await rooms.join("c1", "r1")
    transport.sent.clear()

    await asyncio.gather(rooms.join("c2", "r1"), rooms.join("c3", "r1"), rooms.leave("c2", "r1"))

    assert [(event, cid) for event, _, cid in transport.event_names() if cid == "c1"] == [
        ("joined", "c1"),
        ("joined", "c1"),
        ("left", "c1"),
    ]
    assert [m["connectionId"] for m in transport.events_for("c1")] == ["c2", "c3", "c2"]


class GatedTransport(RecordingTransport):
    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()

    async def send(self, connection_id, message):
        await self.gate.wait()
        await super().send(connection_id, message)


@pytest.mark.asyncio
async def test_cancelled_join_still_delivers_broadcast():
    registry = ConnectionRegistry()
    transport = GatedTransport()
    rooms = RoomManager(registry, EventDispatcher(transport))
    registry.register("c1")

    task = asyncio.create_task(rooms.join("c1", "r1"))
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert rooms.get_room("r1").members == {"c1"}
    transport.gate.set()
    await asyncio.wait_for(transport.delivered.wait(), timeout=1)
    assert transport.event_names() == [("joined", "r1", "c1")]


class DiscardSnapshotTransport(GatedTransport):
    """Remembers what had been sent at the moment a socket was discarded"""

    def __init__(self):
        super().__init__()
        self.sent_at_discard = None

    def discard(self, connection_id):
        super().discard(connection_id)
        self.sent_at_discard = list(self.sent)


@pytest.mark.asyncio
async def test_cancelled_disconnect_still_delivers_left_before_discard():
    registry = ConnectionRegistry()
    transport = DiscardSnapshotTransport()
    rooms = RoomManager(registry, EventDispatcher(transport))
    registry.register("c1")
    registry.register("c2")
    transport.gate.set()
    await rooms.join("c1", "r1")
    await rooms.join("c2", "r1")
    transport.gate.clear()

    task = asyncio.create_task(rooms.disconnect("c2"))
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert not registry.is_registered("c2")
    assert rooms.get_room("r1").members == {"c1"}
    assert transport.discarded == []

    transport.gate.set()
    for _ in range(100):
        if transport.discarded:
            break
        await asyncio.sleep(0.01)

    left = {"event": "left", "roomId": "r1", "connectionId": "c2"}
    assert transport.discarded == ["c2"]
    assert transport.events_for("c1")[-1] == left
    assert ("c1", left) in transport.sent_at_discard


class FlakyTransport(RecordingTransport):
    async def send(self, connection_id, message):
        if connection_id == "dead":
            raise ConnectionResetError("socket closed")
        await super().send(connection_id, message)


@pytest.mark.asyncio
async def test_failed_send_does_not_block_other_members():
    registry = ConnectionRegistry()
    transport = FlakyTransport()
    rooms = RoomManager(registry, EventDispatcher(transport))
    registry.register("dead")
    registry.register("alive")
    await rooms.join("dead", "r1")

    await rooms.join("alive", "r1")

    assert transport.events_for("alive") == [{"event": "joined", "roomId": "r1", "connectionId": "alive"}]


@pytest.mark.asyncio
async def test_bind_offer_rules(registry, rooms, transport):
    registry.register("c1")

    with pytest.raises(RoomNotFound):
        await rooms.bind_offer("r1", make_offer("o1", "r1", 10))

    await rooms.join("c1", "r1")
    with pytest.raises(ValidationError):
        await rooms.bind_offer("r1", make_offer("o1", "other-room", 10))
    with pytest.raises(ValidationError):
        make_offer("o1", "r1", 101)

    await rooms.bind_offer("r1", make_offer("o1", "r1", "12.5"))
    assert transport.events_for("c1")[-1] == {
        "event": "offer_bound",
        "roomId": "r1",
        "offerId": "o1",
        "discountPercent": "12.5",
    }

    await rooms.clear_offer("r1")
    assert rooms.get_room("r1").offer is None
    assert transport.events_for("c1")[-1]["event"] == "offer_cleared"


@pytest.mark.asyncio
async def test_active_offer_for_respects_membership_and_expiry(registry, rooms):
    registry.register("member")
    registry.register("outsider")
    await rooms.join("member", "r1")
    now = utcnow()
    await rooms.bind_offer("r1", make_offer("o1", "r1", 10, expires_at=now + timedelta(minutes=5)))

    assert rooms.active_offer_for("member", now).offer_id == "o1"
    assert rooms.active_offer_for("outsider", now) is None
    assert rooms.active_offer_for("member", now + timedelta(minutes=5)) is None


@pytest.mark.asyncio
async def test_room_ids_lists_only_active_rooms(registry, rooms):
    registry.register("c1")
    registry.register("c2")
    await rooms.join("c1", "r1")
    await rooms.join("c2", "r2")

    assert sorted(rooms.room_ids()) == ["r1", "r2"]

    await rooms.leave("c2", "r2")
    assert rooms.room_ids() == ["r1"]
