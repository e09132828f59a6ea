import pytest

from core.connection_registry import ConnectionRegistry
from core.exceptions import ConnectionNotFound


def test_register_then_room_of_is_none():
    registry = ConnectionRegistry()
    connection = registry.register("c1", transport="socket-1")

    assert connection.transport == "socket-1"
    assert registry.room_of("c1") is None
    assert registry.is_registered("c1")


def test_register_twice_keeps_first_connection():
    registry = ConnectionRegistry()
    first = registry.register("c1", transport="a")
    second = registry.register("c1", transport="b")

    assert second is first
    assert registry.get("c1").transport == "a"
    assert len(registry) == 1


def test_unregister_returns_current_room():
    registry = ConnectionRegistry()
    registry.register("c1")
    registry.set_room("c1", "r1")

    assert registry.unregister("c1") == {"r1"}
    assert not registry.is_registered("c1")
    assert registry.room_of("c1") is None


def test_unregister_without_room_or_unknown_returns_empty_set():
    registry = ConnectionRegistry()
    registry.register("c1")

    assert registry.unregister("c1") == set()
    assert registry.unregister("never-seen") == set()


def test_get_unknown_connection_raises():
    registry = ConnectionRegistry()

    with pytest.raises(ConnectionNotFound):
        registry.get("ghost")
    with pytest.raises(ConnectionNotFound):
        registry.set_room("ghost", "r1")
