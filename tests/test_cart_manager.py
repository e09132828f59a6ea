import asyncio

import pytest

from conftest import InMemoryCartRepository
from core.cart_manager import CartManager
from core.entities import ItemKey
from core.exceptions import CartItemNotFound, PersistenceFailure, ValidationError


@pytest.mark.asyncio
async def test_add_item_is_persisted(carts, cart_repository):
    await carts.add_item("u1", "p1", None, 2)
    await carts.add_item("u1", "p1", None, 3)
    await carts.add_item("u1", "p2", "v1", 1)

    stored = cart_repository.load("u1")
    assert stored.quantities() == {ItemKey("p1", None): 5, ItemKey("p2", "v1"): 1}
    assert list(stored.items) == [ItemKey("p1", None), ItemKey("p2", "v1")]


@pytest.mark.asyncio
async def test_unknown_owner_gets_empty_cart(carts):
    cart = await carts.get_cart("nobody")

    assert cart.owner_id == "nobody"
    assert cart.items == {}


@pytest.mark.asyncio
async def test_sync_end_to_end(carts, cart_repository):
    await carts.add_item("u1", "p1", None, 2)

    result = await carts.sync(
        "u1",
        [
            {"product_id": "p1", "variant_id": None, "quantity": 5},
            {"product_id": "p2", "variant_id": "v1", "quantity": 1},
        ],
    )

    expected = {ItemKey("p1", None): 5, ItemKey("p2", "v1"): 1}
    assert result.cart.quantities() == expected
    assert cart_repository.load("u1").quantities() == expected


@pytest.mark.asyncio
async def test_sync_reports_rejected_lines(carts):
    result = await carts.sync(
        "u1",
        [
            {"product_id": "p1", "quantity": 1},
            {"product_id": "p2", "quantity": 0},
            {"product_id": "p3", "quantity": 2},
        ],
    )

    assert len(result.accepted) == 2
    assert len(result.rejected) == 1
    assert result.warnings[0].product_id == "p2"


@pytest.mark.asyncio
async def test_update_remove_and_clear(carts, cart_repository):
    await carts.add_item("u1", "p1", None, 2)
    await carts.add_item("u1", "p2", None, 1)

    await carts.update_item("u1", ItemKey("p1"), 4)
    await carts.remove_item("u1", ItemKey("p2"))
    assert cart_repository.load("u1").quantities() == {ItemKey("p1", None): 4}

    with pytest.raises(CartItemNotFound):
        await carts.update_item("u1", ItemKey("p2"), 1)

    await carts.clear_cart("u1")
    assert cart_repository.load("u1").items == {}


@pytest.mark.asyncio
async def test_validation_error_saves_nothing():
    repository = InMemoryCartRepository()
    carts = CartManager(repository)

    with pytest.raises(ValidationError):
        await carts.add_item("u1", "p1", None, 0)
    assert repository.saves == 0


@pytest.mark.asyncio
async def test_concurrent_adds_for_one_owner_are_not_lost():
    repository = InMemoryCartRepository(delay=0.01)
    carts = CartManager(repository)

    await asyncio.gather(*[carts.add_item("u1", "p1", None, 1) for _ in range(10)])

    assert repository.carts["u1"].quantities() == {ItemKey("p1", None): 10}


@pytest.mark.asyncio
async def test_add_and_sync_race_is_serialized():
    repository = InMemoryCartRepository(delay=0.01)
    carts = CartManager(repository)

    await asyncio.gather(
        carts.add_item("u1", "p1", None, 2),
        carts.sync("u1", [{"product_id": "p2", "quantity": 3}]),
    )

    assert repository.carts["u1"].quantities() == {ItemKey("p1", None): 2, ItemKey("p2", None): 3}


@pytest.mark.asyncio
async def test_persistence_failure_carries_unsaved_result(memory_carts):
    carts = CartManager(memory_carts)
    await carts.add_item("u1", "p1", None, 1)
    memory_carts.fail_saves = True

    with pytest.raises(PersistenceFailure) as exc_info:
        await carts.add_item("u1", "p1", None, 4)

    assert exc_info.value.result.cart.quantities() == {ItemKey("p1", None): 5}
    assert memory_carts.carts["u1"].quantities() == {ItemKey("p1", None): 1}
