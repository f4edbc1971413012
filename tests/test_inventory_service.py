"""Inventory ledger: stock reservation under row locks."""

import pytest

from marketplace.database import transaction
from marketplace.errors import InsufficientStock, NotFound
from marketplace.services import InventoryService

from tests.conftest import add_product


class TestReserveStock:
    async def test_decrements_on_hand(self, db):
        await add_product(db, 1, vendor_id=10, price="3.50", quantity=5)
        inventory = InventoryService(db)

        async with transaction(db):
            await inventory.reserve_stock(1, 2)

        assert await inventory.get_stock(1) == 3

    async def test_can_take_stock_to_exactly_zero(self, db):
        await add_product(db, 1, vendor_id=10, price="3.50", quantity=2)
        inventory = InventoryService(db)

        async with transaction(db):
            await inventory.reserve_stock(1, 2)

        assert await inventory.get_stock(1) == 0

    async def test_over_request_fails_without_mutation(self, db):
        await add_product(db, 1, vendor_id=10, price="3.50", quantity=3)
        inventory = InventoryService(db)

        with pytest.raises(InsufficientStock) as exc_info:
            async with transaction(db):
                await inventory.reserve_stock(1, 5)

        assert exc_info.value.requested == 5
        assert exc_info.value.available == 3
        assert await inventory.get_stock(1) == 3

    async def test_unknown_product(self, db):
        inventory = InventoryService(db)

        with pytest.raises(NotFound):
            async with transaction(db):
                await inventory.reserve_stock(42, 1)

    async def test_failure_rolls_back_earlier_reservations(self, db):
        await add_product(db, 1, vendor_id=10, price="1.00", quantity=5)
        await add_product(db, 2, vendor_id=10, price="1.00", quantity=1)
        inventory = InventoryService(db)

        with pytest.raises(InsufficientStock):
            async with transaction(db):
                await inventory.reserve_stock(1, 4)
                await inventory.reserve_stock(2, 2)

        assert await inventory.get_stock(1) == 5
        assert await inventory.get_stock(2) == 1


class TestLockProducts:
    async def test_returns_found_rows_keyed_by_id(self, db):
        await add_product(db, 3, vendor_id=10, price="1.00", quantity=1)
        await add_product(db, 1, vendor_id=10, price="1.00", quantity=1)

        async with transaction(db):
            products = await InventoryService(db).lock_products([3, 1, 7, 3])

        assert sorted(products) == [1, 3]

    async def test_empty_input(self, db):
        assert await InventoryService(db).lock_products([]) == {}
