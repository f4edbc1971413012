"""Transaction scope and retry of transient store failures."""

from decimal import Decimal

import pytest
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError

from marketplace.config import settings
from marketplace.database import transaction
from marketplace.errors import InsufficientStock, TransientStoreError
from marketplace.models import Product
from marketplace.services import InventoryService, OrderService
from marketplace.utils.retry import store_retry

from tests.conftest import add_product, count_orders, seed_two_vendor_catalog


def _connection_lost():
    return OperationalError("SELECT 1", {}, Exception("server closed the connection unexpectedly"))


class TestTransaction:
    async def test_operational_error_becomes_transient_and_rolls_back(self, db):
        with pytest.raises(TransientStoreError) as exc_info:
            async with transaction(db):
                db.add(Product(id=1, vendor_id=10, name="Lamp", price=Decimal("9.99"), quantity=3))
                await db.flush()
                raise _connection_lost()

        assert isinstance(exc_info.value.__cause__, OperationalError)
        assert exc_info.value.status_code == 503
        assert (await db.execute(select(func.count(Product.id)))).scalar() == 0

    async def test_business_error_is_reraised_unchanged(self, db):
        with pytest.raises(InsufficientStock):
            async with transaction(db):
                db.add(Product(id=1, vendor_id=10, name="Lamp", price=Decimal("9.99"), quantity=3))
                await db.flush()
                raise InsufficientStock(1, 5, 3)

        assert (await db.execute(select(func.count(Product.id)))).scalar() == 0

    async def test_commits_on_success(self, db):
        async with transaction(db):
            db.add(Product(id=1, vendor_id=10, name="Lamp", price=Decimal("9.99"), quantity=3))

        assert await InventoryService(db).get_stock(1) == 3


class TestStoreRetry:
    async def test_gives_up_after_configured_attempts(self):
        calls = []

        @store_retry()
        async def _always_down():
            calls.append(1)
            raise TransientStoreError("Data store temporarily unavailable")

        with pytest.raises(TransientStoreError):
            await _always_down()

        assert len(calls) == settings.store_retry_attempts

    async def test_checkout_is_retried_after_connection_loss(self, db, monkeypatch):
        await seed_two_vendor_catalog(db)
        calls = []
        original = InventoryService.reserve_stock

        async def _flaky_reserve(self, product_id, quantity):
            calls.append(product_id)
            if len(calls) == 2:
                raise _connection_lost()
            return await original(self, product_id, quantity)

        monkeypatch.setattr(InventoryService, "reserve_stock", _flaky_reserve)

        result = await OrderService(db).create_order_hierarchy(buyer_id=1, items=[(1, 1), (2, 2)])

        assert len(calls) == 4
        assert len(result.child_orders) == 2
        assert await count_orders(db) == 3
        inventory = InventoryService(db)
        assert await inventory.get_stock(1) == 4
        assert await inventory.get_stock(2) == 8

    async def test_business_rejection_is_not_retried(self, db, monkeypatch):
        await add_product(db, 1, vendor_id=10, price="10.00", quantity=3)
        calls = []
        original = OrderService.build_hierarchy

        async def _counting_build(self, *args, **kwargs):
            calls.append(1)
            return await original(self, *args, **kwargs)

        monkeypatch.setattr(OrderService, "build_hierarchy", _counting_build)

        with pytest.raises(InsufficientStock):
            await OrderService(db).create_order_hierarchy(buyer_id=1, items=[(1, 5)])

        assert calls == [1]
        assert await count_orders(db) == 0
