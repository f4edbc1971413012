"""Cart aggregation, guest cart merge and checkout from a cart."""

from decimal import Decimal

import pytest
from sqlalchemy import select, func

from marketplace.errors import Forbidden, InsufficientStock, InvalidItems, NotFound
from marketplace.models import Cart, CartItem
from marketplace.services import CartService, InventoryService

from tests.conftest import add_product, count_orders, seed_two_vendor_catalog


async def _count_carts(db):
    return (await db.execute(select(func.count(Cart.id)))).scalar()


async def _count_cart_items(db):
    return (await db.execute(select(func.count(CartItem.id)))).scalar()


class TestCartAggregation:
    async def test_new_user_cart_is_empty(self, db):
        cart = await CartService(db).get_cart(user_id=1)

        assert cart.cart_id is None
        assert cart.user_id == 1
        assert cart.item_count == 0
        assert cart.total_amount == Decimal("0.00")
        assert cart.items == []

    async def test_reading_does_not_create_a_cart(self, db):
        await CartService(db).get_cart(user_id=1)

        assert await _count_carts(db) == 0

    async def test_totals_follow_every_mutation(self, db):
        await seed_two_vendor_catalog(db)
        carts = CartService(db)

        cart = await carts.add_item(1, 2, user_id=1)
        assert (cart.item_count, cart.total_amount) == (2, Decimal("20.00"))

        cart = await carts.add_item(2, 3, user_id=1)
        assert (cart.item_count, cart.total_amount) == (5, Decimal("35.00"))

        item_2 = next(i for i in cart.items if i.product_id == 2)
        cart = await carts.update_item(item_2.id, 1, user_id=1)
        assert (cart.item_count, cart.total_amount) == (3, Decimal("25.00"))

        item_1 = next(i for i in cart.items if i.product_id == 1)
        cart = await carts.remove_item(item_1.id, user_id=1)
        assert (cart.item_count, cart.total_amount) == (1, Decimal("5.00"))

    async def test_adding_same_product_sums_quantities(self, db):
        await seed_two_vendor_catalog(db)
        carts = CartService(db)

        await carts.add_item(2, 1, user_id=1)
        cart = await carts.add_item(2, 4, user_id=1)

        assert len(cart.items) == 1
        assert cart.items[0].quantity == 5
        assert cart.total_amount == Decimal("25.00")

    async def test_update_to_zero_removes_item(self, db):
        await seed_two_vendor_catalog(db)
        carts = CartService(db)
        cart = await carts.add_item(1, 1, user_id=1)

        cart = await carts.update_item(cart.items[0].id, 0, user_id=1)

        assert cart.items == []
        assert cart.item_count == 0
        assert cart.total_amount == Decimal("0.00")

    async def test_clear_cart(self, db):
        await seed_two_vendor_catalog(db)
        carts = CartService(db)
        await carts.add_item(1, 1, user_id=1)
        await carts.add_item(2, 1, user_id=1)

        cart = await carts.clear_cart(user_id=1)

        assert cart.items == []
        assert cart.total_amount == Decimal("0.00")

    async def test_unknown_product(self, db):
        with pytest.raises(NotFound):
            await CartService(db).add_item(42, 1, user_id=1)

    async def test_cannot_touch_another_users_item(self, db):
        await seed_two_vendor_catalog(db)
        carts = CartService(db)
        foreign = await carts.add_item(1, 1, user_id=2)
        await carts.add_item(2, 1, user_id=1)

        with pytest.raises(Forbidden):
            await carts.update_item(foreign.items[0].id, 3, user_id=1)

    async def test_missing_item(self, db):
        await seed_two_vendor_catalog(db)
        carts = CartService(db)
        await carts.add_item(1, 1, user_id=1)

        with pytest.raises(NotFound):
            await carts.remove_item(123, user_id=1)


class TestGuestCart:
    async def test_add_without_owner_creates_guest_cart_with_token(self, db):
        await seed_two_vendor_catalog(db)
        carts = CartService(db)

        cart = await carts.add_item(1, 1)

        assert cart.user_id is None
        assert cart.cart_token
        same = await carts.get_cart(token=cart.cart_token)
        assert same.cart_id == cart.cart_id

    async def test_unknown_token(self, db):
        with pytest.raises(NotFound):
            await CartService(db).get_cart(token="nope")


class TestMergeGuestCart:
    async def test_sums_matching_products_and_appends_others(self, db):
        await seed_two_vendor_catalog(db)
        carts = CartService(db)
        guest = await carts.add_item(1, 2)
        await carts.add_item(2, 1, token=guest.cart_token)
        await carts.add_item(1, 1, user_id=7)

        merged = await carts.merge_guest_cart(guest.cart_token, user_id=7)

        quantities = {i.product_id: i.quantity for i in merged.items}
        assert quantities == {1: 3, 2: 1}
        assert merged.item_count == 4
        assert merged.total_amount == Decimal("35.00")

    async def test_guest_cart_is_deleted(self, db):
        await seed_two_vendor_catalog(db)
        carts = CartService(db)
        guest = await carts.add_item(1, 2)

        await carts.merge_guest_cart(guest.cart_token, user_id=7)

        assert await _count_carts(db) == 1
        with pytest.raises(NotFound):
            await carts.get_cart(token=guest.cart_token)

    async def test_creates_user_cart_when_missing(self, db):
        await seed_two_vendor_catalog(db)
        carts = CartService(db)
        guest = await carts.add_item(2, 2)

        merged = await carts.merge_guest_cart(guest.cart_token, user_id=7)

        assert merged.user_id == 7
        assert merged.total_amount == Decimal("10.00")

    async def test_unknown_guest_token(self, db):
        with pytest.raises(NotFound):
            await CartService(db).merge_guest_cart("nope", user_id=7)


class TestCartCheckout:
    async def test_builds_hierarchy_and_deletes_cart(self, db):
        await seed_two_vendor_catalog(db)
        carts = CartService(db)
        await carts.add_item(1, 1, user_id=1)
        await carts.add_item(2, 2, user_id=1)

        result = await carts.checkout(buyer_id=1, shipping_address="1 Main St")

        assert result.master_order.total_amount == Decimal("20.00")
        assert [c.vendor_id for c in result.child_orders] == [10, 20]
        assert await _count_carts(db) == 0
        assert await _count_cart_items(db) == 0
        assert await InventoryService(db).get_stock(2) == 8

    async def test_reprices_from_ledger(self, db):
        await add_product(db, 1, vendor_id=10, price="10.00", quantity=5)
        carts = CartService(db)
        await carts.add_item(1, 2, user_id=1)
        product = await InventoryService(db).lock_products([1])
        product[1].price = Decimal("12.00")
        await db.commit()

        result = await carts.checkout(buyer_id=1)

        assert result.master_order.total_amount == Decimal("24.00")

    async def test_stock_shortage_keeps_cart(self, db):
        await add_product(db, 1, vendor_id=10, price="10.00", quantity=5)
        carts = CartService(db)
        await carts.add_item(1, 6, user_id=1)

        with pytest.raises(InsufficientStock):
            await carts.checkout(buyer_id=1)

        assert await count_orders(db) == 0
        assert await _count_cart_items(db) == 1

    async def test_empty_cart(self, db):
        await seed_two_vendor_catalog(db)
        carts = CartService(db)
        await carts.add_item(1, 1, user_id=1)
        await carts.clear_cart(user_id=1)

        with pytest.raises(InvalidItems):
            await carts.checkout(buyer_id=1)

    async def test_no_cart(self, db):
        with pytest.raises(NotFound):
            await CartService(db).checkout(buyer_id=1)


class TestCartRowLocking:
    async def test_every_mutation_locks_the_cart_row(self, db, monkeypatch):
        await seed_two_vendor_catalog(db)
        carts = CartService(db)
        await carts.add_item(1, 1, user_id=1)

        lookups = []
        original = CartService._find_cart

        async def _recording_find_cart(self, user_id=None, token=None, for_update=False):
            lookups.append(for_update)
            return await original(self, user_id=user_id, token=token, for_update=for_update)

        monkeypatch.setattr(CartService, "_find_cart", _recording_find_cart)

        cart = await carts.add_item(2, 1, user_id=1)
        cart = await carts.update_item(cart.items[0].id, 3, user_id=1)
        cart = await carts.remove_item(cart.items[1].id, user_id=1)
        await carts.clear_cart(user_id=1)

        assert lookups == [True, True, True, True]

    async def test_concurrently_created_cart_is_reused(self, db, monkeypatch):
        await seed_two_vendor_catalog(db)
        carts = CartService(db)
        await carts.add_item(1, 1, user_id=1)

        calls = []
        original = CartService._find_cart

        async def _stale_first_lookup(self, user_id=None, token=None, for_update=False):
            calls.append(user_id)
            if len(calls) == 1:
                # another request inserted the row after this lookup
                return None
            return await original(self, user_id=user_id, token=token, for_update=for_update)

        monkeypatch.setattr(CartService, "_find_cart", _stale_first_lookup)

        cart = await carts.add_item(2, 2, user_id=1)

        assert len(calls) == 2
        assert await _count_carts(db) == 1
        assert (cart.item_count, cart.total_amount) == (3, Decimal("20.00"))
        assert {i.product_id: i.quantity for i in cart.items} == {1: 1, 2: 2}
