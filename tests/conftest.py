"""Shared fixtures: an in-memory SQLite store and an HTTP client bound to it."""

from decimal import Decimal

import httpx
import pytest
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from marketplace.database import Base, get_db
from marketplace.main import app
from marketplace.models import Product, Order, Payment


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def add_product(db, product_id, vendor_id, price, quantity, name=None):
    product = Product(
        id=product_id,
        vendor_id=vendor_id,
        name=name or f"Product {product_id}",
        price=Decimal(price),
        quantity=quantity,
    )
    db.add(product)
    await db.commit()
    return product


async def seed_two_vendor_catalog(db):
    """Vendor 10 sells product 1 @ 10.00, vendor 20 sells product 2 @ 5.00."""
    await add_product(db, 1, vendor_id=10, price="10.00", quantity=5)
    await add_product(db, 2, vendor_id=20, price="5.00", quantity=10)


async def count_orders(db):
    return (await db.execute(select(func.count(Order.id)))).scalar()


async def count_payments(db):
    return (await db.execute(select(func.count(Payment.id)))).scalar()


def customer(user_id=1):
    return {"X-User-Id": str(user_id), "X-User-Role": "customer"}


def vendor(user_id):
    return {"X-User-Id": str(user_id), "X-User-Role": "vendor"}


def admin(user_id=999):
    return {"X-User-Id": str(user_id), "X-User-Role": "admin"}
