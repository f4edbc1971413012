import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import settings
from .errors import TransientStoreError

logger = logging.getLogger(__name__)

# Создаем асинхронный движок
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
)

# Создаем сессию
AsyncSessionLocal = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)

# Базовый класс для моделей
Base = declarative_base()


def utcnow() -> datetime:
    """Временная метка на стороне приложения (не требует refresh после flush)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def get_db():
    """Dependency для получения сессии базы данных"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def transaction(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Транзакционная область: commit при нормальном выходе,
    rollback при любом исключении.

    Ошибки соединения и таймауты блокировок превращаются
    в TransientStoreError - только их разрешено повторять.
    """
    try:
        yield db
        await db.commit()
    except (OperationalError, PoolTimeoutError) as e:
        await db.rollback()
        logger.error(f"❌ Transient store error, transaction rolled back: {e}")
        raise TransientStoreError("Data store temporarily unavailable") from e
    except Exception:
        await db.rollback()
        raise


async def wait_for_db(max_retries: int = None, delay: float = None) -> bool:
    """Ожидает готовности базы данных с повторными попытками"""
    max_retries = max_retries or settings.db_connect_retries
    delay = delay if delay is not None else settings.db_connect_delay

    retries = 0
    while retries < max_retries:
        try:
            logger.info(f"Attempting to connect to database (attempt {retries + 1}/{max_retries})...")

            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))

            logger.info("✅ Database connection successful!")
            return True

        except OperationalError as e:
            retries += 1
            if retries >= max_retries:
                logger.error(f"❌ Failed to connect to database after {max_retries} attempts")
                raise e

            logger.warning(f"Database not ready, waiting {delay} seconds... (attempt {retries}/{max_retries})")
            await asyncio.sleep(delay)

    return False
