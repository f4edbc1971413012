from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from contextlib import asynccontextmanager
from sqlalchemy import text
import logging

from .config import settings
from .database import engine, Base, wait_for_db
from .errors import MarketplaceError
from .events.producer import event_producer
from .api import api_router
from . import models  # noqa: F401  регистрирует таблицы в Base.metadata

# Настройка логирования
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Управление жизненным циклом приложения"""
    # Startup
    logger.info(f"🚀 Starting {settings.app_name}...")

    try:
        await wait_for_db()

        # Создаем таблицы
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("✅ Database tables created")

        if settings.kafka_enabled:
            await event_producer.start()
        else:
            logger.info("ℹ️ Kafka disabled, domain events will not be published")

        logger.info(f"🎉 {settings.app_name} started successfully!")

        yield  # Приложение работает

    except Exception as e:
        logger.error(f"❌ Failed to start {settings.app_name}: {e}")
        raise

    # Shutdown
    logger.info(f"🛑 Shutting down {settings.app_name}...")

    try:
        await event_producer.stop()

        # Закрываем соединение с БД
        await engine.dispose()
        logger.info("✅ Database connection closed")

        logger.info(f"👋 {settings.app_name} shut down complete")

    except Exception as e:
        logger.error(f"❌ Error during shutdown: {e}")


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        description="Заказы маркетплейса: склад, иерархия заказов, сверка платежей, корзина",
        version="1.0.0",
        lifespan=lifespan
    )

    # Настройка CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Подключаем API routes
    app.include_router(api_router)

    @app.exception_handler(MarketplaceError)
    async def marketplace_error_handler(request: Request, exc: MarketplaceError):
        """Доменные ошибки -> {"error", "message", "details"}"""
        if exc.status_code >= 500:
            logger.error(f"❌ {exc.kind} on {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        """Некорректное тело/параметры запроса"""
        return JSONResponse(
            status_code=400,
            content=jsonable_encoder({
                "error": "validation_error",
                "message": "Request validation failed",
                "details": {"errors": exc.errors()}
            })
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Глобальный обработчик исключений"""
        logger.error(f"❌ Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "unknown",
                "message": "An unexpected error occurred",
                "details": {}
            }
        )

    # Health check endpoints
    @app.get("/health")
    async def health_check():
        """Проверка состояния сервиса"""
        return {
            "status": "healthy",
            "service": "marketplace",
            "version": "1.0.0"
        }

    @app.get("/health/ready")
    async def readiness_check():
        """Проверка готовности к обработке запросов"""
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as e:
            logger.error(f"❌ Readiness check failed: {e}")
            raise HTTPException(status_code=503, detail="Service not ready")

        return {
            "status": "ready",
            "service": "marketplace",
            "kafka": event_producer.producer is not None
        }

    return app


# Создаем FastAPI приложение
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "marketplace.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
