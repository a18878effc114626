import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from delivery_core.database import engine
from delivery_core.infrastructure.db_schema import metadata
from delivery_core.presentation.api import router

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Управление жизненным циклом приложения"""
    try:
        async with engine.begin() as conn:
            await conn.run_sync(metadata.create_all)
        logger.info("Таблицы созданы")
    except Exception as e:
        logger.error(f"Не удалось создать таблицы: {e}")

    yield

    logger.info("Приложение останавливается...")
    await engine.dispose()


app = FastAPI(
    title="Delivery Core",
    description="Заказы, цены доставки и диспетчеризация курьеров",
    version="1.0.0",
    lifespan=lifespan
)

app.include_router(router, prefix="/api")


@app.get("/health")
async def health():
    return {"status": "healthy"}
