import logging

from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI

from reimburse.core.conf import settings
from reimburse.database.redis import redis_client
from reimburse.src.billing.endpoints import billing_router
from reimburse.src.billing.shared.audit import audit_logger

logger = logging.getLogger(__name__)


health_router = APIRouter()


@health_router.get("/health")
async def health_check():
    return {"status": "ok"}


def register_logger() -> None:
    logging.basicConfig(level=settings.LOG_STD_LEVEL, format=settings.LOG_FORMAT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the audit drain and connect Redis; flush audit events on shutdown."""
    await redis_client.open()
    await audit_logger.start()
    logger.info(f"[APP] Started in {settings.ENVIRONMENT} mode")

    yield

    await audit_logger.stop()
    await redis_client.aclose()


def register_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    register_logger()

    app = FastAPI(
        title=settings.FASTAPI_TITLE,
        description=settings.FASTAPI_DESCRIPTION,
        docs_url=settings.FASTAPI_DOCS_URL,
        openapi_url=settings.FASTAPI_OPENAPI_URL,
        lifespan=lifespan,
    )

    app.include_router(billing_router, prefix="/billing")  # /billing/*
    app.include_router(health_router)

    return app
