import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

# Load env from the project root .env (not under pytest)
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from qrforge.core.config import settings, validate_config
from qrforge.core.database import create_all_tables
from qrforge.core.logging import configure_logging
from qrforge.core.middleware.request_id import RequestIdMiddleware
from qrforge.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from qrforge.api import admin, health, subscription, usage


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("qrforge")
    logger.info("Starting qrforge API...")
    create_all_tables()
    try:
        yield
    finally:
        logger.info("Stopping qrforge API...")


def create_app() -> FastAPI:
    configure_logging(settings.ENV)
    validate_config(strict=getattr(settings, "CONFIG_STRICT", False))

    app = FastAPI(title="qrforge", lifespan=lifespan)

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(usage.router)
    app.include_router(subscription.router)
    app.include_router(admin.router)
    app.include_router(health.router)
    app.include_router(health.root_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("qrforge.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
