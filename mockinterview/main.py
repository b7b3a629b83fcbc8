import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

from mockinterview.core.config import settings, validate_config
from mockinterview.core.admin_auth import AdminPolicy
from mockinterview.core.database import create_all_tables
from mockinterview.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from mockinterview.core.logging import configure_logging
from mockinterview.core.middleware.request_id import RequestIdMiddleware
from mockinterview.core.validation import validate_env
from mockinterview.api import admin, health, interviews
from mockinterview.features.entitlements.service import EntitlementManager
from mockinterview.features.packs.service import seed_packs


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("mockinterview")
    logger.info("Starting mock interview backend...")
    try:
        create_all_tables()
        seeded = seed_packs()
        if seeded:
            logger.info(f"Seeded {seeded} interview packs")
    except Exception as exc:
        logger.error(f"Database bootstrap failed: {exc}")
    try:
        yield
    finally:
        logger.info("Stopping mock interview backend...")


def create_app() -> FastAPI:
    configure_logging(settings.ENV)
    validate_env()
    validate_config(strict=getattr(settings, "CONFIG_STRICT", False))

    app = FastAPI(title="Mock Interview - Backend", lifespan=lifespan)

    # Resolved once; handlers receive it through dependencies
    app.state.admin_policy = AdminPolicy.from_raw(settings.ADMIN_EMAILS)
    app.state.entitlement_manager = EntitlementManager()

    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(interviews.router)
    app.include_router(admin.router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("mockinterview.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
