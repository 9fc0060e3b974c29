from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from rewardledger_api.core.settings import settings
from rewardledger_api.db.session import async_session
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .workers import ReservationCleanupWorker, VoucherExpiryWorker


APP_VERSION = "0.1.0"


def _session_factory():
    return async_session()


@asynccontextmanager
async def lifespan(app: FastAPI):
    cleanup_worker = ReservationCleanupWorker(
        session_factory=_session_factory,
        interval_seconds=settings.reservation_cleanup_interval_seconds,
        limit=settings.reservation_cleanup_limit,
        older_than_seconds=settings.reward_reservation_stale_seconds,
    )
    expiry_worker = VoucherExpiryWorker(
        session_factory=_session_factory,
        interval_seconds=settings.voucher_expiry_interval_seconds,
        limit=settings.voucher_expiry_limit,
    )
    app.state.reservation_cleanup_worker = cleanup_worker
    app.state.voucher_expiry_worker = expiry_worker

    cleanup_enabled = settings.reservation_cleanup_worker_enabled
    if cleanup_enabled:
        cleanup_worker.start()
        logger.info(
            "Reservation cleanup worker enabled",
            interval_seconds=cleanup_worker.interval_seconds,
            limit=settings.reservation_cleanup_limit,
        )
    else:
        logger.info(
            "Reservation cleanup worker disabled",
            reason="reservation_cleanup_worker_enabled is false",
        )

    expiry_enabled = settings.voucher_expiry_worker_enabled
    if expiry_enabled:
        expiry_worker.start()
        logger.info(
            "Voucher expiry worker enabled",
            interval_seconds=expiry_worker.interval_seconds,
            limit=settings.voucher_expiry_limit,
        )
    else:
        logger.info(
            "Voucher expiry worker disabled",
            reason="voucher_expiry_worker_enabled is false",
        )

    try:
        yield
    finally:
        if cleanup_enabled and cleanup_worker.is_running:
            await cleanup_worker.stop()
        if expiry_enabled and expiry_worker.is_running:
            await expiry_worker.stop()


def create_app() -> FastAPI:
    """Application factory for the reward ledger FastAPI service."""
    configure_logging(
        service_name="rewardledger-api",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="Reward Ledger API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="rewardledger-api",
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
