"""
app.py — FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires all services, registers routers, and runs startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from backend.controllers.analytics_controller import router as analytics_router
from backend.repository.data_repository import DataRepository
from backend.services.advisory_client import AdvisoryClient
from backend.services.advisory_service import AdvisoryOrchestrator
from backend.services.booking_service import BookingService
from backend.services.cost_service import CostService
from backend.services.fairness_service import FairnessService
from backend.services.forecast_service import ForecastService
from backend.utils.config import get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def create_app() -> FastAPI:
    """
    Build and wire the FastAPI application.

    Every dependency is created here and exposed through app.state.
    """
    settings = get_settings()

    repository = DataRepository(settings)

    fairness_service = FairnessService(repository=repository, settings=settings)
    booking_service = BookingService(
        repository=repository,
        settings=settings,
        fairness_service=fairness_service,
    )
    forecast_service = ForecastService(repository=repository, settings=settings)
    cost_service = CostService(repository=repository, settings=settings)
    advisory_client = AdvisoryClient(settings=settings)
    orchestrator = AdvisoryOrchestrator(
        fairness_service=fairness_service,
        booking_service=booking_service,
        forecast_service=forecast_service,
        cost_service=cost_service,
        advisory_client=advisory_client,
        settings=settings,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        yield
        await advisory_client.aclose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.include_router(analytics_router)

    app.state.repository = repository
    app.state.fairness_service = fairness_service
    app.state.booking_service = booking_service
    app.state.forecast_service = forecast_service
    app.state.cost_service = cost_service
    app.state.advisory_client = advisory_client
    app.state.orchestrator = orchestrator

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Schema must exist before the demo group is seeded.
    """
    repository: DataRepository = app.state.repository
    advisory_client: AdvisoryClient = app.state.advisory_client

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    logger.info("Startup: seeding demo co-ownership group (skipped if groups exist)")
    repository.seed_synthetic_data()

    if advisory_client.configured:
        logger.info("Startup: advisory backend enabled")
    else:
        logger.info("Startup: advisory backend not configured; engine results only")

    logger.info("Startup complete — system ready")


# Module-level app object for uvicorn
app = create_app()
