"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from backend.repository.data_repository import DataRepository
from backend.services.advisory_service import AdvisoryOrchestrator


def get_repository(request: Request) -> DataRepository:
    repository = getattr(request.app.state, "repository", None)
    if repository is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Repository is not initialized",
        )
    return repository


def get_orchestrator(request: Request) -> AdvisoryOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Analytics service is not initialized",
        )
    return orchestrator
