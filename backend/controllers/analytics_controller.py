"""HTTP controller layer for fairness, booking, forecast and cost analytics."""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field, field_validator, model_validator

from backend.controllers.dependencies import get_orchestrator, get_repository
from backend.domain.constraints import AnalyticsValidationError
from backend.repository.data_repository import DataRepository
from backend.services.advisory_service import AdvisoryOrchestrator, CapabilityResult
from backend.services.booking_service import MAX_DURATION_MINUTES, BookingRequest
from backend.utils.config import get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

SOURCE_HEADER = "X-Analytics-Source"

router = APIRouter(prefix="/api/ai", tags=["analytics"])


class SuggestBookingRequest(BaseModel):
    """Input DTO validated before entering service layer."""

    group_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    preferred_date: Optional[date] = None
    preferred_time: Optional[time] = None
    duration_minutes: int = Field(gt=0, le=MAX_DURATION_MINUTES)

    @field_validator("group_id", "user_id")
    @classmethod
    def validate_identifier(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("identifier must be non-empty")
        return value.strip()


class FairnessWindowQuery(BaseModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_window(self) -> "FairnessWindowQuery":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    database: str


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _respond(result: CapabilityResult, response: Response, not_found_detail: str) -> dict[str, Any]:
    response.headers[SOURCE_HEADER] = result.source
    if result.payload is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=not_found_detail,
            headers={SOURCE_HEADER: result.source},
        )
    return result.payload


@router.get("/fairness-score/{group_id}", status_code=status.HTTP_200_OK)
async def get_fairness_score(
    group_id: str,
    response: Response,
    start_date: Optional[datetime] = Query(default=None),
    end_date: Optional[datetime] = Query(default=None),
    orchestrator: AdvisoryOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Fairness score, alerts, recommendations and trend for a group window."""
    try:
        window = FairnessWindowQuery(start_date=_naive_utc(start_date), end_date=_naive_utc(end_date))
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc

    try:
        result = await orchestrator.fairness(group_id, window.start_date, window.end_date)
    except AnalyticsValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
    return _respond(result, response, f"No usage data found for group {group_id}")


@router.post("/suggest-booking-time", status_code=status.HTTP_200_OK)
async def suggest_booking_time(
    payload: SuggestBookingRequest,
    response: Response,
    orchestrator: AdvisoryOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    request = BookingRequest(
        group_id=payload.group_id,
        user_id=payload.user_id,
        duration_minutes=payload.duration_minutes,
        preferred_date=payload.preferred_date,
        preferred_time=payload.preferred_time,
    )
    try:
        result = await orchestrator.booking_suggestions(request)
    except AnalyticsValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
    return _respond(result, response, f"Group {payload.group_id} not found")


@router.get("/usage-predictions/{group_id}", status_code=status.HTTP_200_OK)
async def get_usage_predictions(
    group_id: str,
    response: Response,
    orchestrator: AdvisoryOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    result = await orchestrator.usage_forecast(group_id)
    return _respond(result, response, f"Group {group_id} not found")


@router.get("/cost-optimization/{group_id}", status_code=status.HTTP_200_OK)
async def get_cost_optimization(
    group_id: str,
    response: Response,
    orchestrator: AdvisoryOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    result = await orchestrator.cost_optimization(group_id)
    return _respond(result, response, f"Group {group_id} not found")


@router.get("/health", response_model=HealthResponse, status_code=status.HTTP_200_OK)
async def health(repository: DataRepository = Depends(get_repository)) -> HealthResponse:
    settings = get_settings()
    return HealthResponse(
        status="healthy",
        service=settings.app_name,
        version=settings.app_version,
        database="ok" if repository.database_path.exists() else "missing",
    )
