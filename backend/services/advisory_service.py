"""Advisory-first orchestration with deterministic engine fallback."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Union

import httpx
from pydantic import BaseModel

from backend.domain.schemas import (
    BookingSuggestionsSchema,
    CostOptimizationSchema,
    FairnessResultSchema,
    UsageForecastSchema,
)
from backend.services.advisory_client import AdvisoryClient
from backend.services.booking_service import BookingRequest, BookingService
from backend.services.cost_service import CostService
from backend.services.fairness_service import FairnessService, FairnessValidationError
from backend.services.forecast_service import ForecastService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

SOURCE_ADVISORY = "advisory"
SOURCE_ENGINE = "engine"


@dataclass(frozen=True)
class Advisory:
    payload: dict[str, Any]


@dataclass(frozen=True)
class Fallback:
    reason: str


ConsultOutcome = Union[Advisory, Fallback]


@dataclass(frozen=True)
class CapabilityResult:
    source: str
    payload: Optional[dict[str, Any]]

    @property
    def found(self) -> bool:
        return self.payload is not None


class AdvisoryOrchestrator:
    """Consults the advisory backend once per call and falls back to the engine."""

    def __init__(
        self,
        fairness_service: FairnessService,
        booking_service: BookingService,
        forecast_service: ForecastService,
        cost_service: CostService,
        advisory_client: Optional[AdvisoryClient] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._fairness_service = fairness_service
        self._booking_service = booking_service
        self._forecast_service = forecast_service
        self._cost_service = cost_service
        self._advisory_client = advisory_client or AdvisoryClient(settings=self._settings)

    async def consult(
        self,
        capability: str,
        payload: dict[str, Any],
        schema: type[BaseModel],
        group_id: str,
    ) -> ConsultOutcome:
        """Single advisory attempt; every failure mode becomes a ``Fallback``."""
        try:
            response = await self._advisory_client.request(capability, payload)
        except httpx.HTTPError as exc:
            return Fallback(reason=f"advisory request failed: {exc.__class__.__name__}: {exc}")
        except ValueError as exc:
            return Fallback(reason=f"advisory response unreadable: {exc}")
        except Exception as exc:  # advisory faults never reach the caller
            logger.exception("Unexpected advisory client failure | capability=%s", capability)
            return Fallback(reason=f"advisory client error: {exc.__class__.__name__}: {exc}")

        if response is None:
            return Fallback(reason="advisory returned no result")

        try:
            validated = schema.model_validate(response)
        except ValueError as exc:
            return Fallback(reason=f"advisory response failed validation: {exc}")

        if getattr(validated, "group_id", group_id) != group_id:
            return Fallback(reason="advisory response belongs to a different group")
        return Advisory(payload=validated.model_dump())

    async def _run(
        self,
        capability: str,
        request_payload: dict[str, Any],
        schema: type[BaseModel],
        group_id: str,
        engine_call: Callable[[], Any],
    ) -> CapabilityResult:
        outcome = await self.consult(capability, request_payload, schema, group_id)
        if isinstance(outcome, Advisory):
            logger.info("Advisory result accepted | capability=%s | group_id=%s", capability, group_id)
            return CapabilityResult(source=SOURCE_ADVISORY, payload=outcome.payload)

        if self._advisory_client.configured:
            logger.warning(
                "Advisory fallback | capability=%s | group_id=%s | reason=%s",
                capability,
                group_id,
                outcome.reason,
            )
        # Engine work is blocking sqlite and pandas code.
        result = await asyncio.to_thread(engine_call)
        return CapabilityResult(
            source=SOURCE_ENGINE,
            payload=result.to_dict() if result is not None else None,
        )

    async def fairness(
        self,
        group_id: str,
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
    ) -> CapabilityResult:
        if period_start is not None and period_end is not None and period_start > period_end:
            raise FairnessValidationError("start_date must not be after end_date")
        return await self._run(
            "fairness",
            {
                "group_id": group_id,
                "period_start": period_start.isoformat() if period_start else None,
                "period_end": period_end.isoformat() if period_end else None,
            },
            FairnessResultSchema,
            group_id,
            lambda: self._fairness_service.calculate(group_id, period_start, period_end),
        )

    async def booking_suggestions(self, request: BookingRequest) -> CapabilityResult:
        self._booking_service.validate_request(request)
        return await self._run(
            "booking-suggestions",
            {
                "group_id": request.group_id,
                "user_id": request.user_id,
                "duration_minutes": request.duration_minutes,
                "preferred_date": request.preferred_date.isoformat() if request.preferred_date else None,
                "preferred_time": request.preferred_time.isoformat() if request.preferred_time else None,
            },
            BookingSuggestionsSchema,
            request.group_id,
            lambda: self._booking_service.suggest(request),
        )

    async def usage_forecast(self, group_id: str) -> CapabilityResult:
        return await self._run(
            "usage-forecast",
            {"group_id": group_id},
            UsageForecastSchema,
            group_id,
            lambda: self._forecast_service.forecast(group_id),
        )

    async def cost_optimization(self, group_id: str) -> CapabilityResult:
        return await self._run(
            "cost-optimization",
            {"group_id": group_id},
            CostOptimizationSchema,
            group_id,
            lambda: self._cost_service.analyze(group_id),
        )
