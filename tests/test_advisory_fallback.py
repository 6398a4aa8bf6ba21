from __future__ import annotations

import asyncio
import json
from dataclasses import replace
from datetime import date, datetime

import httpx
import pytest

from backend.domain.models import UsageRecord
from backend.domain.schemas import FairnessResultSchema
from backend.repository.data_repository import DataRepository
from backend.services.advisory_client import AdvisoryClient, strip_code_fences
from backend.services.advisory_service import (
    SOURCE_ADVISORY,
    SOURCE_ENGINE,
    AdvisoryOrchestrator,
    Fallback,
)
from backend.services.booking_service import BookingRequest, BookingService, BookingValidationError
from backend.services.cost_service import CostService
from backend.services.fairness_service import FairnessService, FairnessValidationError
from backend.services.forecast_service import ForecastService
from backend.utils.config import get_settings


GROUP_ID = "group-advisory"


def _build_test_settings(
    tmp_path,
    filename: str,
    enabled: bool = True,
    base_url: str = "http://advisory.test",
):
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        advisory_enabled=enabled,
        advisory_base_url=base_url if enabled else "",
        advisory_api_key="test-key",
    )


def _fairness_payload(group_id: str = GROUP_ID, gini: float = 0.12) -> dict:
    return {
        "group_id": group_id,
        "period_start": "2025-03-01T00:00:00",
        "period_end": "2025-06-01T00:00:00",
        "group_fairness_score": 91.0,
        "fairness_index": 91.0,
        "gini_coefficient": gini,
        "standard_deviation_from_ownership": 4.5,
        "members": [
            {
                "user_id": "u1",
                "ownership_percentage": 50.0,
                "usage_percentage": 55.0,
                "fairness_score": 110.0,
                "is_over_utilizer": True,
                "is_under_utilizer": False,
            }
        ],
    }


def _build_orchestrator(
    tmp_path,
    filename: str,
    handler=None,
    enabled: bool = True,
    base_url: str = "http://advisory.test",
):
    settings = _build_test_settings(tmp_path, filename, enabled=enabled, base_url=base_url)
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.create_group(GROUP_ID, "Advisory Group")
    for user_id, usage in (("u1", 0.5), ("u2", 0.5)):
        repository.add_usage_record(
            UsageRecord(
                group_id=GROUP_ID,
                user_id=user_id,
                period_start=datetime(2025, 5, 1),
                period_end=datetime(2025, 5, 31),
                ownership_share=0.5,
                usage_share=usage,
                total_usage_hours=10.0,
            )
        )

    http_client = None
    if handler is not None:
        http_client = httpx.AsyncClient(
            transport=httpx.MockTransport(handler),
            base_url="http://advisory.test",
        )
    fairness_service = FairnessService(repository=repository, settings=settings)
    orchestrator = AdvisoryOrchestrator(
        fairness_service=fairness_service,
        booking_service=BookingService(
            repository=repository,
            settings=settings,
            fairness_service=fairness_service,
        ),
        forecast_service=ForecastService(repository=repository, settings=settings),
        cost_service=CostService(repository=repository, settings=settings),
        advisory_client=AdvisoryClient(settings=settings, http_client=http_client),
        settings=settings,
    )
    return orchestrator


def _window() -> dict:
    return {"period_start": datetime(2025, 4, 1), "period_end": datetime(2025, 6, 1)}


def test_strip_code_fences():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'
    assert strip_code_fences("```\n[]\n```") == "[]"


def test_valid_advisory_response_is_served(tmp_path):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_fairness_payload())

    orchestrator = _build_orchestrator(tmp_path, "valid.db", handler)
    result = asyncio.run(orchestrator.fairness(GROUP_ID, **_window()))

    assert result.source == SOURCE_ADVISORY
    assert result.payload["group_fairness_score"] == 91.0
    assert seen[0].url.path == "/fairness"
    assert seen[0].headers["Authorization"] == "Bearer test-key"
    assert json.loads(seen[0].content)["group_id"] == GROUP_ID


def test_fenced_advisory_response_is_accepted(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="```json\n" + json.dumps(_fairness_payload()) + "\n```")

    orchestrator = _build_orchestrator(tmp_path, "fenced.db", handler)
    result = asyncio.run(orchestrator.fairness(GROUP_ID, **_window()))

    assert result.source == SOURCE_ADVISORY


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="upstream exploded"),
        httpx.Response(200, text="this is not json"),
        httpx.Response(200, json=["not", "an", "object"]),
        httpx.Response(200, json=_fairness_payload(gini=3.0)),
        httpx.Response(200, json=_fairness_payload(group_id="someone-else")),
        httpx.Response(200, text=""),
    ],
    ids=["server-error", "invalid-json", "json-array", "out-of-range", "wrong-group", "empty-body"],
)
def test_failed_advisory_falls_back_to_engine(tmp_path, response):
    def handler(request: httpx.Request) -> httpx.Response:
        return response

    orchestrator = _build_orchestrator(tmp_path, "fallback.db", handler)
    result = asyncio.run(orchestrator.fairness(GROUP_ID, **_window()))

    assert result.source == SOURCE_ENGINE
    assert result.found
    assert result.payload["group_fairness_score"] == pytest.approx(100.0)


def test_transport_error_falls_back_to_engine(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    orchestrator = _build_orchestrator(tmp_path, "transport.db", handler)
    outcome = asyncio.run(
        orchestrator.consult("fairness", {"group_id": GROUP_ID}, FairnessResultSchema, GROUP_ID)
    )

    assert isinstance(outcome, Fallback)
    assert "ConnectError" in outcome.reason


def test_unconfigured_advisory_uses_engine_without_calling_out(tmp_path):
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=_fairness_payload())

    orchestrator = _build_orchestrator(tmp_path, "disabled.db", handler, enabled=False)
    result = asyncio.run(orchestrator.fairness(GROUP_ID, **_window()))

    assert result.source == SOURCE_ENGINE
    assert calls == []


def test_unknown_group_is_not_found_after_fallback(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    orchestrator = _build_orchestrator(tmp_path, "unknown.db", handler)

    fairness = asyncio.run(orchestrator.fairness("missing"))
    forecast = asyncio.run(orchestrator.usage_forecast("missing"))
    cost = asyncio.run(orchestrator.cost_optimization("missing"))

    for result in (fairness, forecast, cost):
        assert result.source == SOURCE_ENGINE
        assert not result.found


def test_oversized_booking_advisory_is_rejected(tmp_path):
    slot = {"start": "2025-06-02T12:00:00", "end": "2025-06-02T13:00:00", "confidence": 0.9}

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"user_id": "u1", "group_id": GROUP_ID, "suggestions": [slot] * 6},
        )

    orchestrator = _build_orchestrator(tmp_path, "booking.db", handler)
    request = BookingRequest(
        group_id=GROUP_ID,
        user_id="u1",
        duration_minutes=60,
        preferred_date=date(2025, 6, 2),
    )
    result = asyncio.run(orchestrator.booking_suggestions(request))

    assert result.source == SOURCE_ENGINE
    assert 0 < len(result.payload["suggestions"]) <= 5


def test_invalid_requests_are_rejected_before_consulting(tmp_path):
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(500)

    orchestrator = _build_orchestrator(tmp_path, "invalid.db", handler)

    with pytest.raises(BookingValidationError):
        asyncio.run(
            orchestrator.booking_suggestions(
                BookingRequest(group_id=GROUP_ID, user_id="u1", duration_minutes=0)
            )
        )
    with pytest.raises(FairnessValidationError):
        asyncio.run(
            orchestrator.fairness(
                GROUP_ID,
                period_start=datetime(2025, 6, 1),
                period_end=datetime(2025, 1, 1),
            )
        )
    assert calls == []


def test_malformed_advisory_url_falls_back_to_engine(tmp_path):
    orchestrator = _build_orchestrator(tmp_path, "bad-url.db", base_url="http://[::1")

    cost = asyncio.run(orchestrator.cost_optimization("missing"))
    fairness = asyncio.run(orchestrator.fairness(GROUP_ID, **_window()))

    assert cost.source == SOURCE_ENGINE
    assert not cost.found
    assert fairness.source == SOURCE_ENGINE
    assert fairness.payload["group_fairness_score"] == pytest.approx(100.0)


def test_unexpected_client_error_becomes_fallback(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        raise RuntimeError("advisory transport misconfigured")

    orchestrator = _build_orchestrator(tmp_path, "runtime.db", handler)
    outcome = asyncio.run(
        orchestrator.consult("fairness", {"group_id": GROUP_ID}, FairnessResultSchema, GROUP_ID)
    )

    assert isinstance(outcome, Fallback)
    assert "RuntimeError" in outcome.reason
