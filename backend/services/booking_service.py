"""Scored booking-slot recommendations driven by fairness and conflicts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Iterable, Optional, Sequence

from backend.domain.constraints import (
    AnalyticsValidationError,
    EngineConfig,
    engine_config_from_settings,
    validate_engine_config,
)
from backend.domain.models import ExistingBooking
from backend.repository.data_repository import DataRepository
from backend.services.fairness_service import FairnessResult, FairnessService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger
from backend.utils.timeutils import add_months, start_of_day, utc_now


logger = get_logger(__name__)

MAX_DURATION_MINUTES = 24 * 60
STANDARD_HOURS = (8, 10, 12, 14, 18, 20)
DAYTIME_HOURS = tuple(range(6, 23))
PEAK_RANGES = ((7, 9), (17, 21))
OFF_PEAK_RANGES = ((9, 12), (13, 17), (21, 23))
FAIRNESS_LOOKBACK_MONTHS = 3


class BookingValidationError(AnalyticsValidationError):
    """Raised when a booking suggestion request is invalid."""


@dataclass(frozen=True)
class BookingRequest:
    group_id: str
    user_id: str
    duration_minutes: int
    preferred_date: Optional[date] = None
    preferred_time: Optional[time] = None


@dataclass(frozen=True)
class BookingCandidateSlot:
    start: datetime
    end: datetime
    day_offset: int
    score: float
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start,
            "end": self.end,
            "day_offset": self.day_offset,
            "confidence": round(self.score, 2),
            "reasons": list(self.reasons),
        }


@dataclass(frozen=True)
class BookingSuggestions:
    user_id: str
    group_id: str
    suggestions: list[BookingCandidateSlot]

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "group_id": self.group_id,
            "suggestions": [slot.to_dict() for slot in self.suggestions],
        }


def _is_weekday(value: datetime) -> bool:
    return value.weekday() < 5


def _in_ranges(hour: int, ranges: Iterable[tuple[int, int]]) -> bool:
    return any(start <= hour < end for start, end in ranges)


def is_peak(value: datetime) -> bool:
    return _is_weekday(value) and _in_ranges(value.hour, PEAK_RANGES)


def is_off_peak(value: datetime) -> bool:
    return not _is_weekday(value) or _in_ranges(value.hour, OFF_PEAK_RANGES)


def overlaps(start: datetime, end: datetime, booking: ExistingBooking) -> bool:
    """Half-open interval overlap; touching endpoints do not conflict."""
    return start < booking.end and booking.start < end


def candidate_hours(preferred_time: Optional[time]) -> list[int]:
    if preferred_time is None:
        return sorted(set(STANDARD_HOURS))

    hours = {preferred_time.hour}
    for delta in range(1, 4):
        for hour in (preferred_time.hour - delta, preferred_time.hour + delta):
            if 0 <= hour <= 23:
                hours.add(hour)
    hours.update(DAYTIME_HOURS)
    return sorted(hours)


def _start_minute(hour: int, preferred_time: Optional[time]) -> int:
    if preferred_time is not None and hour == preferred_time.hour:
        return preferred_time.minute
    return 0 if hour % 2 == 0 else 30


def _preference_bonus(start: datetime, preferred: datetime) -> tuple[float, Optional[str]]:
    delta_minutes = abs((start - preferred).total_seconds()) / 60.0
    if delta_minutes <= 30:
        return 0.5, "Matches your preferred time"
    hour_delta = abs(start.hour - preferred.hour)
    if hour_delta == 0:
        return 0.4, "Within your preferred hour"
    if hour_delta == 1:
        return 0.3, "Close to your preferred time"
    if hour_delta == 2:
        return 0.15, "Near your preferred time"
    return 0.0, None


def score_slot(
    start: datetime,
    day_offset: int,
    user_fairness: float,
    group_score: Optional[float],
    preferred: Optional[datetime],
    low_score_threshold: float,
) -> tuple[float, list[str]]:
    """Additive heuristic score clamped to [0, 1] with ordered reasons."""
    score = 0.5
    reasons: list[str] = []

    if day_offset == 0:
        score += 0.6
        reasons.append("Available on your requested day")
    else:
        score -= 0.2 * day_offset

    peak = is_peak(start)
    if user_fairness < 100.0:
        reasons.append(
            f"Suggested because you're underutilizing ({round(user_fairness):.0f}% of fair share)"
        )
        score += min(0.4, (100.0 - user_fairness) / 250.0)
    elif user_fairness > 120.0:
        reasons.append("Off-peak time to allow others peak access")
        if peak:
            score -= 0.2
        if is_off_peak(start):
            score += 0.2

    if group_score is not None and group_score < low_score_threshold and peak:
        reasons.append("Group imbalance detected; avoid peak to reduce conflicts")
        score -= 0.1

    if preferred is not None and start.date() == preferred.date():
        bonus, reason = _preference_bonus(start, preferred)
        score += bonus
        if reason is not None:
            reasons.append(reason)

    if peak:
        reasons.append("Likely peak period; potential conflicts")
        score -= 0.15
    else:
        reasons.append("Lower expected conflicts")
        score += 0.1

    return min(1.0, max(0.0, score)), list(dict.fromkeys(reasons))


def generate_candidate_slots(
    base_date: date,
    duration_minutes: int,
    existing_bookings: Sequence[ExistingBooking],
    user_fairness: float,
    group_score: Optional[float],
    *,
    preferred_time: Optional[time] = None,
    search_days: int = 7,
    low_score_threshold: float = 70.0,
) -> list[BookingCandidateSlot]:
    duration = timedelta(minutes=duration_minutes)
    base = datetime.combine(base_date, time.min)
    preferred = datetime.combine(base_date, preferred_time) if preferred_time is not None else None
    hours = candidate_hours(preferred_time)

    candidates: list[BookingCandidateSlot] = []
    for day_offset in range(search_days):
        day = base + timedelta(days=day_offset)
        latest_end = day.replace(hour=23, minute=59)
        for hour in hours:
            start = day.replace(hour=hour, minute=_start_minute(hour, preferred_time))
            end = start + duration
            if end > latest_end:
                continue
            if any(overlaps(start, end, booking) for booking in existing_bookings):
                continue
            score, reasons = score_slot(
                start,
                day_offset,
                user_fairness,
                group_score,
                preferred,
                low_score_threshold,
            )
            candidates.append(
                BookingCandidateSlot(
                    start=start,
                    end=end,
                    day_offset=day_offset,
                    score=score,
                    reasons=reasons,
                )
            )
    return candidates


def rank_slots(candidates: Sequence[BookingCandidateSlot], top_n: int) -> list[BookingCandidateSlot]:
    ordered = sorted(candidates, key=lambda slot: (slot.day_offset, -slot.score, slot.start))
    return ordered[:top_n]


class BookingService:
    """Builds ranked booking suggestions for one requester."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        fairness_service: Optional[FairnessService] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(settings=self._settings)
        self._fairness_service = fairness_service or FairnessService(
            repository=self._repository,
            settings=self._settings,
        )
        self._config: EngineConfig = engine_config_from_settings(self._settings)
        validate_engine_config(self._config)

    def validate_request(self, request: BookingRequest) -> int:
        """Check request bounds and return the effective duration in minutes."""
        if request.duration_minutes <= 0:
            raise BookingValidationError("duration_minutes must be > 0")
        if request.duration_minutes > MAX_DURATION_MINUTES:
            raise BookingValidationError("duration_minutes must not exceed 24 hours")
        return max(self._config.booking_min_duration_minutes, request.duration_minutes)

    def suggest(
        self,
        request: BookingRequest,
        now: Optional[datetime] = None,
    ) -> Optional[BookingSuggestions]:
        duration_minutes = self.validate_request(request)
        base_date = request.preferred_date or start_of_day(now or utc_now()).date()
        base = datetime.combine(base_date, time.min)

        fairness: Optional[FairnessResult] = self._fairness_service.calculate(
            request.group_id,
            period_start=add_months(base, -FAIRNESS_LOOKBACK_MONTHS),
            period_end=base + timedelta(days=1),
        )
        if fairness is None:
            logger.info("Booking suggestions skipped for unknown group | group_id=%s", request.group_id)
            return None

        member = fairness.member(request.user_id)
        user_fairness = member.fairness_score if member is not None else 100.0
        group_score = fairness.group_fairness_score if fairness.members else None

        existing = self._repository.list_active_bookings(
            request.group_id,
            base,
            base + timedelta(days=self._config.booking_search_days),
        )
        candidates = generate_candidate_slots(
            base_date,
            duration_minutes,
            existing,
            user_fairness,
            group_score,
            preferred_time=request.preferred_time,
            search_days=self._config.booking_search_days,
            low_score_threshold=self._config.fairness_low_score_threshold,
        )
        suggestions = rank_slots(candidates, self._config.booking_top_n)

        logger.info(
            "Booking suggestions completed | group_id=%s | user_id=%s | candidates=%s | returned=%s",
            request.group_id,
            request.user_id,
            len(candidates),
            len(suggestions),
        )
        return BookingSuggestions(
            user_id=request.user_id,
            group_id=request.group_id,
            suggestions=suggestions,
        )
