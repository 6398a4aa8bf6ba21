"""Domain records consumed by the analytics engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional


class ExpenseType(str, Enum):
    FUEL = "Fuel"
    MAINTENANCE = "Maintenance"
    INSURANCE = "Insurance"
    REGISTRATION = "Registration"
    CLEANING = "Cleaning"
    REPAIR = "Repair"
    UPGRADE = "Upgrade"
    PARKING = "Parking"
    TOLL = "Toll"
    OTHER = "Other"


class OdometerEventType(str, Enum):
    CHECK_OUT = "CheckOut"
    CHECK_IN = "CheckIn"


@dataclass(frozen=True)
class GroupRecord:
    group_id: str
    name: str
    member_count: int


@dataclass(frozen=True)
class VehicleRecord:
    vehicle_id: str
    group_id: str
    year: int
    odometer: int


@dataclass(frozen=True)
class UsageRecord:
    """One per-member usage row for a reporting period.

    ``usage_share`` may be NaN when the upstream producer only tracked hours.
    """

    group_id: str
    user_id: str
    period_start: datetime
    period_end: datetime
    ownership_share: float
    usage_share: float
    total_usage_hours: float


@dataclass(frozen=True)
class MemberUsageAggregate:
    user_id: str
    ownership_share: float
    usage_share: float
    total_usage_hours: float


@dataclass(frozen=True)
class ExistingBooking:
    start: datetime
    end: datetime
    status: str = "Confirmed"


@dataclass(frozen=True)
class OdometerEvent:
    event_type: OdometerEventType
    odometer: int


@dataclass(frozen=True)
class CompletedTrip:
    booking_id: str
    start_at: datetime
    end_at: datetime
    events: tuple[OdometerEvent, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ExpenseRecord:
    amount: float
    expense_type: ExpenseType
    date_incurred: datetime
    description: str = ""
    notes: Optional[str] = None
    is_recurring: bool = False


@dataclass(frozen=True)
class FairnessTrendPoint:
    period_start: datetime
    period_end: datetime
    group_fairness_score: float

    def to_dict(self) -> dict[str, datetime | float]:
        return {
            "period_start": self.period_start,
            "period_end": self.period_end,
            "group_fairness_score": self.group_fairness_score,
        }


@dataclass(frozen=True)
class UsageDayBucket:
    date: date
    hours: float
