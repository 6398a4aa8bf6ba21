"""Repository layer responsible for all database access."""

from __future__ import annotations

import math
import random
import sqlite3
import uuid
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from backend.domain.models import (
    CompletedTrip,
    ExistingBooking,
    ExpenseRecord,
    ExpenseType,
    GroupRecord,
    OdometerEvent,
    OdometerEventType,
    UsageRecord,
    VehicleRecord,
)
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

INACTIVE_BOOKING_STATUSES = ("Cancelled", "NoShow")
DEMO_GROUP_ID = str(uuid.uuid5(uuid.NAMESPACE_URL, "coownership-analytics/demo-group"))


def _to_db(value: datetime) -> str:
    """Fixed-width ISO text so lexicographic order matches time order."""
    return value.isoformat(timespec="microseconds")


def _from_db(value: str) -> datetime:
    return datetime.fromisoformat(value)


class DataRepository:
    """Encapsulates SQLite access so analytics logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS OwnershipGroups (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS GroupMembers (
                        group_id TEXT NOT NULL,
                        user_id TEXT NOT NULL,
                        ownership_share REAL NOT NULL
                            CHECK (ownership_share >= 0 AND ownership_share <= 1),
                        PRIMARY KEY (group_id, user_id),
                        FOREIGN KEY (group_id) REFERENCES OwnershipGroups(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Vehicles (
                        id TEXT PRIMARY KEY,
                        group_id TEXT NOT NULL,
                        year INTEGER NOT NULL,
                        odometer INTEGER NOT NULL DEFAULT 0,
                        FOREIGN KEY (group_id) REFERENCES OwnershipGroups(id)
                    );
                    """
                )

                # Usage rows are produced upstream and may reference groups this
                # service has not been told about, so no foreign key here.
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS UsageAnalytics (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        group_id TEXT NOT NULL,
                        user_id TEXT NOT NULL,
                        period_start TEXT NOT NULL,
                        period_end TEXT NOT NULL,
                        ownership_share REAL NOT NULL,
                        usage_share REAL,
                        total_usage_hours REAL NOT NULL DEFAULT 0
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Bookings (
                        id TEXT PRIMARY KEY,
                        group_id TEXT NOT NULL,
                        user_id TEXT NOT NULL,
                        start_at TEXT NOT NULL,
                        end_at TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'Confirmed'
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS CheckIns (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        booking_id TEXT NOT NULL,
                        event_type TEXT NOT NULL CHECK (event_type IN ('CheckOut', 'CheckIn')),
                        odometer INTEGER NOT NULL,
                        FOREIGN KEY (booking_id) REFERENCES Bookings(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Expenses (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        group_id TEXT NOT NULL,
                        amount REAL NOT NULL,
                        expense_type TEXT NOT NULL,
                        date_incurred TEXT NOT NULL,
                        description TEXT NOT NULL DEFAULT '',
                        notes TEXT,
                        is_recurring INTEGER NOT NULL DEFAULT 0
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS FairnessTrends (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        group_id TEXT NOT NULL,
                        period_start TEXT NOT NULL,
                        period_end TEXT NOT NULL,
                        group_fairness_score REAL NOT NULL,
                        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        UNIQUE (group_id, period_start, period_end)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_usage_group_period
                    ON UsageAnalytics(group_id, period_start, period_end);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_bookings_group_start
                    ON Bookings(group_id, start_at);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_expenses_group_date
                    ON Expenses(group_id, date_incurred);
                    """
                )
                conn.commit()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_synthetic_data(self) -> None:
        """Seed one deterministic demo group only when no group exists."""
        rng = random.Random(self._settings.synthetic_random_seed)
        try:
            with self._connect() as conn:
                cursor = conn.cursor()

                cursor.execute("SELECT COUNT(*) AS count FROM OwnershipGroups;")
                if int(cursor.fetchone()["count"]) > 0:
                    logger.info("Synthetic data already present; skipping seed")
                    return

                now = datetime.now(timezone.utc).replace(tzinfo=None)
                today = datetime(now.year, now.month, now.day)
                seed_start = today - timedelta(days=self._settings.synthetic_seed_days)

                cursor.execute(
                    "INSERT INTO OwnershipGroups (id, name) VALUES (?, ?);",
                    (DEMO_GROUP_ID, "Demo Co-owners"),
                )
                members = [
                    (str(uuid.UUID(int=rng.getrandbits(128), version=4)), share, weight)
                    for share, weight in ((0.5, 0.62), (0.3, 0.25), (0.2, 0.13))
                ]
                cursor.executemany(
                    """
                    INSERT INTO GroupMembers (group_id, user_id, ownership_share)
                    VALUES (?, ?, ?);
                    """,
                    [(DEMO_GROUP_ID, user_id, share) for user_id, share, _ in members],
                )
                vehicle_id = str(uuid.UUID(int=rng.getrandbits(128), version=4))
                cursor.execute(
                    "INSERT INTO Vehicles (id, group_id, year, odometer) VALUES (?, ?, ?, ?);",
                    (vehicle_id, DEMO_GROUP_ID, now.year - 4, 48000),
                )

                usage_rows = []
                for week_start in range(0, self._settings.synthetic_seed_days, 7):
                    period_start = seed_start + timedelta(days=week_start)
                    period_end = period_start + timedelta(days=7) - timedelta(microseconds=1)
                    week_hours = rng.uniform(18.0, 32.0)
                    for user_id, share, weight in members:
                        usage_rows.append(
                            (
                                DEMO_GROUP_ID,
                                user_id,
                                _to_db(period_start),
                                _to_db(period_end),
                                share,
                                weight,
                                round(week_hours * weight, 2),
                            )
                        )
                cursor.executemany(
                    """
                    INSERT INTO UsageAnalytics (
                        group_id, user_id, period_start, period_end,
                        ownership_share, usage_share, total_usage_hours
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?);
                    """,
                    usage_rows,
                )

                odometer = 40000
                booking_count = 0
                for day in range(0, self._settings.synthetic_seed_days, 3):
                    user_id, _, _ = rng.choice(members)
                    start_at = seed_start + timedelta(days=day, hours=rng.choice((8, 10, 14, 18)))
                    end_at = start_at + timedelta(hours=rng.choice((2, 3, 4)))
                    booking_id = str(uuid.UUID(int=rng.getrandbits(128), version=4))
                    cursor.execute(
                        """
                        INSERT INTO Bookings (id, group_id, user_id, start_at, end_at, status)
                        VALUES (?, ?, ?, ?, ?, 'Completed');
                        """,
                        (booking_id, DEMO_GROUP_ID, user_id, _to_db(start_at), _to_db(end_at)),
                    )
                    distance = rng.randint(20, 120)
                    cursor.executemany(
                        "INSERT INTO CheckIns (booking_id, event_type, odometer) VALUES (?, ?, ?);",
                        [
                            (booking_id, OdometerEventType.CHECK_IN.value, odometer),
                            (booking_id, OdometerEventType.CHECK_OUT.value, odometer + distance),
                        ],
                    )
                    odometer += distance
                    booking_count += 1

                expense_rows = []
                for month in range(self._settings.synthetic_seed_days // 30):
                    incurred = seed_start + timedelta(days=30 * month + 5)
                    expense_rows.append(
                        (DEMO_GROUP_ID, round(rng.uniform(60, 110), 2), ExpenseType.FUEL.value,
                         _to_db(incurred), "Charging session", None, 1)
                    )
                    if month % 2 == 0:
                        expense_rows.append(
                            (DEMO_GROUP_ID, round(rng.uniform(180, 320), 2),
                             ExpenseType.MAINTENANCE.value, _to_db(incurred + timedelta(days=9)),
                             "Routine service at Northside Garage", None, 0)
                        )
                expense_rows.append(
                    (DEMO_GROUP_ID, 1200.0, ExpenseType.INSURANCE.value,
                     _to_db(seed_start + timedelta(days=2)), "Annual insurance premium", None, 1)
                )
                cursor.executemany(
                    """
                    INSERT INTO Expenses (
                        group_id, amount, expense_type, date_incurred,
                        description, notes, is_recurring
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?);
                    """,
                    expense_rows,
                )
                conn.commit()
            logger.info(
                "Synthetic seed completed | group_id=%s | usage_rows=%s | bookings=%s | expenses=%s",
                DEMO_GROUP_ID,
                len(usage_rows),
                booking_count,
                len(expense_rows),
            )
        except sqlite3.Error as exc:
            raise RuntimeError(f"Synthetic data seeding failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Groups, members, vehicles
    # ------------------------------------------------------------------

    def create_group(self, group_id: str, name: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO OwnershipGroups (id, name) VALUES (?, ?);",
                (group_id, name),
            )
            conn.commit()

    def add_member(self, group_id: str, user_id: str, ownership_share: float) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO GroupMembers (group_id, user_id, ownership_share)
                VALUES (?, ?, ?);
                """,
                (group_id, user_id, ownership_share),
            )
            conn.commit()

    def add_vehicle(self, vehicle_id: str, group_id: str, year: int, odometer: int = 0) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO Vehicles (id, group_id, year, odometer) VALUES (?, ?, ?, ?);",
                (vehicle_id, group_id, year, odometer),
            )
            conn.commit()

    def get_group(self, group_id: str) -> Optional[GroupRecord]:
        """Fetch group metadata with its current member count."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT g.id, g.name, COUNT(m.user_id) AS member_count
                FROM OwnershipGroups AS g
                LEFT JOIN GroupMembers AS m ON m.group_id = g.id
                WHERE g.id = ?
                GROUP BY g.id, g.name;
                """,
                (group_id,),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return GroupRecord(
                group_id=str(row["id"]),
                name=str(row["name"]),
                member_count=int(row["member_count"]),
            )

    def list_vehicles(self, group_id: str) -> list[VehicleRecord]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT id, group_id, year, odometer FROM Vehicles WHERE group_id = ? ORDER BY id;",
                (group_id,),
            )
            return [
                VehicleRecord(
                    vehicle_id=str(row["id"]),
                    group_id=str(row["group_id"]),
                    year=int(row["year"]),
                    odometer=int(row["odometer"]),
                )
                for row in cursor.fetchall()
            ]

    # ------------------------------------------------------------------
    # Usage analytics
    # ------------------------------------------------------------------

    def add_usage_record(self, record: UsageRecord) -> None:
        usage_share = record.usage_share if math.isfinite(record.usage_share) else None
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO UsageAnalytics (
                    group_id, user_id, period_start, period_end,
                    ownership_share, usage_share, total_usage_hours
                )
                VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    record.group_id,
                    record.user_id,
                    _to_db(record.period_start),
                    _to_db(record.period_end),
                    record.ownership_share,
                    usage_share,
                    record.total_usage_hours,
                ),
            )
            conn.commit()

    def list_usage_records(
        self,
        group_id: str,
        start: datetime,
        end: datetime,
    ) -> list[UsageRecord]:
        """Return usage rows whose period overlaps ``[start, end]``."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT
                    group_id,
                    user_id,
                    period_start,
                    period_end,
                    ownership_share,
                    usage_share,
                    total_usage_hours
                FROM UsageAnalytics
                WHERE group_id = ?
                  AND period_end >= ?
                  AND period_start <= ?
                ORDER BY period_start ASC, id ASC;
                """,
                (group_id, _to_db(start), _to_db(end)),
            )
            return [
                UsageRecord(
                    group_id=str(row["group_id"]),
                    user_id=str(row["user_id"]),
                    period_start=_from_db(row["period_start"]),
                    period_end=_from_db(row["period_end"]),
                    ownership_share=float(row["ownership_share"]),
                    usage_share=(
                        float(row["usage_share"])
                        if row["usage_share"] is not None
                        else math.nan
                    ),
                    total_usage_hours=float(row["total_usage_hours"]),
                )
                for row in cursor.fetchall()
            ]

    def group_has_usage_signals(self, group_id: str) -> bool:
        """True when any usage row or stored fairness trend exists for the group."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT
                    EXISTS (SELECT 1 FROM UsageAnalytics WHERE group_id = ?)
                    OR EXISTS (SELECT 1 FROM FairnessTrends WHERE group_id = ?)
                    AS has_signals;
                """,
                (group_id, group_id),
            )
            return bool(cursor.fetchone()["has_signals"])

    # ------------------------------------------------------------------
    # Fairness trend snapshots
    # ------------------------------------------------------------------

    def find_fairness_trend(
        self,
        group_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> Optional[float]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT group_fairness_score
                FROM FairnessTrends
                WHERE group_id = ? AND period_start = ? AND period_end = ?;
                """,
                (group_id, _to_db(period_start), _to_db(period_end)),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return float(row["group_fairness_score"])

    def upsert_fairness_trend(
        self,
        group_id: str,
        period_start: datetime,
        period_end: datetime,
        group_fairness_score: float,
    ) -> bool:
        """Insert or update the snapshot for an exact period key.

        Returns ``True`` when a row was inserted or changed; an unchanged score
        performs no write.
        """
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO FairnessTrends (
                    group_id, period_start, period_end, group_fairness_score
                )
                VALUES (?, ?, ?, ?)
                ON CONFLICT (group_id, period_start, period_end) DO UPDATE SET
                    group_fairness_score = excluded.group_fairness_score,
                    updated_at = CURRENT_TIMESTAMP
                WHERE FairnessTrends.group_fairness_score != excluded.group_fairness_score;
                """,
                (group_id, _to_db(period_start), _to_db(period_end), group_fairness_score),
            )
            conn.commit()
            return cursor.rowcount > 0

    def count_fairness_trends(self, group_id: str) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT COUNT(*) AS count FROM FairnessTrends WHERE group_id = ?;",
                (group_id,),
            )
            return int(cursor.fetchone()["count"])

    # ------------------------------------------------------------------
    # Bookings and trips
    # ------------------------------------------------------------------

    def create_booking(
        self,
        booking_id: str,
        group_id: str,
        user_id: str,
        start_at: datetime,
        end_at: datetime,
        status: str = "Confirmed",
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO Bookings (id, group_id, user_id, start_at, end_at, status)
                VALUES (?, ?, ?, ?, ?, ?);
                """,
                (booking_id, group_id, user_id, _to_db(start_at), _to_db(end_at), status),
            )
            conn.commit()

    def add_odometer_event(
        self,
        booking_id: str,
        event_type: OdometerEventType,
        odometer: int,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO CheckIns (booking_id, event_type, odometer) VALUES (?, ?, ?);",
                (booking_id, event_type.value, odometer),
            )
            conn.commit()

    def list_active_bookings(
        self,
        group_id: str,
        start: datetime,
        end: datetime,
    ) -> list[ExistingBooking]:
        """Return non-cancelled bookings overlapping ``[start, end)``."""
        placeholders = ",".join("?" for _ in INACTIVE_BOOKING_STATUSES)
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT start_at, end_at, status
                FROM Bookings
                WHERE group_id = ?
                  AND start_at < ?
                  AND end_at > ?
                  AND status NOT IN ({placeholders})
                ORDER BY start_at ASC;
                """,
                (group_id, _to_db(end), _to_db(start), *INACTIVE_BOOKING_STATUSES),
            )
            return [
                ExistingBooking(
                    start=_from_db(row["start_at"]),
                    end=_from_db(row["end_at"]),
                    status=str(row["status"]),
                )
                for row in cursor.fetchall()
            ]

    def list_completed_trips(
        self,
        group_id: str,
        start: datetime,
        end: datetime,
    ) -> list[CompletedTrip]:
        """Return completed bookings fully inside the window with odometer events."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT id, start_at, end_at
                FROM Bookings
                WHERE group_id = ?
                  AND start_at >= ?
                  AND end_at <= ?
                  AND status = 'Completed'
                ORDER BY start_at ASC;
                """,
                (group_id, _to_db(start), _to_db(end)),
            )
            bookings = cursor.fetchall()

            cursor.execute(
                """
                SELECT c.booking_id, c.event_type, c.odometer
                FROM CheckIns AS c
                INNER JOIN Bookings AS b ON b.id = c.booking_id
                WHERE b.group_id = ?
                ORDER BY c.id ASC;
                """,
                (group_id,),
            )
            events_by_booking: dict[str, list[OdometerEvent]] = defaultdict(list)
            for row in cursor.fetchall():
                events_by_booking[str(row["booking_id"])].append(
                    OdometerEvent(
                        event_type=OdometerEventType(row["event_type"]),
                        odometer=int(row["odometer"]),
                    )
                )

        return [
            CompletedTrip(
                booking_id=str(row["id"]),
                start_at=_from_db(row["start_at"]),
                end_at=_from_db(row["end_at"]),
                events=tuple(events_by_booking.get(str(row["id"]), ())),
            )
            for row in bookings
        ]

    # ------------------------------------------------------------------
    # Expenses
    # ------------------------------------------------------------------

    def add_expense(self, group_id: str, expense: ExpenseRecord) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO Expenses (
                    group_id, amount, expense_type, date_incurred,
                    description, notes, is_recurring
                )
                VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    group_id,
                    expense.amount,
                    expense.expense_type.value,
                    _to_db(expense.date_incurred),
                    expense.description,
                    expense.notes,
                    int(expense.is_recurring),
                ),
            )
            conn.commit()

    def list_expenses(
        self,
        group_id: str,
        start: datetime,
        end: datetime,
    ) -> list[ExpenseRecord]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT amount, expense_type, date_incurred, description, notes, is_recurring
                FROM Expenses
                WHERE group_id = ?
                  AND date_incurred >= ?
                  AND date_incurred <= ?
                ORDER BY date_incurred ASC, id ASC;
                """,
                (group_id, _to_db(start), _to_db(end)),
            )
            return [
                ExpenseRecord(
                    amount=float(row["amount"]),
                    expense_type=ExpenseType(row["expense_type"]),
                    date_incurred=_from_db(row["date_incurred"]),
                    description=str(row["description"] or ""),
                    notes=row["notes"],
                    is_recurring=bool(row["is_recurring"]),
                )
                for row in cursor.fetchall()
            ]
