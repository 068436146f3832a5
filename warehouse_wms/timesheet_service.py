"""Clocking in and out, breaks, timesheet summaries and exports."""

from __future__ import annotations

import base64
import logging
import sqlite3
import uuid
from datetime import date, datetime, timezone
from typing import Any, Optional

from .errors import ValidationError
from .timesheet_export import TimesheetExport, export_csv, export_xlsx
from .timesheet_models import (
    BreakType,
    ClockMethod,
    TimeBreak,
    TimeEntry,
    TimeEntryStatus,
    Timesheet,
    TimesheetStatus,
)

logger = logging.getLogger(__name__)

_XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    username TEXT,
    full_name TEXT,
    role TEXT
);
CREATE TABLE IF NOT EXISTS time_entries (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    entry_date TEXT NOT NULL,
    clock_in_time TEXT NOT NULL,
    clock_out_time TEXT,
    clock_in_method TEXT,
    clock_out_method TEXT,
    clock_in_device TEXT,
    clock_out_device TEXT,
    break_duration_minutes INTEGER NOT NULL DEFAULT 0,
    total_hours REAL,
    overtime_hours REAL NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'active',
    notes TEXT,
    edited_by TEXT,
    edited_reason TEXT,
    approved_by TEXT,
    approved_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT
);
CREATE TABLE IF NOT EXISTS time_breaks (
    id TEXT PRIMARY KEY,
    time_entry_id TEXT NOT NULL,
    break_type TEXT NOT NULL,
    start_time TEXT NOT NULL,
    end_time TEXT,
    duration_minutes INTEGER,
    notes TEXT,
    created_at TEXT NOT NULL
);
"""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_moment(text: Any) -> Optional[datetime]:
    if text is None:
        return None
    value = str(text).strip()
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    try:
        moment = datetime.fromisoformat(value)
    except ValueError:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _parse_day(text: Any, fallback: date) -> date:
    try:
        return date.fromisoformat(str(text)[:10])
    except ValueError:
        return fallback


def _enum(kind: Any, value: Any, default: Any) -> Any:
    try:
        return kind(value)
    except ValueError:
        return default


def _parse_period_day(text: str, which: str) -> date:
    try:
        return datetime.strptime(text, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {which} date format") from None


class TimesheetService:
    """Time tracking backed by a SQLite connection."""

    def __init__(
        self,
        db: sqlite3.Connection,
        standard_hours: float = 8.0,
        weekly_overtime_threshold: float = 40.0,
    ) -> None:
        self._db = db
        self._db.executescript(_SCHEMA)
        self.standard_hours = standard_hours
        self.weekly_overtime_threshold = weekly_overtime_threshold

    def with_overtime_config(self, daily: float, weekly: float) -> "TimesheetService":
        """Set the daily and weekly overtime thresholds and return the service."""
        self.standard_hours = daily
        self.weekly_overtime_threshold = weekly
        return self

    def _rows(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        cursor = self._db.execute(sql, params)
        names = [column[0] for column in cursor.description]
        return [dict(zip(names, row)) for row in cursor.fetchall()]

    def _row(self, sql: str, params: tuple = ()) -> Optional[dict[str, Any]]:
        rows = self._rows(sql, params)
        return rows[0] if rows else None

    @staticmethod
    def _row_to_entry(row: dict[str, Any]) -> TimeEntry:
        now = _now()
        clock_out_method = row.get("clock_out_method")
        return TimeEntry(
            id=row["id"],
            user_id=row["user_id"],
            entry_date=_parse_day(row.get("entry_date"), now.date()),
            clock_in_time=_parse_moment(row.get("clock_in_time")) or now,
            clock_out_time=_parse_moment(row.get("clock_out_time")),
            clock_in_method=_enum(ClockMethod, row.get("clock_in_method"), ClockMethod.BIOMETRIC),
            clock_out_method=(
                None if clock_out_method is None
                else _enum(ClockMethod, clock_out_method, ClockMethod.BIOMETRIC)
            ),
            clock_in_device=row.get("clock_in_device"),
            clock_out_device=row.get("clock_out_device"),
            break_duration_minutes=int(row.get("break_duration_minutes") or 0),
            total_hours=row.get("total_hours"),
            overtime_hours=float(row.get("overtime_hours") or 0.0),
            status=_enum(TimeEntryStatus, row.get("status"), TimeEntryStatus.ACTIVE),
            notes=row.get("notes"),
            edited_by=row.get("edited_by"),
            edited_reason=row.get("edited_reason"),
            approved_by=row.get("approved_by"),
            approved_at=_parse_moment(row.get("approved_at")),
            created_at=_parse_moment(row.get("created_at")) or now,
            updated_at=_parse_moment(row.get("updated_at")),
        )

    def _get_active_entry(self, user_id: str) -> Optional[TimeEntry]:
        row = self._row(
            "SELECT * FROM time_entries "
            "WHERE user_id = ? AND status = 'active' AND clock_out_time IS NULL "
            "ORDER BY clock_in_time DESC LIMIT 1",
            (user_id,),
        )
        return None if row is None else self._row_to_entry(row)

    def _require_active_entry(self, user_id: str) -> TimeEntry:
        entry = self._get_active_entry(user_id)
        if entry is None:
            raise ValidationError("User is not clocked in")
        return entry

    def clock_in(self, user_id: str) -> TimeEntry:
        """Open a new time entry for the user."""
        if self._get_active_entry(user_id) is not None:
            raise ValidationError("User is already clocked in")

        now = _now()
        entry = TimeEntry(
            id=str(uuid.uuid4()),
            user_id=user_id,
            entry_date=now.date(),
            clock_in_time=now,
            clock_in_method=ClockMethod.BIOMETRIC,
            status=TimeEntryStatus.ACTIVE,
            created_at=now,
        )
        with self._db:
            self._db.execute(
                "INSERT INTO time_entries (id, user_id, entry_date, clock_in_time, "
                "clock_in_method, status, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    entry.id,
                    entry.user_id,
                    entry.entry_date.isoformat(),
                    entry.clock_in_time.isoformat(),
                    ClockMethod.BIOMETRIC.value,
                    TimeEntryStatus.ACTIVE.value,
                    entry.created_at.isoformat(),
                ),
            )
        logger.info("User %s clocked in at %s", user_id, now)
        return entry

    def clock_out(self, user_id: str) -> TimeEntry:
        """Close the user's open time entry and work out hours and overtime."""
        entry = self._require_active_entry(user_id)

        now = _now()
        entry.clock_out_time = now
        entry.clock_out_method = ClockMethod.BIOMETRIC
        entry.status = TimeEntryStatus.COMPLETED
        entry.total_hours = entry.calculate_hours()
        entry.updated_at = now
        if entry.total_hours is not None and entry.total_hours > self.standard_hours:
            entry.overtime_hours = entry.total_hours - self.standard_hours

        with self._db:
            self._db.execute(
                "UPDATE time_entries SET clock_out_time = ?, clock_out_method = ?, status = ?, "
                "total_hours = ?, overtime_hours = ?, updated_at = ? WHERE id = ?",
                (
                    now.isoformat(),
                    ClockMethod.BIOMETRIC.value,
                    TimeEntryStatus.COMPLETED.value,
                    entry.total_hours,
                    entry.overtime_hours,
                    now.isoformat(),
                    entry.id,
                ),
            )
        logger.info(
            "User %s clocked out at %s, worked %.2f hours",
            user_id, now, entry.total_hours or 0.0,
        )
        return entry

    def get_timesheet(self, user_id: str, start_date: str, end_date: str) -> Timesheet:
        """Summarise the user's entries between two YYYY-MM-DD dates, inclusive."""
        start = _parse_period_day(start_date, "start")
        end = _parse_period_day(end_date, "end")

        entries = [
            self._row_to_entry(row)
            for row in self._rows(
                "SELECT * FROM time_entries "
                "WHERE user_id = ? AND entry_date >= ? AND entry_date <= ? "
                "ORDER BY entry_date, clock_in_time",
                (user_id, start.isoformat(), end.isoformat()),
            )
        ]

        regular_hours = 0.0
        overtime_hours = 0.0
        total_breaks = 0
        days_worked: set[date] = set()
        for entry in entries:
            if entry.total_hours is not None:
                regular_hours += min(entry.total_hours, self.standard_hours)
                overtime_hours += max(entry.total_hours - self.standard_hours, 0.0)
            total_breaks += entry.break_duration_minutes
            days_worked.add(entry.entry_date)

        user = self._row("SELECT full_name FROM users WHERE id = ?", (user_id,))
        user_name = user["full_name"] if user and user["full_name"] is not None else "Unknown"

        return Timesheet(
            user_id=user_id,
            user_name=user_name,
            start_date=start,
            end_date=end,
            regular_hours=regular_hours,
            overtime_hours=overtime_hours,
            total_hours=regular_hours + overtime_hours,
            total_breaks_minutes=total_breaks,
            days_worked=len(days_worked),
            status=TimesheetStatus.DRAFT,
            entries=entries,
        )

    def export_timesheet(
        self, user_id: str, start_date: str, end_date: str, format: str
    ) -> TimesheetExport:
        """Export a timesheet as base64-encoded XLSX or CSV."""
        timesheet = self.get_timesheet(user_id, start_date, end_date)
        stem = f"timesheet_{user_id}_{start_date}_to_{end_date}"
        kind = format.lower()
        if kind in ("xlsx", "excel"):
            data = export_xlsx(timesheet)
            content_type = _XLSX_CONTENT_TYPE
            filename = f"{stem}.xlsx"
        elif kind == "csv":
            data = export_csv(timesheet)
            content_type = "text/csv"
            filename = f"{stem}.csv"
        else:
            raise ValidationError(f"Unsupported format: {format}")

        logger.info("Exported timesheet for %s in %s format", user_id, format)
        return TimesheetExport(
            data=base64.b64encode(data).decode("ascii"),
            content_type=content_type,
            filename=filename,
        )

    def start_break(self, user_id: str, break_type: BreakType = BreakType.UNPAID) -> TimeBreak:
        """Start a break on the user's open time entry."""
        entry = self._require_active_entry(user_id)
        now = _now()
        time_break = TimeBreak(
            id=str(uuid.uuid4()),
            time_entry_id=entry.id,
            break_type=break_type,
            start_time=now,
            created_at=now,
        )
        with self._db:
            self._db.execute(
                "INSERT INTO time_breaks (id, time_entry_id, break_type, start_time, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    time_break.id,
                    time_break.time_entry_id,
                    break_type.value,
                    now.isoformat(),
                    now.isoformat(),
                ),
            )
        logger.debug("User %s started %s break", user_id, break_type.value)
        return time_break

    def end_break(self, user_id: str) -> TimeBreak:
        """End the open break and add its length to the time entry."""
        entry = self._require_active_entry(user_id)
        row = self._row(
            "SELECT * FROM time_breaks WHERE time_entry_id = ? AND end_time IS NULL "
            "ORDER BY start_time DESC LIMIT 1",
            (entry.id,),
        )
        if row is None:
            raise ValidationError("No active break found")

        now = _now()
        time_break = TimeBreak(
            id=row["id"],
            time_entry_id=row["time_entry_id"],
            break_type=_enum(BreakType, row.get("break_type"), BreakType.UNPAID),
            start_time=_parse_moment(row.get("start_time")) or now,
            notes=row.get("notes"),
            created_at=_parse_moment(row.get("created_at")) or now,
        )
        time_break.end_time = now
        time_break.duration_minutes = time_break.calculate_duration()

        with self._db:
            self._db.execute(
                "UPDATE time_breaks SET end_time = ?, duration_minutes = ? WHERE id = ?",
                (now.isoformat(), time_break.duration_minutes, time_break.id),
            )
            if time_break.duration_minutes is not None:
                self._db.execute(
                    "UPDATE time_entries SET break_duration_minutes = "
                    "break_duration_minutes + ? WHERE id = ?",
                    (time_break.duration_minutes, entry.id),
                )
        logger.debug(
            "User %s ended break, duration: %s minutes", user_id, time_break.duration_minutes
        )
        return time_break