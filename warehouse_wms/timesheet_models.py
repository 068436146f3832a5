"""Time tracking records: clock entries, breaks, timesheets, pay periods, schedules."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

_U32_MAX = 2**32 - 1
_UNSIGNED = re.compile(r"\+?[0-9]+")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _format_timestamp(moment: datetime) -> str:
    moment = _utc(moment)
    text = moment.strftime("%Y-%m-%dT%H:%M:%S")
    micros = moment.microsecond
    if micros == 0:
        return text + "Z"
    if micros % 1000 == 0:
        return f"{text}.{micros // 1000:03d}Z"
    return f"{text}.{micros:06d}Z"


def _optional_timestamp(moment: Optional[datetime]) -> Optional[str]:
    return None if moment is None else _format_timestamp(moment)


def _whole_minutes(delta: timedelta) -> int:
    """Whole minutes in a duration, truncated toward zero."""
    micros = delta // timedelta(microseconds=1)
    minutes = abs(micros) // 60_000_000
    return -minutes if micros < 0 else minutes


def _parse_u32(text: str) -> int:
    if not _UNSIGNED.fullmatch(text):
        return 0
    value = int(text)
    return value if value <= _U32_MAX else 0


def _without_none(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


@dataclass(frozen=True)
class GeoLocation:
    """Where a clock event happened."""

    lat: float
    lng: float

    def _to_dict(self) -> dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


class ClockMethod(enum.Enum):
    BIOMETRIC = "biometric"
    MANUAL = "manual"
    AUTO_GEOFENCE = "auto_geofence"
    BADGE = "badge"
    PIN = "pin"


class TimeEntryStatus(enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    EDITED = "edited"
    APPROVED = "approved"
    REJECTED = "rejected"


class BreakType(enum.Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    MEAL = "meal"
    REST = "rest"


class TimesheetStatus(enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


class PayPeriodStatus(enum.Enum):
    OPEN = "open"
    CLOSED = "closed"
    PROCESSING = "processing"
    PAID = "paid"


@dataclass
class TimeBreak:
    """A break taken during a time entry."""

    id: str
    time_entry_id: str
    start_time: datetime
    break_type: BreakType = BreakType.UNPAID
    end_time: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    notes: Optional[str] = None
    created_at: datetime = field(default_factory=_now)

    def calculate_duration(self) -> Optional[int]:
        """Whole minutes between start and end, or None while the break is open."""
        if self.end_time is None:
            return None
        minutes = _whole_minutes(_utc(self.end_time) - _utc(self.start_time))
        # Stored as an unsigned 32-bit count, so a negative span wraps around.
        return minutes % (_U32_MAX + 1)

    def _to_dict(self) -> dict[str, Any]:
        data = {
            "id": self.id,
            "time_entry_id": self.time_entry_id,
            "break_type": self.break_type.value,
            "start_time": _format_timestamp(self.start_time),
            "end_time": _optional_timestamp(self.end_time),
            "duration_minutes": self.duration_minutes,
            "notes": self.notes,
            "created_at": _format_timestamp(self.created_at),
        }
        return _without_none(data)


@dataclass
class TimeEntry:
    """One clock-in/clock-out record."""

    id: str
    user_id: str
    entry_date: date
    clock_in_time: datetime
    clock_out_time: Optional[datetime] = None
    clock_in_location: Optional[GeoLocation] = None
    clock_out_location: Optional[GeoLocation] = None
    clock_in_method: ClockMethod = ClockMethod.BIOMETRIC
    clock_out_method: Optional[ClockMethod] = None
    clock_in_device: Optional[str] = None
    clock_out_device: Optional[str] = None
    break_duration_minutes: int = 0
    total_hours: Optional[float] = None
    overtime_hours: float = 0.0
    status: TimeEntryStatus = TimeEntryStatus.ACTIVE
    notes: Optional[str] = None
    edited_by: Optional[str] = None
    edited_reason: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=_now)
    updated_at: Optional[datetime] = None
    breaks: list[TimeBreak] = field(default_factory=list)

    def calculate_hours(self) -> Optional[float]:
        """Hours worked minus breaks, never negative; None while clocked in."""
        if self.clock_out_time is None:
            return None
        minutes = _whole_minutes(_utc(self.clock_out_time) - _utc(self.clock_in_time))
        worked = float(minutes) - float(self.break_duration_minutes)
        return max(worked / 60.0, 0.0)

    def is_clocked_in(self) -> bool:
        return self.clock_out_time is None

    def to_dict(self) -> dict[str, Any]:
        """Plain representation; absent optional fields are left out."""
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "entry_date": self.entry_date.isoformat(),
            "clock_in_time": _format_timestamp(self.clock_in_time),
            "clock_out_time": _optional_timestamp(self.clock_out_time),
            "clock_in_location": None if self.clock_in_location is None else self.clock_in_location._to_dict(),
            "clock_out_location": None if self.clock_out_location is None else self.clock_out_location._to_dict(),
            "clock_in_method": self.clock_in_method.value,
            "clock_out_method": None if self.clock_out_method is None else self.clock_out_method.value,
            "clock_in_device": self.clock_in_device,
            "clock_out_device": self.clock_out_device,
            "break_duration_minutes": self.break_duration_minutes,
            "total_hours": self.total_hours,
            "overtime_hours": self.overtime_hours,
            "status": self.status.value,
            "notes": self.notes,
            "edited_by": self.edited_by,
            "edited_reason": self.edited_reason,
            "approved_by": self.approved_by,
            "approved_at": _optional_timestamp(self.approved_at),
            "created_at": _format_timestamp(self.created_at),
            "updated_at": _optional_timestamp(self.updated_at),
        }
        result = _without_none(data)
        result["breaks"] = [item._to_dict() for item in self.breaks]
        return result


@dataclass
class Timesheet:
    """Summary of a user's time over a period."""

    user_id: str
    user_name: str
    start_date: date
    end_date: date
    regular_hours: float = 0.0
    overtime_hours: float = 0.0
    double_time_hours: float = 0.0
    sick_hours: float = 0.0
    vacation_hours: float = 0.0
    holiday_hours: float = 0.0
    total_hours: float = 0.0
    total_breaks_minutes: int = 0
    days_worked: int = 0
    late_arrivals: int = 0
    early_departures: int = 0
    status: TimesheetStatus = TimesheetStatus.DRAFT
    submitted_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    notes: Optional[str] = None
    entries: list[TimeEntry] = field(default_factory=list)


@dataclass
class PayPeriod:
    """A payroll period."""

    id: str
    period_name: str
    start_date: date
    end_date: date
    status: PayPeriodStatus = PayPeriodStatus.OPEN
    closed_at: Optional[datetime] = None
    closed_by: Optional[str] = None
    created_at: datetime = field(default_factory=_now)


@dataclass
class UserSchedule:
    """Planned shift for a user on one day; times are HH:MM."""

    id: str
    user_id: str
    schedule_date: date
    scheduled_start: str
    scheduled_end: str
    department: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = field(default_factory=_now)

    def is_late(self, clock_in: datetime) -> bool:
        """Whether clock_in falls after the scheduled start on the same UTC day."""
        parts = self.scheduled_start.split(":")
        if len(parts) != 2:
            return False
        hour, minute = (_parse_u32(part) for part in parts)
        if hour >= 24 or minute >= 60:
            return False
        moment = _utc(clock_in)
        scheduled = datetime(moment.year, moment.month, moment.day, hour, minute, tzinfo=timezone.utc)
        return moment > scheduled