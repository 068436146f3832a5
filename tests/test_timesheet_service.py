import base64
import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from warehouse_wms.errors import ValidationError
from warehouse_wms.timesheet_models import BreakType, TimeEntryStatus
from warehouse_wms.timesheet_service import TimesheetService


@pytest.fixture
def db():
    connection = sqlite3.connect(":memory:")
    yield connection
    connection.close()


@pytest.fixture
def service(db):
    return TimesheetService(db)


def _insert_entry(db, entry_id, user_id, entry_date, clock_in, *, total_hours=None,
                  status="active", clock_out=None):
    with db:
        db.execute(
            "INSERT INTO time_entries (id, user_id, entry_date, clock_in_time, clock_out_time, "
            "clock_in_method, total_hours, status, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (entry_id, user_id, entry_date, clock_in.isoformat(),
             None if clock_out is None else clock_out.isoformat(),
             "biometric", total_hours, status, clock_in.isoformat()),
        )


def _open_entry_hours_ago(db, user_id, hours):
    start = datetime.now(timezone.utc) - timedelta(hours=hours)
    _insert_entry(db, "open-1", user_id, start.date().isoformat(), start)


def test_clock_in_creates_active_entry(service, db):
    entry = service.clock_in("u1")
    assert entry.is_clocked_in()
    assert entry.status is TimeEntryStatus.ACTIVE
    stored = db.execute("SELECT user_id, status FROM time_entries WHERE id = ?", (entry.id,)).fetchone()
    assert stored == ("u1", "active")


def test_clock_in_twice_rejected(service):
    service.clock_in("u1")
    with pytest.raises(ValidationError, match="already clocked in"):
        service.clock_in("u1")


def test_clock_out_without_clock_in_rejected(service):
    with pytest.raises(ValidationError, match="not clocked in"):
        service.clock_out("u1")


def test_clock_out_computes_overtime(service, db):
    _open_entry_hours_ago(db, "u1", 10)
    entry = service.clock_out("u1")
    assert entry.status is TimeEntryStatus.COMPLETED
    assert not entry.is_clocked_in()
    assert entry.total_hours == pytest.approx(10.0)
    assert entry.overtime_hours == pytest.approx(entry.total_hours - 8.0)
    stored = db.execute("SELECT status, total_hours FROM time_entries WHERE id = 'open-1'").fetchone()
    assert stored[0] == "completed"
    assert stored[1] == pytest.approx(entry.total_hours)


def test_clock_out_under_threshold_has_no_overtime(service, db):
    _open_entry_hours_ago(db, "u1", 3)
    entry = service.clock_out("u1")
    assert entry.overtime_hours == 0.0
    assert entry.total_hours < service.standard_hours


def test_with_overtime_config_changes_threshold(db):
    service = TimesheetService(db).with_overtime_config(6.0, 30.0)
    assert service.weekly_overtime_threshold == 30.0
    _open_entry_hours_ago(db, "u1", 10)
    entry = service.clock_out("u1")
    assert entry.overtime_hours == pytest.approx(entry.total_hours - 6.0)


def test_break_cycle_adds_minutes(service, db):
    _open_entry_hours_ago(db, "u1", 2)
    started = service.start_break("u1", BreakType.MEAL)
    assert started.end_time is None
    assert started.break_type is BreakType.MEAL
    back = (datetime.now(timezone.utc) - timedelta(minutes=30)).isoformat()
    with db:
        db.execute("UPDATE time_breaks SET start_time = ? WHERE id = ?", (back, started.id))
    ended = service.end_break("u1")
    assert ended.id == started.id
    assert ended.break_type is BreakType.MEAL
    assert ended.duration_minutes == 30
    minutes = db.execute(
        "SELECT break_duration_minutes FROM time_entries WHERE id = 'open-1'"
    ).fetchone()[0]
    assert minutes == ended.duration_minutes


def test_end_break_without_break_rejected(service):
    service.clock_in("u1")
    with pytest.raises(ValidationError, match="No active break found"):
        service.end_break("u1")


def test_start_break_requires_clock_in(service):
    with pytest.raises(ValidationError, match="not clocked in"):
        service.start_break("u1", BreakType.PAID)


def test_get_timesheet_summary(service, db):
    with db:
        db.execute("INSERT INTO users (id, full_name) VALUES ('u1', 'John Doe')")
    day1 = datetime(2024, 1, 1, 8, tzinfo=timezone.utc)
    day2 = datetime(2024, 1, 2, 8, tzinfo=timezone.utc)
    outside = datetime(2024, 2, 1, 8, tzinfo=timezone.utc)
    _insert_entry(db, "e1", "u1", "2024-01-01", day1, total_hours=9.0, status="completed", clock_out=day1)
    _insert_entry(db, "e2", "u1", "2024-01-02", day2, total_hours=7.0, status="completed", clock_out=day2)
    _insert_entry(db, "e3", "u1", "2024-02-01", outside, total_hours=5.0, status="completed", clock_out=outside)

    sheet = service.get_timesheet("u1", "2024-01-01", "2024-01-07")
    assert sheet.user_name == "John Doe"
    assert [entry.id for entry in sheet.entries] == ["e1", "e2"]
    assert sheet.days_worked == 2
    assert sheet.total_hours == pytest.approx(16.0)
    assert sheet.overtime_hours == pytest.approx(1.0)
    assert sheet.regular_hours + sheet.overtime_hours == pytest.approx(sheet.total_hours)
    assert sheet.entries[0].entry_date.isoformat() == "2024-01-01"


def test_get_timesheet_unknown_user(service):
    sheet = service.get_timesheet("ghost", "2024-01-01", "2024-01-07")
    assert sheet.user_name == "Unknown"
    assert sheet.entries == []
    assert sheet.days_worked == 0


@pytest.mark.parametrize("start, end, message", [
    ("01/01/2024", "2024-01-07", "Invalid start date format"),
    ("2024-01-01", "bad", "Invalid end date format"),
])
def test_get_timesheet_invalid_dates(service, start, end, message):
    with pytest.raises(ValidationError, match=message):
        service.get_timesheet("u1", start, end)


def test_export_csv(service):
    export = service.export_timesheet("u1", "2024-01-01", "2024-01-07", "CSV")
    assert export.content_type == "text/csv"
    assert export.filename == "timesheet_u1_2024-01-01_to_2024-01-07.csv"
    content = base64.b64decode(export.data).decode("utf-8")
    assert "Date,Clock In,Clock Out" in content
    assert "Summary" in content


@pytest.mark.parametrize("fmt", ["xlsx", "excel"])
def test_export_xlsx(service, fmt):
    export = service.export_timesheet("u1", "2024-01-01", "2024-01-07", fmt)
    assert export.filename.endswith(".xlsx")
    assert export.content_type == "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    assert base64.b64decode(export.data)[:2] == b"PK"


def test_export_unsupported_format(service):
    with pytest.raises(ValidationError, match="Unsupported format: pdf"):
        service.export_timesheet("u1", "2024-01-01", "2024-01-07", "pdf")