import base64
import sqlite3
from datetime import datetime, timezone

import pytest

from warehouse_wms.commands import Commands
from warehouse_wms.engine import ConnectionStatus, SyncEngine
from warehouse_wms.errors import SyncError, ValidationError
from warehouse_wms.timesheet_models import TimeEntryStatus
from warehouse_wms.timesheet_service import TimesheetService


@pytest.fixture
def db():
    connection = sqlite3.connect(":memory:")
    yield connection
    connection.close()


@pytest.fixture
def commands(db):
    engine = SyncEngine(db, server_url="http://localhost:9")
    return Commands(engine, TimesheetService(db))


def test_initial_sync_status(commands):
    status = commands.get_sync_status()
    assert status.is_syncing is False
    assert status.connection_status is ConnectionStatus.UNKNOWN
    assert status.sync_errors == 0


def test_offline_mode_blocks_sync(commands):
    assert commands.set_offline_mode(True) is True
    with pytest.raises(SyncError, match="Cannot sync while in offline mode"):
        commands.sync_now()
    assert commands.set_offline_mode(False) is False


def test_sync_now_acknowledges_queued_changes(commands):
    commands.sync_engine.queue_change("items", "r1", "INSERT", "{}")
    status = commands.sync_now()
    assert status.pending_changes == 0
    assert status.sync_errors == 0
    assert status.last_sync_at is not None
    assert commands.get_sync_status().last_sync_at == status.last_sync_at


def test_sync_now_without_server_url(db, monkeypatch):
    monkeypatch.delenv("WMS_SERVER_URL", raising=False)
    commands = Commands(SyncEngine(db), TimesheetService(db))
    with pytest.raises(SyncError, match="No server URL configured"):
        commands.sync_now()


def test_clock_in_requires_biometric(commands, db):
    with pytest.raises(ValidationError, match="Biometric verification required for clock in"):
        commands.clock_in("u1", False)
    assert db.execute("SELECT COUNT(*) FROM time_entries").fetchone()[0] == 0


def test_clock_out_requires_biometric(commands):
    commands.clock_in("u1", True)
    with pytest.raises(ValidationError, match="Biometric verification required for clock out"):
        commands.clock_out("u1", False)


def test_clock_in_and_out(commands):
    entry = commands.clock_in("u1", True)
    assert entry.status is TimeEntryStatus.ACTIVE
    closed = commands.clock_out("u1", True)
    assert closed.id == entry.id
    assert closed.status is TimeEntryStatus.COMPLETED
    assert closed.total_hours == 0.0


def test_get_timesheet_includes_today(commands):
    entry = commands.clock_in("u1", True)
    commands.clock_out("u1", True)
    today = datetime.now(timezone.utc).date().isoformat()
    sheet = commands.get_timesheet("u1", today, today)
    assert [item.id for item in sheet.entries] == [entry.id]
    assert sheet.days_worked == 1


def test_export_timesheet_csv(commands):
    export = commands.export_timesheet("u1", "2024-01-01", "2024-01-07", "csv")
    assert export.filename == "timesheet_u1_2024-01-01_to_2024-01-07.csv"
    assert "Summary" in base64.b64decode(export.data).decode("utf-8")


def test_export_timesheet_bad_format(commands):
    with pytest.raises(ValidationError, match="Unsupported format"):
        commands.export_timesheet("u1", "2024-01-01", "2024-01-07", "doc")