import json
import sqlite3

import pytest

from warehouse_wms.crdt import CrdtDocument
from warehouse_wms.engine import ConnectionStatus, SyncEngine, SyncStatus, _ServerChange
from warehouse_wms.errors import SyncError

SERVER = "http://localhost:8080"


@pytest.fixture
def db():
    conn = sqlite3.connect(":memory:")
    yield conn
    conn.close()


def _count(db, sql):
    return db.execute(sql).fetchone()[0]


def test_initial_status(db):
    engine = SyncEngine(db, SERVER)
    status = engine.get_status()
    assert status == SyncStatus()
    assert status.connection_status is ConnectionStatus.UNKNOWN


def test_device_id_is_persisted(db):
    first = SyncEngine(db, SERVER)
    second = SyncEngine(db, SERVER)
    assert first.device_id == second.device_id
    stored = db.execute("SELECT value FROM settings WHERE key = 'device_id'").fetchone()[0]
    assert stored == first.device_id


def test_missing_server_url_raises(db, monkeypatch):
    monkeypatch.delenv("WMS_SERVER_URL", raising=False)
    engine = SyncEngine(db)
    with pytest.raises(SyncError, match="No server URL configured"):
        engine.sync_now()


def test_server_url_from_environment(db, monkeypatch):
    monkeypatch.setenv("WMS_SERVER_URL", SERVER)
    engine = SyncEngine(db)
    assert engine.server_url == SERVER
    assert engine.sync_now().sync_errors == 0


def test_sync_already_in_progress(db):
    engine = SyncEngine(db, SERVER)
    engine._status.is_syncing = True
    with pytest.raises(SyncError, match="Sync already in progress"):
        engine.sync_now()


def test_sync_sends_and_acknowledges_queued_changes(db):
    engine = SyncEngine(db, SERVER)
    engine.queue_change("items", "item-1", "INSERT", '{"sku": "A"}')
    engine.queue_change("items", "item-2", "UPDATE", '{"sku": "B"}')
    status = engine.sync_now()
    assert status.pending_changes == 0
    assert status.is_syncing is False
    assert status.last_sync_at is not None
    assert status.last_error is None
    assert _count(db, "SELECT COUNT(*) FROM sync_outbox WHERE sent_at IS NULL") == 0
    assert _count(db, "SELECT COUNT(*) FROM sync_outbox WHERE acknowledged_at IS NOT NULL") == 2


def test_sync_sends_at_most_one_batch(db):
    engine = SyncEngine(db, SERVER)
    for index in range(105):
        engine.queue_change("items", f"item-{index}", "INSERT", "{}")
    status = engine.sync_now()
    acknowledged = _count(db, "SELECT COUNT(*) FROM sync_outbox WHERE acknowledged_at IS NOT NULL")
    assert acknowledged == 100
    remaining = _count(db, "SELECT COUNT(*) FROM sync_outbox WHERE acknowledged_at IS NULL")
    assert status.pending_changes == remaining
    assert remaining + acknowledged == 105


def test_failed_sync_is_recorded(db):
    engine = SyncEngine(db, SERVER)
    engine.queue_change("items", "item-1", "INSERT", "{}")
    db.execute(
        "CREATE TRIGGER refuse BEFORE UPDATE ON sync_outbox "
        "BEGIN SELECT RAISE(ABORT, 'outbox locked'); END"
    )
    status = engine.sync_now()
    assert status.sync_errors == 1
    assert "outbox locked" in status.last_error
    assert status.last_sync_at is None
    assert status.is_syncing is False
    assert status.pending_changes == 1

    again = engine.sync_now()
    assert again.sync_errors == 2


def test_connection_status_and_status_copy(db):
    engine = SyncEngine(db, SERVER)
    engine.set_connection_status(ConnectionStatus.ONLINE)
    snapshot = engine.get_status()
    assert snapshot.connection_status is ConnectionStatus.ONLINE
    snapshot.sync_errors = 42
    assert engine.get_status().sync_errors == 0


def test_connection_status_values():
    assert ConnectionStatus("offline") is ConnectionStatus.OFFLINE
    assert ConnectionStatus.SLOW.value == "slow"


def test_apply_server_change_stores_and_merges(db):
    engine = SyncEngine(db, SERVER)

    first = CrdtDocument()
    first.set("name", "Widget")
    engine._apply_server_change(_ServerChange("items", "item-1", "MERGE", first.save()))

    second = CrdtDocument()
    second.set("colour", "red")
    engine._apply_server_change(_ServerChange("items", "item-1", "MERGE", second.save()))

    version, blob = db.execute(
        "SELECT version, compressed_changes FROM crdt_documents "
        "WHERE document_type = 'items' AND record_id = 'item-1'"
    ).fetchone()
    assert version == 2
    stored = CrdtDocument.from_changes(bytes(blob))
    assert stored.get_string("name") == "Widget"
    assert stored.get_string("colour") == "red"

    payloads = [
        json.loads(row[0])
        for row in db.execute("SELECT payload FROM sync_inbox ORDER BY rowid").fetchall()
    ]
    assert payloads[0] == {"name": "Widget"}
    assert payloads[-1] == {"colour": "red", "name": "Widget"}