# warehouse_wms

The core of an offline-first warehouse management system, as a Python library
with no dependencies outside the standard library. It covers:

- **Replicated documents** (`warehouse_wms.crdt`). A `CrdtDocument` is a conflict-free
  replicated map. `save()` encodes the document to bytes and `merge()` folds in another
  document's saved bytes. Any two documents that hold the same changes show the same
  state. `push_operation()` records a `CrdtOperation`, such as an inventory adjustment,
  in a list. `calculate_sum()` adds up the `delta` fields in that list.
- **Wire messages** (`warehouse_wms.protocol`). These are `SyncMessage` envelopes. Each
  carries a `SyncRequest`, `SyncResponse`, `SyncPush` or `SyncAck` payload, and the
  payloads carry `ChangeRecord`s. A message converts to and from dicts and JSON.
  Replicated-document bytes are base64-encoded.
- **Sync engine** (`warehouse_wms.engine`). `SyncEngine` works on a `sqlite3` connection.
  It keeps an outbox of local changes (`queue_change`), runs a sync round (`sync_now`)
  and reports a `SyncStatus`. It creates the tables it needs if they are missing.
- **Timesheets** (`warehouse_wms.timesheet_models`, `timesheet_service`,
  `timesheet_export`).
  - `TimesheetService` handles clock in and clock out, breaks, daily overtime and period
    summaries, all stored in SQLite.
  - `export_xlsx` and `export_csv` render a `Timesheet` to a file.
  - `export_timesheet` returns a `TimesheetExport` whose data is base64-encoded.
- **Commands** (`warehouse_wms.commands`). `Commands` is the layer a client calls.
  Clocking in and out is refused unless `biometric_verified` is true, and offline mode
  blocks syncing.
- **Client state and presentation helpers** (`warehouse_wms.ui_state`, `ui_widgets`).
  - `ui_state` holds `AppState`, with the user, the sync indicator, toasts and the theme,
    and the `Module` navigation entries.
  - `ui_widgets` holds the badge and button CSS classes, bar-chart and sparkline
    geometry, stat-card trend text, table sort state and the sidebar sync text.

Errors are raised as subclasses of `warehouse_wms.errors.WmsError`: `SyncError`,
`ValidationError`, `ExportError` and `SerializationError`.

## Install

```
pip install .
```

For development and tests:

```
pip install ".[test]"
pytest
```

## Examples

### Replicated documents

```python
from warehouse_wms.crdt import CrdtDocument, CrdtOperation

doc = CrdtDocument("device-a")
doc.push_operation("adjustments", CrdtOperation.create("receive", 100.0, "user1"))
doc.push_operation("adjustments", CrdtOperation.create("pick", -25.0, "user2"))
print(doc.calculate_sum("adjustments"))  # 75.0

other = CrdtDocument("device-b")
other.set("name", "Widget Pro")
doc.merge(other.save())
print(doc.get_string("name"))  # Widget Pro
```

### Sync outbox

```python
import sqlite3
from warehouse_wms.engine import SyncEngine

db = sqlite3.connect(":memory:")
engine = SyncEngine(db, server_url="https://sync.example.com")
engine.queue_change("inventory_items", "item-1", "UPDATE", '{"quantity": 5}')
status = engine.sync_now()
print(status.pending_changes, status.last_error)  # 0 None
```

If no `server_url` is given, the engine reads it from the `WMS_SERVER_URL`
environment variable. `sync_now()` raises `SyncError` when no URL is set or when a
round is already running. Failures that happen during a round are recorded in the
status (`sync_errors`, `last_error`) and are not raised.

### Timesheets

```python
import base64
import sqlite3
from warehouse_wms.commands import Commands
from warehouse_wms.engine import SyncEngine
from warehouse_wms.timesheet_service import TimesheetService

db = sqlite3.connect(":memory:")
commands = Commands(SyncEngine(db), TimesheetService(db))

entry = commands.clock_in("user1", biometric_verified=True)
commands.clock_out("user1", biometric_verified=True)

day = entry.entry_date.isoformat()
report = commands.export_timesheet("user1", day, day, "csv")
print(report.filename)  # timesheet_user1_<day>_to_<day>.csv
print(base64.b64decode(report.data).decode().splitlines()[0])
# Date,Clock In,Clock Out,Break (min),Hours,Overtime,Status
```

The accepted export formats are `"xlsx"`, `"excel"` and `"csv"`. Any other format
raises `ValidationError`. Dates must be given as `YYYY-MM-DD`.

## What this package does not do

- **It does not talk to a sync server.** In a sync round, `SyncEngine` marks the queued
  outbox changes as sent and acknowledged. It does not fetch any changes from the
  server. It can merge incoming replicated-document changes into its
  `crdt_documents` and `sync_inbox` tables, but no network exchange is performed.
- **It has no command-line program, HTTP server or graphical screens.** `Commands`
  and the `ui_*` modules are plain Python objects and functions. They are meant to be
  used by a front end that you write yourself.
- **It covers only synchronisation and timesheets.** It has no inventory, shipping,
  receiving, delivery-routing or customer modules.
- **It does not encrypt storage.** The services use whatever `sqlite3` connection they
  are given.