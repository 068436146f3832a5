"""Command handlers the client calls for synchronisation and time tracking."""

from __future__ import annotations

import threading

from .engine import SyncEngine, SyncStatus
from .errors import SyncError, ValidationError
from .timesheet_export import TimesheetExport
from .timesheet_models import TimeEntry, Timesheet
from .timesheet_service import TimesheetService


class Commands:
    """Entry points exposed to the client, with offline-mode handling."""

    def __init__(self, sync_engine: SyncEngine, timesheets: TimesheetService) -> None:
        self.sync_engine = sync_engine
        self.timesheets = timesheets
        self.offline_mode = False
        self._sync_lock = threading.Lock()

    def sync_now(self) -> SyncStatus:
        """Run a synchronisation round unless offline mode is on."""
        if self.offline_mode:
            raise SyncError("Cannot sync while in offline mode")
        with self._sync_lock:
            return self.sync_engine.sync_now()

    def get_sync_status(self) -> SyncStatus:
        return self.sync_engine.get_status()

    def set_offline_mode(self, offline: bool) -> bool:
        """Turn offline mode on or off and return the new setting."""
        self.offline_mode = bool(offline)
        return self.offline_mode

    def clock_in(self, user_id: str, biometric_verified: bool) -> TimeEntry:
        if not biometric_verified:
            raise ValidationError("Biometric verification required for clock in")
        return self.timesheets.clock_in(user_id)

    def clock_out(self, user_id: str, biometric_verified: bool) -> TimeEntry:
        if not biometric_verified:
            raise ValidationError("Biometric verification required for clock out")
        return self.timesheets.clock_out(user_id)

    def get_timesheet(self, user_id: str, start_date: str, end_date: str) -> Timesheet:
        return self.timesheets.get_timesheet(user_id, start_date, end_date)

    def export_timesheet(
        self, user_id: str, start_date: str, end_date: str, format: str
    ) -> TimesheetExport:
        return self.timesheets.export_timesheet(user_id, start_date, end_date, format)