"""Offline-first warehouse core: replicated documents, sync outbox, timesheets and client state helpers."""

__version__ = "0.1.0"