"""Messages exchanged between a device and the synchronisation server."""

from __future__ import annotations

import base64
import binascii
import enum
import json
import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, ClassVar, Optional, Union

from .errors import SerializationError

_TIMESTAMP = re.compile(
    r"(\d{4}-\d{2}-\d{2})[Tt ](\d{2}):(\d{2}):(\d{2})(?:\.(\d{1,9}))?(Z|z|[+-]\d{2}:\d{2})$"
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _format_timestamp(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    text = moment.strftime("%Y-%m-%dT%H:%M:%S")
    micros = moment.microsecond
    if micros == 0:
        return text + "Z"
    if micros % 1000 == 0:
        return f"{text}.{micros // 1000:03d}Z"
    return f"{text}.{micros:06d}Z"


def _parse_timestamp(text: Any) -> datetime:
    if not isinstance(text, str):
        raise SerializationError("timestamp must be a string")
    match = _TIMESTAMP.match(text)
    if match is None:
        raise SerializationError(f"invalid timestamp {text!r}")
    day, hour, minute, second, fraction, zone = match.groups()
    try:
        if zone in ("Z", "z"):
            tz = timezone.utc
        else:
            sign = -1 if zone[0] == "-" else 1
            offset = timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6]))
            tz = timezone(sign * offset)
        parsed_day = date.fromisoformat(day)
        micros = int((fraction or "")[:6].ljust(6, "0"))
        moment = datetime(
            parsed_day.year, parsed_day.month, parsed_day.day,
            int(hour), int(minute), int(second), micros, tzinfo=tz,
        )
    except ValueError as exc:
        raise SerializationError(f"invalid timestamp {text!r}: {exc}") from exc
    return moment.astimezone(timezone.utc)


def _mapping(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise SerializationError("expected an object")
    return data


def _check(key: str, value: Any, kind: type) -> Any:
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise SerializationError(f"invalid type for field `{key}`")
    return value


def _field(data: dict[str, Any], key: str, kind: type) -> Any:
    if key not in data:
        raise SerializationError(f"missing field `{key}`")
    return _check(key, data[key], kind)


def _optional(data: dict[str, Any], key: str, kind: type) -> Any:
    value = data.get(key)
    return None if value is None else _check(key, value, kind)


def _strings(data: dict[str, Any], key: str) -> list[str]:
    return [_check(key, item, str) for item in _field(data, key, list)]


class ChangeOperation(enum.Enum):
    """Kind of change carried by a change record."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    MERGE = "MERGE"


@dataclass
class TableVersion:
    """Last known version of one table."""

    table_name: str
    version: int
    last_sync_at: Optional[datetime] = None

    def _to_dict(self) -> dict[str, Any]:
        return {
            "table_name": self.table_name,
            "version": self.version,
            "last_sync_at": None if self.last_sync_at is None else _format_timestamp(self.last_sync_at),
        }

    @classmethod
    def _from_dict(cls, data: Any) -> "TableVersion":
        data = _mapping(data)
        last = data.get("last_sync_at")
        return cls(
            table_name=_field(data, "table_name", str),
            version=_field(data, "version", int),
            last_sync_at=None if last is None else _parse_timestamp(last),
        )


@dataclass
class ChangeRecord:
    """A single change to one record of one table."""

    id: str
    table_name: str
    record_id: str
    operation: ChangeOperation
    version: int
    timestamp: datetime
    actor_id: str
    json_payload: Optional[str] = None
    crdt_changes: Optional[bytes] = None

    @classmethod
    def json(
        cls,
        table_name: str,
        record_id: str,
        operation: ChangeOperation,
        actor_id: str,
        payload: str,
    ) -> "ChangeRecord":
        """A change that carries a JSON payload."""
        return cls(
            id=str(uuid.uuid4()),
            table_name=table_name,
            record_id=record_id,
            operation=operation,
            version=1,
            timestamp=_now(),
            actor_id=actor_id,
            json_payload=payload,
        )

    @classmethod
    def crdt(cls, table_name: str, record_id: str, actor_id: str, changes: bytes) -> "ChangeRecord":
        """A merge change that carries replicated-document bytes."""
        return cls(
            id=str(uuid.uuid4()),
            table_name=table_name,
            record_id=record_id,
            operation=ChangeOperation.MERGE,
            version=1,
            timestamp=_now(),
            actor_id=actor_id,
            crdt_changes=bytes(changes),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "table_name": self.table_name,
            "record_id": self.record_id,
            "operation": self.operation.value,
            "version": self.version,
            "timestamp": _format_timestamp(self.timestamp),
            "actor_id": self.actor_id,
        }
        if self.json_payload is not None:
            data["json_payload"] = self.json_payload
        if self.crdt_changes is not None:
            data["crdt_changes"] = base64.b64encode(self.crdt_changes).decode("ascii")
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "ChangeRecord":
        data = _mapping(data)
        operation_text = _field(data, "operation", str)
        try:
            operation = ChangeOperation(operation_text)
        except ValueError:
            raise SerializationError(f"unknown operation `{operation_text}`") from None
        encoded = _optional(data, "crdt_changes", str)
        crdt_changes = None
        if encoded is not None:
            try:
                crdt_changes = base64.b64decode(encoded, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise SerializationError(f"invalid base64 in `crdt_changes`: {exc}") from exc
        return cls(
            id=_field(data, "id", str),
            table_name=_field(data, "table_name", str),
            record_id=_field(data, "record_id", str),
            operation=operation,
            version=_field(data, "version", int),
            timestamp=_parse_timestamp(_field(data, "timestamp", str)),
            actor_id=_field(data, "actor_id", str),
            json_payload=_optional(data, "json_payload", str),
            crdt_changes=crdt_changes,
        )


def _changes(data: dict[str, Any]) -> list[ChangeRecord]:
    return [ChangeRecord.from_dict(item) for item in _field(data, "changes", list)]


@dataclass
class ChangeError:
    """Why the server refused one change."""

    change_id: str
    error_code: str
    message: str

    def _to_dict(self) -> dict[str, Any]:
        return {"change_id": self.change_id, "error_code": self.error_code, "message": self.message}

    @classmethod
    def _from_dict(cls, data: Any) -> "ChangeError":
        data = _mapping(data)
        return cls(
            change_id=_field(data, "change_id", str),
            error_code=_field(data, "error_code", str),
            message=_field(data, "message", str),
        )


@dataclass
class SyncRequest:
    """Ask the server for changes since the given table versions."""

    TAG: ClassVar[str] = "request"
    tables: list[str] = field(default_factory=list)
    versions: list[TableVersion] = field(default_factory=list)
    limit: Optional[int] = None

    def _to_fields(self) -> dict[str, Any]:
        return {
            "tables": list(self.tables),
            "versions": [version._to_dict() for version in self.versions],
            "limit": self.limit,
        }

    @classmethod
    def _from_fields(cls, data: dict[str, Any]) -> "SyncRequest":
        return cls(
            tables=_strings(data, "tables"),
            versions=[TableVersion._from_dict(item) for item in _field(data, "versions", list)],
            limit=_optional(data, "limit", int),
        )


@dataclass
class SyncResponse:
    """Changes sent back by the server."""

    TAG: ClassVar[str] = "response"
    changes: list[ChangeRecord]
    has_more: bool
    server_time: datetime

    def _to_fields(self) -> dict[str, Any]:
        return {
            "changes": [change.to_dict() for change in self.changes],
            "has_more": self.has_more,
            "server_time": _format_timestamp(self.server_time),
        }

    @classmethod
    def _from_fields(cls, data: dict[str, Any]) -> "SyncResponse":
        return cls(
            changes=_changes(data),
            has_more=_field(data, "has_more", bool),
            server_time=_parse_timestamp(_field(data, "server_time", str)),
        )


@dataclass
class SyncPush:
    """Local changes pushed to the server."""

    TAG: ClassVar[str] = "push"
    changes: list[ChangeRecord] = field(default_factory=list)

    def _to_fields(self) -> dict[str, Any]:
        return {"changes": [change.to_dict() for change in self.changes]}

    @classmethod
    def _from_fields(cls, data: dict[str, Any]) -> "SyncPush":
        return cls(changes=_changes(data))


@dataclass
class SyncAck:
    """Acknowledgement of received changes."""

    TAG: ClassVar[str] = "ack"
    change_ids: list[str]
    success: bool
    errors: list[ChangeError] = field(default_factory=list)

    def _to_fields(self) -> dict[str, Any]:
        return {
            "change_ids": list(self.change_ids),
            "success": self.success,
            "errors": [error._to_dict() for error in self.errors],
        }

    @classmethod
    def _from_fields(cls, data: dict[str, Any]) -> "SyncAck":
        return cls(
            change_ids=_strings(data, "change_ids"),
            success=_field(data, "success", bool),
            errors=[ChangeError._from_dict(item) for item in _field(data, "errors", list)],
        )


SyncPayload = Union[SyncRequest, SyncResponse, SyncPush, SyncAck]
_PAYLOADS: dict[str, Any] = {
    payload.TAG: payload for payload in (SyncRequest, SyncResponse, SyncPush, SyncAck)
}


@dataclass
class SyncMessage:
    """Envelope around one payload."""

    id: str
    device_id: str
    timestamp: datetime
    payload: SyncPayload

    @classmethod
    def request(cls, device_id: str, tables: list[str], versions: list[TableVersion]) -> "SyncMessage":
        """A request for at most 100 changes to the given tables."""
        return cls(
            id=str(uuid.uuid4()),
            device_id=device_id,
            timestamp=_now(),
            payload=SyncRequest(tables=list(tables), versions=list(versions), limit=100),
        )

    @classmethod
    def push(cls, device_id: str, changes: list[ChangeRecord]) -> "SyncMessage":
        """A push of local changes."""
        return cls(
            id=str(uuid.uuid4()),
            device_id=device_id,
            timestamp=_now(),
            payload=SyncPush(changes=list(changes)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "device_id": self.device_id,
            "timestamp": _format_timestamp(self.timestamp),
            "payload": {"type": self.payload.TAG, **self.payload._to_fields()},
        }

    @classmethod
    def from_dict(cls, data: Any) -> "SyncMessage":
        data = _mapping(data)
        payload_data = _mapping(_field(data, "payload", dict))
        tag = _field(payload_data, "type", str)
        payload_type = _PAYLOADS.get(tag)
        if payload_type is None:
            raise SerializationError(f"unknown payload type `{tag}`")
        return cls(
            id=_field(data, "id", str),
            device_id=_field(data, "device_id", str),
            timestamp=_parse_timestamp(_field(data, "timestamp", str)),
            payload=payload_type._from_fields(payload_data),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, text: str) -> "SyncMessage":
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise SerializationError(f"invalid JSON: {exc}") from exc
        return cls.from_dict(data)