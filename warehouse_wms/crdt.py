"""Conflict-free replicated documents.

A document is a log of changes. Each change carries the operations of one
edit, the hashes of the changes it was made on top of, and a Lamport counter
range that gives every operation a unique, totally ordered id. The visible
state is rebuilt by replaying operations in id order: map keys keep the value
written by the greatest id, and list elements are placed after the element they
were inserted behind, concurrent inserts at the same spot ordered greatest id
first. Any two documents holding the same changes therefore show the same state.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import math
import uuid
import zlib
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, NamedTuple, Optional, Union

from .errors import SyncError

ROOT = "_root"
_HEAD = "_head"
_MAGIC = b"WMSCRDT\x01"
_I64_MIN = -(2**63)
_I64_MAX = 2**63 - 1
_MISSING = object()

CrdtValue = Union[str, int, float, bool, None]
OpId = tuple[int, str]


class _Entry(NamedTuple):
    op_id: OpId
    is_object: bool
    payload: Any


class _MapObject:
    def __init__(self) -> None:
        self.entries: dict[str, _Entry] = {}

    def put(self, key: str, entry: _Entry) -> None:
        current = self.entries.get(key)
        if current is None or entry.op_id > current.op_id:
            self.entries[key] = entry


class _ListObject:
    def __init__(self) -> None:
        self.elements: list[_Entry] = []

    def insert_after(self, after: Optional[OpId], entry: _Entry) -> None:
        if after is None:
            self.elements.insert(0, entry)
            return
        for position, element in enumerate(self.elements):
            if element.op_id == after:
                self.elements.insert(position + 1, entry)
                return
        raise SyncError(f"unknown list element {_fmt_id(after)}")


_OBJECT_TYPES = {"map": _MapObject, "list": _ListObject}


def _fmt_id(op_id: OpId) -> str:
    return f"{op_id[0]}@{op_id[1]}"


def _parse_id(text: str) -> OpId:
    counter, sep, actor = text.partition("@")
    if not sep or not actor:
        raise ValueError(f"malformed operation id {text!r}")
    return int(counter), actor


def _hash_change(change: dict[str, Any]) -> str:
    canonical = json.dumps(change, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    return None


def _apply(objects: dict[str, Any], op_id: OpId, op: dict[str, Any]) -> None:
    target = objects.get(op["obj"])
    if target is None:
        raise SyncError(f"unknown object {op['obj']}")
    action = op["action"]
    if action == "put":
        if not isinstance(target, _MapObject):
            raise SyncError("put into an object that is not a map")
        if not isinstance(op["key"], str):
            raise SyncError("map keys must be strings")
    elif action == "insert":
        if not isinstance(target, _ListObject):
            raise SyncError("insert into an object that is not a list")
    else:
        raise SyncError(f"unknown action {action!r}")

    if "make" in op:
        factory = _OBJECT_TYPES.get(op["make"])
        if factory is None:
            raise SyncError(f"unknown object type {op['make']!r}")
        object_id = _fmt_id(op_id)
        objects[object_id] = factory()
        entry = _Entry(op_id, True, object_id)
    else:
        entry = _Entry(op_id, False, op["value"])

    if action == "put":
        target.put(op["key"], entry)
    else:
        after = op["after"]
        target.insert_after(None if after == _HEAD else _parse_id(after), entry)


def _replay(changes: list[dict[str, Any]], context: str) -> dict[str, Any]:
    objects: dict[str, Any] = {ROOT: _MapObject()}
    ops = [
        ((change["start_op"] + offset, change["actor"]), op)
        for change in changes
        for offset, op in enumerate(change["ops"])
    ]
    ops.sort(key=lambda item: item[0])
    seen: set[OpId] = set()
    try:
        for op_id, op in ops:
            if op_id in seen:
                raise SyncError(f"duplicate operation id {_fmt_id(op_id)}")
            seen.add(op_id)
            _apply(objects, op_id, op)
    except SyncError as exc:
        raise SyncError(f"{context}: {exc}") from exc
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise SyncError(f"{context}: malformed operation ({exc})") from exc
    return objects


def _validate_change(raw: Any, context: str) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise SyncError(f"{context}: change is not an object")
    actor, seq, start_op = raw.get("actor"), raw.get("seq"), raw.get("start_op")
    deps, ops = raw.get("deps"), raw.get("ops")
    valid = (
        isinstance(actor, str)
        and actor
        and "@" not in actor
        and isinstance(seq, int)
        and not isinstance(seq, bool)
        and isinstance(start_op, int)
        and not isinstance(start_op, bool)
        and start_op >= 1
        and isinstance(deps, list)
        and all(isinstance(dep, str) for dep in deps)
        and isinstance(ops, list)
        and all(isinstance(op, dict) for op in ops)
    )
    if not valid:
        raise SyncError(f"{context}: malformed change")
    return {"actor": actor, "seq": seq, "start_op": start_op, "deps": deps, "ops": ops}


def _decode(data: bytes, context: str) -> list[dict[str, Any]]:
    raw = bytes(data)
    if not raw:
        return []
    if not raw.startswith(_MAGIC):
        raise SyncError(f"{context}: data is not a saved document")
    try:
        changes = json.loads(zlib.decompress(raw[len(_MAGIC):]).decode("utf-8"))
    except (zlib.error, UnicodeDecodeError, ValueError) as exc:
        raise SyncError(f"{context}: {exc}") from exc
    if not isinstance(changes, list):
        raise SyncError(f"{context}: malformed change log")
    return [_validate_change(change, context) for change in changes]


@dataclass(frozen=True)
class CrdtList:
    """Handle to a list object inside a document."""

    obj_id: str


@dataclass
class CrdtOperation:
    """One inventory adjustment recorded in a replicated list."""

    id: str
    op_type: str
    delta: float
    user_id: str
    timestamp: str
    notes: Optional[str] = None

    @classmethod
    def create(cls, op_type: str, delta: float, user_id: str) -> "CrdtOperation":
        """Build an operation with a fresh id and the current UTC time."""
        return cls(
            id=str(uuid.uuid4()),
            op_type=op_type,
            delta=delta,
            user_id=user_id,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    def with_notes(self, notes: str) -> "CrdtOperation":
        """Return a copy of this operation carrying the given notes."""
        return dataclasses.replace(self, notes=notes)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "op_type": self.op_type,
            "delta": self.delta,
            "user_id": self.user_id,
            "timestamp": self.timestamp,
        }
        if self.notes is not None:
            data["notes"] = self.notes
        return data


class CrdtDocument:
    """A replicated document with a map at its root."""

    def __init__(self, actor_id: Optional[str] = None) -> None:
        actor = uuid.uuid4().hex if actor_id is None else str(actor_id)
        if not actor or "@" in actor:
            raise SyncError(f"invalid actor id {actor!r}")
        self._actor = actor
        self._changes: dict[str, dict[str, Any]] = {}
        self._seq = 0
        self._max_op = 0
        self._objects: dict[str, Any] = {ROOT: _MapObject()}

    @property
    def actor_id(self) -> str:
        return self._actor

    @classmethod
    def from_changes(cls, data: bytes) -> "CrdtDocument":
        """Load a document from bytes produced by :meth:`save`."""
        context = "Failed to load CRDT"
        doc = cls()
        doc._absorb(_decode(data, context), context)
        return doc

    def save(self) -> bytes:
        """Encode the whole change log."""
        payload = json.dumps(
            list(self._changes.values()), sort_keys=True, separators=(",", ":")
        ).encode("utf-8")
        return _MAGIC + zlib.compress(payload)

    def merge(self, other_changes: bytes) -> None:
        """Fold the changes of another saved document into this one."""
        changes = _decode(other_changes, "Failed to load other CRDT")
        self._absorb(changes, "Failed to merge CRDTs")

    def get_heads_json(self) -> str:
        """Hashes of the changes nothing else depends on, as a JSON array."""
        return json.dumps(self._heads())

    def to_json(self) -> str:
        """The visible state of the document as JSON."""
        return json.dumps(self._materialize(ROOT), separators=(",", ":"), ensure_ascii=False)

    def set(self, key: str, value: CrdtValue) -> None:
        """Write a scalar value under a root key."""
        if isinstance(value, bool) or value is None or isinstance(value, (str, float)):
            pass
        elif isinstance(value, int):
            if not _I64_MIN <= value <= _I64_MAX:
                raise SyncError(f"integer {value} is out of range")
        else:
            raise SyncError(f"unsupported value type {type(value).__name__}")
        self._commit([{"action": "put", "obj": ROOT, "key": key, "value": value}])

    def get_string(self, key: str) -> Optional[str]:
        value = self._root_scalar(key)
        return value if isinstance(value, str) else None

    def get_int(self, key: str) -> Optional[int]:
        value = self._root_scalar(key)
        return None if value is _MISSING else _as_int(value)

    def get_float(self, key: str) -> Optional[float]:
        value = self._root_scalar(key)
        return None if value is _MISSING else _as_float(value)

    def create_list(self, key: str) -> CrdtList:
        """Put a new empty list under a root key, replacing what was there."""
        list_id = self._next_id(0)
        self._commit([{"action": "put", "obj": ROOT, "key": key, "make": "list"}])
        return CrdtList(obj_id=list_id)

    def push_operation(self, list_key: str, operation: CrdtOperation) -> None:
        """Insert an operation record at the front of a root list, creating it if needed."""
        ops: list[dict[str, Any]] = []
        entry = self._root_entry(list_key)
        if entry is None:
            list_id = self._next_id(0)
            ops.append({"action": "put", "obj": ROOT, "key": list_key, "make": "list"})
        elif entry.is_object and isinstance(self._objects[entry.payload], _ListObject):
            list_id = entry.payload
        else:
            raise SyncError(f"{list_key!r} does not hold a list")

        record_id = self._next_id(len(ops))
        ops.append({"action": "insert", "obj": list_id, "after": _HEAD, "make": "map"})
        fields = {
            "type": operation.op_type,
            "delta": float(operation.delta),
            "user": operation.user_id,
            "id": operation.id,
            "timestamp": operation.timestamp,
        }
        ops.extend(
            {"action": "put", "obj": record_id, "key": name, "value": value}
            for name, value in fields.items()
        )
        self._commit(ops)

    def calculate_sum(self, list_key: str) -> float:
        """Sum the ``delta`` fields of every record in a root list."""
        entry = self._root_entry(list_key)
        if entry is None or not entry.is_object:
            return 0.0
        target = self._objects[entry.payload]
        if not isinstance(target, _ListObject):
            return 0.0
        total = 0.0
        for element in target.elements:
            if not element.is_object:
                continue
            record = self._objects[element.payload]
            if not isinstance(record, _MapObject):
                continue
            delta = record.entries.get("delta")
            if delta is None or delta.is_object:
                continue
            value = _as_float(delta.payload)
            if value is not None:
                total += value
        return total

    def _root_entry(self, key: str) -> Optional[_Entry]:
        return self._objects[ROOT].entries.get(key)

    def _root_scalar(self, key: str) -> Any:
        entry = self._root_entry(key)
        if entry is None or entry.is_object:
            return _MISSING
        return entry.payload

    def _materialize(self, object_id: str) -> Any:
        target = self._objects[object_id]
        if isinstance(target, _MapObject):
            return {key: self._entry_value(target.entries[key]) for key in sorted(target.entries)}
        return [self._entry_value(element) for element in target.elements]

    def _entry_value(self, entry: _Entry) -> Any:
        return self._materialize(entry.payload) if entry.is_object else entry.payload

    def _next_id(self, offset: int) -> str:
        return _fmt_id((self._max_op + 1 + offset, self._actor))

    def _heads(self) -> list[str]:
        referenced = {dep for change in self._changes.values() for dep in change["deps"]}
        return sorted(digest for digest in self._changes if digest not in referenced)

    def _commit(self, ops: list[dict[str, Any]]) -> None:
        change = {
            "actor": self._actor,
            "seq": self._seq + 1,
            "start_op": self._max_op + 1,
            "deps": self._heads(),
            "ops": ops,
        }
        for offset, op in enumerate(ops):
            _apply(self._objects, (change["start_op"] + offset, self._actor), op)
        self._max_op += len(ops)
        self._seq += 1
        self._changes[_hash_change(change)] = change

    def _absorb(self, changes: list[dict[str, Any]], context: str) -> None:
        incoming: dict[str, dict[str, Any]] = {}
        for change in changes:
            digest = _hash_change(change)
            if digest not in self._changes:
                incoming[digest] = change
        if not incoming:
            return
        known = self._changes.keys() | incoming.keys()
        for change in incoming.values():
            for dep in change["deps"]:
                if dep not in known:
                    raise SyncError(f"{context}: missing dependency {dep}")
        merged = {**self._changes, **incoming}
        self._objects = _replay(list(merged.values()), context)
        self._changes = merged
        self._max_op = max(
            (change["start_op"] + len(change["ops"]) - 1 for change in merged.values()),
            default=0,
        )
        self._seq = max(
            (change["seq"] for change in merged.values() if change["actor"] == self._actor),
            default=0,
        )