import json

import pytest

from warehouse_wms.crdt import CrdtDocument, CrdtList, CrdtOperation
from warehouse_wms.errors import SyncError


def test_crdt_basic_operations():
    doc = CrdtDocument()
    doc.set("name", "Test Item")
    doc.set("quantity", 100)

    assert doc.get_string("name") == "Test Item"
    assert doc.get_int("quantity") == 100


def test_crdt_merge():
    doc1 = CrdtDocument()
    doc2 = CrdtDocument()
    doc1.set("user1_field", "value1")
    doc2.set("user2_field", "value2")

    doc1.merge(doc2.save())

    assert doc1.get_string("user1_field") == "value1"
    assert doc1.get_string("user2_field") == "value2"


def test_inventory_operations():
    doc = CrdtDocument()
    doc.push_operation("adjustments", CrdtOperation.create("receive", 100.0, "user1"))
    doc.push_operation("adjustments", CrdtOperation.create("pick", -25.0, "user2"))
    doc.push_operation("adjustments", CrdtOperation.create("pick", -10.0, "user1"))

    assert doc.calculate_sum("adjustments") == 65.0


def test_missing_keys_return_none():
    doc = CrdtDocument()
    assert doc.get_string("absent") is None
    assert doc.get_int("absent") is None
    assert doc.get_float("absent") is None


def test_typed_getters_convert_numbers_but_not_strings_or_bools():
    doc = CrdtDocument()
    doc.set("count", 7)
    doc.set("ratio", 2.5)
    doc.set("flag", True)
    doc.set("label", "x")
    assert doc.get_float("count") == 7.0
    assert doc.get_int("ratio") == 2
    assert doc.get_int("flag") is None
    assert doc.get_float("label") is None
    assert doc.get_string("count") is None


def test_set_overwrites_previous_value():
    doc = CrdtDocument()
    doc.set("status", "draft")
    doc.set("status", "final")
    assert doc.get_string("status") == "final"


def test_unsupported_value_type_is_rejected():
    doc = CrdtDocument()
    with pytest.raises(SyncError):
        doc.set("items", [1, 2])


def test_save_and_load_round_trip():
    doc = CrdtDocument()
    doc.set("name", "Widget")
    doc.set("price", 9.5)
    doc.set("note", None)
    doc.push_operation("adj", CrdtOperation.create("receive", 4.0, "u"))

    loaded = CrdtDocument.from_changes(doc.save())

    assert loaded.to_json() == doc.to_json()
    assert loaded.get_heads_json() == doc.get_heads_json()
    assert loaded.calculate_sum("adj") == 4.0


def test_to_json_reflects_state():
    doc = CrdtDocument()
    doc.set("b", 1)
    doc.set("a", "x")
    doc.set("c", None)
    assert json.loads(doc.to_json()) == {"a": "x", "b": 1, "c": None}


def test_load_rejects_garbage():
    with pytest.raises(SyncError):
        CrdtDocument.from_changes(b"definitely not a document")


def test_merge_rejects_garbage():
    doc = CrdtDocument()
    with pytest.raises(SyncError):
        doc.merge(b"\x00\x01\x02")


def test_empty_bytes_load_as_empty_document():
    doc = CrdtDocument.from_changes(b"")
    assert json.loads(doc.to_json()) == {}
    assert json.loads(doc.get_heads_json()) == []


def test_heads_track_concurrent_branches():
    base = CrdtDocument()
    base.set("x", 1)
    assert len(json.loads(base.get_heads_json())) == 1

    fork = CrdtDocument.from_changes(base.save())
    base.set("y", 2)
    fork.set("z", 3)
    base.merge(fork.save())

    assert len(json.loads(base.get_heads_json())) == 2
    base.set("w", 4)
    assert len(json.loads(base.get_heads_json())) == 1


def test_concurrent_writes_converge():
    doc1 = CrdtDocument()
    doc2 = CrdtDocument()
    doc1.set("field", "from one")
    doc2.set("field", "from two")

    saved1, saved2 = doc1.save(), doc2.save()
    doc1.merge(saved2)
    doc2.merge(saved1)

    assert doc1.get_string("field") == doc2.get_string("field")
    assert doc1.get_string("field") in {"from one", "from two"}
    assert doc1.to_json() == doc2.to_json()


def test_concurrent_list_operations_converge():
    doc1 = CrdtDocument()
    doc1.push_operation("adj", CrdtOperation.create("receive", 50.0, "a"))
    doc2 = CrdtDocument.from_changes(doc1.save())

    doc1.push_operation("adj", CrdtOperation.create("pick", -5.0, "a"))
    doc2.push_operation("adj", CrdtOperation.create("pick", -7.0, "b"))
    doc2.push_operation("adj", CrdtOperation.create("count", 1.0, "b"))

    saved1, saved2 = doc1.save(), doc2.save()
    doc1.merge(saved2)
    doc2.merge(saved1)

    assert doc1.calculate_sum("adj") == 39.0
    assert doc2.calculate_sum("adj") == 39.0
    assert doc1.to_json() == doc2.to_json()
    assert len(json.loads(doc1.to_json())["adj"]) == 4


def test_merge_is_idempotent():
    doc = CrdtDocument()
    doc.set("k", "v")
    other = CrdtDocument()
    other.set("j", 2)
    doc.merge(other.save())
    before = (doc.to_json(), doc.get_heads_json())
    doc.merge(other.save())
    doc.merge(doc.save())
    assert (doc.to_json(), doc.get_heads_json()) == before


def test_push_operation_prepends_records():
    doc = CrdtDocument()
    first = CrdtOperation.create("receive", 1.0, "u1")
    second = CrdtOperation.create("pick", -1.0, "u2")
    doc.push_operation("log", first)
    doc.push_operation("log", second)

    records = json.loads(doc.to_json())["log"]
    assert [record["id"] for record in records] == [second.id, first.id]
    assert records[0] == {
        "delta": -1.0,
        "id": second.id,
        "timestamp": second.timestamp,
        "type": "pick",
        "user": "u2",
    }


def test_create_list_replaces_value_and_is_empty():
    doc = CrdtDocument()
    doc.set("adj", "scalar")
    handle = doc.create_list("adj")
    assert isinstance(handle, CrdtList)
    assert json.loads(doc.to_json())["adj"] == []
    assert doc.get_string("adj") is None
    doc.push_operation("adj", CrdtOperation.create("receive", 3.0, "u"))
    assert doc.calculate_sum("adj") == 3.0


def test_push_operation_onto_scalar_fails():
    doc = CrdtDocument()
    doc.set("adj", 5)
    with pytest.raises(SyncError):
        doc.push_operation("adj", CrdtOperation.create("pick", 1.0, "u"))


def test_calculate_sum_of_missing_or_scalar_is_zero():
    doc = CrdtDocument()
    doc.set("scalar", 10)
    assert doc.calculate_sum("missing") == 0.0
    assert doc.calculate_sum("scalar") == 0.0


def test_operation_notes_and_dict():
    op = CrdtOperation.create("adjust", 2.0, "user9")
    assert "notes" not in op.to_dict()
    noted = op.with_notes("recount")
    assert noted.notes == "recount"
    assert op.notes is None
    assert noted.to_dict()["notes"] == "recount"
    assert noted.id == op.id


def test_operations_get_unique_ids():
    ops = {CrdtOperation.create("pick", 1.0, "u").id for _ in range(20)}
    assert len(ops) == 20


def test_invalid_actor_id_rejected():
    with pytest.raises(SyncError):
        CrdtDocument("bad@actor")