import json
import logging

import pytest

from alarms.errors import StorageError
from alarms.models import AlarmRecord
from alarms.storage import AlarmStore

from conftest import MONDAY


def _alarms():
    return [
        AlarmRecord.create(5, 15, id="al_a", label="Morning workout", repeat_days=["Mon", "Fri"]),
        AlarmRecord.create(
            7,
            0,
            id="al_b",
            mission_enabled=True,
            selected_missions=["math", "shake"],
            max_snoozes=3,
            created_at=MONDAY,
        ),
    ]


def test_missing_file_loads_empty(tmp_path):
    assert AlarmStore(tmp_path / "nope.json").load_all() == []


def test_save_then_load_keeps_order_and_fields(store):
    store.save_all(_alarms())
    loaded = store.load_all()
    assert [a.id for a in loaded] == ["al_a", "al_b"]
    assert loaded == _alarms()


def test_save_of_load_is_byte_stable(store):
    store.save_all(_alarms())
    before = store.path.read_bytes()
    store.save_all(store.load_all())
    assert store.path.read_bytes() == before
    assert not store.path.with_name(store.path.name + ".tmp").exists()


def test_corrupt_record_is_skipped_not_fatal(store, caplog):
    good = [a.to_dict() for a in _alarms()]
    payload = [good[0], {"id": "al_bad", "time": "25:99"}, "garbage", good[1]]
    store.path.write_text(json.dumps(payload), encoding="utf-8")
    with caplog.at_level(logging.WARNING):
        loaded = store.load_all()
    assert [a.id for a in loaded] == ["al_a", "al_b"]
    assert "Skipping alarm item" in caplog.text


def test_duplicate_ids_keep_first(store):
    first = _alarms()[0]
    clone = first.with_changes(label="shadow")
    store.path.write_text(json.dumps([first.to_dict(), clone.to_dict()]), encoding="utf-8")
    assert [a.label for a in store.load_all()] == ["Morning workout"]


def test_undecodable_file_raises_storage_error(store):
    store.path.write_text("{not json", encoding="utf-8")
    with pytest.raises(StorageError):
        store.load_all()


def test_non_list_document_raises_storage_error(store):
    store.path.write_text(json.dumps({"alarms": []}), encoding="utf-8")
    with pytest.raises(StorageError):
        store.load_all()


def test_unwritable_location_raises_storage_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    with pytest.raises(StorageError):
        AlarmStore(blocker / "alarms.json").save_all(_alarms())
