from __future__ import annotations

import json
import os

import pytest

from xsolock.core.errors import StorageError, ValidationError
from xsolock.core.tokens.models import TokenRecord, TokenStatus, parse_status, parse_status_set
from xsolock.core.tokens.store import TokenStore

from .helpers.builders import make_store, read_tokens, token_dict, write_tokens
from .helpers.fakes import DummyLogger


def test_missing_file_is_created_empty(tmp_path):
    path = tmp_path / "tokens.json"
    store = TokenStore(str(path), backups_dir=str(tmp_path / "b"), logger=DummyLogger())
    assert store.load() == 0
    assert json.loads(path.read_text(encoding="utf-8")) == []


def test_corrupt_file_is_moved_aside(tmp_path):
    path = tmp_path / "tokens.json"
    path.write_text("{not json", encoding="utf-8")
    logger = DummyLogger()
    store = TokenStore(str(path), backups_dir=str(tmp_path / "b"), logger=logger)
    assert store.load() == 0
    assert len(store) == 0
    assert any("invalid" in line for line in logger.lines)
    assert json.loads(path.read_text(encoding="utf-8")) == []
    moved = os.listdir(tmp_path / "b")
    assert [n for n in moved if n.startswith("tokens.json.") and n.endswith(".corrupt.json")]


def test_non_list_document_is_treated_as_corrupt(tmp_path):
    path = tmp_path / "tokens.json"
    path.write_text('{"uuid": "x"}', encoding="utf-8")
    store = TokenStore(str(path), backups_dir=str(tmp_path / "b"), logger=DummyLogger())
    assert store.load() == 0


def test_round_trip_keeps_original_key_names(tmp_path):
    store = make_store(tmp_path, [token_dict("a", extra_field="ignored")])
    rec = store.find_by_id("a")
    assert rec.credential.startswith("ciu:1|")
    assert rec.status == TokenStatus.ISSUED
    store.save()
    on_disk = read_tokens(store)["a"]
    assert set(on_disk) == {"uuid", "batch_id", "payload", "status", "claimed_at", "completed_at", "created_at"}


def test_invalid_and_duplicate_entries_are_preserved_untouched(tmp_path):
    bad = {"uuid": "", "batch_id": "B1"}
    store = make_store(tmp_path, [token_dict("a"), token_dict("a", status="COMPLETED"), bad], logger=DummyLogger())
    assert len(store) == 1
    assert store.find_by_id("a").status == TokenStatus.ISSUED
    store.mutate("a", lambda r: setattr(r, "status", TokenStatus.IN_USE))
    with open(store.path, "r", encoding="utf-8") as f:
        items = json.load(f)
    assert len(items) == 3
    assert bad in items


def test_read_only_store_never_touches_the_file(tmp_path):
    path = tmp_path / "tokens.json"
    store = TokenStore(str(path), backups_dir=str(tmp_path / "b"), logger=DummyLogger(), read_only=True)
    assert store.load() == 0
    assert not path.exists()

    path.write_text("{not json", encoding="utf-8")
    assert store.load() == 0
    assert path.read_text(encoding="utf-8") == "{not json"
    assert not (tmp_path / "b").exists()


def test_read_only_store_reads_records_and_refuses_writes(tmp_path):
    path = write_tokens(str(tmp_path / "tokens.json"), [token_dict("a"), token_dict("b", status="COMPLETED")])
    before = (tmp_path / "tokens.json").read_text(encoding="utf-8")
    store = TokenStore(path, read_only=True)
    assert store.load() == 2
    assert [r.id for r in store.filter(lambda r: r.status == TokenStatus.ISSUED)] == ["a"]
    with pytest.raises(StorageError):
        store.mutate("a", lambda r: setattr(r, "status", TokenStatus.IN_USE))
    assert (tmp_path / "tokens.json").read_text(encoding="utf-8") == before


def test_lookups_return_copies(store):
    rec = store.find_by_id("t1")
    rec.status = TokenStatus.COMPLETED
    assert store.find_by_id("t1").status == TokenStatus.ISSUED


def test_find_by_id_and_batch(store):
    assert store.find_by_id_and_batch("t1", "B1") is not None
    assert store.find_by_id_and_batch("t1", "B2") is None
    assert store.find_by_id_and_batch("missing", "B1") is None


def test_mutate_persists_only_on_change(store, monkeypatch):
    saves = []
    real_save = store.save
    monkeypatch.setattr(store, "save", lambda: saves.append(1) or real_save())

    assert store.mutate("t1", lambda r: None) is False
    assert saves == []

    assert store.mutate("t1", lambda r: setattr(r, "status", TokenStatus.IN_USE)) is True
    assert saves == [1]
    assert read_tokens(store)["t1"]["status"] == "IN_USE"
    assert store.mutate("nope", lambda r: setattr(r, "status", TokenStatus.IN_USE)) is False


def test_mutate_many_and_counts(store):
    changed = store.mutate_many(lambda r: r.id in {"t1", "t2"}, lambda r: setattr(r, "status", TokenStatus.COMPLETED))
    assert sorted(changed) == ["t1", "t2"]
    assert store.counts() == {"ISSUED": 1, "IN_USE": 0, "COMPLETED": 2, "CANCELLED": 0}
    assert store.counts(batch="other") == {"ISSUED": 0, "IN_USE": 0, "COMPLETED": 0, "CANCELLED": 0}


def test_add_rejects_duplicate_ids(store):
    with pytest.raises(ValidationError):
        store.add([TokenRecord(id="t1", batch_id="B1", credential="x")])
    assert len(store) == 3


def test_write_failure_is_logged_and_memory_stays_authoritative(store, monkeypatch):
    def boom(*_a, **_k):
        raise OSError("disk full")

    monkeypatch.setattr("xsolock.core.tokens.store.atomic_write_json", boom)
    assert store.mutate("t1", lambda r: setattr(r, "status", TokenStatus.IN_USE)) is True
    assert store.find_by_id("t1").status == TokenStatus.IN_USE
    assert store.last_save_error == "disk full"
    assert read_tokens(store)["t1"]["status"] == "ISSUED"


def test_reconcile_orphans_cancels_in_use(tmp_path):
    store = make_store(
        tmp_path,
        [
            token_dict("a", status="IN_USE", claimed_at="2025-09-08T10:00:00.000Z"),
            token_dict("b", status="COMPLETED", completed_at="2025-09-08T10:05:00.000Z"),
            token_dict("c"),
        ],
    )
    assert store.reconcile_orphans() == 1
    on_disk = read_tokens(store)
    assert on_disk["a"]["status"] == "CANCELLED"
    assert on_disk["a"]["completed_at"] is None
    assert on_disk["b"]["status"] == "COMPLETED"
    assert store.reconcile_orphans() == 0


def test_backups_are_bounded(tmp_path):
    store = make_store(tmp_path, [token_dict("a")], backup_keep=2)
    for status in (TokenStatus.IN_USE, TokenStatus.COMPLETED, TokenStatus.CANCELLED, TokenStatus.ISSUED):
        store.mutate("a", lambda r, s=status: setattr(r, "status", s))
    backups = [n for n in os.listdir(tmp_path / "backups") if n.startswith("tokens")]
    assert 0 < len(backups) <= 2


def test_status_parsing():
    assert parse_status(" in_use ") == TokenStatus.IN_USE
    with pytest.raises(ValidationError):
        parse_status("USED")
    assert parse_status_set("IN_USE, completed") == {TokenStatus.IN_USE, TokenStatus.COMPLETED}
    assert parse_status_set("") == {TokenStatus.IN_USE, TokenStatus.COMPLETED, TokenStatus.CANCELLED}
    assert parse_status_set(["ISSUED"]) == {TokenStatus.ISSUED}


def test_record_status_is_normalized():
    rec = TokenRecord.model_validate({"uuid": "x", "batch_id": "B1", "payload": "p", "status": "completed"})
    assert rec.status == TokenStatus.COMPLETED


def test_write_tokens_helper_matches_loader(tmp_path):
    path = write_tokens(str(tmp_path / "t.json"), [token_dict("z")])
    store = TokenStore(path, backups_dir=str(tmp_path / "b"))
    assert store.load() == 1
