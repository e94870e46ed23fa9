import os
import sys
import warnings
from datetime import datetime, timedelta

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from state_store import StateStore, default_db_path, step_reached


def _store(tmp_path):
    store = StateStore(str(tmp_path / "state.db"))
    store.init_db()
    return store


def test_audit_roundtrip(tmp_path):
    store = _store(tmp_path)
    store.write_audit("INFO", "weighbridge", "finalize", [16], 87, "final")
    store.write_audit("ERROR", "weighbridge", "process", ["ticket.pdf"], 0, "failed", "boom")

    rows = store.read_audit()
    assert [r["action"] for r in rows] == ["finalize", "process"]
    failed = store.read_audit("process")[0]
    assert failed["target_ids"] == ["ticket.pdf"]
    assert failed["error"] == "boom"


def test_journal_progress(tmp_path):
    store = _store(tmp_path)
    store.start_journal(16, {"actualTonnage": 35.5})
    j = store.get_journal(16)
    assert j["step"] == "started"
    assert j["payload"] == {"actualTonnage": 35.5}

    store.advance_journal(16, "removed")
    store.fail_journal(16, "render failed")
    j = store.get_journal(16)
    assert j["step"] == "removed"
    assert j["error"] == "render failed"
    assert [x["invoice_number"] for x in store.incomplete_journals()] == [16]

    store.advance_journal(16, "done")
    assert store.get_journal(16)["error"] is None
    assert store.incomplete_journals() == []


def test_restart_replaces_journal(tmp_path):
    store = _store(tmp_path)
    store.start_journal(16, {"actualTonnage": 35.5})
    store.advance_journal(16, "done")
    store.start_journal(16, {"actualTonnage": 34.0})
    j = store.get_journal(16)
    assert j["step"] == "started"
    assert j["payload"]["actualTonnage"] == 34.0


def test_unknown_step_rejected(tmp_path):
    store = _store(tmp_path)
    store.start_journal(1, {})
    with pytest.raises(ValueError):
        store.advance_journal(1, "teleported")


def test_step_reached():
    assert step_reached("rendered", "archived")
    assert step_reached("rendered", "rendered")
    assert not step_reached("removed", "rendered")


def test_default_db_path(tmp_path, monkeypatch):
    monkeypatch.delenv("INVOICE_STATE_DB", raising=False)
    assert default_db_path(str(tmp_path)) == os.path.join(str(tmp_path), "invoice_state.db")
    monkeypatch.setenv("INVOICE_STATE_DB", str(tmp_path / "other.db"))
    assert default_db_path(str(tmp_path)) == str(tmp_path / "other.db")


def test_timestamps_are_utc_with_offset(tmp_path):
    store = _store(tmp_path)
    with warnings.catch_warnings():
        warnings.simplefilter("error", DeprecationWarning)
        store.write_audit("INFO", "system", "finalize", [16], 100, "final")
        store.start_journal(16, {})
        store.advance_journal(16, "recorded")

    for stamp in (store.read_audit()[0]["ts"], store.get_journal(16)["updated_at"]):
        assert datetime.fromisoformat(stamp).utcoffset() == timedelta(0)
