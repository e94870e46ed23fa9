import json
import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from errors import DuplicateInvoiceError
from invoice_metadata import InvoiceMetadataStore
from invoice_sequence import InvoiceSequence
from json_store import JsonDocument
from match_ledger import MatchLedger
from pending_store import PendingStore
from ticket_models import PendingInvoice, Variance, WeighbridgeTicket


def _pending(n, **kw):
    return PendingInvoice(invoice_number=n, vehicle_reg="DDR829NC", quantity=35.0, rate_per_ton=550.0, **kw)


def test_json_document_default_and_atomic_save(tmp_path):
    doc = JsonDocument(tmp_path / "sub" / "x.json", {"items": []})
    data = doc.load()
    data["items"].append(1)
    assert doc.load() == {"items": []}
    doc.save(data)
    assert json.loads((tmp_path / "sub" / "x.json").read_text(encoding="utf-8")) == {"items": [1]}
    assert [p.name for p in (tmp_path / "sub").iterdir()] == ["x.json"]


def test_json_document_rejects_non_object(tmp_path):
    path = tmp_path / "x.json"
    path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ValueError):
        JsonDocument(path, {}).load()


def test_pending_add_list_remove(tmp_path):
    store = PendingStore(tmp_path)
    store.add(_pending(16, instruction_date="2026/01/29"))
    store.add(_pending(17, instruction_date="2026/01/20"))
    listed = store.list()
    assert [p.invoice_number for p in listed] == [16, 17]
    assert listed[0].created_at is not None

    assert store.remove(16) == 1
    assert [p.invoice_number for p in store.list()] == [17]
    assert store.remove(16) == 0


def test_pending_file_format(tmp_path):
    PendingStore(tmp_path).add(_pending(16, delivery_point="Maydon Wharf"))
    raw = json.loads((tmp_path / "pending_matches.json").read_text(encoding="utf-8"))
    entry = raw["invoices"][0]
    assert entry["invoiceNumber"] == 16
    assert entry["vehicleReg"] == "DDR829NC"
    assert entry["deliveryPoint"] == "Maydon Wharf"
    assert entry["status"] == "awaiting_weighbridge"


def test_pending_reads_legacy_key(tmp_path):
    (tmp_path / "pending_matches.json").write_text(
        json.dumps({"pending": [{"invoiceNumber": "016", "quantity": 35}]}), encoding="utf-8"
    )
    assert PendingStore(tmp_path).get(16).quantity == 35.0


def test_pending_skips_row_with_bad_invoice_number(tmp_path, capsys):
    path = tmp_path / "pending_matches.json"
    path.write_text(json.dumps({"invoices": [
        {"invoiceNumber": "N/A", "vehicleReg": "ABC123GP"},
        {"invoiceNumber": 16, "vehicleReg": "DDR829NC", "quantity": 35},
    ]}), encoding="utf-8")
    store = PendingStore(tmp_path)

    assert [p.invoice_number for p in store.list()] == [16]
    assert "invalid invoice number: 'N/A'" in capsys.readouterr().out
    store.add(_pending(17))
    assert store.remove(16) == 1

    rows = json.loads(path.read_text(encoding="utf-8"))["invoices"]
    assert [r["invoiceNumber"] for r in rows] == ["N/A", 17]


def test_pending_duplicates_rejected_by_default(tmp_path):
    store = PendingStore(tmp_path)
    store.add(_pending(16))
    with pytest.raises(DuplicateInvoiceError):
        store.add(_pending(16))


def test_pending_duplicates_allowed_and_removed_together(tmp_path):
    store = PendingStore(tmp_path, enforce_unique=False)
    store.add(_pending(16))
    store.add(_pending(16))
    assert store.remove("016") == 2
    assert store.list() == []


def test_pending_sorted_for_review(tmp_path):
    store = PendingStore(tmp_path)
    store.add(_pending(1, instruction_date="2026/02/01"))
    store.add(_pending(2, instruction_date="2026/01/15"))
    store.add(_pending(3))
    assert [p.invoice_number for p in store.sorted_for_review()] == [3, 2, 1]
    assert [p.invoice_number for p in store.list()] == [1, 2, 3]


def test_ledger_is_append_only(tmp_path):
    ledger = MatchLedger(tmp_path)
    ticket = WeighbridgeTicket(ticket_number="2451", vehicle_reg="DDR829NC", nett_weight=35500)
    ledger.record(16, ticket, Variance.compute(35.0, 35.5, 87))
    ledger.record(16, WeighbridgeTicket(ticket_number="MANUAL"), Variance.compute(35.0, 34.0, 100))

    history = ledger.history()
    assert len(history) == 2
    first = history[0]
    assert first.weighbridge_ticket == "2451"
    assert first.variance == pytest.approx(0.5)
    assert first.variance_percent == pytest.approx(1.43)
    assert first.confidence == 87
    assert len(ledger.for_invoice("016")) == 2

    raw = json.loads((tmp_path / "matched_pairs.json").read_text(encoding="utf-8"))
    assert set(raw["matches"][0]) == {
        "invoiceNumber", "weighbridgeTicket", "vehicleReg", "instructionQty", "actualQty",
        "variance", "variancePercent", "confidence", "matchedAt",
    }


def test_metadata_replace_and_key_normalization(tmp_path):
    store = InvoiceMetadataStore(tmp_path)
    store.save("016", {"invoiceNumber": 16, "quantity": 35, "cargoDescription": "Wheat"})
    store.save(16, {"invoiceNumber": 16, "quantity": 35.5})
    snap = store.get(16)
    assert snap["quantity"] == 35.5
    assert "cargoDescription" not in snap
    assert "savedAt" in snap
    assert list(store.all()) == ["16"]
    assert store.get(99) is None


def test_metadata_folds_legacy_padded_keys(tmp_path):
    (tmp_path / "invoice_metadata.json").write_text(
        json.dumps({"invoices": {"016": {"quantity": 35}}}), encoding="utf-8"
    )
    assert InvoiceMetadataStore(tmp_path).get("16") == {"quantity": 35}


def test_sequence(tmp_path):
    seq = InvoiceSequence(tmp_path)
    assert seq.current() == 0
    assert seq.next() == 1
    assert seq.next() == 2
    seq.set_start(16)
    assert seq.next() == 16
    with pytest.raises(ValueError):
        seq.set_start(0)
