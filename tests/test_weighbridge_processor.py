import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from config_loader import load_matching_config
from errors import ExtractionFailure
from invoice_metadata import InvoiceMetadataStore
from invoice_renderer import compute_amounts
from invoice_sequence import InvoiceSequence
from lifecycle import QUARANTINE, InvoiceLifecycleManager, TicketOutcome
from match_ledger import MatchLedger
from pending_store import PendingStore
from state_store import StateStore
from ticket_models import WeighbridgeTicket
from weighbridge_processor import list_tickets, process_directory


class _Renderer:
    def render(self, snapshot, output_path):
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        Path(output_path).write_bytes(b"%PDF-fake")
        return compute_amounts(float(snapshot["quantity"]), float(snapshot["ratePerTon"]))


def _manager(tmp_path):
    data = tmp_path / "data"
    state = StateStore(str(data / "state.db"))
    state.init_db()
    m = InvoiceLifecycleManager(
        PendingStore(data), MatchLedger(data), InvoiceMetadataStore(data), InvoiceSequence(data),
        _Renderer(), state, tmp_path / "invoices",
        cfg=load_matching_config(str(tmp_path / "no-config.yml")),
        lock_dir=str(tmp_path / "locks"),
    )
    m.create_preliminary({
        "invoiceNumber": 16, "instructionDate": "2026/01/29", "vehicleReg": "DDR829NC",
        "clientName": "SATL", "deliveryPoint": "Maydon Wharf", "cargoDescription": "Wheat",
        "ratePerTon": 550, "quantity": 35,
    })
    m.create_preliminary({
        "invoiceNumber": 17, "instructionDate": "2026/01/30", "vehicleReg": "KZN123GP",
        "clientName": "ENSIGN", "deliveryPoint": "Kynoch Krugersdorp", "cargoDescription": "Urea",
        "ratePerTon": 480, "quantity": 34,
    })
    return m


TICKETS = {
    "a_strong.pdf": WeighbridgeTicket("1001", "DDR829NC", 35500.0, location="MAYDON WHARF", date="2026/02/02", customer="SATL"),
    "b_review.pdf": WeighbridgeTicket("1002", "XYZ999GP", None, location="KYNOCH KRUGERSDORP", date="2026/01/31", customer="ENSIGN"),
}


def _fake_parse(path):
    if path.name not in TICKETS:
        raise ExtractionFailure("document contains no extractable text")
    return TICKETS[path.name]


def _inbox(tmp_path):
    inbox = tmp_path / "weighbridge"
    inbox.mkdir()
    for name in ["a_strong.pdf", "b_review.pdf", "c_broken.pdf", "d_photo.jpg", ".hidden.pdf", "notes.txt"]:
        (inbox / name).write_bytes(b"x")
    return inbox


def test_list_tickets_sorted_and_filtered(tmp_path):
    inbox = _inbox(tmp_path)
    (inbox / "matched").mkdir()
    assert [p.name for p in list_tickets(inbox)] == ["a_strong.pdf", "b_review.pdf", "c_broken.pdf", "d_photo.jpg"]


def test_process_directory_routes_tickets(tmp_path):
    manager = _manager(tmp_path)
    inbox = _inbox(tmp_path)
    notify = MagicMock()

    summary = process_directory(inbox, manager, parse=_fake_parse, notify=notify)

    assert [m["file"] for m in summary["matched"]] == ["a_strong.pdf"]
    assert summary["matched"][0]["invoiceNumber"] == 16
    assert [u["file"] for u in summary["unmatched"]] == ["b_review.pdf", "d_photo.jpg"]
    assert summary["unmatched"][0]["invoiceNumber"] == 17
    assert [f["file"] for f in summary["failed"]] == ["c_broken.pdf"]

    assert (inbox / "matched" / "a_strong.pdf").exists()
    assert (inbox / "unmatched" / "b_review.pdf").exists()
    assert (inbox / "unmatched" / "d_photo.jpg").exists()
    assert (inbox / "c_broken.pdf").exists()

    notify.assert_called_once()
    assert notify.call_args[0][0] == "b_review.pdf"

    assert [p.invoice_number for p in manager.pending.list()] == [17]
    assert manager.invoice_state(16) == "FINAL"
    errors = manager.state.read_audit("process")
    assert errors[0]["target_ids"] == ["c_broken.pdf"]
    assert not any(Path(manager.lock_dir).glob(".*_lock.json"))


def test_rerun_leaves_only_failed_ticket(tmp_path):
    manager = _manager(tmp_path)
    inbox = _inbox(tmp_path)
    process_directory(inbox, manager, parse=_fake_parse, notify=None)
    summary = process_directory(inbox, manager, parse=_fake_parse, notify=None)
    assert summary["matched"] == []
    assert [f["file"] for f in summary["failed"]] == ["c_broken.pdf"]


class _BrokenRenderer:
    def render(self, snapshot, output_path):
        raise RuntimeError("renderer unavailable")


def _same_route_manager(tmp_path, renderer):
    m = _manager(tmp_path)
    m.pending.remove(17)
    m.create_preliminary({
        "invoiceNumber": 18, "instructionDate": "2026/01/30", "vehicleReg": "DDR829NC",
        "clientName": "SATL", "deliveryPoint": "Maydon Wharf", "cargoDescription": "Wheat",
        "ratePerTon": 550, "quantity": 35,
    })
    m.renderer = renderer
    return m


def test_ticket_behind_failed_render_is_not_applied_twice(tmp_path):
    inbox = tmp_path / "weighbridge"
    inbox.mkdir()
    (inbox / "ticket_245117.pdf").write_bytes(b"x")
    ticket = WeighbridgeTicket("245117", "DDR 829 NC", 35500.0, location="MAYDON WHARF ZONE 3", date="2026/02/02", customer="SATL")
    manager = _same_route_manager(tmp_path, _BrokenRenderer())

    first = process_directory(inbox, manager, parse=lambda p: ticket, notify=None)
    assert [f["file"] for f in first["failed"]] == ["ticket_245117.pdf"]
    assert (inbox / "ticket_245117.pdf").exists()
    applied_to = manager.ledger.history()[0].invoice_number

    manager.renderer = _Renderer()
    second = process_directory(inbox, manager, parse=lambda p: ticket, notify=None)

    assert second["resumed"][0]["invoiceNumber"] == applied_to
    assert second["resumed"][0]["file"] == "ticket_245117.pdf"
    assert second["matched"] == []
    assert (inbox / "matched" / "ticket_245117.pdf").exists()
    assert [r.weighbridge_ticket for r in manager.ledger.history()] == ["245117"]
    assert [p.invoice_number for p in manager.pending.list()] == [n for n in (16, 18) if n != applied_to]


def test_ticket_already_in_ledger_is_skipped(tmp_path):
    manager = _same_route_manager(tmp_path, _Renderer())
    inbox = tmp_path / "weighbridge"
    inbox.mkdir()
    ticket = WeighbridgeTicket("245117", "DDR829NC", 35500.0, location="MAYDON WHARF", date="2026/02/02", customer="SATL")

    (inbox / "first.pdf").write_bytes(b"x")
    process_directory(inbox, manager, parse=lambda p: ticket, notify=None)
    # the same slip scanned again under another name
    (inbox / "rescan.pdf").write_bytes(b"x")
    summary = process_directory(inbox, manager, parse=lambda p: ticket, notify=None)

    assert summary["matched"] == []
    assert summary["duplicates"][0]["file"] == "rescan.pdf"
    assert (inbox / "matched" / "rescan.pdf").exists()
    assert len(manager.ledger.history()) == 1
    assert len(manager.pending.list()) == 1


class TestProcessDirectoryWithMockManager(unittest.TestCase):
    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())
        self.inbox = self.tmp / "weighbridge"
        self.inbox.mkdir()
        self.manager = MagicMock(spec=InvoiceLifecycleManager)
        self.manager.lock_timeout = 600
        self.manager.lock_dir = str(self.tmp / "locks")
        self.manager.state = MagicMock()
        self.manager.resume_incomplete.return_value = []

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_no_candidates_goes_to_unmatched(self):
        (self.inbox / "ticket.pdf").write_bytes(b"x")
        self.manager.process_ticket.return_value = TicketOutcome(QUARANTINE, None)
        notify = MagicMock()

        summary = process_directory(self.inbox, self.manager, parse=lambda p: WeighbridgeTicket("1"), notify=notify)

        self.assertEqual(summary["unmatched"][0]["file"], "ticket.pdf")
        self.assertIsNone(summary["unmatched"][0]["invoiceNumber"])
        self.assertTrue((self.inbox / "unmatched" / "ticket.pdf").exists())
        notify.assert_called_once()
        self.manager.resume_incomplete.assert_called_once()

    def test_unexpected_error_does_not_stop_batch(self):
        (self.inbox / "a.pdf").write_bytes(b"x")
        (self.inbox / "b.pdf").write_bytes(b"x")
        self.manager.process_ticket.side_effect = [RuntimeError("disk full"), TicketOutcome(QUARANTINE, None)]

        summary = process_directory(self.inbox, self.manager, parse=lambda p: WeighbridgeTicket(p.stem), notify=None)

        self.assertEqual(summary["failed"], [{"file": "a.pdf", "error": "disk full"}])
        self.assertEqual(len(summary["unmatched"]), 1)
        self.assertTrue((self.inbox / "a.pdf").exists())
        self.manager.state.write_audit.assert_called_once()

    def test_missing_directory(self):
        summary = process_directory(self.tmp / "nope", self.manager, parse=MagicMock(), notify=None)
        self.assertEqual(summary, {"matched": [], "unmatched": [], "failed": [], "resumed": [], "duplicates": []})
        self.manager.resume_incomplete.assert_not_called()


if __name__ == "__main__":
    unittest.main()
