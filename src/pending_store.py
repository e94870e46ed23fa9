from datetime import datetime
from pathlib import Path
from typing import List, Optional

from date_parser import sort_key
from errors import DuplicateInvoiceError
from json_store import JsonDocument
from ticket_models import PendingInvoice, coerce_invoice_number


class PendingStore:
    """Invoices generated from instructed tonnage, awaiting a weighbridge ticket.

    Persisted as ``pending_matches.json``: ``{"invoices": [...]}`` in insertion order.
    """

    FILENAME = "pending_matches.json"

    def __init__(self, data_dir, enforce_unique: bool = True):
        self.doc = JsonDocument(Path(data_dir) / self.FILENAME, {"invoices": []})
        self.enforce_unique = enforce_unique

    def _load_raw(self) -> List[dict]:
        data = self.doc.load()
        # older files were initialised as {"pending": []}
        return list(data.get("invoices") or data.get("pending") or [])

    @staticmethod
    def _row_number(row: dict) -> Optional[int]:
        try:
            return coerce_invoice_number(row.get("invoiceNumber"))
        except ValueError:
            return None

    def add(self, invoice: PendingInvoice) -> PendingInvoice:
        rows = self._load_raw()
        if self.enforce_unique and any(self._row_number(r) == invoice.invoice_number for r in rows):
            raise DuplicateInvoiceError(f"invoice #{invoice.invoice_number:03d} is already pending")
        invoice.created_at = datetime.now().isoformat()
        rows.append(invoice.to_dict())
        self.doc.save({"invoices": rows})
        return invoice

    def remove(self, invoice_number) -> int:
        """Drop every entry with this number; returns how many were removed."""
        number = coerce_invoice_number(invoice_number)
        rows = self._load_raw()
        kept = [r for r in rows if self._row_number(r) != number]
        removed = len(rows) - len(kept)
        if removed:
            self.doc.save({"invoices": kept})
        return removed

    def list(self) -> List[PendingInvoice]:
        invoices = []
        for row in self._load_raw():
            try:
                invoices.append(PendingInvoice.from_dict(row))
            except ValueError as e:
                # left in the file for an operator to fix
                print(f"⚠️ Skipping pending entry: {e}")
        return invoices

    def get(self, invoice_number) -> Optional[PendingInvoice]:
        number = coerce_invoice_number(invoice_number)
        for inv in self.list():
            if inv.invoice_number == number:
                return inv
        return None

    def sorted_for_review(self) -> List[PendingInvoice]:
        """Oldest instruction first, for operator listings."""
        return sorted(self.list(), key=lambda inv: sort_key(inv.instruction_date))
