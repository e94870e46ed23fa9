from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from json_store import JsonDocument
from ticket_models import coerce_invoice_number


class InvoiceMetadataStore:
    """Render snapshots keyed by invoice number, replaced whole on every save."""

    FILENAME = "invoice_metadata.json"

    def __init__(self, data_dir):
        self.doc = JsonDocument(Path(data_dir) / self.FILENAME, {"invoices": {}})

    @staticmethod
    def _key(invoice_number) -> str:
        return str(coerce_invoice_number(invoice_number))

    def _invoices(self, data: Dict[str, Any]) -> Dict[str, Any]:
        # keys written as "016" by older versions are folded onto "16"
        return {self._key(k): v for k, v in (data.get("invoices") or {}).items()}

    def save(self, invoice_number, snapshot: Dict[str, Any]) -> Dict[str, Any]:
        data = self.doc.load()
        invoices = self._invoices(data)
        stored = dict(snapshot)
        stored["savedAt"] = datetime.now().isoformat()
        invoices[self._key(invoice_number)] = stored
        data["invoices"] = invoices
        self.doc.save(data)
        return stored

    def get(self, invoice_number) -> Optional[Dict[str, Any]]:
        return self._invoices(self.doc.load()).get(self._key(invoice_number))

    def all(self) -> Dict[str, Any]:
        return self._invoices(self.doc.load())
