from datetime import datetime
from pathlib import Path
from typing import List

from json_store import JsonDocument
from ticket_models import MatchRecord, Variance, WeighbridgeTicket, coerce_invoice_number


class MatchLedger:
    """Append-only history of confirmed invoice <-> weighbridge matches."""

    FILENAME = "matched_pairs.json"

    def __init__(self, data_dir):
        self.doc = JsonDocument(Path(data_dir) / self.FILENAME, {"matches": []})

    def record(self, invoice_number, ticket: WeighbridgeTicket, variance: Variance) -> MatchRecord:
        entry = MatchRecord(
            invoice_number=coerce_invoice_number(invoice_number),
            weighbridge_ticket=ticket.ticket_number,
            vehicle_reg=ticket.vehicle_reg,
            instruction_qty=variance.instruction_qty,
            actual_qty=variance.actual_qty,
            variance=variance.difference,
            variance_percent=variance.percent_diff,
            confidence=variance.confidence,
            matched_at=datetime.now().isoformat(),
        )
        data = self.doc.load()
        matches = list(data.get("matches") or [])
        matches.append(entry.to_dict())
        data["matches"] = matches
        self.doc.save(data)
        return entry

    def history(self) -> List[MatchRecord]:
        return [MatchRecord.from_dict(m) for m in self.doc.load().get("matches") or []]

    def for_invoice(self, invoice_number) -> List[MatchRecord]:
        number = coerce_invoice_number(invoice_number)
        return [m for m in self.history() if m.invoice_number == number]
