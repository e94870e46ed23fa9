from pathlib import Path

from json_store import JsonDocument


class InvoiceSequence:
    """Last issued invoice number, persisted as ``{"lastNumber": n}``."""

    FILENAME = "invoice_sequence.json"

    def __init__(self, data_dir):
        self.doc = JsonDocument(Path(data_dir) / self.FILENAME, {"lastNumber": 0})

    def current(self) -> int:
        return int(self.doc.load().get("lastNumber") or 0)

    def next(self) -> int:
        number = self.current() + 1
        self.doc.save({"lastNumber": number})
        return number

    def set_start(self, number: int):
        """Make ``number`` the next value handed out by :meth:`next`."""
        number = int(number)
        if number < 1:
            raise ValueError("invoice numbering starts at 1")
        self.doc.save({"lastNumber": number - 1})
        print(f"✅ Invoice numbering will start at: #{number:03d}")
