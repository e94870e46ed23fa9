"""Invoice amounts and PDF rendering."""

from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

import fitz  # PyMuPDF

from config_loader import DEFAULTS
from ticket_models import coerce_invoice_number

CENT = Decimal("0.01")
A4 = (595, 842)


@dataclass
class InvoiceAmounts:
    excl: float
    vat: float
    total: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_amounts(quantity: float, rate_per_ton: float, vat_rate: float = 0.15) -> InvoiceAmounts:
    excl = _money(Decimal(str(quantity)) * Decimal(str(rate_per_ton)))
    vat = _money(excl * Decimal(str(vat_rate)))
    return InvoiceAmounts(excl=float(excl), vat=float(vat), total=float(excl + vat))


def invoice_filename(invoice_number) -> str:
    return f"Invoice_{coerce_invoice_number(invoice_number):03d}.pdf"


def format_currency(amount: float) -> str:
    # en-ZA grouping: 22 137.50
    return f"{amount:,.2f}".replace(",", " ")


class InvoiceRenderer(Protocol):
    """Writes the invoice artifact for a snapshot and returns its amounts."""

    def render(self, snapshot: Dict[str, Any], output_path: Path) -> InvoiceAmounts: ...


class PdfInvoiceRenderer:
    def __init__(self, vat_rate: float = 0.15, company: Optional[Dict[str, str]] = None, currency: str = "R"):
        self.vat_rate = vat_rate
        self.company = company or DEFAULTS["company"]
        self.currency = currency

    @classmethod
    def from_config(cls, cfg: Dict) -> "PdfInvoiceRenderer":
        inv = cfg.get("invoice", DEFAULTS["invoice"])
        return cls(vat_rate=inv["vat_rate"], company=cfg.get("company"), currency=inv.get("currency", "R"))

    def _lines(self, snapshot: Dict[str, Any], amounts: InvoiceAmounts):
        c = self.currency
        number = coerce_invoice_number(snapshot["invoiceNumber"])
        status = snapshot.get("status") or ""
        yield 18, self.company.get("name", "")
        yield 9, f"Reg: {self.company.get('reg_number', '')}   VAT: {self.company.get('vat_number', '')}"
        yield 9, self.company.get("address", "")
        yield 9, f"{self.company.get('phone', '')}  {self.company.get('email', '')}".strip()
        yield 16, f"TAX INVOICE #{number:03d}" + (f" ({status})" if status == "PRELIMINARY" else "")
        yield 10, f"Invoice date: {snapshot.get('invoiceDate', '')}"
        yield 10, f"Bill to: {snapshot.get('clientName', '')}"
        yield 10, f"Transport order: {snapshot.get('transportOrder', '')}   File: {snapshot.get('fileNumber', '')}"
        yield 10, f"Instruction date: {snapshot.get('instructionDate', '')}   Delivery date: {snapshot.get('deliveryDate', '')}"
        yield 10, f"Vehicle: {snapshot.get('vehicleReg', '')}"
        yield 10, f"Route: {snapshot.get('collectionPoint', '')} -> {snapshot.get('deliveryPoint', '')}"
        yield 10, f"Cargo: {snapshot.get('cargoDescription', '')}"
        yield 10, f"Quantity: {float(snapshot.get('quantity') or 0):.2f} tons @ {c}{snapshot.get('ratePerTon', 0)} PER TON"
        yield 11, f"Amount excl. VAT: {c}{format_currency(amounts.excl)}"
        yield 11, f"VAT ({self.vat_rate * 100:.0f}%): {c}{format_currency(amounts.vat)}"
        yield 13, f"TOTAL: {c}{format_currency(amounts.total)}"

    def render(self, snapshot: Dict[str, Any], output_path: Path) -> InvoiceAmounts:
        amounts = compute_amounts(
            float(snapshot.get("quantity") or 0), float(snapshot.get("ratePerTon") or 0), self.vat_rate
        )
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        doc = fitz.open()
        try:
            page = doc.new_page(width=A4[0], height=A4[1])
            y = 60
            for size, text in self._lines(snapshot, amounts):
                page.insert_text((50, y), text, fontsize=size)
                y += size + 8
            doc.save(str(output_path))
        finally:
            doc.close()
        print(f"✅ PDF generated: {output_path}")
        return amounts
