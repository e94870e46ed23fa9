from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


STRONG_MATCH = "STRONG_MATCH"
POSSIBLE_MATCH = "POSSIBLE_MATCH"
NO_MATCH = "NO_MATCH"

PRELIMINARY = "PRELIMINARY"
FINAL = "FINAL"

AWAITING_WEIGHBRIDGE = "awaiting_weighbridge"


def coerce_invoice_number(value: Any) -> int:
    """Accept 16, "16" or "016"; reject anything that is not a positive integer."""
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValueError(f"invalid invoice number: {value!r}")
    if number <= 0:
        raise ValueError(f"invalid invoice number: {value!r}")
    return number


def _float_or_none(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


@dataclass
class PendingInvoice:
    invoice_number: int
    vehicle_reg: Optional[str] = None
    delivery_point: Optional[str] = None
    delivery_date: Optional[str] = None
    instruction_date: Optional[str] = None
    quantity: float = 0.0
    original_quantity: Optional[float] = None
    rate_per_ton: float = 0.0
    client_name: Optional[str] = None
    cargo: Optional[str] = None
    description: Optional[str] = None
    transport_order: Optional[str] = None
    status: str = AWAITING_WEIGHBRIDGE
    created_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingInvoice":
        return cls(
            invoice_number=coerce_invoice_number(data.get("invoiceNumber")),
            vehicle_reg=data.get("vehicleReg"),
            delivery_point=data.get("deliveryPoint"),
            delivery_date=data.get("deliveryDate"),
            instruction_date=data.get("instructionDate"),
            quantity=float(data.get("quantity") or 0),
            original_quantity=_float_or_none(data.get("originalQuantity")),
            rate_per_ton=float(data.get("ratePerTon") or 0),
            client_name=data.get("clientName"),
            cargo=data.get("cargo"),
            description=data.get("description"),
            transport_order=data.get("transportOrder"),
            status=data.get("status") or AWAITING_WEIGHBRIDGE,
            created_at=data.get("createdAt"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "invoiceNumber": self.invoice_number,
            "transportOrder": self.transport_order,
            "vehicleReg": self.vehicle_reg,
            "deliveryPoint": self.delivery_point,
            "deliveryDate": self.delivery_date,
            "instructionDate": self.instruction_date,
            "quantity": self.quantity,
            "originalQuantity": self.original_quantity,
            "ratePerTon": self.rate_per_ton,
            "clientName": self.client_name,
            "cargo": self.cargo,
            "description": self.description,
            "status": self.status,
            "createdAt": self.created_at,
        }


@dataclass
class WeighbridgeTicket:
    ticket_number: Optional[str] = None
    vehicle_reg: Optional[str] = None
    nett_weight: Optional[float] = None  # kg
    gross_weight: Optional[float] = None
    tare_weight: Optional[float] = None
    location: Optional[str] = None
    date: Optional[str] = None
    customer: Optional[str] = None
    product: Optional[str] = None
    driver: Optional[str] = None

    @property
    def nett_tons(self) -> Optional[float]:
        if self.nett_weight is None:
            return None
        return self.nett_weight / 1000


@dataclass
class MatchResult:
    confidence: int
    reasons: List[str]
    status: str
    invoice: Optional[PendingInvoice] = None
    points: Dict[str, int] = field(default_factory=dict)


@dataclass
class Variance:
    instruction_qty: float
    actual_qty: float
    difference: float
    percent_diff: float
    confidence: int

    @classmethod
    def compute(cls, instruction_qty: float, actual_qty: float, confidence: int) -> "Variance":
        difference = actual_qty - instruction_qty
        percent = round(difference / instruction_qty * 100, 2) if instruction_qty else 0.0
        return cls(instruction_qty, actual_qty, difference, percent, confidence)


@dataclass
class MatchRecord:
    invoice_number: int
    weighbridge_ticket: Optional[str]
    vehicle_reg: Optional[str]
    instruction_qty: float
    actual_qty: float
    variance: float
    variance_percent: float
    confidence: int
    matched_at: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MatchRecord":
        return cls(
            invoice_number=coerce_invoice_number(data.get("invoiceNumber")),
            weighbridge_ticket=data.get("weighbridgeTicket"),
            vehicle_reg=data.get("vehicleReg"),
            instruction_qty=float(data.get("instructionQty") or 0),
            actual_qty=float(data.get("actualQty") or 0),
            variance=float(data.get("variance") or 0),
            variance_percent=float(data.get("variancePercent") or 0),
            confidence=int(data.get("confidence") or 0),
            matched_at=data.get("matchedAt", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "invoiceNumber": self.invoice_number,
            "weighbridgeTicket": self.weighbridge_ticket,
            "vehicleReg": self.vehicle_reg,
            "instructionQty": self.instruction_qty,
            "actualQty": self.actual_qty,
            "variance": self.variance,
            "variancePercent": self.variance_percent,
            "confidence": self.confidence,
            "matchedAt": self.matched_at,
        }
