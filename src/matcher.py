import math
import re
from typing import Dict, Iterable, List, Optional, Tuple

from rapidfuzz.distance import Levenshtein

from config_loader import DEFAULTS
from date_parser import MISSING, days_apart, parse_date
from ticket_models import (
    NO_MATCH,
    POSSIBLE_MATCH,
    STRONG_MATCH,
    MatchResult,
    PendingInvoice,
    WeighbridgeTicket,
)


def normalize_vehicle_reg(reg: Optional[str]) -> str:
    if not reg:
        return ""
    return re.sub(r"\s+", "", reg).upper()


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _normalize_text(text: Optional[str]) -> str:
    if not text:
        return ""
    return re.sub(r"[^A-Z0-9]", "", text.upper())


def similarity(a: Optional[str], b: Optional[str], containment: float = 0.9) -> float:
    """Similarity in [0, 1] between two free-text names.

    Containment of one normalized string in the other scores a flat
    ``containment`` (0.9) instead of its edit-distance ratio.
    """
    s1 = _normalize_text(a)
    s2 = _normalize_text(b)
    if not s1 or not s2:
        return 0.0
    if s1 == s2:
        return 1.0
    if s1 in s2 or s2 in s1:
        return containment
    distance = Levenshtein.distance(s1, s2)
    return 1 - distance / max(len(s1), len(s2))


def classify(confidence: int, cfg: Optional[Dict] = None) -> str:
    th = (cfg or DEFAULTS).get("thresholds", DEFAULTS["thresholds"])
    if confidence >= th["strong"]:
        return STRONG_MATCH
    if confidence >= th["possible"]:
        return POSSIBLE_MATCH
    return NO_MATCH


def _score_vehicle(invoice: PendingInvoice, ticket: WeighbridgeTicket, max_points: int) -> Tuple[int, Optional[str]]:
    if not invoice.vehicle_reg or not ticket.vehicle_reg:
        return 0, None
    v1 = normalize_vehicle_reg(invoice.vehicle_reg)
    v2 = normalize_vehicle_reg(ticket.vehicle_reg)
    if v1 == v2:
        return max_points, f"✓ Vehicle match: {v1}"
    return 0, f"✗ Vehicle mismatch: {v1} ≠ {v2}"


def _score_location(invoice, ticket, max_points: int, sim_cfg: Dict) -> Tuple[int, Optional[str]]:
    if not invoice.delivery_point or not ticket.location:
        return 0, None
    sim = similarity(invoice.delivery_point, ticket.location, sim_cfg["containment"])
    if sim >= sim_cfg["location_min"]:
        return _round_half_up(max_points * sim), f"✓ Location match ({_round_half_up(sim * 100)}%)"
    return 0, f"✗ Location mismatch ({_round_half_up(sim * 100)}%)"


def _score_date(invoice, ticket, max_points: int, tol_days: int) -> Tuple[int, Optional[str]]:
    invoice_date = parse_date(invoice.delivery_date or invoice.instruction_date)
    ticket_date = parse_date(ticket.date)
    if invoice_date.kind == MISSING or ticket_date.kind == MISSING:
        return 0, None
    if not invoice_date.ok or not ticket_date.ok:
        bad = [d.raw for d in (invoice_date, ticket_date) if not d.ok]
        return 0, f"✗ Date unparsable: {', '.join(bad)}"
    diff = days_apart(invoice_date.value, ticket_date.value)
    if diff <= tol_days:
        return max_points, f"✓ Date within range (±{tol_days} days, {diff} apart)"
    return 0, f"✗ Date outside range ({diff} days apart)"


def _score_client(invoice, ticket, max_points: int, sim_cfg: Dict) -> Tuple[int, Optional[str]]:
    if not invoice.client_name or not ticket.customer:
        return 0, None
    sim = similarity(invoice.client_name, ticket.customer, sim_cfg["containment"])
    if sim >= sim_cfg["client_min"]:
        return max_points, "✓ Client match"
    return 0, "✗ Client mismatch"


def _score_tonnage(invoice, ticket, max_points: int, tol_ratio: float) -> Tuple[int, Optional[str]]:
    if not invoice.quantity or not ticket.nett_weight:
        return 0, None
    variance = abs(ticket.nett_tons - invoice.quantity) / invoice.quantity
    if variance <= tol_ratio:
        return max_points, f"✓ Tonnage within range ({variance * 100:.1f}% variance)"
    return 0, f"⚠ Tonnage variance high ({variance * 100:.1f}% variance)"


def score_match(invoice: PendingInvoice, ticket: WeighbridgeTicket, cfg: Optional[Dict] = None) -> MatchResult:
    cfg = cfg or DEFAULTS
    weights = cfg.get("weights", DEFAULTS["weights"])
    sim_cfg = cfg.get("similarity", DEFAULTS["similarity"])
    tol = cfg.get("tolerances", DEFAULTS["tolerances"])

    signals = [
        ("vehicle", _score_vehicle(invoice, ticket, weights["vehicle"])),
        ("location", _score_location(invoice, ticket, weights["location"], sim_cfg)),
        ("date", _score_date(invoice, ticket, weights["date"], tol["days"])),
        ("client", _score_client(invoice, ticket, weights["client"], sim_cfg)),
        ("tonnage", _score_tonnage(invoice, ticket, weights["tonnage"], tol["tonnage_ratio"])),
    ]

    reasons: List[str] = []
    points: Dict[str, int] = {}
    for name, (pts, reason) in signals:
        if reason is None:
            continue
        points[name] = pts
        reasons.append(reason)

    confidence = max(0, min(100, sum(points.values())))
    return MatchResult(confidence=confidence, reasons=reasons, status=classify(confidence, cfg), points=points)


def find_best_match(
    ticket: WeighbridgeTicket, candidates: Iterable[PendingInvoice], cfg: Optional[Dict] = None
) -> Optional[MatchResult]:
    """Highest-confidence candidate for the ticket; ties keep the earlier candidate."""
    best: Optional[MatchResult] = None
    for invoice in candidates:
        result = score_match(invoice, ticket, cfg)
        if best is None or result.confidence > best.confidence:
            result.invoice = invoice
            best = result
    return best
