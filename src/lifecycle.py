"""
Invoice lifecycle: PRELIMINARY (instructed tonnage) -> FINAL (weighed tonnage).

Every confirmation runs as a journal of idempotent steps kept in the state
store (record match, drop from pending, archive old PDF, render, publish,
save snapshot). A failed run can be resumed with ``resume_incomplete``;
steps already done are never repeated, and nothing is rolled back.
"""

import math
import os
import shutil
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from config_loader import load_matching_config
from errors import DuplicateInvoiceError, InvoiceError, NotFoundError, ValidationError
from execution_lock import ExecutionLock
from invoice_metadata import InvoiceMetadataStore
from invoice_renderer import InvoiceAmounts, InvoiceRenderer, PdfInvoiceRenderer, compute_amounts, invoice_filename
from invoice_sequence import InvoiceSequence
from match_ledger import MatchLedger
from matcher import find_best_match, normalize_vehicle_reg
from pending_store import PendingStore
from state_store import StateStore, default_db_path, step_reached
from ticket_models import (
    FINAL,
    PRELIMINARY,
    STRONG_MATCH,
    MatchRecord,
    MatchResult,
    PendingInvoice,
    Variance,
    WeighbridgeTicket,
    coerce_invoice_number,
)


ACCEPT = "ACCEPT"
QUARANTINE = "QUARANTINE"
APPLIED = "APPLIED"

MANUAL_TICKET = "MANUAL"

# override name -> snapshot field
OVERRIDE_FIELDS = {"cargo": "cargoDescription", "destination": "deliveryPoint", "date": "deliveryDate"}


@dataclass
class FinalizeResult:
    invoice_number: int
    filename: str
    path: str
    main_path: str
    discarded_path: Optional[str]
    original_quantity: float
    updated_quantity: float
    variance: float
    variance_percent: float
    amounts: InvoiceAmounts
    snapshot: Dict[str, Any] = field(repr=False, default_factory=dict)
    source: Optional[str] = None


@dataclass
class GenerationResult:
    invoice_number: int
    filename: str
    path: str
    amounts: InvoiceAmounts
    quantity: float
    delivery_point: Optional[str]


@dataclass
class TicketOutcome:
    action: str
    match: Optional[MatchResult]
    variance: Optional[Variance] = None
    finalized: Optional[FinalizeResult] = None
    note: str = ""
    applied: Optional[MatchRecord] = None


def decide_action(match: Optional[MatchResult]) -> str:
    """Only a STRONG_MATCH is applied automatically; everything else goes to review."""
    if match is not None and match.status == STRONG_MATCH:
        return ACCEPT
    return QUARANTINE


def validate_tonnage(value: Any) -> float:
    try:
        tons = float(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"tonnage must be a number, got {value!r}")
    if not math.isfinite(tons) or tons <= 0:
        raise ValidationError(f"tonnage must be positive, got {value!r}")
    return tons


def _invoice_number(value: Any) -> int:
    try:
        return coerce_invoice_number(value)
    except ValueError as e:
        raise ValidationError(str(e)) from e


def _clean_overrides(overrides: Optional[Dict[str, Optional[str]]]) -> Dict[str, str]:
    cleaned: Dict[str, str] = {}
    for key, value in (overrides or {}).items():
        if key not in OVERRIDE_FIELDS:
            raise ValidationError(f"unknown override: {key}")
        if value is not None and str(value).strip():
            cleaned[key] = str(value).strip()
    return cleaned


def _unique_path(directory: Path, name: str) -> Path:
    candidate = directory / name
    stem, suffix = candidate.stem, candidate.suffix
    counter = 2
    while candidate.exists():
        candidate = directory / f"{stem}__{counter}{suffix}"
        counter += 1
    return candidate


def invoices_from_instruction(instruction: Dict[str, Any], invoice_date: Optional[str] = None, default_tons: float = 35) -> List[Dict[str, Any]]:
    """One invoice payload per cargo line of a parsed transport instruction."""
    if invoice_date is None:
        today = datetime.now()
        invoice_date = f"{today.day} {today:%B %Y}"
    base = {
        "invoiceDate": invoice_date,
        "transportOrder": instruction.get("transportOrder"),
        "fileNumber": instruction.get("fileNumber"),
        "instructionDate": instruction.get("instructionDate") or instruction.get("date"),
        "clientName": instruction.get("issuingCompany"),
        "collectionPoint": instruction.get("collectionName") or "",
        "deliveryPoint": instruction.get("deliveryName") or "",
        "ratePerTon": instruction.get("ratePerTon"),
    }
    lines = instruction.get("cargoLines") or []
    if not lines:
        return [{
            **base,
            "deliveryDate": instruction.get("deliveryDate") or instruction.get("date"),
            "vehicleReg": instruction.get("vehicleReg"),
            "cargoDescription": "1 CARGO",
            "quantity": default_tons,
        }]
    return [
        {
            **base,
            "deliveryDate": line.get("deliveryDate") or instruction.get("date"),
            "vehicleReg": line.get("vehicleReg") or instruction.get("vehicleReg"),
            "cargoDescription": line.get("cargo") or line.get("description") or "1 CARGO",
            "quantity": line.get("tons") or default_tons,
        }
        for line in lines
    ]


class InvoiceLifecycleManager:
    def __init__(
        self,
        pending: PendingStore,
        ledger: MatchLedger,
        metadata: InvoiceMetadataStore,
        sequence: InvoiceSequence,
        renderer: InvoiceRenderer,
        state: StateStore,
        invoices_dir,
        cfg: Optional[Dict] = None,
        lock_dir: Optional[str] = None,
    ):
        self.pending = pending
        self.ledger = ledger
        self.metadata = metadata
        self.sequence = sequence
        self.renderer = renderer
        self.state = state
        self.invoices_dir = Path(invoices_dir)
        self.cfg = cfg or load_matching_config()
        self.lock_dir = lock_dir or str(self.invoices_dir / ".locks")
        self.lock_timeout = self.cfg.get("locks", {}).get("timeout", 600)

    @classmethod
    def from_config(cls, cfg: Optional[Dict] = None, renderer: Optional[InvoiceRenderer] = None) -> "InvoiceLifecycleManager":
        cfg = cfg or load_matching_config()
        data_dir = cfg["paths"]["data_dir"]
        state = StateStore(default_db_path(data_dir))
        state.init_db()
        return cls(
            pending=PendingStore(data_dir, enforce_unique=cfg["pending"]["enforce_unique"]),
            ledger=MatchLedger(data_dir),
            metadata=InvoiceMetadataStore(data_dir),
            sequence=InvoiceSequence(data_dir),
            renderer=renderer or PdfInvoiceRenderer.from_config(cfg),
            state=state,
            invoices_dir=cfg["paths"]["invoices_dir"],
            cfg=cfg,
            lock_dir=os.path.join(data_dir, "locks"),
        )

    @property
    def updated_dir(self) -> Path:
        return self.invoices_dir / "updated"

    @property
    def discarded_dir(self) -> Path:
        return self.invoices_dir / "discarded"

    @property
    def vat_rate(self) -> float:
        return self.cfg.get("invoice", {}).get("vat_rate", 0.15)

    def _lock(self, invoice_number: int) -> ExecutionLock:
        return ExecutionLock(f"invoice_{invoice_number}", timeout=self.lock_timeout, lock_dir=self.lock_dir)

    def _require_snapshot(self, invoice_number: int) -> Dict[str, Any]:
        snapshot = self.metadata.get(invoice_number)
        if snapshot is None:
            raise NotFoundError(f"Invoice metadata not found for #{invoice_number:03d}")
        return snapshot

    # PRELIMINARY

    def create_preliminary(self, invoice_data: Dict[str, Any]) -> GenerationResult:
        """Render the invoice from instructed tonnage and put it on the pending list."""
        data = dict(invoice_data)
        quantity = validate_tonnage(data.get("quantity"))
        if data.get("invoiceNumber"):
            number = _invoice_number(data["invoiceNumber"])
        else:
            number = self.sequence.next()
        if self.pending.enforce_unique and self.pending.get(number) is not None:
            raise DuplicateInvoiceError(f"invoice #{number:03d} is already pending")

        snapshot = {
            **data,
            "invoiceNumber": number,
            "quantity": quantity,
            "instructedQuantity": quantity,
            "status": PRELIMINARY,
        }
        filename = invoice_filename(number)
        path = self.invoices_dir / filename
        with self._lock(number).hold({"action": "create"}):
            amounts = self.renderer.render(snapshot, path)
            self.metadata.save(number, snapshot)
            self.pending.add(PendingInvoice(
                invoice_number=number,
                transport_order=snapshot.get("transportOrder"),
                vehicle_reg=snapshot.get("vehicleReg"),
                delivery_point=snapshot.get("deliveryPoint") or None,
                delivery_date=snapshot.get("deliveryDate"),
                instruction_date=snapshot.get("instructionDate"),
                quantity=quantity,
                original_quantity=float(data.get("originalQuantity") or quantity),
                rate_per_ton=float(snapshot.get("ratePerTon") or 0),
                client_name=snapshot.get("clientName"),
                cargo=snapshot.get("cargoDescription") or "Cargo",
                description=snapshot.get("cargoDescription") or "Cargo",
            ))
        self.state.write_audit("INFO", "system", "create", [number], 0, PRELIMINARY.lower())
        return GenerationResult(number, filename, str(path), amounts, quantity, snapshot.get("deliveryPoint"))

    def invoice_state(self, invoice_number) -> str:
        number = _invoice_number(invoice_number)
        snapshot = self._require_snapshot(number)
        if snapshot.get("status") == FINAL:
            return FINAL
        if snapshot.get("status") is None and self.ledger.for_invoice(number):
            return FINAL
        return PRELIMINARY

    # matching

    def applied_record(self, ticket: WeighbridgeTicket) -> Optional[MatchRecord]:
        """Ledger entry already made for this weighing, if any."""
        if not ticket.ticket_number or ticket.ticket_number == MANUAL_TICKET:
            return None
        vehicle = normalize_vehicle_reg(ticket.vehicle_reg)
        for record in self.ledger.history():
            if record.weighbridge_ticket != ticket.ticket_number:
                continue
            recorded_vehicle = normalize_vehicle_reg(record.vehicle_reg)
            if not vehicle or not recorded_vehicle or vehicle == recorded_vehicle:
                return record
        return None

    def process_ticket(
        self,
        ticket: WeighbridgeTicket,
        candidates: Optional[List[PendingInvoice]] = None,
        source: Optional[str] = None,
    ) -> TicketOutcome:
        ticket_id = ticket.ticket_number or "N/A"

        # a weighing confirms at most one invoice
        applied = self.applied_record(ticket)
        if applied is not None:
            journal = self.state.get_journal(applied.invoice_number)
            if journal and journal["step"] != "done":
                raise InvoiceError(
                    f"ticket {ticket_id} is still being applied to invoice #{applied.invoice_number:03d}"
                )
            self.state.write_audit("INFO", "system", "duplicate", [applied.invoice_number, ticket_id], 0, "already_applied")
            return TicketOutcome(APPLIED, None, note=f"already applied to invoice #{applied.invoice_number:03d}", applied=applied)

        if candidates is None:
            candidates = self.pending.list()
        match = find_best_match(ticket, candidates, self.cfg)

        if decide_action(match) == QUARANTINE:
            score = match.confidence if match else 0
            target = [match.invoice.invoice_number, ticket_id] if match else [ticket_id]
            self.state.write_audit("INFO", "system", "quarantine", target, score, match.status if match else "NO_CANDIDATES")
            return TicketOutcome(QUARANTINE, match)

        invoice = match.invoice
        actual = ticket.nett_tons
        if not actual or actual <= 0:
            self.state.write_audit("WARNING", "system", "quarantine", [invoice.invoice_number, ticket_id], match.confidence, "no_nett_weight")
            return TicketOutcome(QUARANTINE, match, note="strong match without a nett weight")

        variance = Variance.compute(invoice.quantity, actual, match.confidence)
        result = self._confirm(invoice.invoice_number, actual, ticket, variance, None, actor="weighbridge", source=source)
        return TicketOutcome(ACCEPT, match, variance, result)

    def confirm_manual(
        self,
        invoice_number,
        actual_tonnage,
        ticket_number: Optional[str] = None,
        overrides: Optional[Dict[str, Optional[str]]] = None,
    ) -> FinalizeResult:
        """Operator-supplied weighing: scorer bypassed, confidence fixed at 100."""
        actual = validate_tonnage(actual_tonnage)
        cleaned = _clean_overrides(overrides)
        number = _invoice_number(invoice_number)
        snapshot = self._require_snapshot(number)

        pending = self.pending.get(number)
        if pending is not None:
            instruction_qty = pending.quantity
            vehicle = pending.vehicle_reg
        else:
            instruction_qty = float(snapshot.get("instructedQuantity") or snapshot.get("quantity") or 0)
            vehicle = snapshot.get("vehicleReg")

        ticket = WeighbridgeTicket(ticket_number=ticket_number or MANUAL_TICKET, vehicle_reg=vehicle, nett_weight=actual * 1000)
        variance = Variance.compute(instruction_qty, actual, 100)
        return self._confirm(number, actual, ticket, variance, cleaned, actor="manual")

    def finalize(self, invoice_number, actual_tonnage, overrides: Optional[Dict[str, Optional[str]]] = None) -> FinalizeResult:
        """Regenerate the invoice with actual tonnage and optional corrections."""
        actual = validate_tonnage(actual_tonnage)
        cleaned = _clean_overrides(overrides)
        number = _invoice_number(invoice_number)
        self._require_snapshot(number)
        with self._lock(number).hold({"action": "finalize"}):
            self._resume_if_incomplete(number)
            self.state.start_journal(number, {"actualTonnage": actual, "overrides": cleaned, "actor": "system", "ledger": None})
            return self._run_journal(number)

    def _confirm(
        self, number: int, actual: float, ticket: WeighbridgeTicket, variance: Variance, overrides, actor: str, source: Optional[str] = None
    ) -> FinalizeResult:
        self._require_snapshot(number)
        with self._lock(number).hold({"action": "confirm", "actor": actor}):
            self._resume_if_incomplete(number)
            payload = {
                "actualTonnage": actual,
                "overrides": overrides or {},
                "actor": actor,
                "ledger": {"ticket": asdict(ticket), "variance": asdict(variance)},
                "source": source,
            }
            self.state.start_journal(number, payload)
            return self._run_journal(number)

    # journal

    def resume_incomplete(self) -> List[FinalizeResult]:
        results = []
        for journal in self.state.incomplete_journals():
            number = journal["invoice_number"]
            print(f"🔁 Resuming interrupted update of invoice #{number:03d} (last step: {journal['step']})")
            try:
                with self._lock(number).hold({"action": "resume"}):
                    results.append(self._run_journal(number))
            except Exception as e:
                print(f"   ❌ Resume failed: {e}")
        return results

    def _resume_if_incomplete(self, number: int):
        journal = self.state.get_journal(number)
        if journal and journal["step"] != "done":
            self._run_journal(number)

    def _run_journal(self, number: int) -> FinalizeResult:
        journal = self.state.get_journal(number)
        payload = journal["payload"]
        actor = payload.get("actor", "system")
        try:
            return self._run_steps(number, journal["step"], payload)
        except Exception as e:
            self.state.fail_journal(number, str(e))
            self.state.write_audit("ERROR", actor, "finalize", [number], 0, "failed", str(e))
            raise

    def _run_steps(self, number: int, step: str, payload: Dict[str, Any]) -> FinalizeResult:
        actual = float(payload["actualTonnage"])
        ledger_entry = payload.get("ledger")
        confidence = 100

        if ledger_entry:
            confidence = ledger_entry["variance"]["confidence"]
            if not step_reached(step, "recorded"):
                self.ledger.record(number, WeighbridgeTicket(**ledger_entry["ticket"]), Variance(**ledger_entry["variance"]))
                self.state.advance_journal(number, "recorded")

        if not step_reached(step, "removed"):
            self.pending.remove(number)
            self.state.advance_journal(number, "removed")

        stored = self._require_snapshot(number)
        updated = self._updated_snapshot(stored, actual, payload.get("overrides") or {})
        filename = invoice_filename(number)
        main_path = self.invoices_dir / filename
        updated_path = self.updated_dir / filename
        discarded_path = self.discarded_dir / filename

        if not step_reached(step, "archived"):
            if main_path.exists():
                self._archive(main_path)
                print(f"   📦 Original moved to: {self.discarded_dir}/")
            self.state.advance_journal(number, "archived")

        if not step_reached(step, "rendered"):
            amounts = self.renderer.render(updated, updated_path)
            self.state.advance_journal(number, "rendered")
        else:
            amounts = compute_amounts(actual, float(updated.get("ratePerTon") or 0), self.vat_rate)

        if not step_reached(step, "published"):
            shutil.copyfile(updated_path, main_path)
            self.state.advance_journal(number, "published")

        if not step_reached(step, "saved"):
            self.metadata.save(number, updated)
            self.state.advance_journal(number, "saved")

        self.state.advance_journal(number, "done")
        original = float(updated["instructedQuantity"])
        variance = Variance.compute(original, actual, confidence)
        self.state.write_audit("INFO", payload.get("actor", "system"), "finalize", [number], confidence, FINAL.lower())
        return FinalizeResult(
            invoice_number=number,
            filename=filename,
            path=str(updated_path),
            main_path=str(main_path),
            discarded_path=str(discarded_path) if discarded_path.exists() else None,
            original_quantity=original,
            updated_quantity=actual,
            variance=variance.difference,
            variance_percent=variance.percent_diff,
            amounts=amounts,
            snapshot=updated,
            source=payload.get("source"),
        )

    @staticmethod
    def _updated_snapshot(stored: Dict[str, Any], actual: float, overrides: Dict[str, str]) -> Dict[str, Any]:
        updated = {k: v for k, v in stored.items() if k != "savedAt"}
        updated["instructedQuantity"] = float(stored.get("instructedQuantity") or stored.get("quantity") or 0)
        updated["quantity"] = actual
        updated["status"] = FINAL
        for key, value in overrides.items():
            updated[OVERRIDE_FIELDS[key]] = value
        return updated

    def _archive(self, main_path: Path) -> Path:
        self.discarded_dir.mkdir(parents=True, exist_ok=True)
        target = self.discarded_dir / main_path.name
        if target.exists():
            # an earlier superseded version is kept under a numbered name
            target.rename(_unique_path(self.discarded_dir, main_path.name))
        shutil.move(str(main_path), str(target))
        return target
