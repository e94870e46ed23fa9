#!/usr/bin/env python3
"""
Batch run over a folder of weighbridge tickets.

Accepted tickets move to ``matched/``, tickets needing review (and scanned
images, which cannot be read without OCR) move to ``unmatched/``. A ticket
that fails is reported and left where it is so the next run retries it.
"""

import shutil
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from execution_lock import ExecutionLock
from lifecycle import ACCEPT, APPLIED, InvoiceLifecycleManager
from notifier import notify_review, send_batch_summary
from ticket_models import WeighbridgeTicket
from weighbridge_parser import parse_weighbridge_pdf


IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".tif", ".tiff", ".heic"}


def _move(src: Path, dest_dir: Path) -> Path:
    dest_dir.mkdir(parents=True, exist_ok=True)
    target = dest_dir / src.name
    counter = 2
    while target.exists():
        target = dest_dir / f"{src.stem}__{counter}{src.suffix}"
        counter += 1
    shutil.move(str(src), str(target))
    return target


def list_tickets(weighbridge_dir: Path) -> List[Path]:
    return sorted(
        p for p in weighbridge_dir.iterdir()
        if p.is_file() and not p.name.startswith(".")
        and (p.suffix.lower() == ".pdf" or p.suffix.lower() in IMAGE_SUFFIXES)
    )


def process_directory(
    weighbridge_dir,
    manager: InvoiceLifecycleManager,
    parse: Callable[[Path], WeighbridgeTicket] = parse_weighbridge_pdf,
    notify: Optional[Callable] = notify_review,
) -> Dict[str, List[Dict]]:
    weighbridge_dir = Path(weighbridge_dir)
    matched_dir = weighbridge_dir / "matched"
    unmatched_dir = weighbridge_dir / "unmatched"
    summary: Dict[str, List[Dict]] = {"matched": [], "unmatched": [], "failed": [], "resumed": [], "duplicates": []}

    if not weighbridge_dir.is_dir():
        print(f"⚠️ Weighbridge folder not found: {weighbridge_dir}")
        return summary

    lock = ExecutionLock("weighbridge_batch", timeout=manager.lock_timeout, lock_dir=manager.lock_dir)
    with lock.hold({"dir": str(weighbridge_dir), "started": datetime.now().isoformat()}):
        for result in manager.resume_incomplete():
            entry = {"invoiceNumber": result.invoice_number, "path": result.main_path, "file": None}
            # the ticket behind a resumed journal is already applied
            if result.source and (weighbridge_dir / result.source).is_file():
                _move(weighbridge_dir / result.source, matched_dir)
                entry["file"] = result.source
                print(f"♻️ Resumed invoice #{result.invoice_number:03d}, moved {result.source} to matched")
            summary["resumed"].append(entry)

        tickets = list_tickets(weighbridge_dir)
        print(f"📋 {len(tickets)} weighbridge ticket(s) to process")

        for i, path in enumerate(tickets, 1):
            print(f"\n[{i}/{len(tickets)}] {path.name}")
            if path.suffix.lower() in IMAGE_SUFFIXES:
                print("   ⚠️ Image ticket, cannot extract text - needs manual entry")
                _move(path, unmatched_dir)
                summary["unmatched"].append({"file": path.name, "reason": "image"})
                continue
            try:
                _process_one(path, manager, parse, notify, summary, matched_dir, unmatched_dir)
            except Exception as e:
                print(f"   ❌ Failed: {e}")
                manager.state.write_audit("ERROR", "weighbridge", "process", [path.name], 0, "failed", str(e))
                summary["failed"].append({"file": path.name, "error": str(e)})

    print("\n=== Weighbridge run complete ===")
    print(f"  Matched: {len(summary['matched'])}")
    print(f"  Needs review: {len(summary['unmatched'])}")
    print(f"  Errors: {len(summary['failed'])}")
    if summary["duplicates"]:
        print(f"  Already applied: {len(summary['duplicates'])}")
    return summary


def _process_one(path: Path, manager, parse, notify, summary, matched_dir: Path, unmatched_dir: Path):
    ticket = parse(path)
    tons = f"{ticket.nett_tons:.2f}t" if ticket.nett_tons is not None else "N/A"
    print(f"   Ticket: {ticket.ticket_number or 'N/A'}  Vehicle: {ticket.vehicle_reg or 'N/A'}  Nett: {tons}")

    outcome = manager.process_ticket(ticket, source=path.name)
    match = outcome.match

    if outcome.action == APPLIED:
        print(f"   ♻️ Ticket {ticket.ticket_number} {outcome.note}, skipping")
        _move(path, matched_dir)
        summary["duplicates"].append({"file": path.name, "invoiceNumber": outcome.applied.invoice_number})
        return

    if outcome.action == ACCEPT:
        result = outcome.finalized
        print(f"   ✅ Matched invoice #{result.invoice_number:03d} ({match.confidence}%)")
        print(f"   📊 {result.original_quantity}t -> {result.updated_quantity}t ({result.variance_percent:+.2f}%)")
        _move(path, matched_dir)
        summary["matched"].append({
            "file": path.name,
            "invoiceNumber": result.invoice_number,
            "confidence": match.confidence,
            "variancePercent": result.variance_percent,
        })
        return

    if match is None:
        print("   ⚠️ No pending invoices")
    else:
        print(f"   🔍 Best candidate #{match.invoice.invoice_number:03d}: {match.status} ({match.confidence}%)")
        for reason in match.reasons:
            print(f"      {reason}")
    if outcome.note:
        print(f"   ⚠️ {outcome.note}")
    _move(path, unmatched_dir)
    summary["unmatched"].append({
        "file": path.name,
        "invoiceNumber": match.invoice.invoice_number if match else None,
        "confidence": match.confidence if match else 0,
        "status": match.status if match else None,
    })
    if notify is not None:
        notify(path.name, ticket, match)


def main(weighbridge_dir: Optional[str] = None, notify_summary: bool = True) -> Dict[str, List[Dict]]:
    manager = InvoiceLifecycleManager.from_config()
    weighbridge_dir = weighbridge_dir or manager.cfg["paths"]["weighbridge_dir"]
    print("=== Weighbridge matching ===")
    print(f"Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    summary = process_directory(weighbridge_dir, manager)
    if notify_summary:
        send_batch_summary(summary)
    return summary


if __name__ == "__main__":
    main()
