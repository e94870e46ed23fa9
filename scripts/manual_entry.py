#!/usr/bin/env python
"""
Manual weighbridge entry.

Lists invoices still waiting for a weighbridge ticket, or confirms one with a
tonnage read off a ticket the parser could not handle (e.g. a photo).

    python scripts/manual_entry.py list
    python scripts/manual_entry.py confirm 16 34.82 --ticket 2451 --cargo Wheat
"""

import argparse
import os
import sys

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from errors import InvoiceError
from lifecycle import InvoiceLifecycleManager


def list_pending(manager: InvoiceLifecycleManager):
    pending = manager.pending.sorted_for_review()
    if not pending:
        print("✅ No pending invoices. All invoices are confirmed!")
        return
    print(f"⏳ {len(pending)} pending invoice(s), oldest first:\n")
    for idx, inv in enumerate(pending, 1):
        print(f"   {idx}. Invoice #{inv.invoice_number:03d}")
        print(f"      📅 Instruction date: {inv.instruction_date or 'N/A'}")
        print(f"      📦 Cargo: {inv.cargo or inv.description or 'N/A'}")
        print(f"      🚛 Vehicle: {inv.vehicle_reg or 'N/A'}")
        print(f"      📍 Delivery: {inv.delivery_point or 'N/A'}")
        print(f"      ⚖️  Instruction qty: {inv.quantity} tons\n")


def confirm(manager: InvoiceLifecycleManager, args) -> int:
    overrides = {"cargo": args.cargo, "destination": args.destination, "date": args.date}
    try:
        result = manager.confirm_manual(args.invoice, args.tons, ticket_number=args.ticket, overrides=overrides)
    except InvoiceError as e:
        print(f"❌ {e}")
        return 1
    c = manager.cfg["invoice"].get("currency", "R")
    print(f"\n✅ Invoice #{result.invoice_number:03d} finalized")
    print(f"   Instruction: {result.original_quantity} tons")
    print(f"   Actual:      {result.updated_quantity} tons")
    print(f"   Variance:    {result.variance:+.2f} tons ({result.variance_percent:+.2f}%)")
    print(f"   Total:       {c}{result.amounts.total:,.2f}")
    print(f"   📄 {result.main_path}")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Manual weighbridge entry")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("list", help="show invoices awaiting a weighbridge ticket")
    p = sub.add_parser("confirm", help="finalize an invoice with actual tonnage")
    p.add_argument("invoice", help="invoice number, e.g. 16 or 016")
    p.add_argument("tons", help="actual nett tonnage")
    p.add_argument("--ticket", help="weighbridge ticket number (default MANUAL)")
    p.add_argument("--cargo", help="corrected cargo description")
    p.add_argument("--destination", help="corrected delivery point")
    p.add_argument("--date", help="corrected delivery date")
    args = parser.parse_args(argv)

    manager = InvoiceLifecycleManager.from_config()
    if args.command == "confirm":
        return confirm(manager, args)
    list_pending(manager)
    return 0


if __name__ == "__main__":
    sys.exit(main())
