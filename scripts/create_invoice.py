#!/usr/bin/env python
"""
Create PRELIMINARY invoices from a parsed transport instruction.

The instruction is a JSON file (transportOrder, instructionDate, issuingCompany,
collectionName, deliveryName, ratePerTon, cargoLines[...]). One invoice is
issued per cargo line at the instructed tonnage and put on the pending list
until its weighbridge ticket arrives.

    python scripts/create_invoice.py instruction_TO-4471.json
    python scripts/create_invoice.py instruction.json --invoice-date "29 January 2026"
"""

import argparse
import json
import os
import sys

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from errors import InvoiceError
from lifecycle import InvoiceLifecycleManager, invoices_from_instruction


def load_instruction(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object")
    return data


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create preliminary invoices from a transport instruction")
    parser.add_argument("instruction", help="parsed instruction JSON file")
    parser.add_argument("--invoice-date", help='invoice date text (default today, e.g. "29 January 2026")')
    args = parser.parse_args(argv)

    try:
        instruction = load_instruction(args.instruction)
    except (OSError, ValueError) as e:
        print(f"❌ Could not read instruction: {e}")
        return 1

    manager = InvoiceLifecycleManager.from_config()
    payloads = invoices_from_instruction(
        instruction,
        invoice_date=args.invoice_date,
        default_tons=manager.cfg["invoice"]["default_tons"],
    )
    print(f"📋 {len(payloads)} invoice(s) for order {instruction.get('transportOrder') or 'N/A'}")

    failed = 0
    c = manager.cfg["invoice"].get("currency", "R")
    for payload in payloads:
        try:
            result = manager.create_preliminary(payload)
        except InvoiceError as e:
            print(f"   ❌ {payload.get('cargoDescription')}: {e}")
            failed += 1
            continue
        print(f"   ✅ Invoice #{result.invoice_number:03d}: {result.quantity} tons to {result.delivery_point or 'N/A'}")
        print(f"      Total: {c}{result.amounts.total:,.2f}  📄 {result.path}")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
