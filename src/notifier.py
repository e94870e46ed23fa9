"""
Slack notifications for the weighbridge run.

Quarantined tickets are posted for operator review; a summary is posted at the
end of each batch. Without SLACK_WEBHOOK_URL everything is printed instead.
"""

import os
from typing import Dict, List, Optional

import requests

from ticket_models import MatchResult, WeighbridgeTicket


def _webhook_url(webhook_url: Optional[str] = None) -> Optional[str]:
    url = webhook_url or os.getenv("SLACK_WEBHOOK_URL")
    if not url or "XXXXXX" in url or "YOUR/WEBHOOK/URL" in url:
        return None
    return url


def _post(url: str, payload: Dict) -> bool:
    try:
        response = requests.post(url, json=payload, timeout=10)
        response.raise_for_status()
    except requests.RequestException as e:
        print(f"❌ Slack send failed: {e}")
        return False
    return True


def build_review_message(filename: str, ticket: WeighbridgeTicket, match: Optional[MatchResult]) -> str:
    tons = f"{ticket.nett_tons:.2f} t" if ticket.nett_tons is not None else "N/A"
    lines = [
        f"🔍 *Weighbridge ticket needs review*: `{filename}`",
        f"Ticket: {ticket.ticket_number or 'N/A'}  Vehicle: {ticket.vehicle_reg or 'N/A'}  Nett: {tons}",
    ]
    if match is None:
        lines.append("No pending invoices to match against.")
        return "\n".join(lines)
    lines.append(
        f"Best candidate: Invoice #{match.invoice.invoice_number:03d} "
        f"({match.status}, {match.confidence}%)"
    )
    lines.extend(f"• {reason}" for reason in match.reasons)
    lines.append(f"Confirm with: `manual_entry.py {match.invoice.invoice_number} <tons>`")
    return "\n".join(lines)


def notify_review(filename: str, ticket: WeighbridgeTicket, match: Optional[MatchResult], webhook_url: Optional[str] = None) -> bool:
    message = build_review_message(filename, ticket, match)
    url = _webhook_url(webhook_url)
    if url is None:
        print("⚠️ SLACK_WEBHOOK_URL not set - review request printed only")
        print(message)
        return False
    payload = {
        "text": "Weighbridge ticket needs review",
        "attachments": [{"color": "warning", "text": message, "mrkdwn_in": ["text"]}],
    }
    return _post(url, payload)


def send_batch_summary(summary: Dict[str, List], webhook_url: Optional[str] = None) -> bool:
    matched = len(summary.get("matched", []))
    unmatched = len(summary.get("unmatched", []))
    failed = len(summary.get("failed", []))
    total = matched + unmatched + failed
    message = (
        f"📊 *Weighbridge run complete* ({total} tickets)\n"
        f"✅ Matched: {matched}\n"
        f"🔍 Needs review: {unmatched}\n"
        f"❌ Errors: {failed}"
    )
    url = _webhook_url(webhook_url)
    if url is None:
        print(message.replace("*", ""))
        return False
    color = "good" if not unmatched and not failed else "danger" if failed else "warning"
    payload = {
        "text": "Weighbridge run complete",
        "attachments": [{"color": color, "text": message, "mrkdwn_in": ["text"]}],
    }
    return _post(url, payload)
