#!/usr/bin/env python3
"""
Weighbridge ticket extraction.

Text comes out of the PDF through PyMuPDF; fields are then picked with ordered
regex patterns, first hit wins. Scanned images are out of scope (no OCR).
"""

import re
from pathlib import Path
from typing import Optional, Sequence

import fitz  # PyMuPDF

from errors import ExtractionFailure
from ticket_models import WeighbridgeTicket


TICKET_PATTERNS = [
    r"WB\s*Ticket\s*#?\s*:?\s*(\d+)",
    r"Ticket\s*No\.?\s*:?\s*(\d+)",
    r"Document\s*Number\s*:?\s*(\d+)",
    r"\bNo\s*(\d{5,})",
]
VEHICLE_PATTERNS = [
    r"Truck\s*Reg\.?\s*:?\s*([A-Z]{2,3}\s?\d{2,4}\s?[A-Z]{2,3})",
    r"Vehicle\s*:?\s*([A-Z]{2,3}\s?\d{2,4}\s?[A-Z]{2,3})",
    r"Registration\s*:?\s*([A-Z]{2,3}\s?\d{2,4}\s?[A-Z]{2,3})",
]
BARE_PLATE = r"\b([A-Z]{2,3}\s?\d{3,4}\s?[A-Z]{2})\b"  # DDR829NC, DDR 829 NC
NETT_PATTERNS = [
    r"Nett\s*Weight\s*:?\s*(\d+(?:,\d{3})*(?:\.\d+)?)\s*kg",
    r"Total\s*Nett\s*\(kg\)\s*:?\s*(\d+(?:,\d{3})*(?:\.\d+)?)",
    r"Nett?\s*\(kg\)\s*:?\s*(\d+(?:,\d{3})*(?:\.\d+)?)",
    r"Nett\s*:?\s*(\d+(?:,\d{3})*(?:\.\d+)?)\s*kg",
    r"Nett\s*Weight\s*(\d+(?:,\d{3})*(?:\.\d+)?)",
]
GROSS_PATTERNS = [
    r"Gross\s*Weight\s*:?\s*(\d+(?:,\d{3})*(?:\.\d+)?)\s*kg",
    r"Gross\s*\(kg\)\s*:?\s*(\d+(?:,\d{3})*(?:\.\d+)?)",
]
TARE_PATTERNS = [
    r"Tare\s*Weight\s*:?\s*(\d+(?:,\d{3})*(?:\.\d+)?)\s*kg",
    r"Tare\s*\(kg\)\s*:?\s*(\d+(?:,\d{3})*(?:\.\d+)?)",
]
LOCATION_PATTERNS = [
    r"Zone\s*:?\s*([^\n]+)",
    r"Location\s*:?\s*([^\n]+)",
    r"(Maydon\s*Wharf[^\n]*)",
    r"(SASKO[^\n]*)",
    r"(KRUGERSDORP[^\n]*)",
    r"(KYNOCH[^\n]*)",
    r"(ENDICOTT[^\n]*)",
]
DATE_PATTERNS = [
    r"(\d{4}/\d{2}/\d{2}\s+\d{2}:\d{2}:\d{2})",
    r"(\d{4}/\d{2}/\d{2})",
    r"(\d{2}/\d{2}/\d{4})",
    r"(\d{4}-\d{2}-\d{2})",
]
CUSTOMER_PATTERNS = [
    r"Client\s*Name\s*:?\s*([^\n]+)",
    r"Customer\s*:?\s*([^\n]+)",
    r"Haulier\s*:?\s*([^\n]+)",
    r"\b(ENSIGN|ELETHU|SATL|SILO)\b",
]
PRODUCT_PATTERNS = [
    r"Product\s*:?\s*([^\n]+)",
    r"Cargo\s*:?\s*([^\n]+)",
    r"(MILL\s*SCALE|WHEAT|UREA|CEMENT|FLOUR)",
]
DRIVER_PATTERNS = [
    r"Driver\s*Name\s*:?\s*([^\n]+)",
    r"Driver\s*:?\s*([^\n]+)",
]


def _first(text: str, patterns: Sequence[str], flags: int = re.IGNORECASE) -> Optional[str]:
    for pattern in patterns:
        match = re.search(pattern, text, flags)
        if match:
            value = match.group(1).strip()
            if value:
                return value
    return None


def _kg(text: str, patterns: Sequence[str]) -> Optional[float]:
    value = _first(text, patterns)
    if value is None:
        return None
    return float(value.replace(",", ""))


def extract_text(data: bytes) -> str:
    """Raw text of a PDF document."""
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        raise ExtractionFailure(f"unreadable PDF: {e}") from e
    try:
        text = "\n".join(page.get_text("text") or "" for page in doc)
    finally:
        doc.close()
    if not text.strip():
        raise ExtractionFailure("document contains no extractable text")
    return text


def parse_weighbridge_text(text: str) -> WeighbridgeTicket:
    vehicle = _first(text, VEHICLE_PATTERNS) or _first(text, [BARE_PLATE], flags=0)
    return WeighbridgeTicket(
        ticket_number=_first(text, TICKET_PATTERNS),
        vehicle_reg=re.sub(r"\s+", "", vehicle).upper() if vehicle else None,
        nett_weight=_kg(text, NETT_PATTERNS),
        gross_weight=_kg(text, GROSS_PATTERNS),
        tare_weight=_kg(text, TARE_PATTERNS),
        location=_first(text, LOCATION_PATTERNS),
        date=_first(text, DATE_PATTERNS, flags=0),
        customer=_first(text, CUSTOMER_PATTERNS),
        product=_first(text, PRODUCT_PATTERNS),
        driver=_first(text, DRIVER_PATTERNS),
    )


def parse_weighbridge_pdf(path) -> WeighbridgeTicket:
    return parse_weighbridge_text(extract_text(Path(path).read_bytes()))
