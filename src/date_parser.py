"""
Permissive date parsing for instruction and weighbridge documents.

Documents carry dates as 2026/01/29, 2026-01-29, 29/01/2026, 29 January 2026
and optionally a time component. Parsing never raises: the result is tagged so
callers can tell "no date given" apart from "date present but unreadable".
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional


PARSED = "parsed"
MISSING = "missing"
UNPARSABLE = "unparsable"

DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%d %B %Y",
    "%d %b %Y",
)

_TIME_SUFFIX = re.compile(r"(?:[T\s]+\d{1,2}:\d{2}(?::\d{2})?(?:\.\d+)?)\s*$")


@dataclass(frozen=True)
class ParsedDate:
    kind: str
    raw: str = ""
    value: Optional[date] = None

    @property
    def ok(self) -> bool:
        return self.kind == PARSED


def parse_date(text: Optional[str]) -> ParsedDate:
    if text is None or not str(text).strip():
        return ParsedDate(MISSING)
    raw = str(text).strip()
    cleaned = _TIME_SUFFIX.sub("", raw).strip()
    for fmt in DATE_FORMATS:
        try:
            return ParsedDate(PARSED, raw, datetime.strptime(cleaned, fmt).date())
        except ValueError:
            continue
    return ParsedDate(UNPARSABLE, raw)


def days_apart(a: date, b: date) -> int:
    return abs((a - b).days)


def sort_key(text: Optional[str], default: date = date(2000, 1, 1)) -> date:
    """Sort key for review listings; undated entries sort first."""
    parsed = parse_date(text)
    return parsed.value if parsed.ok else default
