import os
import sys
from datetime import date

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from date_parser import MISSING, PARSED, UNPARSABLE, days_apart, parse_date, sort_key


@pytest.mark.parametrize("text,expected", [
    ("2026/01/29", date(2026, 1, 29)),
    ("2026-01-29", date(2026, 1, 29)),
    ("29/01/2026", date(2026, 1, 29)),
    ("29 January 2026", date(2026, 1, 29)),
    ("29 Jan 2026", date(2026, 1, 29)),
    ("2026/02/02 08:00:00", date(2026, 2, 2)),
    ("2026-02-02T08:00", date(2026, 2, 2)),
])
def test_parse_known_formats(text, expected):
    parsed = parse_date(text)
    assert parsed.kind == PARSED
    assert parsed.ok
    assert parsed.value == expected


def test_missing_and_unparsable_are_distinguished():
    assert parse_date(None).kind == MISSING
    assert parse_date("   ").kind == MISSING
    bad = parse_date("next Tuesday")
    assert bad.kind == UNPARSABLE
    assert bad.raw == "next Tuesday"
    assert bad.value is None


def test_days_apart_is_absolute():
    assert days_apart(date(2026, 1, 29), date(2026, 2, 2)) == 4
    assert days_apart(date(2026, 2, 2), date(2026, 1, 29)) == 4


def test_sort_key_puts_undated_first():
    keys = sorted(["2026/02/01", None, "2026/01/15", "garbage"], key=sort_key)
    assert keys[:2] == [None, "garbage"]
    assert keys[2:] == ["2026/01/15", "2026/02/01"]
