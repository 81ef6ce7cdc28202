"""Date manipulation utilities"""

import re
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple

from dateutil import parser as dateparser

MONTH_NAMES = (
    r"(?:Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|June?|July?|Aug(?:ust)?"
    r"|Sep(?:t(?:ember)?)?|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?)\.?"
)

# Date tokens accepted at the start of a statement line
DATE_TOKEN_PATTERNS = [
    re.compile(r"^(?P<token>\d{4}-\d{1,2}-\d{1,2})(?=\s|$)"),
    re.compile(r"^(?P<token>\d{1,2}/\d{1,2}(?:/\d{2,4})?)(?=\s|$)"),
    re.compile(r"^(?P<token>\d{1,2}-\d{1,2}(?:-\d{2,4})?)(?=\s|$)"),
    re.compile(rf"^(?P<token>{MONTH_NAMES}\s+\d{{1,2}}(?:,?\s+\d{{4}})?)(?=\s|$)", re.IGNORECASE),
    re.compile(rf"^(?P<token>\d{{1,2}}\s+{MONTH_NAMES}(?:\s+\d{{4}})?)(?=\s|$)", re.IGNORECASE),
]


def generate_date_range(start: date, end: date) -> List[date]:
    """Generate list of dates from start to end (inclusive)"""
    days = (end - start).days + 1
    return [start + timedelta(days=i) for i in range(days)]


def months_between(earlier: date, later: date) -> int:
    """Whole-month difference comparing only year and month (later - earlier)"""
    return (later.year - earlier.year) * 12 + (later.month - earlier.month)


def split_date_token(line: str) -> Tuple[Optional[str], str]:
    """
    Split a leading date token off a statement line.

    Returns (token, remainder). The token is None when the line does not start
    with something shaped like a date.
    """
    for pattern in DATE_TOKEN_PATTERNS:
        match = pattern.match(line)
        if match:
            token = match.group("token")
            return token, line[match.end():].strip()
    return None, line


def parse_date_token(token: str, year: int) -> Optional[date]:
    """
    Parse a statement date token into a date.

    Numeric tokens are read month-first (US statements). Tokens without a year
    take the supplied year. Returns None for impossible dates such as 13/45.
    """
    try:
        if re.fullmatch(r"\d{4}-\d{1,2}-\d{1,2}", token):
            y, m, d = (int(p) for p in token.split("-"))
            return date(y, m, d)

        numeric = re.fullmatch(r"(\d{1,2})[/-](\d{1,2})(?:[/-](\d{2,4}))?", token)
        if numeric:
            month, day, raw_year = numeric.groups()
            parsed_year = year
            if raw_year:
                parsed_year = int(raw_year)
                if len(raw_year) == 2:
                    parsed_year += 2000
                elif len(raw_year) == 3:
                    return None
            return date(parsed_year, int(month), int(day))

        return dateparser.parse(token.replace(".", ""), default=datetime(year, 1, 1)).date()
    except (ValueError, OverflowError):
        return None


def token_has_year(token: str) -> bool:
    """True when the date token spells out its own year"""
    return bool(re.search(r"\d{4}|[/-]\d{1,2}[/-]\d{2}$", token))
