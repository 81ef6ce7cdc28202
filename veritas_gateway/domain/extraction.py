"""Transaction extraction from page-delimited statement text.

Lines are classified by an ordered chain of matchers (first match wins).
Bank-specific fixed-format matchers run before the generic heuristic, which
accepts any line that starts with a date token and takes the rightmost
amount-shaped token as the amount.

A dated line without an amount opens a pending record. Following undated lines
extend its description until one of them carries an amount. A record absorbs at
most ``max_continuation_lines`` undated lines (6 by default); if no amount has
appeared by then the record is discarded and its lines count as unmatched.
Once a record has its amount, only reference detail lines ("Orig ID:1234")
extend it; a blank line or any other undated text closes it.

The statement year comes from the period header line ("Statement Period:"
or a bare "<date> through <date>" range), never from transaction text.

Amount signs come from the statement section (deposits vs withdrawals) or,
outside a known section, from description keywords. Statements rarely print
minus signs, so literal signs are ignored.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Iterable, List, Optional, Protocol, Sequence, Tuple, Union

from veritas_gateway.domain.exceptions import UnreadableStatementError
from veritas_gateway.domain.models import ExtractionResult, ParseQuality, ParseWarning, Transaction
from veritas_gateway.domain.policies import ExtractionPolicy
from veritas_gateway.utils.date_utils import parse_date_token, split_date_token, token_has_year

logger = logging.getLogger(__name__)

StatementText = Union[str, Sequence[str]]

AMOUNT_PATTERN = re.compile(
    r"^\(?[-+]?\$?(?P<whole>\d{1,3}(?:,\d{3})+|\d+)(?:\.(?P<frac>\d{1,2}))?\)?-?$"
)

BANK_PATTERNS = {
    "chase": re.compile(r"jpmorgan\s*chase|chase\s*bank|chase\.com", re.IGNORECASE),
    "bank_of_america": re.compile(r"bank\s*of\s*america", re.IGNORECASE),
    "wells_fargo": re.compile(r"wells\s*fargo", re.IGNORECASE),
    "citibank": re.compile(r"citibank|citi\s*bank", re.IGNORECASE),
    "us_bank": re.compile(r"\bus\s*bank\b|u\.s\.\s*bank", re.IGNORECASE),
    "pnc": re.compile(r"pnc\s*bank", re.IGNORECASE),
    "capital_one": re.compile(r"capital\s*one", re.IGNORECASE),
    "td_bank": re.compile(r"\btd\s*bank\b", re.IGNORECASE),
}

BANK_ALIASES = {
    "jpmorgan_chase": "chase",
    "jpmorgan": "chase",
    "bofa": "bank_of_america",
    "boa": "bank_of_america",
    "wells": "wells_fargo",
    "wf": "wells_fargo",
}

_SECTION_SUFFIX = r"(?:\s*\(continued\))?:?"

SECTION_HEADERS: List[Tuple[re.Pattern, str]] = [
    (
        re.compile(
            r"(?:deposits and additions|deposits and other credits|deposits|electronic deposits"
            r"|other credits|credits|additions)" + _SECTION_SUFFIX,
            re.IGNORECASE,
        ),
        "credit",
    ),
    (
        re.compile(
            r"(?:atm & debit card withdrawals|atm and debit card withdrawals|electronic withdrawals"
            r"|withdrawals and other debits|withdrawals|other withdrawals|debits|other debits"
            r"|checks paid|electronic payments|card purchases|fees|service charges(?:/fees)?)"
            + _SECTION_SUFFIX,
            re.IGNORECASE,
        ),
        "debit",
    ),
]

CREDIT_KEYWORDS = re.compile(
    r"\b(deposit|credit|refund|payroll|salary|interest paid|transfer from|zelle payment from"
    r"|orig co name|return of|reversal)\b",
    re.IGNORECASE,
)

OPENING_BALANCE = re.compile(r"\b(?:beginning|opening|previous)\s+balance\b", re.IGNORECASE)
CLOSING_BALANCE = re.compile(r"\b(?:ending|closing|new)\s+balance\b", re.IGNORECASE)

PAGE_FRACTION = re.compile(r"(?:page\s*)?\d{1,3}\s*/\s*\d{1,3}", re.IGNORECASE)

NOISE_PATTERNS = [
    re.compile(r"\bpage\s*\d+\s*(?:of\s*\d+)?\b", re.IGNORECASE),
    re.compile(r"^total\b", re.IGNORECASE),
    re.compile(r"^date\s+description\b", re.IGNORECASE),
    re.compile(r"member\s+fdic|equal housing lender", re.IGNORECASE),
    re.compile(r"^(?:statement period|account number|customer service)\b", re.IGNORECASE),
]

PERIOD_LABEL = re.compile(
    r"^(?:statement\s+period|statement\s+dates?|for\s+the\s+period|period\s+covered|period)\b\s*:?\s*",
    re.IGNORECASE,
)
PERIOD_SEPARATOR = re.compile(r"\s+(?:through|thru|to|-|–)\s+", re.IGNORECASE)
FOUR_DIGIT_YEAR = re.compile(r"\b(?:19|20)\d{2}\b")
FULL_DATE_YEAR = re.compile(r"\b\d{1,2}/\d{1,2}/((?:19|20)\d{2})\b|\b((?:19|20)\d{2})-\d{2}-\d{2}\b")

# Resolved records only absorb reference detail lines such as "Orig ID:123" or "Trn: 0042"
DETAIL_LINE = re.compile(r"^[A-Za-z][A-Za-z .#/&-]{0,30}:\s*\S|^(?:ref|trace|trn|conf)\b", re.IGNORECASE)

CATEGORY_RULES = {
    "credit": [
        ("Zelle Payment", re.compile(r"zelle", re.IGNORECASE)),
        ("Remote Deposit", re.compile(r"remote.*deposit|mobile deposit", re.IGNORECASE)),
        ("ATM Deposit", re.compile(r"atm.*deposit", re.IGNORECASE)),
        ("ACH Credit", re.compile(r"orig co name|ach credit", re.IGNORECASE)),
        ("Card Return", re.compile(r"purchase return|refund", re.IGNORECASE)),
        ("Payroll", re.compile(r"payroll|salary", re.IGNORECASE)),
    ],
    "debit": [
        ("Overdraft Fee", re.compile(r"overdraft|\bnsf\b|insufficient", re.IGNORECASE)),
        ("Service Fee", re.compile(r"service (?:fee|charge)|monthly fee", re.IGNORECASE)),
        ("ATM Withdrawal", re.compile(r"\batm\b", re.IGNORECASE)),
        ("Card Purchase", re.compile(r"card purchase|pos purchase|debit card", re.IGNORECASE)),
        ("Zelle Payment", re.compile(r"zelle", re.IGNORECASE)),
        ("Online Transfer", re.compile(r"online transfer|transfer to", re.IGNORECASE)),
        ("ACH Payment", re.compile(r"orig co name|ach debit|ach pmt", re.IGNORECASE)),
        ("Check", re.compile(r"\bcheck\b|\bchk\b", re.IGNORECASE)),
    ],
}


# ---------------------------------------------------------------------------
# Amount grammar
# ---------------------------------------------------------------------------


def parse_amount_token(token: str) -> Optional[int]:
    """
    Parse a single amount token into absolute cents.

    Accepts an optional sign or parentheses, optional ``$``, thousands
    separators and 0-2 decimal digits. A bare integer (no ``$``, no comma
    grouping, no decimal point) is treated as a reference number, not an amount.
    """
    match = AMOUNT_PATTERN.match(token)
    if not match:
        return None
    frac = match.group("frac")
    if "$" not in token and "," not in token and frac is None:
        return None
    whole = int(match.group("whole").replace(",", ""))
    return whole * 100 + int((frac or "0").ljust(2, "0"))


def is_negative_token(token: str) -> bool:
    return token.startswith(("-", "(")) or token.endswith("-") or "-$" in token


def split_trailing_amount(text: str) -> Tuple[str, Optional[int]]:
    """Take the rightmost amount-shaped token out of text: (description, cents)"""
    tokens = text.split()
    for index in range(len(tokens) - 1, -1, -1):
        cents = parse_amount_token(tokens[index])
        if cents is not None:
            description = " ".join(tokens[:index] + tokens[index + 1:])
            return description, cents
    return text.strip(), None


# ---------------------------------------------------------------------------
# Line matchers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LineMatch:
    """Typed result of a matcher; amount is absolute cents or None when absent"""

    date_token: str
    description: str
    amount_cents: Optional[int]
    matcher: str
    balance_cents: Optional[int] = None


class LineMatcher(Protocol):
    name: str

    def match(self, line: str) -> Optional[LineMatch]:
        ...


class RegexLineMatcher:
    """Fixed single-line layout described by one regex with named groups"""

    def __init__(self, name: str, pattern: str):
        self.name = name
        self.pattern = re.compile(pattern)

    def match(self, line: str) -> Optional[LineMatch]:
        found = self.pattern.match(line)
        if not found:
            return None
        amount = parse_amount_token(found.group("amount"))
        if amount is None:
            return None
        balance = None
        if "balance" in self.pattern.groupindex and found.group("balance"):
            balance = parse_amount_token(found.group("balance"))
        return LineMatch(
            date_token=found.group("date"),
            description=found.group("description").strip(),
            amount_cents=amount,
            matcher=self.name,
            balance_cents=balance,
        )


class GenericLineMatcher:
    """Leading date token, rightmost amount token wins, bounded line length"""

    name = "generic"

    def __init__(self, max_line_length: int):
        self.max_line_length = max_line_length

    def match(self, line: str) -> Optional[LineMatch]:
        if len(line) > self.max_line_length:
            return None
        token, rest = split_date_token(line)
        if token is None:
            return None
        description, amount = split_trailing_amount(rest)
        return LineMatch(date_token=token, description=description, amount_cents=amount, matcher=self.name)


BANK_MATCHERS = {
    "chase": [
        RegexLineMatcher(
            "chase",
            r"^(?P<date>\d{2}/\d{2})\s+(?P<description>.+?)\s+(?P<amount>-?\$?(?:\d{1,3}(?:,\d{3})+|\d+)\.\d{2})$",
        ),
    ],
    "bank_of_america": [
        RegexLineMatcher(
            "bank_of_america",
            r"^(?P<date>\d{2}/\d{2}/\d{2})\s+(?P<description>.+?)\s+(?P<amount>-?(?:\d{1,3}(?:,\d{3})+|\d+)\.\d{2})$",
        ),
    ],
    "wells_fargo": [
        RegexLineMatcher(
            "wells_fargo",
            r"^(?P<date>\d{1,2}/\d{1,2})\s+(?P<description>.+?)\s+(?P<amount>(?:\d{1,3}(?:,\d{3})+|\d+)\.\d{2})"
            r"\s+(?P<balance>-?(?:\d{1,3}(?:,\d{3})+|\d+)\.\d{2})$",
        ),
    ],
}

DEFAULT_BANK_ORDER = ["wells_fargo", "bank_of_america", "chase"]


def normalize_bank(name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    key = re.sub(r"[^a-z0-9]+", "_", name.strip().lower()).strip("_")
    return BANK_ALIASES.get(key, key)


def detect_bank(text: str) -> Optional[str]:
    """Best-effort bank name detection from statement text"""
    for bank, pattern in BANK_PATTERNS.items():
        if pattern.search(text):
            return bank
    return None


def build_matcher_chain(bank: Optional[str], policy: ExtractionPolicy) -> List[LineMatcher]:
    """Hinted bank first, remaining fixed layouts next, generic heuristic last"""
    order = list(DEFAULT_BANK_ORDER)
    if bank in BANK_MATCHERS:
        order.remove(bank)
        order.insert(0, bank)
    chain: List[LineMatcher] = []
    for key in order:
        chain.extend(BANK_MATCHERS[key])
    chain.append(GenericLineMatcher(policy.max_line_length))
    return chain


def match_line(chain: Iterable[LineMatcher], line: str) -> Optional[LineMatch]:
    for matcher in chain:
        result = matcher.match(line)
        if result is not None:
            return result
    return None


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


@dataclass
class _Record:
    """Transaction being assembled from one or more lines"""

    date: date
    page: int
    line_number: int
    section: Optional[str]
    parts: List[str]
    raw_lines: List[str]
    amount_cents: Optional[int] = None
    continuation_lines: int = 0


@dataclass
class _Tally:
    matched: int = 0
    unmatched: int = 0
    skipped: int = 0
    discarded: int = 0
    warnings: List[ParseWarning] = field(default_factory=list)

    def unmatched_line(self, page: int, line_number: int, text: str, reason: str) -> None:
        self.unmatched += 1
        self.warnings.append(ParseWarning(page=page, line_number=line_number, text=text, reason=reason))


def split_pages(text: StatementText) -> List[str]:
    """Normalize extractor input into a list of page strings"""
    if isinstance(text, str):
        pages = text.split("\f")
    elif isinstance(text, (list, tuple)) and all(isinstance(page, str) for page in text):
        pages = list(text)
    else:
        raise UnreadableStatementError("Statement text must be a string or a list of page strings")

    while len(pages) > 1 and not pages[-1].strip():
        pages.pop()

    joined = "".join(pages)
    if not joined.strip():
        raise UnreadableStatementError("Statement text is empty")

    printable = sum(1 for ch in joined if ch.isprintable() or ch in "\n\r\t\f")
    if printable / len(joined) < 0.5:
        raise UnreadableStatementError("Statement content is not text")
    return pages


def statement_period_start(line: str) -> Optional[Tuple[int, Optional[int]]]:
    """
    (year, month) where the statement period starts, or None if the line is not
    a period header.

    A header either opens with a period label ("Statement Period:") or is a
    bare "<date> through|to|- <date>" range with nothing else on the line, so
    transaction lines never qualify. A start date without its own year takes
    the end date's year, minus one when the period wraps past December.
    """
    labelled = PERIOD_LABEL.match(line)
    body = line[labelled.end():] if labelled else line
    body = re.sub(r"^from\s+", "", body, flags=re.IGNORECASE)
    parts = PERIOD_SEPARATOR.split(body, maxsplit=1)

    if len(parts) == 2:
        start_token, start_rest = split_date_token(parts[0].strip())
        end_token, end_rest = split_date_token(parts[1].strip())
        if start_token is not None and end_token is not None and (labelled or not (start_rest or end_rest)):
            years = [int(y) for y in FOUR_DIGIT_YEAR.findall(line)]
            fallback_year = min(years) if years else date.today().year
            end = parse_date_token(end_token, fallback_year)
            if token_has_year(start_token):
                start = parse_date_token(start_token, fallback_year)
            elif end is not None:
                start = parse_date_token(start_token, end.year)
                if start is not None and start > end:
                    start = parse_date_token(start_token, end.year - 1)
            else:
                start = None
            if start is not None:
                return start.year, start.month

    if labelled:
        years = FOUR_DIGIT_YEAR.findall(body)
        if years:
            return min(int(y) for y in years), None
    return None


def infer_statement_period(pages: Sequence[str]) -> Tuple[int, Optional[int]]:
    """
    Year (and month, when known) the statement period starts in.

    Only period header lines are consulted, then the earliest full date on
    lines that are not transactions, then the current year.
    """
    lines = [" ".join(raw.split()) for page in pages for raw in page.splitlines()]
    for line in lines:
        start = statement_period_start(line)
        if start is not None:
            return start
    years = []
    for line in lines:
        token, _ = split_date_token(line)
        if token is not None:
            continue
        years.extend(int(a or b) for a, b in FULL_DATE_YEAR.findall(line))
    if years:
        return min(years), None
    fallback = date.today().year
    logger.warning("No year found in statement text, assuming current year", extra={"year": fallback})
    return fallback, None


def section_for_header(line: str) -> Optional[str]:
    for pattern, section in SECTION_HEADERS:
        if pattern.fullmatch(line):
            return section
    return None


def categorize(description: str, txn_type: str) -> Optional[str]:
    for category, pattern in CATEGORY_RULES.get(txn_type, []):
        if pattern.search(description):
            return category
    return None


def _capture_balance(line: str) -> Tuple[Optional[str], Optional[int]]:
    """Recognize opening/closing balance summary lines"""
    for kind, pattern in (("opening", OPENING_BALANCE), ("closing", CLOSING_BALANCE)):
        if pattern.search(line):
            tokens = line.split()
            for token in reversed(tokens):
                cents = parse_amount_token(token)
                if cents is not None:
                    return kind, -cents if is_negative_token(token) else cents
            return kind, None
    return None, None


def _is_noise(line: str) -> bool:
    return any(pattern.search(line) for pattern in NOISE_PATTERNS)


def _resolve_date(
    token: str, year: int, last_month: Optional[int]
) -> Tuple[Optional[date], int, Optional[int]]:
    """
    Parse a date token, rolling the inferred year across a December/January
    boundary. Returns (date, year, last_month) with the updated running state.
    """
    parsed = parse_date_token(token, year)
    if parsed is None or token_has_year(token):
        return parsed, year, last_month
    if last_month is not None and last_month - parsed.month > 6:
        year += 1
        return parse_date_token(token, year), year, parsed.month
    if last_month is not None and parsed.month - last_month > 6:
        # Earlier section listing dates from the previous year
        return parse_date_token(token, year - 1), year, last_month
    return parsed, year, parsed.month


class TransactionExtractor:
    """Turns statement text into ordered transactions plus a parse-quality tally"""

    def __init__(self, policy: ExtractionPolicy | None = None):
        self.policy = policy or ExtractionPolicy()

    def extract(
        self,
        text: StatementText,
        bank_hint: Optional[str] = None,
        statement_year: Optional[int] = None,
    ) -> ExtractionResult:
        pages = split_pages(text)
        full_text = "\n".join(pages)
        bank = normalize_bank(bank_hint) or detect_bank(full_text)
        chain = build_matcher_chain(bank, self.policy)
        if statement_year is not None:
            year, last_month = statement_year, None
        else:
            # The period's first month seeds the December/January rollover
            year, last_month = infer_statement_period(pages)

        tally = _Tally()
        transactions: List[Transaction] = []
        opening: Optional[int] = None
        closing: Optional[int] = None
        section: Optional[str] = None
        current: Optional[_Record] = None

        def close(record: Optional[_Record], reason: str) -> None:
            if record is None:
                return
            if record.amount_cents is None:
                tally.discarded += 1
                for offset, raw in enumerate(record.raw_lines):
                    tally.unmatched_line(record.page, record.line_number + offset, raw, reason)
                return
            tally.matched += len(record.raw_lines)
            transactions.append(self._build_transaction(record))

        for page_number, page_text in enumerate(pages, start=1):
            for line_number, raw in enumerate(page_text.splitlines(), start=1):
                line = " ".join(raw.split())
                if not line:
                    if current is not None and current.amount_cents is not None:
                        close(current, "")
                        current = None
                    tally.skipped += 1
                    continue

                kind, cents = _capture_balance(line)
                if kind is not None:
                    if kind == "opening" and opening is None:
                        opening = cents
                    elif kind == "closing" and closing is None:
                        closing = cents
                    tally.skipped += 1
                    continue

                if PAGE_FRACTION.fullmatch(line) or statement_period_start(line) is not None:
                    tally.skipped += 1
                    continue

                token, _ = split_date_token(line)
                if token is None:
                    header = section_for_header(line)
                    if header is not None:
                        close(current, "record interrupted by section header")
                        current = None
                        section = header
                        tally.skipped += 1
                        continue
                    if _is_noise(line):
                        tally.skipped += 1
                        continue
                    current = self._continue_record(current, line, page_number, line_number, tally, close)
                    continue

                match = match_line(chain, line)
                parsed = None
                if match is not None:
                    parsed, year, last_month = _resolve_date(match.date_token, year, last_month)
                if parsed is None:
                    tally.unmatched_line(page_number, line_number, line, "unparseable date or line too long")
                    continue

                close(current, "no amount found before next dated line")
                current = _Record(
                    date=parsed,
                    page=page_number,
                    line_number=line_number,
                    section=section,
                    parts=[match.description] if match.description else [],
                    raw_lines=[line],
                    amount_cents=match.amount_cents,
                )

            close(current, "no amount found before page break")
            current = None

        transactions.sort(key=lambda t: t.date)
        quality = ParseQuality(
            matched_lines=tally.matched,
            unmatched_lines=tally.unmatched,
            skipped_lines=tally.skipped,
            discarded_records=tally.discarded,
        )
        logger.info(
            "Statement text extracted",
            extra={
                "step": "extraction",
                "bank": bank,
                "pages": len(pages),
                "transactions": len(transactions),
                "unmatched_lines": quality.unmatched_lines,
                "parse_quality": quality.ratio,
            },
        )
        return ExtractionResult(
            transactions=transactions,
            quality=quality,
            warnings=tally.warnings,
            page_count=len(pages),
            bank=bank,
            opening_balance_cents=opening,
            closing_balance_cents=closing,
        )

    def _continue_record(
        self,
        current: Optional[_Record],
        line: str,
        page_number: int,
        line_number: int,
        tally: _Tally,
        close: Callable[[Optional[_Record], str], None],
    ) -> Optional[_Record]:
        """Apply an undated line to the open record; returns the record still open"""
        if current is None:
            tally.unmatched_line(page_number, line_number, line, "no leading date")
            return None

        description, amount = split_trailing_amount(line)

        if current.amount_cents is not None:
            # Resolved record: only reference detail without an amount may extend it
            if (
                amount is not None
                or not DETAIL_LINE.match(line)
                or current.continuation_lines >= self.policy.max_continuation_lines
            ):
                close(current, "")
                tally.unmatched_line(page_number, line_number, line, "no leading date")
                return None
            self._append(current, description, line)
            return current

        self._append(current, description, line)
        if amount is not None:
            current.amount_cents = amount
            return current
        if current.continuation_lines >= self.policy.max_continuation_lines:
            close(current, f"no amount within {self.policy.max_continuation_lines} continuation lines")
            return None
        return current

    @staticmethod
    def _append(record: _Record, description: str, line: str) -> None:
        if description:
            record.parts.append(description)
        record.raw_lines.append(line)
        record.continuation_lines += 1

    def _build_transaction(self, record: _Record) -> Transaction:
        description = " ".join(record.parts)[: self.policy.max_description_length]
        if record.section is not None:
            txn_type = record.section
        else:
            txn_type = "credit" if CREDIT_KEYWORDS.search(description) else "debit"
        amount = record.amount_cents if txn_type == "credit" else -record.amount_cents
        return Transaction(
            date=record.date,
            amount_cents=amount,
            type=txn_type,
            description=description,
            page=record.page,
            raw_text="\n".join(record.raw_lines),
            category=categorize(description, txn_type),
        )


def extract_transactions(
    text: StatementText,
    bank_hint: Optional[str] = None,
    statement_year: Optional[int] = None,
    policy: ExtractionPolicy | None = None,
) -> ExtractionResult:
    """Main entry point for the extractor"""
    return TransactionExtractor(policy).extract(text, bank_hint=bank_hint, statement_year=statement_year)
