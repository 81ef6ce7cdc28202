"""Page-completeness validation for extracted statement text"""

import re
from typing import Iterable, List, Optional, Sequence, Tuple

from veritas_gateway.domain.models import IncompleteStatementWarning, PageMarker, StatementPageInfo
from veritas_gateway.domain.policies import PagePolicy

PAGE_OF = re.compile(r"\bpage\s*(\d{1,4})\s*(?:of|/)\s*(\d{1,4})\b", re.IGNORECASE)
PAGE_FRACTION_LINE = re.compile(r"^\s*(\d{1,4})\s*/\s*(\d{1,4})\s*$")
PAGE_ONLY = re.compile(r"\bpage\s*(\d{1,4})\b(?!\s*(?:of|/))", re.IGNORECASE)

# Checked in order; the first source with any accepted marker is used, except
# that bare "Page N" markers within the stated total join "Page N of M" ones
MARKER_SOURCES = ("page_of", "fraction", "page")


def _accept(number: int, total: Optional[int], ceiling: int) -> bool:
    if number < 1 or number > ceiling:
        return False
    if total is not None and (total < number or total > ceiling):
        return False
    return True


def find_page_markers(pages: Sequence[str], policy: PagePolicy | None = None) -> List[PageMarker]:
    """
    Collect page markers from every page of the statement.

    "N/M" is only accepted as a whole line so that dates (01/15) and amounts
    inside transaction lines are never read as page numbers. All markers must
    satisfy 1 <= N <= M <= page_ceiling.
    """
    policy = policy or PagePolicy()
    found = {source: [] for source in MARKER_SOURCES}

    for physical, text in enumerate(pages, start=1):
        for line in text.splitlines():
            for match in PAGE_OF.finditer(line):
                number, total = int(match.group(1)), int(match.group(2))
                if _accept(number, total, policy.page_ceiling):
                    found["page_of"].append(PageMarker(number, total, "page_of", physical))

            fraction = PAGE_FRACTION_LINE.match(line)
            if fraction:
                number, total = int(fraction.group(1)), int(fraction.group(2))
                if _accept(number, total, policy.page_ceiling):
                    found["fraction"].append(PageMarker(number, total, "fraction", physical))

            for match in PAGE_ONLY.finditer(line):
                number = int(match.group(1))
                if _accept(number, None, policy.page_ceiling):
                    found["page"].append(PageMarker(number, None, "page", physical))

    if found["page_of"]:
        # Later pages often print a bare "Page N" once the total has been stated
        total = max(m.stated_total for m in found["page_of"])
        stated = {m.page_number for m in found["page_of"]}
        bare = [m for m in found["page"] if m.page_number <= total and m.page_number not in stated]
        return found["page_of"] + bare

    for source in MARKER_SOURCES:
        if found[source]:
            return found[source]
    return []


def find_missing_pages(discovered: Iterable[int], expected_pages: Optional[int]) -> Tuple[int, ...]:
    """{1..expected} minus discovered, ascending"""
    if not expected_pages:
        return ()
    return tuple(sorted(set(range(1, expected_pages + 1)) - set(discovered)))


def find_sequence_gaps(discovered: Iterable[int]) -> Tuple[Tuple[int, int], ...]:
    """Pairs of consecutive discovered page numbers that differ by more than one"""
    ordered = sorted(set(discovered))
    return tuple((a, b) for a, b in zip(ordered, ordered[1:]) if b - a > 1)


def validate_pages(
    pages: Sequence[str],
    physical_page_count: Optional[int] = None,
    policy: PagePolicy | None = None,
) -> StatementPageInfo:
    """
    Build the completeness report for one statement.

    Never raises on content: missing pages only produce an
    IncompleteStatementWarning on the report.
    """
    policy = policy or PagePolicy()
    total_pages = physical_page_count if physical_page_count is not None else len(pages)
    markers = find_page_markers(pages, policy)

    if markers:
        discovered = tuple(sorted({m.page_number for m in markers}))
        totals = [m.stated_total for m in markers if m.stated_total is not None]
        expected = max(totals) if totals else None
        source = markers[0].source
    else:
        discovered = tuple(range(1, total_pages + 1))
        expected = None
        source = "assumed"

    missing = find_missing_pages(discovered, expected)
    gaps = find_sequence_gaps(discovered)

    warnings: Tuple[IncompleteStatementWarning, ...] = ()
    if missing or gaps:
        parts = []
        if missing:
            parts.append(f"missing pages {', '.join(str(p) for p in missing)} of {expected}")
        if gaps:
            parts.append(
                "page sequence jumps " + ", ".join(f"{a}->{b}" for a, b in gaps)
            )
        warnings = (
            IncompleteStatementWarning(
                missing_pages=missing,
                sequence_gaps=gaps,
                message="Statement appears incomplete: " + "; ".join(parts),
            ),
        )

    return StatementPageInfo(
        total_pages=total_pages,
        discovered_pages=discovered,
        expected_pages=expected,
        missing_pages=missing,
        sequence_gaps=gaps,
        marker_source=source,
        warnings=warnings,
    )
