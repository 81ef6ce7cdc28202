"""Unit tests for transaction extraction"""

import pytest
from datetime import date
from veritas_gateway.domain.exceptions import UnreadableStatementError, ValidationError
from veritas_gateway.domain.extraction import (
    GenericLineMatcher,
    build_matcher_chain,
    detect_bank,
    extract_transactions,
    match_line,
    normalize_bank,
    parse_amount_token,
    split_pages,
    split_trailing_amount,
    statement_period_start,
)
from veritas_gateway.domain.policies import ExtractionPolicy


def test_parse_amount_token_grammar():
    """Amount grammar: optional $, thousands separators, 0-2 decimals"""
    assert parse_amount_token("1,892.00") == 189200
    assert parse_amount_token("$45") == 4500
    assert parse_amount_token("$1,234") == 123400
    assert parse_amount_token("12.5") == 1250
    assert parse_amount_token("(45.00)") == 4500
    assert parse_amount_token("-3.10") == 310


def test_parse_amount_token_rejects_reference_numbers():
    """Bare integers are check or reference numbers, not amounts"""
    assert parse_amount_token("1043") is None
    assert parse_amount_token("ID:1234") is None
    assert parse_amount_token("12,34.00") is None


def test_split_trailing_amount_rightmost_wins():
    """Rightmost amount-shaped token is the amount, the rest is description"""
    assert split_trailing_amount("Check 1043 250.00") == ("Check 1043", 25000)
    assert split_trailing_amount("Coffee 4.50 5.25") == ("Coffee 4.50", 525)
    assert split_trailing_amount("No amount here") == ("No amount here", None)


def test_ach_multiline_record_resolves_to_one_transaction(ach_statement: str):
    """Three description lines followed by an amount-only line give one transaction"""
    result = extract_transactions(ach_statement, statement_year=2024)

    assert len(result.transactions) == 1
    txn = result.transactions[0]
    assert txn.amount_cents == 189200
    assert txn.type == "credit"
    assert txn.date == date(2024, 1, 5)
    assert txn.description == (
        "Orig CO Name:Acme Corp Orig ID:1234567890 Desc Date:010524 CO Entry Descr:Payroll Sec:CCD"
    )
    assert txn.raw_text.count("\n") == 3
    assert result.quality.matched_lines == 4
    assert result.quality.unmatched_lines == 0


def test_continuation_within_bound_resolves():
    """A record may absorb up to six undated lines before its amount"""
    lines = ["Withdrawals", "02/01 Wire Transfer Out"]
    lines += [f"Beneficiary detail {letter}" for letter in "ABCDE"]
    lines.append("2,500.00")

    result = extract_transactions("\n".join(lines), statement_year=2024)

    assert len(result.transactions) == 1
    assert result.transactions[0].amount_cents == -250000


def test_continuation_beyond_bound_is_discarded():
    """Past the continuation bound the record is dropped and counted unmatched"""
    lines = ["Withdrawals", "02/01 Wire Transfer Out"]
    lines += [f"Beneficiary detail {letter}" for letter in "ABCDEF"]
    lines.append("2,500.00")

    result = extract_transactions("\n".join(lines), statement_year=2024)

    assert result.transactions == []
    assert result.quality.discarded_records == 1
    # dated line + six continuations + the orphaned amount line
    assert result.quality.unmatched_lines == 8
    assert result.quality.matched_lines == 0


def test_continuation_bound_comes_from_policy():
    """The continuation bound is configurable"""
    text = "\n".join(["Withdrawals", "02/01 Wire Transfer Out", "Detail A", "Detail B", "75.00"])

    strict = extract_transactions(text, statement_year=2024, policy=ExtractionPolicy(max_continuation_lines=2))
    relaxed = extract_transactions(text, statement_year=2024)

    assert strict.transactions == []
    assert len(relaxed.transactions) == 1


def test_sign_comes_from_section_not_literal_minus():
    """Deposits are positive and withdrawals negative whatever sign is printed"""
    text = "\n".join(
        [
            "DEPOSITS AND ADDITIONS",
            "01/03 Vendor Refund -45.00",
            "ELECTRONIC WITHDRAWALS",
            "01/04 Utility Co 120.00",
        ]
    )

    result = extract_transactions(text, statement_year=2024)

    assert [t.amount_cents for t in result.transactions] == [4500, -12000]
    assert [t.type for t in result.transactions] == ["credit", "debit"]


def test_sign_from_keywords_outside_sections():
    """Without a section header, credit keywords decide the type"""
    text = "\n".join(["01/03 Payroll Deposit ACME 1,200.00", "01/04 Coffee Shop 4.50"])

    result = extract_transactions(text, statement_year=2024)

    assert [t.type for t in result.transactions] == ["credit", "debit"]
    assert result.transactions[1].amount_cents == -450


def test_transactions_sorted_by_date():
    """Output is ordered by date even when sections are not"""
    text = "\n".join(
        [
            "Deposits",
            "01/20 Mobile Deposit 300.00",
            "Withdrawals",
            "01/02 Grocery Store 80.00",
            "01/15 Gas Station 40.00",
        ]
    )

    result = extract_transactions(text, statement_year=2024)

    dates = [t.date for t in result.transactions]
    assert dates == sorted(dates)
    assert dates[0] == date(2024, 1, 2)


def test_year_rolls_forward_across_january():
    """December then January within one statement crosses the year"""
    text = "\n".join(["Deposits", "12/30 Mobile Deposit 100.00", "01/02 Mobile Deposit 100.00"])

    result = extract_transactions(text, statement_year=2023)

    assert [t.date for t in result.transactions] == [date(2023, 12, 30), date(2024, 1, 2)]


def test_earlier_december_section_uses_previous_year():
    """A later section listing December dates after January ones stays in the old year"""
    text = "\n".join(["Deposits", "01/03 Mobile Deposit 100.00", "Withdrawals", "12/29 Card Purchase 20.00"])

    result = extract_transactions(text, statement_year=2024)

    assert result.transactions[0].date == date(2023, 12, 29)
    assert result.transactions[1].date == date(2024, 1, 3)


def test_year_inferred_from_statement_period(healthy_statement: str):
    """Statement period line supplies the year"""
    result = extract_transactions(healthy_statement)

    assert all(t.date.year == 2024 for t in result.transactions)


def test_period_spanning_new_year_uses_start_year():
    """A December-January period dates December in the start year"""
    text = "\n".join(
        [
            "JPMorgan Chase Bank",
            "December 15, 2023 through January 12, 2024",
            "DEPOSITS AND ADDITIONS",
            "12/20 Payroll Deposit 1,000.00",
            "01/05 Payroll Deposit 1,000.00",
        ]
    )

    result = extract_transactions(text)

    assert [t.date for t in result.transactions] == [date(2023, 12, 20), date(2024, 1, 5)]


def test_period_start_month_orders_january_first_sections():
    """January listed before December still lands on both sides of the new year"""
    text = "\n".join(
        [
            "Statement Period: 12/15/2023 - 01/12/2024",
            "Deposits",
            "01/05 Mobile Deposit 100.00",
            "Withdrawals",
            "12/20 Card Purchase 20.00",
        ]
    )

    result = extract_transactions(text)

    assert [t.date for t in result.transactions] == [date(2023, 12, 20), date(2024, 1, 5)]


def test_year_never_read_from_transaction_text():
    """Account suffixes like ...2017 in a description are not the statement year"""
    text = "\n".join(
        [
            "JPMorgan Chase Bank",
            "DEPOSITS AND ADDITIONS",
            "01/05 Online Transfer From Chk ...2017 500.00",
            "Statement generated 01/31/2024",
        ]
    )

    result = extract_transactions(text)

    assert [t.date for t in result.transactions] == [date(2024, 1, 5)]


def test_headerless_statement_takes_earliest_full_date_year():
    text = "\n".join(
        [
            "Printed 01/02/2025",
            "DEPOSITS AND ADDITIONS",
            "12/30 Payroll Deposit 500.00",
            "",
            "Account summary as of 12/31/2024",
        ]
    )

    result = extract_transactions(text)

    assert [t.date for t in result.transactions] == [date(2024, 12, 30)]


@pytest.mark.parametrize(
    "line,expected",
    [
        ("Statement Period: January 1, 2024 through January 31, 2024", (2024, 1)),
        ("December 15, 2023 through January 12, 2024", (2023, 12)),
        ("For the period Dec 15 to Jan 12, 2024", (2023, 12)),
        ("Statement Period 2024", (2024, None)),
        ("01/05 Online Transfer From Chk ...2017 500.00", None),
        ("01/05 Transfer to Savings 100.00", None),
        ("From Chk ...2017", None),
    ],
)
def test_statement_period_start(line, expected):
    assert statement_period_start(line) == expected


def test_footer_prose_does_not_extend_last_transaction():
    """Undated prose after a complete record is left out of it"""
    text = "\n".join(
        [
            "DEPOSITS AND ADDITIONS",
            "01/05 Online Transfer From Chk ...2017 500.00",
            "Statement generated 01/31/2024",
        ]
    )

    result = extract_transactions(text, statement_year=2024)

    txn = result.transactions[0]
    assert txn.raw_text == "01/05 Online Transfer From Chk ...2017 500.00"
    assert txn.description == "Online Transfer From Chk ...2017"
    assert [w.text for w in result.warnings] == ["Statement generated 01/31/2024"]


def test_detail_lines_extend_resolved_record_until_blank_line():
    """Reference lines after the amount belong to the record; a blank line ends it"""
    text = "\n".join(
        [
            "DEPOSITS AND ADDITIONS",
            "01/05 Orig CO Name:Acme Corp 1,892.00",
            "Orig ID:1234567890 Desc Date:010524",
            "",
            "Trn: 0042",
        ]
    )

    result = extract_transactions(text, statement_year=2024)

    assert len(result.transactions) == 1
    assert result.transactions[0].description == "Orig CO Name:Acme Corp Orig ID:1234567890 Desc Date:010524"
    assert result.quality.matched_lines == 2
    assert result.quality.unmatched_lines == 1


def test_named_month_dates():
    """Generic heuristic accepts 'Mon DD' date tokens"""
    result = extract_transactions("Jan 5 Coffee Shop $4.50\nFeb 3 Hardware Store 19.99", statement_year=2024)

    assert [t.date for t in result.transactions] == [date(2024, 1, 5), date(2024, 2, 3)]


def test_healthy_statement_extraction(healthy_statement: str):
    """Two-page Chase statement: balances captured and page markers skipped"""
    result = extract_transactions(healthy_statement)

    assert result.bank == "chase"
    assert result.page_count == 2
    assert len(result.transactions) == 25
    assert result.opening_balance_cents == 1_200_000
    assert sum(t.amount_cents for t in result.transactions) == 1_200_000
    # Only the bank name line is not understood
    assert result.quality.unmatched_lines == 1
    assert result.quality.ratio >= 0.9


def test_bad_lines_are_recorded_not_raised():
    """Unparseable lines become warnings; extraction still succeeds"""
    text = "\n".join(["Deposits", "13/45 Impossible Date 10.00", "Random marketing text", "01/05 Deposit 10.00"])

    result = extract_transactions(text, statement_year=2024)

    assert len(result.transactions) == 1
    reasons = [w.reason for w in result.warnings]
    assert "unparseable date or line too long" in reasons
    assert "no leading date" in reasons
    assert result.quality.unmatched_lines == 2


def test_page_fraction_line_is_not_a_date():
    """A standalone '2/6' page marker is skipped, not read as February 6"""
    text = "Deposits\n01/05 Deposit 10.00\n2/6"

    result = extract_transactions(text, statement_year=2024)

    assert len(result.transactions) == 1
    assert result.quality.unmatched_lines == 0


def test_categories_assigned():
    """Keyword table assigns a best-effort category"""
    text = "\n".join(["Deposits", "01/05 Zelle Payment From J Smith 50.00", "Withdrawals", "01/06 ATM Withdrawal 60.00"])

    result = extract_transactions(text, statement_year=2024)

    assert [t.category for t in result.transactions] == ["Zelle Payment", "ATM Withdrawal"]
    recategorized = result.transactions[1].with_category("Cash")
    assert recategorized.category == "Cash"
    assert result.transactions[1].category == "ATM Withdrawal"


@pytest.mark.parametrize("text", ["", "   \n\t", "\f\f", 12345, None, b"binary"])
def test_unreadable_input_raises(text):
    """Only wholly unreadable input is a hard error"""
    with pytest.raises(UnreadableStatementError):
        extract_transactions(text)


def test_unreadable_is_a_validation_error():
    with pytest.raises(ValidationError):
        extract_transactions("\x00\x01\x02\x03\x04\x05 ab")


def test_split_pages_accepts_page_lists():
    """Pages may be passed as a list; trailing blank pages are dropped"""
    assert split_pages(["page one", "page two", "  "]) == ["page one", "page two"]
    assert split_pages("a\fb") == ["a", "b"]


def test_bank_detection_and_aliases():
    assert detect_bank("Wells Fargo Bank, N.A.") == "wells_fargo"
    assert detect_bank("Nothing here") is None
    assert normalize_bank("Bank of America") == "bank_of_america"
    assert normalize_bank("BofA") == "bank_of_america"
    assert normalize_bank(None) is None


def test_bank_specific_matchers_run_first():
    """Hinted bank matcher wins; unknown layouts fall back to generic"""
    chain = build_matcher_chain("wells_fargo", ExtractionPolicy())

    wells = match_line(chain, "1/5 Deposit 1,000.00 2,500.00")
    boa = match_line(chain, "01/05/24 Payroll 1892.00")
    generic = match_line(chain, "2024-01-05 Payroll $1,892")

    assert wells.matcher == "wells_fargo"
    assert wells.amount_cents == 100000
    assert wells.balance_cents == 250000
    assert boa.matcher == "bank_of_america"
    assert boa.amount_cents == 189200
    assert generic.matcher == "generic"
    assert generic.amount_cents == 189200


def test_generic_matcher_line_length_bound():
    """Overlong lines are not transactions for the generic heuristic"""
    matcher = GenericLineMatcher(max_line_length=160)

    assert matcher.match("01/05 " + "x " * 100 + "$10.00") is None
    assert matcher.match("01/05 Short line $10.00").amount_cents == 1000
