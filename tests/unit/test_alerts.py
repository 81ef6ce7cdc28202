"""Unit tests for the alerts engine"""

import pytest
from dataclasses import replace
from datetime import date, datetime, timezone
from veritas_gateway.domain import alerts as alerts_module
from veritas_gateway.domain.alerts import (
    format_cents,
    generate_alerts,
    high_nsf_count,
    name_similarity,
    normalize_business_name,
)
from veritas_gateway.domain.extraction import extract_transactions
from veritas_gateway.domain.metrics import calculate_financial_metrics
from veritas_gateway.domain.models import (
    Alert,
    AlertCode,
    ApplicationClaims,
    BusinessVerification,
    ErrorEvidence,
    Severity,
    StatementReport,
)
from veritas_gateway.domain.scoring import calculate_risk_score

NOW = datetime(2024, 4, 1, 12, 0, tzinfo=timezone.utc)


def report_for(transactions, opening_balance_cents=0):
    metrics = calculate_financial_metrics(transactions, opening_balance_cents)
    return StatementReport(metrics=metrics, score=calculate_risk_score(metrics), transactions=tuple(transactions))


@pytest.fixture
def quiet_report(make_transaction):
    """30-day statement with $24,000 deposits and nothing alarming"""
    txns = [make_transaction(0, 1_200_000, "Deposit"), make_transaction(29, 1_200_000, "Deposit")]
    return report_for(txns, opening_balance_cents=500_000)


@pytest.fixture
def registered():
    return BusinessVerification(registration_date=date(2020, 3, 1), is_active=True, status="ACTIVE")


def codes(alerts):
    return [a.code for a in alerts]


def test_quiet_statement_has_no_alerts(quiet_report):
    assert generate_alerts([quiet_report], now=NOW) == []


def test_nsf_threshold_is_inclusive(quiet_report):
    """Three NSF events alert, two do not"""
    at_threshold = replace(quiet_report, metrics=replace(quiet_report.metrics, nsf_count=3))
    below = replace(quiet_report, metrics=replace(quiet_report.metrics, nsf_count=2))

    alerts = generate_alerts([at_threshold], now=NOW)

    assert codes(alerts) == [AlertCode.HIGH_NSF_COUNT]
    assert alerts[0].severity == Severity.HIGH
    assert alerts[0].evidence.observed == 3
    assert alerts[0].evidence.deviation == 0
    assert generate_alerts([below], now=NOW) == []


def test_low_average_balance_is_strict(quiet_report):
    """Exactly $500.00 does not alert; $499.99 does"""
    at_threshold = replace(quiet_report, metrics=replace(quiet_report.metrics, average_daily_balance_cents=50_000))
    below = replace(quiet_report, metrics=replace(quiet_report.metrics, average_daily_balance_cents=49_999))

    assert AlertCode.LOW_AVERAGE_BALANCE not in codes(generate_alerts([at_threshold], now=NOW))
    alerts = generate_alerts([below], now=NOW)
    assert codes(alerts) == [AlertCode.LOW_AVERAGE_BALANCE]
    assert alerts[0].severity == Severity.MEDIUM
    assert alerts[0].evidence.deviation == 1


def test_risky_statement_alerts_sorted_by_severity(risky_statement: str):
    """CRITICAL first, equal severities keep rule order"""
    extraction = extract_transactions(risky_statement)
    report = report_for(extraction.transactions, extraction.opening_balance_cents)

    alerts = generate_alerts([report], now=NOW)

    assert codes(alerts) == [
        AlertCode.NEGATIVE_BALANCE_DAYS,
        AlertCode.HIGH_NSF_COUNT,
        AlertCode.HIGH_WITHDRAWAL_RATIO,
        AlertCode.LOW_VERITAS_SCORE,
        AlertCode.LOW_AVERAGE_BALANCE,
        AlertCode.NEGATIVE_CASH_FLOW,
        AlertCode.INCOME_INSTABILITY,
    ]
    assert [a.severity for a in alerts] == [
        Severity.CRITICAL,
        Severity.HIGH,
        Severity.HIGH,
        Severity.HIGH,
        Severity.MEDIUM,
        Severity.MEDIUM,
        Severity.MEDIUM,
    ]
    negative = alerts[0].evidence
    assert negative.negative_day_count == 4
    assert negative.observed == -20_500
    assert alerts[1].evidence.nsf_descriptions == ("NSF Fee", "Overdraft Fee", "Returned Item Fee")
    assert alerts[2].evidence.observed == 1.605
    assert alerts[3].evidence.threshold == 450
    assert alerts[6].evidence.observed == 50.0


def test_alert_timestamps_shared(risky_statement: str):
    extraction = extract_transactions(risky_statement)
    report = report_for(extraction.transactions, extraction.opening_balance_cents)

    alerts = generate_alerts([report])

    assert len({a.timestamp for a in alerts}) == 1
    assert alerts[0].timestamp.tzinfo is not None


def test_every_alert_carries_threshold_observed_deviation(risky_statement: str, registered):
    extraction = extract_transactions(risky_statement)
    report = report_for(extraction.transactions, extraction.opening_balance_cents)
    claims = ApplicationClaims(stated_annual_revenue_cents=100_000_000, business_start_date=date(2015, 1, 1))

    alerts = generate_alerts([report], claims=claims, verification=registered, now=NOW)

    assert len(alerts) == 9
    for alert in alerts:
        for name in ("threshold", "observed", "deviation"):
            assert hasattr(alert.evidence, name)


@pytest.mark.parametrize(
    "stated_cents,expected_alert,overstated",
    [
        (40_000_000, True, True),
        (20_000_000, True, False),
        (25_000_000, False, None),
    ],
)
def test_revenue_mismatch(quiet_report, stated_cents, expected_alert, overstated):
    """$24,000 over 30 days annualizes to $292,000; the band is 20%"""
    claims = ApplicationClaims(stated_annual_revenue_cents=stated_cents)

    alerts = generate_alerts([quiet_report], claims=claims, now=NOW)

    if not expected_alert:
        assert alerts == []
        return
    assert codes(alerts) == [AlertCode.GROSS_ANNUAL_REVENUE_MISMATCH]
    evidence = alerts[0].evidence
    assert evidence.annualized_deposits_cents == 29_200_000
    assert evidence.period_days == 30
    assert evidence.overstated is overstated
    assert evidence.threshold == 20.0


def test_revenue_rule_pools_all_statements(quiet_report):
    """Deposits and days are summed across statements before annualizing"""
    claims = ApplicationClaims(stated_annual_revenue_cents=29_200_000)

    alerts = generate_alerts([quiet_report, quiet_report], claims=claims, now=NOW)

    assert alerts == []


def test_revenue_rule_without_claims(quiet_report):
    assert generate_alerts([quiet_report], claims=ApplicationClaims(), now=NOW) == []


@pytest.mark.parametrize(
    "stated_start,severity,threshold",
    [
        (date(2018, 1, 1), Severity.CRITICAL, 24),
        (date(2019, 10, 15), Severity.MEDIUM, 3),
        (date(2020, 1, 1), None, None),
        (date(2021, 6, 1), Severity.HIGH, 12),
    ],
)
def test_time_in_business_discrepancy(quiet_report, registered, stated_start, severity, threshold):
    """Month difference to the registry date, in either direction"""
    claims = ApplicationClaims(business_start_date=stated_start)

    alerts = generate_alerts([quiet_report], claims=claims, verification=registered, now=NOW)

    if severity is None:
        assert alerts == []
        return
    assert codes(alerts) == [AlertCode.TIME_IN_BUSINESS_DISCREPANCY]
    assert alerts[0].severity == severity
    assert alerts[0].evidence.threshold == threshold


def test_time_in_business_needs_registry(quiet_report):
    claims = ApplicationClaims(business_start_date=date(2010, 1, 1))

    assert generate_alerts([quiet_report], claims=claims, now=NOW) == []


def test_inactive_business_is_critical(quiet_report):
    verification = BusinessVerification(is_active=False, status="DISSOLVED", registered_name="Acme LLC")

    alerts = generate_alerts([quiet_report], verification=verification, now=NOW)

    assert codes(alerts) == [AlertCode.BUSINESS_INACTIVE_STATUS]
    assert alerts[0].severity == Severity.CRITICAL
    assert alerts[0].evidence.status == "DISSOLVED"


def test_unknown_activity_does_not_alert(quiet_report):
    assert generate_alerts([quiet_report], verification=BusinessVerification(), now=NOW) == []


def test_failing_rule_is_dropped(monkeypatch, quiet_report):
    """One broken rule loses only its own alert"""

    def broken_rule(ctx, index, report):
        raise ZeroDivisionError("boom")

    monkeypatch.setattr(alerts_module, "STATEMENT_RULES", [broken_rule, high_nsf_count])
    report = replace(quiet_report, metrics=replace(quiet_report.metrics, nsf_count=5))
    errors = []

    alerts = generate_alerts([report], now=NOW, on_rule_error=errors.append)

    assert codes(alerts) == [AlertCode.HIGH_NSF_COUNT]
    assert len(errors) == 1
    assert errors[0].rule == "broken_rule"
    assert isinstance(errors[0].cause, ZeroDivisionError)


def test_generation_failure_yields_error_alert():
    """Bad input never raises out of the engine"""
    alerts = generate_alerts([object()], now=NOW)

    assert codes(alerts) == [AlertCode.ALERT_GENERATION_ERROR]
    assert alerts[0].severity == Severity.HIGH
    assert "StatementReport" in alerts[0].evidence.error
    assert alerts[0].timestamp == NOW


def test_statement_index_offset(risky_statement: str):
    extraction = extract_transactions(risky_statement)
    report = report_for(extraction.transactions, extraction.opening_balance_cents)

    alerts = generate_alerts([report], now=NOW, start_index=2)

    assert {a.evidence.statement_index for a in alerts} == {2}


def test_evidence_type_must_match_code():
    with pytest.raises(TypeError):
        Alert(
            code=AlertCode.HIGH_NSF_COUNT,
            severity=Severity.HIGH,
            message="mismatch",
            evidence=ErrorEvidence(threshold=None, observed=None, deviation=None, error="x"),
            timestamp=NOW,
        )


def test_format_cents():
    assert format_cents(123456) == "$1,234.56"
    assert format_cents(-500) == "-$5.00"


@pytest.mark.parametrize(
    "withdrawals_cents,severity,threshold",
    [
        (2_160_000, None, None),
        (2_160_024, Severity.MEDIUM, 0.9),
        (2_640_000, Severity.MEDIUM, 0.9),
        (2_640_024, Severity.HIGH, 1.1),
    ],
)
def test_high_withdrawal_ratio(quiet_report, withdrawals_cents, severity, threshold):
    """Withdrawals above 90% of deposits are MEDIUM, above 110% HIGH"""
    report = replace(quiet_report, metrics=replace(quiet_report.metrics, total_withdrawals_cents=withdrawals_cents))

    alerts = generate_alerts([report], now=NOW)

    if severity is None:
        assert alerts == []
        return
    assert codes(alerts) == [AlertCode.HIGH_WITHDRAWAL_RATIO]
    assert alerts[0].severity == severity
    assert alerts[0].evidence.threshold == threshold
    assert alerts[0].evidence.total_deposits_cents == 2_400_000


@pytest.mark.parametrize(
    "stability,severity,threshold",
    [
        (70.0, None, None),
        (69.9, Severity.LOW, 70.0),
        (54.9, Severity.MEDIUM, 55.0),
        (39.9, Severity.HIGH, 40.0),
    ],
)
def test_income_instability(quiet_report, stability, severity, threshold):
    components = replace(quiet_report.score.components, income_stability=stability)
    report = replace(quiet_report, score=replace(quiet_report.score, components=components))

    alerts = generate_alerts([report], now=NOW)

    if severity is None:
        assert alerts == []
        return
    assert codes(alerts) == [AlertCode.INCOME_INSTABILITY]
    assert alerts[0].severity == severity
    assert alerts[0].evidence.threshold == threshold
    assert alerts[0].evidence.deposit_count == 2


def test_income_instability_needs_deposits(quiet_report):
    components = replace(quiet_report.score.components, income_stability=10.0)
    report = replace(
        quiet_report,
        metrics=replace(quiet_report.metrics, deposit_count=0),
        score=replace(quiet_report.score, components=components),
    )

    assert generate_alerts([report], now=NOW) == []


@pytest.mark.parametrize(
    "deposits_cents,severity,threshold",
    [
        (2_000_000, None, None),
        (2_000_001, Severity.MEDIUM, 2.0),
        (3_600_000, Severity.HIGH, 3.5),
        (5_000_001, Severity.CRITICAL, 5.0),
    ],
)
def test_high_velocity_ratio(quiet_report, deposits_cents, severity, threshold):
    """Deposits turned over against a $10,000 average balance"""
    metrics = replace(quiet_report.metrics, average_daily_balance_cents=1_000_000, total_deposits_cents=deposits_cents)

    alerts = generate_alerts([replace(quiet_report, metrics=metrics)], now=NOW)

    if severity is None:
        assert alerts == []
        return
    assert codes(alerts) == [AlertCode.HIGH_VELOCITY_RATIO]
    assert alerts[0].severity == severity
    evidence = alerts[0].evidence
    assert evidence.threshold == threshold
    assert evidence.average_daily_balance_cents == 1_000_000
    assert evidence.transactions_per_day == quiet_report.metrics.velocity_ratio


def test_velocity_skipped_for_low_balances(quiet_report):
    """A balance already below $500 is reported as low, not as turnover"""
    metrics = replace(quiet_report.metrics, average_daily_balance_cents=49_999, total_deposits_cents=5_000_001)

    alerts = generate_alerts([replace(quiet_report, metrics=metrics)], now=NOW)

    assert codes(alerts) == [AlertCode.LOW_AVERAGE_BALANCE]


def test_large_one_off_deposit(make_transaction):
    """Large deposits alert unless they repeat like payroll"""
    txns = [
        make_transaction(0, 1_500_000, "Wire Transfer From Investor"),
        make_transaction(5, 1_000_000, "Deposit"),
        make_transaction(10, 1_200_000, "Payroll ACME"),
        make_transaction(20, 1_200_000, "Payroll ACME"),
    ]

    alerts = generate_alerts([report_for(txns, opening_balance_cents=500_000)], now=NOW)

    large = [a for a in alerts if a.code == AlertCode.LARGE_DEPOSIT_PATTERN]
    assert len(large) == 1
    assert large[0].severity == Severity.MEDIUM
    evidence = large[0].evidence
    assert evidence.large_deposit_count == 1
    assert evidence.observed == 1_500_000
    assert evidence.deviation == 500_000
    assert evidence.deposit_dates == (date(2024, 1, 1),)


@pytest.mark.parametrize(
    "amounts",
    [
        [1_100_000, 1_100_001, 1_100_002, 1_100_003],
        [5_000_001],
    ],
)
def test_large_deposits_high_by_count_or_total(make_transaction, amounts):
    txns = [make_transaction(day, amount, f"Wire {day}") for day, amount in enumerate(amounts)]

    alerts = generate_alerts([report_for(txns)], now=NOW)

    large = [a for a in alerts if a.code == AlertCode.LARGE_DEPOSIT_PATTERN]
    assert large[0].severity == Severity.HIGH
    assert large[0].evidence.total_large_deposits_cents == sum(amounts)


@pytest.mark.parametrize("printed_cents,expected", [(2_900_100, False), (2_900_101, True), (2_899_899, True)])
def test_balance_inconsistency(quiet_report, printed_cents, expected):
    """Printed closing balance must reconcile with the computed $29,000 within $1.00"""
    report = replace(quiet_report, printed_closing_balance_cents=printed_cents)

    alerts = generate_alerts([report], now=NOW)

    if not expected:
        assert alerts == []
        return
    assert codes(alerts) == [AlertCode.BALANCE_INCONSISTENCY]
    assert alerts[0].severity == Severity.MEDIUM
    assert alerts[0].evidence.computed_closing_balance_cents == 2_900_000
    assert alerts[0].evidence.observed == abs(printed_cents - 2_900_000)


@pytest.mark.parametrize(
    "stated,registered,expected",
    [
        ("Acme Corp", "ACME CORP LLC", False),
        ("Acme Logistics, Inc.", "Logistics Acme LLC", False),
        ("Acme Corp", "Zenith Holdings Inc", True),
    ],
)
def test_business_name_mismatch(quiet_report, stated, registered, expected):
    claims = ApplicationClaims(business_name=stated)
    verification = BusinessVerification(is_active=True, registered_name=registered)

    alerts = generate_alerts([quiet_report], claims=claims, verification=verification, now=NOW)

    if not expected:
        assert alerts == []
        return
    assert codes(alerts) == [AlertCode.BUSINESS_NAME_MISMATCH]
    assert alerts[0].severity == Severity.MEDIUM
    evidence = alerts[0].evidence
    assert evidence.observed < evidence.threshold == 80.0
    assert (evidence.stated_name, evidence.registered_name) == (stated, registered)


def test_business_name_normalization():
    assert normalize_business_name("Acme Corp, L.L.C.") == "acme"
    assert normalize_business_name("Smith & Sons Co.") == "smith and sons"
    assert name_similarity("Acme Corp", "Acme Corporation") == 100.0
