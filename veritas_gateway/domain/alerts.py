"""Alerts engine - rule catalog over statement metrics and application claims

Each rule is a plain function returning an Alert or None. Rules never see each
other's output, so a rule that raises only loses its own alert. Rules that lack
an input (no claims, no registry data, an empty statement) return None.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from rapidfuzz import fuzz

from veritas_gateway.domain.exceptions import RuleEvaluationError
from veritas_gateway.domain.metrics import annualize_deposits, description_hash
from veritas_gateway.domain.models import (
    Alert,
    AlertCode,
    ApplicationClaims,
    BalanceEvidence,
    BalanceInconsistencyEvidence,
    BusinessStatusEvidence,
    BusinessVerification,
    CashFlowEvidence,
    ErrorEvidence,
    IncomeStabilityEvidence,
    LargeDepositEvidence,
    NameMismatchEvidence,
    NegativeBalanceEvidence,
    NsfEvidence,
    RevenueEvidence,
    ScoreEvidence,
    Severity,
    StatementReport,
    TimeInBusinessEvidence,
    VelocityEvidence,
    WithdrawalRatioEvidence,
)
from veritas_gateway.domain.policies import AlertPolicy
from veritas_gateway.utils.date_utils import months_between

logger = logging.getLogger(__name__)

RuleErrorHandler = Callable[[RuleEvaluationError], None]

ENTITY_SUFFIXES = re.compile(
    r"\b(?:l\.?l\.?c|inc|incorporated|corp|corporation|co|company|ltd|limited|l\.?l\.?p|l\.?p|pllc|p\.?c)\b\.?"
)


def format_cents(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    return f"{sign}${abs(cents) / 100:,.2f}"


@dataclass(frozen=True)
class RuleContext:
    """Inputs shared by every rule in one evaluation"""

    reports: Sequence[StatementReport]
    claims: Optional[ApplicationClaims]
    verification: Optional[BusinessVerification]
    policy: AlertPolicy
    timestamp: datetime


# ---------------------------------------------------------------------------
# Per-statement rules
# ---------------------------------------------------------------------------


def high_nsf_count(ctx: RuleContext, index: int, report: StatementReport) -> Optional[Alert]:
    threshold = ctx.policy.nsf_count_threshold
    observed = report.metrics.nsf_count
    if observed < threshold:
        return None
    descriptions = tuple(t.description for t in report.metrics.nsf_transactions)
    return Alert(
        code=AlertCode.HIGH_NSF_COUNT,
        severity=Severity.HIGH,
        message=f"{observed} NSF/overdraft events on statement {index + 1} (threshold {threshold})",
        evidence=NsfEvidence(
            threshold=threshold,
            observed=observed,
            deviation=observed - threshold,
            statement_index=index,
            nsf_descriptions=descriptions[: ctx.policy.max_evidence_items],
        ),
        timestamp=ctx.timestamp,
    )


def low_average_balance(ctx: RuleContext, index: int, report: StatementReport) -> Optional[Alert]:
    metrics = report.metrics
    if metrics.period_days == 0:
        return None
    threshold = ctx.policy.low_average_balance_cents
    observed = metrics.average_daily_balance_cents
    # The threshold itself does not trigger
    if observed >= threshold:
        return None
    return Alert(
        code=AlertCode.LOW_AVERAGE_BALANCE,
        severity=Severity.MEDIUM,
        message=(
            f"Average daily balance {format_cents(observed)} on statement {index + 1} "
            f"is below {format_cents(threshold)}"
        ),
        evidence=BalanceEvidence(
            threshold=threshold,
            observed=observed,
            deviation=threshold - observed,
            statement_index=index,
            period_days=metrics.period_days,
        ),
        timestamp=ctx.timestamp,
    )


def negative_balance_days(ctx: RuleContext, index: int, report: StatementReport) -> Optional[Alert]:
    metrics = report.metrics
    if metrics.negative_balance_days == 0:
        return None
    observed = metrics.minimum_balance_cents
    return Alert(
        code=AlertCode.NEGATIVE_BALANCE_DAYS,
        severity=Severity.CRITICAL,
        message=(
            f"Balance was negative on {metrics.negative_balance_days} day(s) of statement {index + 1}, "
            f"lowest {format_cents(observed)}"
        ),
        evidence=NegativeBalanceEvidence(
            threshold=0,
            observed=observed,
            deviation=-observed,
            statement_index=index,
            negative_day_count=metrics.negative_balance_days,
            negative_dates=metrics.negative_balance_dates[: ctx.policy.max_evidence_items],
        ),
        timestamp=ctx.timestamp,
    )


def negative_cash_flow(ctx: RuleContext, index: int, report: StatementReport) -> Optional[Alert]:
    metrics = report.metrics
    if metrics.period_days == 0 or metrics.net_cash_flow_cents >= 0:
        return None
    deficit = -metrics.net_cash_flow_cents
    severity = Severity.HIGH if deficit > ctx.policy.negative_cash_flow_high_cents else Severity.MEDIUM
    return Alert(
        code=AlertCode.NEGATIVE_CASH_FLOW,
        severity=severity,
        message=f"Withdrawals exceeded deposits by {format_cents(deficit)} on statement {index + 1}",
        evidence=CashFlowEvidence(
            threshold=0,
            observed=metrics.net_cash_flow_cents,
            deviation=deficit,
            statement_index=index,
            total_deposits_cents=metrics.total_deposits_cents,
            total_withdrawals_cents=metrics.total_withdrawals_cents,
        ),
        timestamp=ctx.timestamp,
    )


def low_veritas_score(ctx: RuleContext, index: int, report: StatementReport) -> Optional[Alert]:
    if report.metrics.transaction_count == 0:
        return None
    observed = report.score.score
    if observed < ctx.policy.low_score_high:
        severity, threshold = Severity.HIGH, ctx.policy.low_score_high
    elif observed < ctx.policy.low_score_medium:
        severity, threshold = Severity.MEDIUM, ctx.policy.low_score_medium
    else:
        return None
    return Alert(
        code=AlertCode.LOW_VERITAS_SCORE,
        severity=severity,
        message=f"Veritas Score {observed} on statement {index + 1} is below {threshold}",
        evidence=ScoreEvidence(
            threshold=threshold,
            observed=observed,
            deviation=threshold - observed,
            statement_index=index,
            risk_level=report.score.risk_level,
        ),
        timestamp=ctx.timestamp,
    )


def high_withdrawal_ratio(ctx: RuleContext, index: int, report: StatementReport) -> Optional[Alert]:
    metrics = report.metrics
    if metrics.total_deposits_cents <= 0 or metrics.total_withdrawals_cents <= 0:
        return None
    ratio = metrics.total_withdrawals_cents / metrics.total_deposits_cents
    policy = ctx.policy
    if ratio > policy.withdrawal_ratio_high:
        severity, threshold = Severity.HIGH, policy.withdrawal_ratio_high
    elif ratio > policy.withdrawal_ratio_medium:
        severity, threshold = Severity.MEDIUM, policy.withdrawal_ratio_medium
    else:
        return None
    return Alert(
        code=AlertCode.HIGH_WITHDRAWAL_RATIO,
        severity=severity,
        message=f"Withdrawals were {ratio:.1%} of deposits on statement {index + 1} (threshold {threshold:.0%})",
        evidence=WithdrawalRatioEvidence(
            threshold=threshold,
            observed=round(ratio, 4),
            deviation=round(ratio - threshold, 4),
            statement_index=index,
            total_deposits_cents=metrics.total_deposits_cents,
            total_withdrawals_cents=metrics.total_withdrawals_cents,
        ),
        timestamp=ctx.timestamp,
    )


def income_instability(ctx: RuleContext, index: int, report: StatementReport) -> Optional[Alert]:
    """Income stability sub-score below the LOW/MEDIUM/HIGH bands; statements without deposits are skipped"""
    metrics = report.metrics
    if metrics.deposit_count == 0:
        return None
    observed = report.score.components.income_stability
    policy = ctx.policy
    if observed < policy.income_stability_high:
        severity, threshold = Severity.HIGH, policy.income_stability_high
    elif observed < policy.income_stability_medium:
        severity, threshold = Severity.MEDIUM, policy.income_stability_medium
    elif observed < policy.income_stability_low:
        severity, threshold = Severity.LOW, policy.income_stability_low
    else:
        return None
    stats = metrics.deposit_statistics
    return Alert(
        code=AlertCode.INCOME_INSTABILITY,
        severity=severity,
        message=f"Income stability {observed:.0f}/100 on statement {index + 1} is below {threshold:.0f}",
        evidence=IncomeStabilityEvidence(
            threshold=threshold,
            observed=round(observed, 2),
            deviation=round(threshold - observed, 2),
            statement_index=index,
            deposit_count=stats.deposit_count,
            mean_gap_days=stats.mean_gap_days,
            gap_variance=stats.gap_variance,
        ),
        timestamp=ctx.timestamp,
    )


def high_velocity_ratio(ctx: RuleContext, index: int, report: StatementReport) -> Optional[Alert]:
    """Deposits turned over against the average daily balance"""
    metrics = report.metrics
    balance = metrics.average_daily_balance_cents
    # Balances under the low-balance threshold are reported by LOW_AVERAGE_BALANCE instead
    if metrics.total_deposits_cents <= 0 or balance < ctx.policy.low_average_balance_cents:
        return None
    turnover = metrics.total_deposits_cents / balance
    policy = ctx.policy
    if turnover > policy.velocity_ratio_critical:
        severity, threshold = Severity.CRITICAL, policy.velocity_ratio_critical
    elif turnover > policy.velocity_ratio_high:
        severity, threshold = Severity.HIGH, policy.velocity_ratio_high
    elif turnover > policy.velocity_ratio_medium:
        severity, threshold = Severity.MEDIUM, policy.velocity_ratio_medium
    else:
        return None
    return Alert(
        code=AlertCode.HIGH_VELOCITY_RATIO,
        severity=severity,
        message=(
            f"Deposits of {format_cents(metrics.total_deposits_cents)} turned over {turnover:.2f}x "
            f"the average balance on statement {index + 1}"
        ),
        evidence=VelocityEvidence(
            threshold=threshold,
            observed=round(turnover, 4),
            deviation=round(turnover - threshold, 4),
            statement_index=index,
            total_deposits_cents=metrics.total_deposits_cents,
            average_daily_balance_cents=balance,
            transactions_per_day=metrics.velocity_ratio,
        ),
        timestamp=ctx.timestamp,
    )


def large_deposit_pattern(ctx: RuleContext, index: int, report: StatementReport) -> Optional[Alert]:
    """One-off deposits above the large-deposit line; recurring deposits are expected income"""
    policy = ctx.policy
    stats = report.metrics.deposit_statistics
    if stats.largest_deposit_cents <= policy.large_deposit_cents:
        return None
    recurring = {(r.amount_cents, r.description_hash) for r in stats.recurring_deposits}
    large = [
        t
        for t in report.transactions
        if t.amount_cents > policy.large_deposit_cents
        and (t.amount_cents, description_hash(t.description)) not in recurring
    ]
    if not large:
        return None

    total = sum(t.amount_cents for t in large)
    largest = max(t.amount_cents for t in large)
    if total > policy.large_deposit_total_high_cents or len(large) > policy.large_deposit_count_high:
        severity = Severity.HIGH
    else:
        severity = Severity.MEDIUM
    return Alert(
        code=AlertCode.LARGE_DEPOSIT_PATTERN,
        severity=severity,
        message=f"{len(large)} large one-off deposit(s) totaling {format_cents(total)} on statement {index + 1}",
        evidence=LargeDepositEvidence(
            threshold=policy.large_deposit_cents,
            observed=largest,
            deviation=largest - policy.large_deposit_cents,
            statement_index=index,
            large_deposit_count=len(large),
            total_large_deposits_cents=total,
            deposit_dates=tuple(t.date for t in large)[: policy.max_evidence_items],
        ),
        timestamp=ctx.timestamp,
    )


def balance_inconsistency(ctx: RuleContext, index: int, report: StatementReport) -> Optional[Alert]:
    """Printed closing balance vs opening balance plus extracted transactions"""
    printed = report.printed_closing_balance_cents
    if printed is None or report.metrics.period_days == 0:
        return None
    computed = report.metrics.closing_balance_cents
    gap = abs(printed - computed)
    tolerance = ctx.policy.balance_tolerance_cents
    if gap <= tolerance:
        return None
    return Alert(
        code=AlertCode.BALANCE_INCONSISTENCY,
        severity=Severity.MEDIUM,
        message=(
            f"Printed closing balance {format_cents(printed)} on statement {index + 1} does not match "
            f"the computed {format_cents(computed)}"
        ),
        evidence=BalanceInconsistencyEvidence(
            threshold=tolerance,
            observed=gap,
            deviation=gap - tolerance,
            statement_index=index,
            printed_closing_balance_cents=printed,
            computed_closing_balance_cents=computed,
        ),
        timestamp=ctx.timestamp,
    )


# ---------------------------------------------------------------------------
# Application rules
# ---------------------------------------------------------------------------


def revenue_mismatch(ctx: RuleContext) -> Optional[Alert]:
    """Stated annual revenue vs deposits annualized over every statement"""
    if ctx.claims is None:
        return None
    stated = ctx.claims.stated_annual_revenue_cents
    if stated is None or stated <= 0:
        return None
    period_days = sum(r.metrics.period_days for r in ctx.reports)
    if period_days <= 0:
        return None
    total_deposits = sum(r.metrics.total_deposits_cents for r in ctx.reports)
    annualized = annualize_deposits(total_deposits, period_days)

    band = ctx.policy.revenue_discrepancy_pct
    discrepancy = abs(annualized - stated) / stated * 100.0
    if discrepancy <= band:
        return None
    overstated = stated > annualized
    direction = "exceeds" if overstated else "is below"
    return Alert(
        code=AlertCode.GROSS_ANNUAL_REVENUE_MISMATCH,
        severity=Severity.HIGH,
        message=(
            f"Stated annual revenue {format_cents(stated)} {direction} annualized deposits "
            f"{format_cents(annualized)} by {discrepancy:.1f}%"
        ),
        evidence=RevenueEvidence(
            threshold=band,
            observed=round(discrepancy, 2),
            deviation=round(discrepancy - band, 2),
            stated_annual_revenue_cents=stated,
            annualized_deposits_cents=annualized,
            total_deposits_cents=total_deposits,
            period_days=period_days,
            overstated=overstated,
        ),
        timestamp=ctx.timestamp,
    )


def time_in_business_discrepancy(ctx: RuleContext) -> Optional[Alert]:
    """Stated start date vs registry registration date, compared by month"""
    if ctx.claims is None or ctx.verification is None:
        return None
    stated = ctx.claims.business_start_date
    registered = ctx.verification.registration_date
    if stated is None or registered is None:
        return None

    gap = abs(months_between(registered, stated))
    policy = ctx.policy
    if gap > policy.time_in_business_critical_months:
        severity, threshold = Severity.CRITICAL, policy.time_in_business_critical_months
    elif gap > policy.time_in_business_high_months:
        severity, threshold = Severity.HIGH, policy.time_in_business_high_months
    elif gap > policy.time_in_business_months:
        severity, threshold = Severity.MEDIUM, policy.time_in_business_months
    else:
        return None
    return Alert(
        code=AlertCode.TIME_IN_BUSINESS_DISCREPANCY,
        severity=severity,
        message=(
            f"Stated business start {stated.isoformat()} differs from registration "
            f"{registered.isoformat()} by {gap} months"
        ),
        evidence=TimeInBusinessEvidence(
            threshold=threshold,
            observed=gap,
            deviation=gap - threshold,
            stated_start_date=stated,
            registration_date=registered,
        ),
        timestamp=ctx.timestamp,
    )


def business_inactive(ctx: RuleContext) -> Optional[Alert]:
    if ctx.verification is None or ctx.verification.is_active is not False:
        return None
    status = ctx.verification.status
    return Alert(
        code=AlertCode.BUSINESS_INACTIVE_STATUS,
        severity=Severity.CRITICAL,
        message=f"Business registry reports the business as inactive ({status or 'no status given'})",
        evidence=BusinessStatusEvidence(
            threshold=True,
            observed=False,
            deviation=True,
            status=status,
            registered_name=ctx.verification.registered_name,
        ),
        timestamp=ctx.timestamp,
    )


def normalize_business_name(name: str) -> str:
    """Lowercase, without entity suffixes (LLC, Inc, Corp) or punctuation"""
    text = ENTITY_SUFFIXES.sub(" ", name.lower().replace("&", " and "))
    text = re.sub(r"[^a-z0-9]+", " ", text)
    return " ".join(text.split()) or name.strip().lower()


def name_similarity(first: str, second: str) -> float:
    """0-100 similarity of two business names, ignoring word order"""
    return round(fuzz.token_sort_ratio(normalize_business_name(first), normalize_business_name(second)), 2)


def business_name_mismatch(ctx: RuleContext) -> Optional[Alert]:
    if ctx.claims is None or ctx.verification is None:
        return None
    stated = ctx.claims.business_name
    registered = ctx.verification.registered_name
    if not stated or not registered:
        return None
    similarity = name_similarity(stated, registered)
    threshold = ctx.policy.name_similarity_threshold
    if similarity >= threshold:
        return None
    return Alert(
        code=AlertCode.BUSINESS_NAME_MISMATCH,
        severity=Severity.MEDIUM,
        message=f"Applied as '{stated}' but registered as '{registered}' ({similarity:.0f}% similar)",
        evidence=NameMismatchEvidence(
            threshold=threshold,
            observed=similarity,
            deviation=round(threshold - similarity, 2),
            stated_name=stated,
            registered_name=registered,
        ),
        timestamp=ctx.timestamp,
    )


STATEMENT_RULES = [
    high_nsf_count,
    low_average_balance,
    negative_balance_days,
    negative_cash_flow,
    high_withdrawal_ratio,
    low_veritas_score,
    income_instability,
    high_velocity_ratio,
    large_deposit_pattern,
    balance_inconsistency,
]

APPLICATION_RULES = [
    revenue_mismatch,
    time_in_business_discrepancy,
    business_inactive,
    business_name_mismatch,
]


def _run_rule(
    name: str,
    rule: Callable[..., Optional[Alert]],
    args: tuple,
    on_rule_error: Optional[RuleErrorHandler],
) -> Optional[Alert]:
    try:
        return rule(*args)
    except Exception as e:
        error = RuleEvaluationError(name, e)
        logger.warning(str(error), extra={"rule": name, "error_type": type(e).__name__})
        if on_rule_error is not None:
            on_rule_error(error)
        return None


def sort_alerts(alerts: Sequence[Alert]) -> List[Alert]:
    """CRITICAL first; alerts of equal severity keep evaluation order"""
    return sorted(alerts, key=lambda a: a.severity.rank)


def generate_alerts(
    reports: Sequence[StatementReport],
    claims: Optional[ApplicationClaims] = None,
    verification: Optional[BusinessVerification] = None,
    policy: AlertPolicy | None = None,
    now: Optional[datetime] = None,
    statement_rules: bool = True,
    application_rules: bool = True,
    start_index: int = 0,
    on_rule_error: Optional[RuleErrorHandler] = None,
) -> List[Alert]:
    """
    Evaluate the rule catalog and return alerts sorted by severity.

    Never raises: a failing rule is dropped, and a failure of the evaluation
    itself yields a single ALERT_GENERATION_ERROR alert.
    """
    timestamp = now or datetime.now(timezone.utc)
    try:
        reports = list(reports)
        for report in reports:
            if not isinstance(report, StatementReport):
                raise TypeError(f"expected StatementReport, got {type(report).__name__}")
        ctx = RuleContext(
            reports=reports,
            claims=claims,
            verification=verification,
            policy=policy or AlertPolicy(),
            timestamp=timestamp,
        )

        alerts: List[Optional[Alert]] = []
        if statement_rules:
            for offset, report in enumerate(reports):
                for rule in STATEMENT_RULES:
                    alerts.append(
                        _run_rule(rule.__name__, rule, (ctx, start_index + offset, report), on_rule_error)
                    )
        if application_rules:
            for rule in APPLICATION_RULES:
                alerts.append(_run_rule(rule.__name__, rule, (ctx,), on_rule_error))

        return sort_alerts([a for a in alerts if a is not None])

    except Exception as e:
        logger.exception("Alert generation failed")
        return [
            Alert(
                code=AlertCode.ALERT_GENERATION_ERROR,
                severity=Severity.HIGH,
                message="Alert evaluation failed; review this application manually",
                evidence=ErrorEvidence(threshold=None, observed=None, deviation=None, error=str(e)),
                timestamp=timestamp,
            )
        ]
