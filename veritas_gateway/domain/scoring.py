"""Risk scoring engine - Veritas Score from statement metrics"""

import math
import statistics
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Sequence

from veritas_gateway.domain.exceptions import ValidationError
from veritas_gateway.domain.models import FinancialMetrics, RiskLevel, RiskScore, ScoreComponents
from veritas_gateway.domain.policies import ScoringPolicy

# (minimum score, grade), highest first
GRADE_CUTOFFS = [(750, "A"), (650, "B"), (550, "C"), (450, "D")]

RISK_LEVEL_CUTOFFS = [
    (750, RiskLevel.LOW),
    (650, RiskLevel.MODERATE),
    (550, RiskLevel.MEDIUM),
    (450, RiskLevel.HIGH),
]

EXPENSE_RATIO_FULL_MARKS = 0.7
EXPENSE_RATIO_ZERO_MARKS = 1.3
NEGATIVE_CASH_FLOW_PENALTY = 25.0
NEGATIVE_MINIMUM_BALANCE_PENALTY = 20.0
SINGLE_DEPOSIT_STABILITY = 50.0


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def _stability_from(values: Sequence[float]) -> float:
    """100 x (1 - coefficient of variation), clamped to 0-100"""
    mean = statistics.fmean(values)
    if mean <= 0:
        return 0.0
    return _clamp(100.0 * (1.0 - statistics.pstdev(values) / mean))


def income_stability_score(metrics: FinancialMetrics, external_ratio: Optional[float] = None) -> float:
    """
    Regularity of incoming money.

    An externally supplied ratio (0-1) takes precedence. Otherwise month over
    month deposit totals are used when the statement spans two or more months,
    falling back to the regularity of the gaps between deposit days.
    """
    if external_ratio is not None:
        if isinstance(external_ratio, bool) or not isinstance(external_ratio, (int, float)):
            raise ValidationError("income_stability must be a number between 0 and 1")
        if not math.isfinite(external_ratio) or not 0.0 <= external_ratio <= 1.0:
            raise ValidationError(f"income_stability must be between 0 and 1, got {external_ratio}")
        return float(external_ratio) * 100.0

    monthly = list(metrics.monthly_deposits.values())
    if len(monthly) >= 2:
        return _stability_from(monthly)

    stats = metrics.deposit_statistics
    if stats.mean_gap_days > 0:
        cv = math.sqrt(stats.gap_variance) / stats.mean_gap_days
        return _clamp(100.0 * (1.0 - cv))
    if stats.deposit_count >= 1:
        return SINGLE_DEPOSIT_STABILITY
    return 0.0


def expense_control_score(metrics: FinancialMetrics) -> float:
    """Withdrawals as a share of deposits; at or under 70% earns full marks"""
    if metrics.total_deposits_cents <= 0:
        return 0.0
    ratio = metrics.total_withdrawals_cents / metrics.total_deposits_cents
    if ratio <= EXPENSE_RATIO_FULL_MARKS:
        return 100.0
    if ratio >= EXPENSE_RATIO_ZERO_MARKS:
        return 0.0
    span = EXPENSE_RATIO_ZERO_MARKS - EXPENSE_RATIO_FULL_MARKS
    return 100.0 * (EXPENSE_RATIO_ZERO_MARKS - ratio) / span


def cash_flow_consistency_score(metrics: FinancialMetrics) -> float:
    if metrics.period_days <= 0:
        return 0.0
    score = 100.0 * (1.0 - metrics.days_below_threshold / metrics.period_days)
    if metrics.net_cash_flow_cents < 0:
        score -= NEGATIVE_CASH_FLOW_PENALTY
    return _clamp(score)


def behavioral_risk_score(metrics: FinancialMetrics, policy: ScoringPolicy) -> float:
    # Non-increasing in nsf_count
    return _clamp(100.0 - policy.nsf_penalty_per_event * metrics.nsf_count)


def balance_stability_score(metrics: FinancialMetrics, policy: ScoringPolicy) -> float:
    average = metrics.average_daily_balance_cents
    if average <= 0:
        return 0.0
    score = min(100.0, average / policy.balance_baseline_cents * 100.0)
    if metrics.minimum_balance_cents < 0:
        score -= NEGATIVE_MINIMUM_BALANCE_PENALTY
    return _clamp(score)


def grade_for(score: int) -> str:
    for cutoff, grade in GRADE_CUTOFFS:
        if score >= cutoff:
            return grade
    return "F"


def risk_level_for(score: int) -> RiskLevel:
    for cutoff, level in RISK_LEVEL_CUTOFFS:
        if score >= cutoff:
            return level
    return RiskLevel.VERY_HIGH


def map_to_score_range(composite: float, policy: ScoringPolicy) -> int:
    """Linear map of a 0-100 composite onto [score_floor, score_ceiling], half-up"""
    span = policy.score_ceiling - policy.score_floor
    raw = Decimal(str(policy.score_floor)) + Decimal(str(composite)) * Decimal(span) / Decimal(100)
    score = int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return max(policy.score_floor, min(policy.score_ceiling, score))


def calculate_risk_score(
    metrics: FinancialMetrics,
    income_stability: Optional[float] = None,
    policy: ScoringPolicy | None = None,
) -> RiskScore:
    """
    Combine the five sub-scores into the Veritas Score.

    composite = sum(weight x sub-score / 100) + (max_risk_penalty - penalty),
    where the penalty is one point per negative-balance day, capped at
    max_risk_penalty. The composite (0-100) is mapped linearly onto 300-850.

    A statement without transactions always scores the floor.
    """
    policy = policy or ScoringPolicy()

    if metrics.transaction_count == 0:
        components = ScoreComponents(0.0, 0.0, 0.0, 0.0, 0.0)
        return RiskScore(
            score=policy.score_floor,
            grade=grade_for(policy.score_floor),
            risk_level=risk_level_for(policy.score_floor),
            components=components,
            composite=0.0,
            risk_penalty=policy.max_risk_penalty,
        )

    components = ScoreComponents(
        income_stability=round(income_stability_score(metrics, income_stability), 2),
        expense_control=round(expense_control_score(metrics), 2),
        cash_flow_consistency=round(cash_flow_consistency_score(metrics), 2),
        behavioral_risk=round(behavioral_risk_score(metrics, policy), 2),
        balance_stability=round(balance_stability_score(metrics, policy), 2),
    )

    weighted = (
        policy.income_stability_weight * components.income_stability
        + policy.expense_control_weight * components.expense_control
        + policy.cash_flow_consistency_weight * components.cash_flow_consistency
        + policy.behavioral_risk_weight * components.behavioral_risk
        + policy.balance_stability_weight * components.balance_stability
    ) / 100.0
    risk_penalty = float(min(policy.max_risk_penalty, metrics.negative_balance_days))
    composite = round(_clamp(weighted + policy.max_risk_penalty - risk_penalty), 2)

    score = map_to_score_range(composite, policy)
    return RiskScore(
        score=score,
        grade=grade_for(score),
        risk_level=risk_level_for(score),
        components=components,
        composite=composite,
        risk_penalty=risk_penalty,
    )
