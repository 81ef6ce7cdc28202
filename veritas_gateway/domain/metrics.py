"""Financial metrics engine - balances, NSF detection and deposit patterns"""

import hashlib
import math
import re
import statistics
from collections import Counter, defaultdict
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Sequence, Tuple

from veritas_gateway.domain.exceptions import ValidationError
from veritas_gateway.domain.models import (
    DailyBalance,
    DepositStatistics,
    FinancialMetrics,
    RecurringDeposit,
    Transaction,
)
from veritas_gateway.domain.policies import MetricsPolicy
from veritas_gateway.utils.date_utils import generate_date_range


class _Omitted:
    def __repr__(self) -> str:
        return "OMITTED"


# Marks an argument the caller did not pass at all (distinct from None)
OMITTED: Any = _Omitted()


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def validate_opening_balance(value: Any) -> int:
    """
    Resolve the opening balance argument into integer cents.

    Omitted means zero. Anything explicitly supplied must be a finite number:
    None, NaN, infinity, booleans and strings are contract violations.
    """
    if value is OMITTED:
        return 0
    if value is None:
        raise ValidationError("opening_balance_cents was supplied as null")
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise ValidationError(f"opening_balance_cents must be numeric, got {type(value).__name__}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError(f"opening_balance_cents must be finite, got {value}")
    if isinstance(value, Decimal) and not value.is_finite():
        raise ValidationError(f"opening_balance_cents must be finite, got {value}")
    return _round_half_up(Decimal(str(value)))


def annualize_deposits(total_deposits_cents: int, period_days: int) -> int:
    """
    Project a partial-period deposit total onto a full year.

    total * 365 / period_days, rounded half-up to the cent. For example
    2,400,000 cents over 30 days gives 29,200,000 cents.
    """
    if period_days <= 0:
        raise ValidationError("period_days must be positive to annualize deposits")
    return _round_half_up(Decimal(total_deposits_cents) * 365 / Decimal(period_days))


def build_nsf_pattern(keywords: Sequence[str]) -> re.Pattern:
    """Whole-word, case-insensitive alternation over the keyword list"""
    alternation = "|".join(re.escape(k) for k in sorted(keywords, key=len, reverse=True))
    return re.compile(rf"(?<![a-z0-9])(?:{alternation})(?![a-z0-9])", re.IGNORECASE)


def is_nsf_transaction(transaction: Transaction, pattern: re.Pattern) -> bool:
    description = getattr(transaction, "description", None)
    if not isinstance(description, str):
        return False
    return bool(pattern.search(description))


def normalize_description(description: str) -> str:
    """Lowercase, drop digits (reference numbers) and collapse whitespace"""
    text = re.sub(r"\d+", " ", description.lower())
    text = re.sub(r"[^a-z&]+", " ", text)
    return " ".join(text.split())


def description_hash(description: str) -> str:
    return hashlib.sha256(normalize_description(description).encode("utf-8")).hexdigest()[:16]


def build_daily_balances(
    transactions: Sequence[Transaction], opening_balance_cents: int
) -> List[DailyBalance]:
    """End-of-day balance for every calendar day from first to last transaction"""
    if not transactions:
        return []

    net_by_day: Dict[date, int] = defaultdict(int)
    for txn in transactions:
        net_by_day[txn.date] += txn.amount_cents

    start = min(net_by_day)
    end = max(net_by_day)
    balance = opening_balance_cents
    curve = []
    for day in generate_date_range(start, end):
        # Days without activity carry the previous balance forward
        balance += net_by_day.get(day, 0)
        curve.append(DailyBalance(date=day, balance_cents=balance))
    return curve


def time_weighted_average(curve: Sequence[DailyBalance]) -> int:
    """
    Sum of balance x days held, divided by the number of days in the period.

    Each balance is held from the day it was set until the next change.
    Rounded half-up to the cent.
    """
    if not curve:
        return 0
    weighted = 0
    held_since = 0
    for index in range(1, len(curve) + 1):
        if index == len(curve) or curve[index].balance_cents != curve[held_since].balance_cents:
            weighted += curve[held_since].balance_cents * (index - held_since)
            held_since = index
    return _round_half_up(Decimal(weighted) / Decimal(len(curve)))


def deposit_statistics(deposits: Sequence[Transaction], min_occurrences: int) -> DepositStatistics:
    if not deposits:
        return DepositStatistics()

    days = sorted({d.date for d in deposits})
    gaps = [(b - a).days for a, b in zip(days, days[1:])]
    mean_gap = statistics.fmean(gaps) if gaps else 0.0
    variance = statistics.pvariance(gaps) if gaps else 0.0

    groups: Counter = Counter()
    first_description: Dict[Tuple[int, str], str] = {}
    for deposit in deposits:
        key = (deposit.amount_cents, description_hash(deposit.description))
        groups[key] += 1
        first_description.setdefault(key, deposit.description)

    recurring = [
        RecurringDeposit(
            amount_cents=amount,
            description=first_description[(amount, digest)],
            description_hash=digest,
            occurrences=count,
        )
        for (amount, digest), count in groups.items()
        if count >= min_occurrences
    ]
    recurring.sort(key=lambda r: (-r.occurrences, -r.amount_cents, r.description_hash))

    return DepositStatistics(
        deposit_count=len(deposits),
        mean_gap_days=round(mean_gap, 4),
        gap_variance=round(variance, 4),
        largest_deposit_cents=max(d.amount_cents for d in deposits),
        recurring_deposits=tuple(recurring),
    )


def calculate_financial_metrics(
    transactions: Sequence[Transaction],
    opening_balance_cents: Any = OMITTED,
    policy: MetricsPolicy | None = None,
) -> FinancialMetrics:
    """
    Derive the full metrics set for one statement.

    Requirements:
    - Running balance applied per day, carried forward over idle days
    - Time-weighted average daily balance
    - NSF/overdraft count by keyword on the description
    - Deposit gap statistics, recurring deposits and monthly totals
    - Velocity ratio: transactions per day of the statement period
    """
    policy = policy or MetricsPolicy()
    opening = validate_opening_balance(opening_balance_cents)
    ordered = sorted(transactions, key=lambda t: t.date)

    curve = build_daily_balances(ordered, opening)
    balances = [d.balance_cents for d in curve]
    period_days = len(curve)

    threshold = policy.low_balance_threshold_cents
    negative = [d.date for d in curve if d.balance_cents < 0]

    nsf_pattern = build_nsf_pattern(policy.nsf_keywords)
    nsf = [t for t in ordered if is_nsf_transaction(t, nsf_pattern)]

    deposits = [t for t in ordered if t.amount_cents > 0]
    withdrawals = [t for t in ordered if t.amount_cents < 0]
    total_deposits = sum(t.amount_cents for t in deposits)
    total_withdrawals = -sum(t.amount_cents for t in withdrawals)

    monthly: Dict[str, int] = defaultdict(int)
    for deposit in deposits:
        monthly[deposit.date.strftime("%Y-%m")] += deposit.amount_cents

    return FinancialMetrics(
        opening_balance_cents=opening,
        period_start=curve[0].date if curve else None,
        period_end=curve[-1].date if curve else None,
        period_days=period_days,
        daily_balances=tuple(curve),
        average_daily_balance_cents=time_weighted_average(curve) if curve else opening,
        minimum_balance_cents=min(balances) if balances else opening,
        maximum_balance_cents=max(balances) if balances else opening,
        closing_balance_cents=balances[-1] if balances else opening,
        low_balance_threshold_cents=threshold,
        days_below_threshold=sum(1 for b in balances if b < threshold),
        negative_balance_days=len(negative),
        negative_balance_dates=tuple(negative),
        nsf_count=len(nsf),
        nsf_transactions=tuple(nsf),
        total_deposits_cents=total_deposits,
        total_withdrawals_cents=total_withdrawals,
        deposit_count=len(deposits),
        withdrawal_count=len(withdrawals),
        net_cash_flow_cents=total_deposits - total_withdrawals,
        monthly_deposits=dict(sorted(monthly.items())),
        deposit_statistics=deposit_statistics(deposits, policy.recurring_min_occurrences),
        transaction_count=len(ordered),
        velocity_ratio=round(len(ordered) / period_days, 4) if period_days else 0.0,
    )
