"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Transaction:
    """Single statement line item; amount is signed (credits positive)"""

    date: date
    amount_cents: int
    type: str  # "credit" or "debit"
    description: str
    page: int
    raw_text: str
    category: Optional[str] = None

    def with_category(self, category: str) -> "Transaction":
        """Copy with an externally assigned category"""
        return replace(self, category=category)


@dataclass(frozen=True)
class ParseWarning:
    """A line that matched no transaction pattern"""

    page: int
    line_number: int
    text: str
    reason: str


@dataclass(frozen=True)
class ParseQuality:
    """Per-line tally of how much of the statement was understood"""

    matched_lines: int = 0
    unmatched_lines: int = 0
    skipped_lines: int = 0
    discarded_records: int = 0

    @property
    def ratio(self) -> float:
        considered = self.matched_lines + self.unmatched_lines
        if considered == 0:
            return 1.0
        return round(self.matched_lines / considered, 4)


@dataclass(frozen=True)
class ExtractionResult:
    """Output of the transaction extractor"""

    transactions: List[Transaction]
    quality: ParseQuality
    warnings: List[ParseWarning]
    page_count: int
    bank: Optional[str] = None
    opening_balance_cents: Optional[int] = None
    closing_balance_cents: Optional[int] = None


# ---------------------------------------------------------------------------
# Page completeness
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PageMarker:
    """A page number found in the statement text"""

    page_number: int
    stated_total: Optional[int]
    source: str  # "page_of" | "fraction" | "page"
    physical_page: int


@dataclass(frozen=True)
class IncompleteStatementWarning:
    """Pages appear to be missing; lowers confidence, never blocks"""

    missing_pages: Tuple[int, ...]
    sequence_gaps: Tuple[Tuple[int, int], ...]
    message: str


@dataclass(frozen=True)
class StatementPageInfo:
    """Completeness report for one statement"""

    total_pages: int
    discovered_pages: Tuple[int, ...]
    expected_pages: Optional[int]
    missing_pages: Tuple[int, ...]
    sequence_gaps: Tuple[Tuple[int, int], ...]
    marker_source: str
    warnings: Tuple[IncompleteStatementWarning, ...] = ()

    @property
    def is_complete(self) -> bool:
        return not self.missing_pages and not self.sequence_gaps


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DailyBalance:
    """End-of-day balance"""

    date: date
    balance_cents: int


@dataclass(frozen=True)
class RecurringDeposit:
    """Deposits repeating with the same amount and description"""

    amount_cents: int
    description: str
    description_hash: str
    occurrences: int


@dataclass(frozen=True)
class DepositStatistics:
    """Timing and size profile of credits"""

    deposit_count: int = 0
    mean_gap_days: float = 0.0
    gap_variance: float = 0.0
    largest_deposit_cents: int = 0
    recurring_deposits: Tuple[RecurringDeposit, ...] = ()


@dataclass(frozen=True)
class FinancialMetrics:
    """Calculated metrics for one statement"""

    opening_balance_cents: int
    period_start: Optional[date]
    period_end: Optional[date]
    period_days: int
    daily_balances: Tuple[DailyBalance, ...]
    average_daily_balance_cents: int
    minimum_balance_cents: int
    maximum_balance_cents: int
    closing_balance_cents: int
    low_balance_threshold_cents: int
    days_below_threshold: int
    negative_balance_days: int
    negative_balance_dates: Tuple[date, ...]
    nsf_count: int
    nsf_transactions: Tuple[Transaction, ...]
    total_deposits_cents: int
    total_withdrawals_cents: int
    deposit_count: int
    withdrawal_count: int
    net_cash_flow_cents: int
    monthly_deposits: Dict[str, int]
    deposit_statistics: DepositStatistics
    transaction_count: int
    velocity_ratio: float


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


class RiskLevel(str, Enum):
    LOW = "LOW"
    MODERATE = "MODERATE"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    VERY_HIGH = "VERY_HIGH"


@dataclass(frozen=True)
class ScoreComponents:
    """Independent 0-100 sub-scores (higher is better)"""

    income_stability: float
    expense_control: float
    cash_flow_consistency: float
    behavioral_risk: float
    balance_stability: float


@dataclass(frozen=True)
class RiskScore:
    """Veritas Score with its breakdown"""

    score: int
    grade: str
    risk_level: RiskLevel
    components: ScoreComponents
    composite: float
    risk_penalty: float


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.CRITICAL: 0, Severity.HIGH: 1, Severity.MEDIUM: 2, Severity.LOW: 3}


class AlertCode(str, Enum):
    HIGH_NSF_COUNT = "HIGH_NSF_COUNT"
    LOW_AVERAGE_BALANCE = "LOW_AVERAGE_BALANCE"
    NEGATIVE_BALANCE_DAYS = "NEGATIVE_BALANCE_DAYS"
    NEGATIVE_CASH_FLOW = "NEGATIVE_CASH_FLOW"
    LOW_VERITAS_SCORE = "LOW_VERITAS_SCORE"
    GROSS_ANNUAL_REVENUE_MISMATCH = "GROSS_ANNUAL_REVENUE_MISMATCH"
    TIME_IN_BUSINESS_DISCREPANCY = "TIME_IN_BUSINESS_DISCREPANCY"
    BUSINESS_INACTIVE_STATUS = "BUSINESS_INACTIVE_STATUS"
    HIGH_WITHDRAWAL_RATIO = "HIGH_WITHDRAWAL_RATIO"
    INCOME_INSTABILITY = "INCOME_INSTABILITY"
    HIGH_VELOCITY_RATIO = "HIGH_VELOCITY_RATIO"
    LARGE_DEPOSIT_PATTERN = "LARGE_DEPOSIT_PATTERN"
    BALANCE_INCONSISTENCY = "BALANCE_INCONSISTENCY"
    BUSINESS_NAME_MISMATCH = "BUSINESS_NAME_MISMATCH"
    ALERT_GENERATION_ERROR = "ALERT_GENERATION_ERROR"


@dataclass(frozen=True)
class NsfEvidence:
    threshold: int
    observed: int
    deviation: int
    statement_index: int
    nsf_descriptions: Tuple[str, ...]


@dataclass(frozen=True)
class BalanceEvidence:
    threshold: int  # cents
    observed: int  # cents
    deviation: int  # cents, threshold - observed
    statement_index: int
    period_days: int


@dataclass(frozen=True)
class NegativeBalanceEvidence:
    threshold: int  # cents, always 0
    observed: int  # worst end-of-day balance in cents
    deviation: int
    statement_index: int
    negative_day_count: int
    negative_dates: Tuple[date, ...]


@dataclass(frozen=True)
class CashFlowEvidence:
    threshold: int  # cents
    observed: int  # net cash flow in cents
    deviation: int
    statement_index: int
    total_deposits_cents: int
    total_withdrawals_cents: int


@dataclass(frozen=True)
class ScoreEvidence:
    threshold: int
    observed: int
    deviation: int
    statement_index: int
    risk_level: RiskLevel


@dataclass(frozen=True)
class RevenueEvidence:
    threshold: float  # allowed discrepancy, percent
    observed: float  # observed discrepancy, percent
    deviation: float  # percentage points beyond the band
    stated_annual_revenue_cents: int
    annualized_deposits_cents: int
    total_deposits_cents: int
    period_days: int
    overstated: bool


@dataclass(frozen=True)
class TimeInBusinessEvidence:
    threshold: int  # months
    observed: int  # months between stated start and registration
    deviation: int
    stated_start_date: date
    registration_date: date


@dataclass(frozen=True)
class BusinessStatusEvidence:
    threshold: bool  # expected active flag
    observed: bool
    deviation: bool
    status: Optional[str]
    registered_name: Optional[str]


@dataclass(frozen=True)
class WithdrawalRatioEvidence:
    threshold: float  # withdrawals / deposits
    observed: float
    deviation: float
    statement_index: int
    total_deposits_cents: int
    total_withdrawals_cents: int


@dataclass(frozen=True)
class IncomeStabilityEvidence:
    threshold: float  # income stability sub-score, 0-100
    observed: float
    deviation: float
    statement_index: int
    deposit_count: int
    mean_gap_days: float
    gap_variance: float


@dataclass(frozen=True)
class VelocityEvidence:
    threshold: float  # deposits / average daily balance
    observed: float
    deviation: float
    statement_index: int
    total_deposits_cents: int
    average_daily_balance_cents: int
    transactions_per_day: float


@dataclass(frozen=True)
class LargeDepositEvidence:
    threshold: int  # cents per deposit
    observed: int  # largest one-off deposit in cents
    deviation: int
    statement_index: int
    large_deposit_count: int
    total_large_deposits_cents: int
    deposit_dates: Tuple[date, ...]


@dataclass(frozen=True)
class BalanceInconsistencyEvidence:
    threshold: int  # tolerance in cents
    observed: int  # |printed - computed| closing balance in cents
    deviation: int
    statement_index: int
    printed_closing_balance_cents: int
    computed_closing_balance_cents: int


@dataclass(frozen=True)
class NameMismatchEvidence:
    threshold: float  # minimum similarity, 0-100
    observed: float
    deviation: float
    stated_name: str
    registered_name: str


@dataclass(frozen=True)
class ErrorEvidence:
    threshold: None
    observed: None
    deviation: None
    error: str


Evidence = Union[
    NsfEvidence,
    BalanceEvidence,
    NegativeBalanceEvidence,
    CashFlowEvidence,
    ScoreEvidence,
    RevenueEvidence,
    TimeInBusinessEvidence,
    BusinessStatusEvidence,
    WithdrawalRatioEvidence,
    IncomeStabilityEvidence,
    VelocityEvidence,
    LargeDepositEvidence,
    BalanceInconsistencyEvidence,
    NameMismatchEvidence,
    ErrorEvidence,
]

EVIDENCE_TYPES: Dict[AlertCode, type] = {
    AlertCode.HIGH_NSF_COUNT: NsfEvidence,
    AlertCode.LOW_AVERAGE_BALANCE: BalanceEvidence,
    AlertCode.NEGATIVE_BALANCE_DAYS: NegativeBalanceEvidence,
    AlertCode.NEGATIVE_CASH_FLOW: CashFlowEvidence,
    AlertCode.LOW_VERITAS_SCORE: ScoreEvidence,
    AlertCode.GROSS_ANNUAL_REVENUE_MISMATCH: RevenueEvidence,
    AlertCode.TIME_IN_BUSINESS_DISCREPANCY: TimeInBusinessEvidence,
    AlertCode.BUSINESS_INACTIVE_STATUS: BusinessStatusEvidence,
    AlertCode.HIGH_WITHDRAWAL_RATIO: WithdrawalRatioEvidence,
    AlertCode.INCOME_INSTABILITY: IncomeStabilityEvidence,
    AlertCode.HIGH_VELOCITY_RATIO: VelocityEvidence,
    AlertCode.LARGE_DEPOSIT_PATTERN: LargeDepositEvidence,
    AlertCode.BALANCE_INCONSISTENCY: BalanceInconsistencyEvidence,
    AlertCode.BUSINESS_NAME_MISMATCH: NameMismatchEvidence,
    AlertCode.ALERT_GENERATION_ERROR: ErrorEvidence,
}


@dataclass(frozen=True)
class Alert:
    """Risk alert; the evidence type is fixed by the alert code"""

    code: AlertCode
    severity: Severity
    message: str
    evidence: Evidence
    timestamp: datetime

    def __post_init__(self) -> None:
        expected = EVIDENCE_TYPES[self.code]
        if not isinstance(self.evidence, expected):
            raise TypeError(
                f"{self.code.value} requires {expected.__name__}, got {type(self.evidence).__name__}"
            )


@dataclass(frozen=True)
class ApplicationClaims:
    """Self-reported application data; untrusted until checked by a rule"""

    stated_annual_revenue_cents: Optional[int] = None
    business_start_date: Optional[date] = None
    business_name: Optional[str] = None


@dataclass(frozen=True)
class BusinessVerification:
    """Business registry lookup result"""

    registration_date: Optional[date] = None
    is_active: Optional[bool] = None
    status: Optional[str] = None
    registered_name: Optional[str] = None


@dataclass(frozen=True)
class StatementReport:
    """Metrics and score of one statement, as consumed by the alerts engine"""

    metrics: FinancialMetrics
    score: RiskScore
    transactions: Tuple[Transaction, ...] = ()
    printed_closing_balance_cents: Optional[int] = None


# ---------------------------------------------------------------------------
# Waterfall
# ---------------------------------------------------------------------------


class DecisionState(str, Enum):
    BASELINE_ONLY = "BASELINE_ONLY"
    ENRICHED = "ENRICHED"


class EnrichmentStatus(str, Enum):
    SKIPPED = "SKIPPED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    UNAVAILABLE = "UNAVAILABLE"


@dataclass(frozen=True)
class CriterionResult:
    """One waterfall gate check"""

    name: str
    passed: bool
    observed: float
    threshold: float
    comparator: str  # ">=" or "<="


@dataclass(frozen=True)
class EnrichmentRequest:
    """What the enrichment collaborator is asked about"""

    fingerprint: Optional[str]
    score: int
    average_daily_balance_cents: int
    nsf_count: int
    transaction_count: int
    products: Tuple[str, ...]


@dataclass(frozen=True)
class EnrichmentResult:
    """Collaborator response; cost is what it reports having charged"""

    payload: Dict[str, Any]
    cost_cents: Optional[int] = None


@dataclass(frozen=True)
class WaterfallDecision:
    """Audit record of the cost-gated enrichment decision"""

    state: DecisionState
    criteria: Dict[str, CriterionResult]
    passed: bool
    pass_rate: float
    mode: str
    enrichment_executed: bool
    enrichment_status: EnrichmentStatus
    total_cost_cents: int
    cost_saved_cents: int
    enrichment_payload: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Pipeline results
# ---------------------------------------------------------------------------


class ConfidenceLevel(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


@dataclass(frozen=True)
class ConfidenceReport:
    """How much downstream consumers should trust this analysis"""

    level: ConfidenceLevel
    parse_quality_ratio: float
    pages_complete: bool
    reasons: Tuple[str, ...] = ()


@dataclass(frozen=True)
class BaselineAnalysis:
    """Everything computed before any paid call"""

    fingerprint: str
    extraction: ExtractionResult
    pages: StatementPageInfo
    metrics: FinancialMetrics
    score: RiskScore
    alerts: List[Alert]
    confidence: ConfidenceReport

    @property
    def report(self) -> StatementReport:
        return StatementReport(
            metrics=self.metrics,
            score=self.score,
            transactions=tuple(self.extraction.transactions),
            printed_closing_balance_cents=self.extraction.closing_balance_cents,
        )


@dataclass(frozen=True)
class StatementAnalysis:
    """Full result for one statement"""

    baseline: BaselineAnalysis
    waterfall: WaterfallDecision
    analyzed_at: datetime


@dataclass(frozen=True)
class ApplicationAnalysis:
    """Result for all statements of one application"""

    statements: List[StatementAnalysis]
    alerts: List[Alert]
    analyzed_at: datetime
