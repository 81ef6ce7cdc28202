"""Pydantic schemas for API request/response validation"""

from dataclasses import is_dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from veritas_gateway.domain.metrics import OMITTED
from veritas_gateway.domain.models import (
    AlertCode,
    ApplicationAnalysis,
    ApplicationClaims,
    BusinessVerification,
    ConfidenceLevel,
    DecisionState,
    EnrichmentStatus,
    RiskLevel,
    Severity,
    StatementAnalysis,
)
from veritas_gateway.domain.pipeline import StatementInput

# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class ClaimsSchema(BaseModel):
    """Self-reported application data"""

    stated_annual_revenue_cents: Optional[int] = Field(None, description="Stated gross annual revenue in cents")
    business_start_date: Optional[date] = None
    business_name: Optional[str] = Field(None, max_length=200)
    business_state: Optional[str] = Field(None, max_length=2, description="State of registration")

    def to_domain(self) -> ApplicationClaims:
        return ApplicationClaims(
            stated_annual_revenue_cents=self.stated_annual_revenue_cents,
            business_start_date=self.business_start_date,
            business_name=self.business_name,
        )


class VerificationSchema(BaseModel):
    """Business registry result supplied by the caller"""

    registration_date: Optional[date] = None
    is_active: Optional[bool] = None
    status: Optional[str] = None
    registered_name: Optional[str] = None

    def to_domain(self) -> BusinessVerification:
        return BusinessVerification(
            registration_date=self.registration_date,
            is_active=self.is_active,
            status=self.status,
            registered_name=self.registered_name,
        )


class StatementSchema(BaseModel):
    """One statement: either a form-feed separated text or a list of pages"""

    text: Optional[str] = Field(None, description="Statement text, pages separated by form feeds")
    pages: Optional[List[str]] = Field(None, max_length=200)
    bank_hint: Optional[str] = Field(None, max_length=64)
    statement_year: Optional[int] = Field(None, ge=1900, le=2100)
    opening_balance_cents: Optional[int] = Field(None, description="Omit to use the printed opening balance")
    income_stability: Optional[float] = Field(None, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def check_content(self) -> "StatementSchema":
        if (self.text is None) == (self.pages is None):
            raise ValueError("provide exactly one of text or pages")
        # Omitting the field is allowed; an explicit null is not
        if "opening_balance_cents" in self.model_fields_set and self.opening_balance_cents is None:
            raise ValueError("opening_balance_cents must be a number when supplied")
        return self

    @property
    def content(self):
        return self.text if self.text is not None else self.pages

    @property
    def opening_balance(self) -> Any:
        if "opening_balance_cents" not in self.model_fields_set:
            return OMITTED
        return self.opening_balance_cents

    def to_domain(self) -> StatementInput:
        return StatementInput(
            text=self.content,
            bank_hint=self.bank_hint,
            statement_year=self.statement_year,
            opening_balance_cents=self.opening_balance,
            income_stability=self.income_stability,
        )


class StatementAnalysisRequest(StatementSchema):
    """Request body for POST /v1/statements/analyze"""

    claims: Optional[ClaimsSchema] = None
    verification: Optional[VerificationSchema] = None
    verify_business: bool = Field(False, description="Look the business up in the registry")


class ApplicationAnalysisRequest(BaseModel):
    """Request body for POST /v1/applications/analyze"""

    statements: List[StatementSchema] = Field(..., min_length=1, max_length=24)
    claims: Optional[ClaimsSchema] = None
    verification: Optional[VerificationSchema] = None
    verify_business: bool = False


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class DomainSchema(BaseModel):
    """Response models are read straight off the domain dataclasses"""

    model_config = ConfigDict(from_attributes=True)


class TransactionSchema(DomainSchema):
    date: date
    amount_cents: int
    type: str
    description: str
    page: int
    category: Optional[str] = None


class ParseWarningSchema(DomainSchema):
    page: int
    line_number: int
    text: str
    reason: str


class ParseQualitySchema(DomainSchema):
    matched_lines: int
    unmatched_lines: int
    skipped_lines: int
    discarded_records: int
    ratio: float


class PageWarningSchema(DomainSchema):
    missing_pages: List[int]
    sequence_gaps: List[Tuple[int, int]]
    message: str


class PageInfoSchema(DomainSchema):
    total_pages: int
    discovered_pages: List[int]
    expected_pages: Optional[int] = None
    missing_pages: List[int]
    sequence_gaps: List[Tuple[int, int]]
    marker_source: str
    is_complete: bool
    warnings: List[PageWarningSchema]


class DailyBalanceSchema(DomainSchema):
    date: date
    balance_cents: int


class RecurringDepositSchema(DomainSchema):
    amount_cents: int
    description: str
    description_hash: str
    occurrences: int


class DepositStatisticsSchema(DomainSchema):
    deposit_count: int
    mean_gap_days: float
    gap_variance: float
    largest_deposit_cents: int
    recurring_deposits: List[RecurringDepositSchema]


class MetricsSchema(DomainSchema):
    opening_balance_cents: int
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    period_days: int
    daily_balances: List[DailyBalanceSchema]
    average_daily_balance_cents: int
    minimum_balance_cents: int
    maximum_balance_cents: int
    closing_balance_cents: int
    low_balance_threshold_cents: int
    days_below_threshold: int
    negative_balance_days: int
    negative_balance_dates: List[date]
    nsf_count: int
    nsf_transactions: List[TransactionSchema]
    total_deposits_cents: int
    total_withdrawals_cents: int
    deposit_count: int
    withdrawal_count: int
    net_cash_flow_cents: int
    monthly_deposits: Dict[str, int]
    deposit_statistics: DepositStatisticsSchema
    transaction_count: int
    velocity_ratio: float


class ScoreComponentsSchema(DomainSchema):
    income_stability: float
    expense_control: float
    cash_flow_consistency: float
    behavioral_risk: float
    balance_stability: float


class ScoreSchema(DomainSchema):
    score: int
    grade: str
    risk_level: RiskLevel
    components: ScoreComponentsSchema
    composite: float
    risk_penalty: float


class AlertSchema(DomainSchema):
    code: AlertCode
    severity: Severity
    message: str
    evidence: Dict[str, Any]
    timestamp: datetime

    @field_validator("evidence", mode="before")
    @classmethod
    def evidence_to_dict(cls, value: Any) -> Any:
        if is_dataclass(value):
            return jsonable_encoder(value)
        return value


class CriterionSchema(DomainSchema):
    name: str
    passed: bool
    observed: float
    threshold: float
    comparator: str


class WaterfallSchema(DomainSchema):
    state: DecisionState
    criteria: Dict[str, CriterionSchema]
    passed: bool
    pass_rate: float
    mode: str
    enrichment_executed: bool
    enrichment_status: EnrichmentStatus
    total_cost_cents: int
    cost_saved_cents: int
    enrichment_payload: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class ConfidenceSchema(DomainSchema):
    level: ConfidenceLevel
    parse_quality_ratio: float
    pages_complete: bool
    reasons: List[str]


class StatementAnalysisResponse(BaseModel):
    """Response for POST /v1/statements/analyze"""

    fingerprint: str
    bank: Optional[str] = None
    transactions: List[TransactionSchema]
    parse_quality: ParseQualitySchema
    parse_warnings: List[ParseWarningSchema]
    pages: PageInfoSchema
    metrics: MetricsSchema
    score: ScoreSchema
    alerts: List[AlertSchema]
    waterfall: WaterfallSchema
    confidence: ConfidenceSchema
    analyzed_at: datetime

    @classmethod
    def from_domain(cls, analysis: StatementAnalysis) -> "StatementAnalysisResponse":
        baseline = analysis.baseline
        extraction = baseline.extraction
        return cls(
            fingerprint=baseline.fingerprint,
            bank=extraction.bank,
            transactions=[TransactionSchema.model_validate(t) for t in extraction.transactions],
            parse_quality=ParseQualitySchema.model_validate(extraction.quality),
            parse_warnings=[ParseWarningSchema.model_validate(w) for w in extraction.warnings],
            pages=PageInfoSchema.model_validate(baseline.pages),
            metrics=MetricsSchema.model_validate(baseline.metrics),
            score=ScoreSchema.model_validate(baseline.score),
            alerts=[AlertSchema.model_validate(a) for a in baseline.alerts],
            waterfall=WaterfallSchema.model_validate(analysis.waterfall),
            confidence=ConfidenceSchema.model_validate(baseline.confidence),
            analyzed_at=analysis.analyzed_at,
        )


class ApplicationAnalysisResponse(BaseModel):
    """Response for POST /v1/applications/analyze"""

    statements: List[StatementAnalysisResponse]
    alerts: List[AlertSchema]
    total_cost_cents: int
    total_cost_saved_cents: int
    analyzed_at: datetime

    @classmethod
    def from_domain(cls, analysis: ApplicationAnalysis) -> "ApplicationAnalysisResponse":
        return cls(
            statements=[StatementAnalysisResponse.from_domain(s) for s in analysis.statements],
            alerts=[AlertSchema.model_validate(a) for a in analysis.alerts],
            total_cost_cents=sum(s.waterfall.total_cost_cents for s in analysis.statements),
            total_cost_saved_cents=sum(s.waterfall.cost_saved_cents for s in analysis.statements),
            analyzed_at=analysis.analyzed_at,
        )
