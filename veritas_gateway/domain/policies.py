"""Tunable thresholds and keyword lists for the analysis pipeline.

Every engine takes its policy as an argument and falls back to the defaults
below, so callers (and tests) can override one knob without touching the rest.
Settings nests these models so each field can also come from the environment.
"""

from typing import Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ExtractionPolicy(BaseModel):
    """Line classification limits for the transaction extractor"""

    model_config = ConfigDict(frozen=True)

    max_continuation_lines: int = Field(6, ge=1)
    max_line_length: int = Field(160, ge=20)
    max_description_length: int = Field(500, ge=20)


class PagePolicy(BaseModel):
    """Page marker sanity limits"""

    model_config = ConfigDict(frozen=True)

    page_ceiling: int = Field(100, ge=1)


class MetricsPolicy(BaseModel):
    """Thresholds and vocabulary used while deriving financial metrics"""

    model_config = ConfigDict(frozen=True)

    low_balance_threshold_cents: int = 50_000  # $500
    nsf_keywords: List[str] = [
        "nsf",
        "non-sufficient",
        "insufficient",
        "overdraft",
        "od fee",
        "returned item",
        "returned check",
        "overdrawn",
    ]
    recurring_min_occurrences: int = Field(2, ge=2)


class ScoringPolicy(BaseModel):
    """Sub-score weights and score range for the Veritas Score"""

    model_config = ConfigDict(frozen=True)

    income_stability_weight: float = 25.0
    expense_control_weight: float = 20.0
    cash_flow_consistency_weight: float = 20.0
    behavioral_risk_weight: float = 15.0
    balance_stability_weight: float = 15.0
    max_risk_penalty: float = 5.0

    score_floor: int = 300
    score_ceiling: int = 850

    balance_baseline_cents: int = 500_000  # $5,000 average balance earns full marks
    nsf_penalty_per_event: float = 25.0

    @model_validator(mode="after")
    def check_weights(self) -> "ScoringPolicy":
        total = (
            self.income_stability_weight
            + self.expense_control_weight
            + self.cash_flow_consistency_weight
            + self.behavioral_risk_weight
            + self.balance_stability_weight
            + self.max_risk_penalty
        )
        if abs(total - 100.0) > 1e-9:
            raise ValueError(f"weights plus max risk penalty must total 100, got {total}")
        if self.score_floor >= self.score_ceiling:
            raise ValueError("score_floor must be below score_ceiling")
        return self


class AlertPolicy(BaseModel):
    """Alert rule thresholds"""

    model_config = ConfigDict(frozen=True)

    nsf_count_threshold: int = 3
    low_average_balance_cents: int = 50_000  # $500.00, strictly below triggers
    negative_cash_flow_high_cents: int = 500_000  # $5,000
    low_score_medium: int = 550
    low_score_high: int = 450
    revenue_discrepancy_pct: float = 20.0
    time_in_business_months: int = 3
    time_in_business_high_months: int = 12
    time_in_business_critical_months: int = 24
    withdrawal_ratio_medium: float = 0.9
    withdrawal_ratio_high: float = 1.1
    income_stability_low: float = 70.0
    income_stability_medium: float = 55.0
    income_stability_high: float = 40.0
    velocity_ratio_medium: float = 2.0
    velocity_ratio_high: float = 3.5
    velocity_ratio_critical: float = 5.0
    large_deposit_cents: int = 1_000_000  # $10,000, strictly above triggers
    large_deposit_total_high_cents: int = 5_000_000  # $50,000
    large_deposit_count_high: int = 3
    balance_tolerance_cents: int = 100  # $1.00
    name_similarity_threshold: float = Field(80.0, ge=0.0, le=100.0)
    max_evidence_items: int = 10


class WaterfallPolicy(BaseModel):
    """Gate criteria and cost table for paid enrichment"""

    model_config = ConfigDict(frozen=True)

    min_score: int = 600
    min_average_balance_cents: int = 500_000  # $5,000
    max_nsf_count: int = 2
    min_transaction_count: int = 20

    mode: Literal["all", "pass_rate"] = "all"
    min_pass_rate: float = Field(0.67, gt=0.0, le=1.0)

    enrichment_costs_cents: Dict[str, int] = {
        "business_verification": 1_500,  # $15.00
        "credit_report": 2_500,  # $25.00
    }
    enrichment_timeout_seconds: float = Field(10.0, gt=0)

    @property
    def total_cost_cents(self) -> int:
        return sum(self.enrichment_costs_cents.values())


class AnalysisPolicies(BaseModel):
    """All stage policies for one analysis run"""

    model_config = ConfigDict(frozen=True)

    extraction: ExtractionPolicy = ExtractionPolicy()
    pages: PagePolicy = PagePolicy()
    metrics: MetricsPolicy = MetricsPolicy()
    scoring: ScoringPolicy = ScoringPolicy()
    alerts: AlertPolicy = AlertPolicy()
    waterfall: WaterfallPolicy = WaterfallPolicy()
