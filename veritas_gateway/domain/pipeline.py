"""Statement and application analysis orchestration

One statement runs strictly in sequence: extract -> validate pages -> metrics
-> score -> alerts -> waterfall. Only the waterfall's enrichment call awaits.
Statements of one application share nothing, so their baselines are computed
concurrently in worker threads.
"""

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence

from veritas_gateway.domain.alerts import RuleErrorHandler, generate_alerts
from veritas_gateway.domain.extraction import StatementText, extract_transactions, normalize_bank, split_pages
from veritas_gateway.domain.metrics import OMITTED, calculate_financial_metrics
from veritas_gateway.domain.models import (
    ApplicationAnalysis,
    ApplicationClaims,
    BaselineAnalysis,
    BusinessVerification,
    ConfidenceLevel,
    ConfidenceReport,
    ParseQuality,
    StatementAnalysis,
    StatementPageInfo,
    StatementReport,
)
from veritas_gateway.domain.pages import validate_pages
from veritas_gateway.domain.policies import AnalysisPolicies
from veritas_gateway.domain.scoring import calculate_risk_score
from veritas_gateway.domain.waterfall import EnrichmentProvider, run_waterfall

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE_RATIO = 0.9
MEDIUM_CONFIDENCE_RATIO = 0.6


@dataclass(frozen=True)
class StatementInput:
    """One statement of an application"""

    text: StatementText
    bank_hint: Optional[str] = None
    statement_year: Optional[int] = None
    opening_balance_cents: Any = OMITTED
    income_stability: Optional[float] = None


def statement_fingerprint(text: StatementText, bank_hint: Optional[str] = None) -> str:
    """
    Stable content key for a statement, usable as an idempotency key.

    Whitespace differences inside lines and trailing blank pages do not change
    the fingerprint.
    """
    pages = split_pages(text)
    digest = hashlib.sha256()
    digest.update((normalize_bank(bank_hint) or "").encode("utf-8"))
    for page in pages:
        digest.update(b"\f")
        normalized = "\n".join(" ".join(line.split()) for line in page.splitlines() if line.strip())
        digest.update(normalized.encode("utf-8"))
    return digest.hexdigest()


def assess_confidence(quality: ParseQuality, pages: StatementPageInfo) -> ConfidenceReport:
    ratio = quality.ratio
    reasons = []
    if not pages.is_complete:
        reasons.extend(w.message for w in pages.warnings)
    if ratio < HIGH_CONFIDENCE_RATIO:
        reasons.append(f"{quality.unmatched_lines} statement line(s) could not be parsed")

    if pages.is_complete and ratio >= HIGH_CONFIDENCE_RATIO:
        level = ConfidenceLevel.HIGH
    elif ratio >= MEDIUM_CONFIDENCE_RATIO:
        level = ConfidenceLevel.MEDIUM
    else:
        level = ConfidenceLevel.LOW
    return ConfidenceReport(
        level=level,
        parse_quality_ratio=ratio,
        pages_complete=pages.is_complete,
        reasons=tuple(reasons),
    )


def build_baseline(
    text: StatementText,
    bank_hint: Optional[str] = None,
    statement_year: Optional[int] = None,
    opening_balance_cents: Any = OMITTED,
    income_stability: Optional[float] = None,
    claims: Optional[ApplicationClaims] = None,
    verification: Optional[BusinessVerification] = None,
    policies: AnalysisPolicies | None = None,
    now: Optional[datetime] = None,
    statement_index: int = 0,
    application_rules: bool = True,
    on_rule_error: Optional[RuleErrorHandler] = None,
) -> BaselineAnalysis:
    """
    Everything that can be known about a statement without a paid call.

    When the caller omits the opening balance, the balance printed on the
    statement is used if one was found, otherwise zero.
    """
    policies = policies or AnalysisPolicies()
    timestamp = now or datetime.now(timezone.utc)

    extraction = extract_transactions(
        text, bank_hint=bank_hint, statement_year=statement_year, policy=policies.extraction
    )
    pages = validate_pages(split_pages(text), extraction.page_count, policies.pages)
    for warning in pages.warnings:
        logger.warning(warning.message, extra={"step": "page_validation", "missing_pages": list(warning.missing_pages)})

    opening = opening_balance_cents
    if opening is OMITTED and extraction.opening_balance_cents is not None:
        opening = extraction.opening_balance_cents
    metrics = calculate_financial_metrics(extraction.transactions, opening, policies.metrics)
    score = calculate_risk_score(metrics, income_stability, policies.scoring)

    report = StatementReport(
        metrics=metrics,
        score=score,
        transactions=tuple(extraction.transactions),
        printed_closing_balance_cents=extraction.closing_balance_cents,
    )
    alerts = generate_alerts(
        [report],
        claims=claims,
        verification=verification,
        policy=policies.alerts,
        now=timestamp,
        application_rules=application_rules,
        start_index=statement_index,
        on_rule_error=on_rule_error,
    )
    return BaselineAnalysis(
        fingerprint=statement_fingerprint(text, bank_hint),
        extraction=extraction,
        pages=pages,
        metrics=metrics,
        score=score,
        alerts=alerts,
        confidence=assess_confidence(extraction.quality, pages),
    )


async def analyze_statement(
    text: StatementText,
    bank_hint: Optional[str] = None,
    statement_year: Optional[int] = None,
    opening_balance_cents: Any = OMITTED,
    income_stability: Optional[float] = None,
    claims: Optional[ApplicationClaims] = None,
    verification: Optional[BusinessVerification] = None,
    enricher: Optional[EnrichmentProvider] = None,
    policies: AnalysisPolicies | None = None,
    now: Optional[datetime] = None,
    on_rule_error: Optional[RuleErrorHandler] = None,
) -> StatementAnalysis:
    """Main entry point for a single statement"""
    policies = policies or AnalysisPolicies()
    timestamp = now or datetime.now(timezone.utc)
    baseline = build_baseline(
        text,
        bank_hint=bank_hint,
        statement_year=statement_year,
        opening_balance_cents=opening_balance_cents,
        income_stability=income_stability,
        claims=claims,
        verification=verification,
        policies=policies,
        now=timestamp,
        on_rule_error=on_rule_error,
    )
    waterfall = await run_waterfall(
        baseline.score,
        baseline.metrics,
        enricher=enricher,
        policy=policies.waterfall,
        fingerprint=baseline.fingerprint,
    )
    return StatementAnalysis(baseline=baseline, waterfall=waterfall, analyzed_at=timestamp)


async def analyze_application(
    statements: Sequence[StatementInput],
    claims: Optional[ApplicationClaims] = None,
    verification: Optional[BusinessVerification] = None,
    enricher: Optional[EnrichmentProvider] = None,
    policies: AnalysisPolicies | None = None,
    now: Optional[datetime] = None,
    on_rule_error: Optional[RuleErrorHandler] = None,
) -> ApplicationAnalysis:
    """
    Analyze every statement of one application.

    Statement baselines carry their own per-statement alerts. The application
    alert list covers all statements plus the claim and registry checks
    (revenue is annualized over the combined statement periods).
    """
    policies = policies or AnalysisPolicies()
    timestamp = now or datetime.now(timezone.utc)

    baselines: List[BaselineAnalysis] = list(
        await asyncio.gather(
            *(
                asyncio.to_thread(
                    build_baseline,
                    statement.text,
                    bank_hint=statement.bank_hint,
                    statement_year=statement.statement_year,
                    opening_balance_cents=statement.opening_balance_cents,
                    income_stability=statement.income_stability,
                    policies=policies,
                    now=timestamp,
                    statement_index=index,
                    application_rules=False,
                    on_rule_error=on_rule_error,
                )
                for index, statement in enumerate(statements)
            )
        )
    )

    alerts = generate_alerts(
        [b.report for b in baselines],
        claims=claims,
        verification=verification,
        policy=policies.alerts,
        now=timestamp,
        on_rule_error=on_rule_error,
    )

    analyses = []
    for baseline in baselines:
        waterfall = await run_waterfall(
            baseline.score,
            baseline.metrics,
            enricher=enricher,
            policy=policies.waterfall,
            fingerprint=baseline.fingerprint,
        )
        analyses.append(StatementAnalysis(baseline=baseline, waterfall=waterfall, analyzed_at=timestamp))

    return ApplicationAnalysis(statements=analyses, alerts=alerts, analyzed_at=timestamp)
