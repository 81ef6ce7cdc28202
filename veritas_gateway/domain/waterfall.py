"""Waterfall decision engine - cost-gated paid enrichment

States: BASELINE_ONLY (initial) -> ENRICHED (terminal for the run). The move to
ENRICHED happens only when the gate passes and the enrichment call returns.
Skipped enrichment books the cost table total as savings; failed enrichment
books neither cost nor savings.
"""

import asyncio
import logging
from typing import Dict, Optional, Protocol, Tuple

from veritas_gateway.domain.exceptions import EnrichmentFailure
from veritas_gateway.domain.models import (
    CriterionResult,
    DecisionState,
    EnrichmentRequest,
    EnrichmentResult,
    EnrichmentStatus,
    FinancialMetrics,
    RiskScore,
    WaterfallDecision,
)
from veritas_gateway.domain.policies import WaterfallPolicy

logger = logging.getLogger(__name__)


class EnrichmentProvider(Protocol):
    """External paid verification collaborator"""

    async def enrich(self, request: EnrichmentRequest) -> EnrichmentResult:
        ...


def _criterion(name: str, observed: float, threshold: float, comparator: str) -> CriterionResult:
    passed = observed >= threshold if comparator == ">=" else observed <= threshold
    return CriterionResult(name=name, passed=passed, observed=observed, threshold=threshold, comparator=comparator)


def evaluate_criteria(
    score: RiskScore,
    metrics: FinancialMetrics,
    policy: WaterfallPolicy | None = None,
) -> Tuple[Dict[str, CriterionResult], bool, float]:
    """
    Check every gate criterion.

    Returns (criteria, passed, pass_rate). In "all" mode every criterion must
    pass; in "pass_rate" mode the share of passing criteria must reach
    min_pass_rate.
    """
    policy = policy or WaterfallPolicy()
    checks = [
        _criterion("min_score", score.score, policy.min_score, ">="),
        _criterion(
            "min_average_balance",
            metrics.average_daily_balance_cents,
            policy.min_average_balance_cents,
            ">=",
        ),
        _criterion("max_nsf_count", metrics.nsf_count, policy.max_nsf_count, "<="),
        _criterion("min_transaction_count", metrics.transaction_count, policy.min_transaction_count, ">="),
    ]
    criteria = {c.name: c for c in checks}
    pass_rate = round(sum(1 for c in checks if c.passed) / len(checks), 4)

    if policy.mode == "pass_rate":
        passed = pass_rate >= policy.min_pass_rate
    else:
        passed = all(c.passed for c in checks)
    return criteria, passed, pass_rate


async def run_waterfall(
    score: RiskScore,
    metrics: FinancialMetrics,
    enricher: Optional[EnrichmentProvider] = None,
    policy: WaterfallPolicy | None = None,
    fingerprint: Optional[str] = None,
) -> WaterfallDecision:
    """Gate, then (maybe) enrich under a bounded timeout. Never raises for enrichment problems."""
    policy = policy or WaterfallPolicy()
    criteria, passed, pass_rate = evaluate_criteria(score, metrics, policy)

    def decision(state, status, cost=0, saved=0, payload=None, error=None) -> WaterfallDecision:
        return WaterfallDecision(
            state=state,
            criteria=criteria,
            passed=passed,
            pass_rate=pass_rate,
            mode=policy.mode,
            enrichment_executed=state == DecisionState.ENRICHED,
            enrichment_status=status,
            total_cost_cents=cost,
            cost_saved_cents=saved,
            enrichment_payload=payload,
            error=error,
        )

    if not passed:
        failed = [name for name, c in criteria.items() if not c.passed]
        logger.info(
            "Enrichment skipped",
            extra={"step": "waterfall", "fingerprint": fingerprint, "failed_criteria": failed},
        )
        return decision(
            DecisionState.BASELINE_ONLY,
            EnrichmentStatus.SKIPPED,
            saved=policy.total_cost_cents,
        )

    if enricher is None:
        logger.warning("Enrichment gate passed but no provider is configured", extra={"step": "waterfall"})
        return decision(
            DecisionState.BASELINE_ONLY,
            EnrichmentStatus.UNAVAILABLE,
            error="no enrichment provider configured",
        )

    request = EnrichmentRequest(
        fingerprint=fingerprint,
        score=score.score,
        average_daily_balance_cents=metrics.average_daily_balance_cents,
        nsf_count=metrics.nsf_count,
        transaction_count=metrics.transaction_count,
        products=tuple(policy.enrichment_costs_cents),
    )

    try:
        result = await asyncio.wait_for(enricher.enrich(request), timeout=policy.enrichment_timeout_seconds)
    except asyncio.TimeoutError:
        logger.warning(
            f"Enrichment timed out after {policy.enrichment_timeout_seconds}s",
            extra={"step": "waterfall", "fingerprint": fingerprint},
        )
        return decision(
            DecisionState.BASELINE_ONLY,
            EnrichmentStatus.TIMED_OUT,
            error=f"enrichment timed out after {policy.enrichment_timeout_seconds}s",
        )
    except EnrichmentFailure as e:
        logger.warning(f"Enrichment failed: {e}", extra={"step": "waterfall", "fingerprint": fingerprint})
        return decision(DecisionState.BASELINE_ONLY, EnrichmentStatus.FAILED, error=str(e))
    except Exception as e:
        logger.exception("Unexpected enrichment error", extra={"step": "waterfall", "fingerprint": fingerprint})
        return decision(DecisionState.BASELINE_ONLY, EnrichmentStatus.FAILED, error=f"unexpected error: {e}")

    cost = result.cost_cents if result.cost_cents is not None else policy.total_cost_cents
    if cost < 0:
        return decision(
            DecisionState.BASELINE_ONLY,
            EnrichmentStatus.FAILED,
            error=f"enrichment reported a negative cost ({cost})",
        )

    logger.info(
        "Enrichment completed",
        extra={"step": "waterfall", "fingerprint": fingerprint, "cost_cents": cost},
    )
    return decision(
        DecisionState.ENRICHED,
        EnrichmentStatus.COMPLETED,
        cost=cost,
        payload=dict(result.payload),
    )
