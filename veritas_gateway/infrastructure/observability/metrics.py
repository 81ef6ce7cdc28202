"""Prometheus metrics for monitoring scores, alerts, enrichment spend and request latency"""

from typing import Iterable

from prometheus_client import Counter, Histogram

from veritas_gateway.domain.exceptions import RuleEvaluationError
from veritas_gateway.domain.models import Alert, StatementAnalysis

# Analysis metrics
analysis_counter = Counter(
    "veritas_analysis_total",
    "Statement analyses completed",
    ["risk_level"],  # LOW | MODERATE | MEDIUM | HIGH | VERY_HIGH
)

score_histogram = Histogram(
    "veritas_score",
    "Distribution of Veritas Scores",
    buckets=[350, 450, 550, 600, 650, 700, 750, 800, 850],
)

unmatched_lines_counter = Counter(
    "veritas_unmatched_lines_total",
    "Statement lines that matched no transaction pattern",
)

# Alert metrics
alert_counter = Counter(
    "veritas_alerts_total",
    "Alerts raised",
    ["code", "severity"],
)

rule_error_counter = Counter(
    "veritas_alert_rule_errors_total",
    "Alert rules that raised during evaluation",
    ["rule"],
)

# Waterfall metrics
waterfall_decision_counter = Counter(
    "veritas_waterfall_decisions_total",
    "Waterfall decisions",
    ["state", "enrichment_status"],
)

enrichment_cost_counter = Counter(
    "veritas_enrichment_cost_cents_total",
    "Cents spent on paid enrichment",
)

enrichment_savings_counter = Counter(
    "veritas_enrichment_saved_cents_total",
    "Cents not spent because the waterfall gate failed",
)

enrichment_latency_histogram = Histogram(
    "enrichment_latency_seconds",
    "Enrichment API response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

enrichment_failure_counter = Counter(
    "enrichment_failures_total",
    "Failed enrichment API calls",
)

registry_failure_counter = Counter(
    "registry_lookup_failures_total",
    "Failed business registry lookups",
)

# Webhook metrics
webhook_latency_histogram = Histogram(
    "webhook_latency_seconds",
    "Alert webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

webhook_failure_counter = Counter(
    "webhook_failures_total",
    "Failed webhook deliveries",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_rule_error(error: RuleEvaluationError) -> None:
    rule_error_counter.labels(rule=error.rule).inc()


def record_alerts(alerts: Iterable[Alert]) -> None:
    for alert in alerts:
        alert_counter.labels(code=alert.code.value, severity=alert.severity.value).inc()


def record_analysis(analysis: StatementAnalysis) -> None:
    """Record score, parse quality and waterfall spend for one statement"""
    baseline = analysis.baseline
    analysis_counter.labels(risk_level=baseline.score.risk_level.value).inc()
    score_histogram.observe(baseline.score.score)
    unmatched_lines_counter.inc(baseline.extraction.quality.unmatched_lines)

    waterfall = analysis.waterfall
    waterfall_decision_counter.labels(
        state=waterfall.state.value,
        enrichment_status=waterfall.enrichment_status.value,
    ).inc()
    enrichment_cost_counter.inc(waterfall.total_cost_cents)
    enrichment_savings_counter.inc(waterfall.cost_saved_cents)
