"""POST /v1/statements/analyze and /v1/applications/analyze - statement risk analysis endpoints"""

import time
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, BackgroundTasks, Request

from veritas_gateway.api.v1.schemas import (
    ApplicationAnalysisRequest,
    ApplicationAnalysisResponse,
    ClaimsSchema,
    StatementAnalysisRequest,
    StatementAnalysisResponse,
    VerificationSchema,
)
from veritas_gateway.api.dependencies import (
    get_alert_notifier,
    get_enrichment_client,
    get_policies,
    get_registry_client,
    get_request_id,
)
from veritas_gateway.domain.exceptions import RegistryLookupError, ValidationError
from veritas_gateway.domain.models import BusinessVerification, StatementAnalysis
from veritas_gateway.domain.pipeline import analyze_application, analyze_statement
from veritas_gateway.domain.policies import AnalysisPolicies
from veritas_gateway.domain.waterfall import EnrichmentProvider
from veritas_gateway.infrastructure.clients.notifier import AlertNotifier
from veritas_gateway.infrastructure.clients.registry import RegistryClient
from veritas_gateway.infrastructure.observability.metrics import record_alerts, record_analysis, record_rule_error
from veritas_gateway.infrastructure.observability.logging import log_analysis

router = APIRouter()


async def resolve_verification(
    claims: Optional[ClaimsSchema],
    verification: Optional[VerificationSchema],
    verify_business: bool,
    registry: RegistryClient,
    request_id: str,
) -> Optional[BusinessVerification]:
    """Caller-supplied registry data wins; otherwise look the business up when asked"""
    if verification is not None:
        return verification.to_domain()
    if not verify_business or claims is None or not claims.business_name:
        return None
    try:
        return await registry.get_verification(claims.business_name, claims.business_state)
    except RegistryLookupError as e:
        # Registry data is optional; the dependent alert rules are skipped
        logging.warning(f"Registry lookup failed: {e}", extra={"request_id": request_id})
        return None


def _record(analysis: StatementAnalysis, request_id: str, duration_ms: float) -> None:
    baseline = analysis.baseline
    record_analysis(analysis)
    log_analysis(
        request_id=request_id,
        fingerprint=baseline.fingerprint,
        score=baseline.score.score,
        risk_level=baseline.score.risk_level.value,
        alert_count=len(baseline.alerts),
        decision_state=analysis.waterfall.state.value,
        confidence=baseline.confidence.level.value,
        duration_ms=duration_ms,
    )


@router.post("/statements/analyze", response_model=StatementAnalysisResponse)
async def analyze_statement_endpoint(
    request_body: StatementAnalysisRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    policies: AnalysisPolicies = Depends(get_policies),
    enricher: EnrichmentProvider = Depends(get_enrichment_client),
    registry: RegistryClient = Depends(get_registry_client),
    notifier: AlertNotifier = Depends(get_alert_notifier),
):
    """
    Analyze one bank statement.

    Flow:
    1. Resolve business verification (supplied, looked up, or absent)
    2. Extract, validate pages, compute metrics, score, alerts
    3. Run the cost-gated enrichment waterfall
    4. Forward CRITICAL/HIGH alerts to the CRM webhook in the background
    5. Return the full analysis
    """
    start_time = time.time()
    request_id = get_request_id(request)

    try:
        verification = await resolve_verification(
            request_body.claims,
            request_body.verification,
            request_body.verify_business,
            registry,
            request_id,
        )
        analysis = await analyze_statement(
            request_body.content,
            bank_hint=request_body.bank_hint,
            statement_year=request_body.statement_year,
            opening_balance_cents=request_body.opening_balance,
            income_stability=request_body.income_stability,
            claims=request_body.claims.to_domain() if request_body.claims else None,
            verification=verification,
            enricher=enricher,
            policies=policies,
            on_rule_error=record_rule_error,
        )

    except ValidationError as e:
        logging.warning(f"Invalid statement: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=422, detail=str(e))

    except Exception as e:
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    alerts = analysis.baseline.alerts
    record_alerts(alerts)
    if notifier.select(alerts):
        background_tasks.add_task(notifier.send_alerts, analysis.baseline.fingerprint, alerts)

    _record(analysis, request_id, (time.time() - start_time) * 1000)
    return StatementAnalysisResponse.from_domain(analysis)


@router.post("/applications/analyze", response_model=ApplicationAnalysisResponse)
async def analyze_application_endpoint(
    request_body: ApplicationAnalysisRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    policies: AnalysisPolicies = Depends(get_policies),
    enricher: EnrichmentProvider = Depends(get_enrichment_client),
    registry: RegistryClient = Depends(get_registry_client),
    notifier: AlertNotifier = Depends(get_alert_notifier),
):
    """
    Analyze all statements of one application.

    Statement baselines run concurrently; revenue and time-in-business checks
    use every statement together.
    """
    start_time = time.time()
    request_id = get_request_id(request)

    try:
        verification = await resolve_verification(
            request_body.claims,
            request_body.verification,
            request_body.verify_business,
            registry,
            request_id,
        )
        analysis = await analyze_application(
            [s.to_domain() for s in request_body.statements],
            claims=request_body.claims.to_domain() if request_body.claims else None,
            verification=verification,
            enricher=enricher,
            policies=policies,
            on_rule_error=record_rule_error,
        )

    except ValidationError as e:
        logging.warning(f"Invalid application statements: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=422, detail=str(e))

    except Exception as e:
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    record_alerts(analysis.alerts)
    if notifier.select(analysis.alerts):
        reference = ",".join(s.baseline.fingerprint[:12] for s in analysis.statements)
        background_tasks.add_task(notifier.send_alerts, reference, analysis.alerts)

    duration_ms = (time.time() - start_time) * 1000
    for statement in analysis.statements:
        _record(statement, request_id, duration_ms)
    return ApplicationAnalysisResponse.from_domain(analysis)
