"""Enrichment API HTTP client for paid business verification and credit reports"""

import httpx
from typing import Any, Dict
from veritas_gateway.domain.models import EnrichmentRequest, EnrichmentResult
from veritas_gateway.domain.exceptions import EnrichmentFailure
from veritas_gateway.config import settings
from veritas_gateway.infrastructure.observability.metrics import (
    enrichment_failure_counter,
    enrichment_latency_histogram,
)


class EnrichmentClient:
    """Client for the external enrichment API; implements EnrichmentProvider"""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.enrichment_api_base
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    async def enrich(self, request: EnrichmentRequest) -> EnrichmentResult:
        """
        Request enrichment for a statement that cleared the waterfall gate.

        The statement fingerprint is sent as the idempotency key so a caching
        proxy can answer repeats without charging twice.

        Raises:
            EnrichmentFailure: On timeout, HTTP errors, or invalid response
        """
        body: Dict[str, Any] = {
            "fingerprint": request.fingerprint,
            "score": request.score,
            "average_daily_balance_cents": request.average_daily_balance_cents,
            "nsf_count": request.nsf_count,
            "transaction_count": request.transaction_count,
            "products": list(request.products),
        }
        headers = {"Idempotency-Key": request.fingerprint} if request.fingerprint else {}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                with enrichment_latency_histogram.time():
                    response = await client.post(f"{self.base_url}/enrichment", json=body, headers=headers)
                response.raise_for_status()
                data = response.json()

                payload = data["payload"]
                if not isinstance(payload, dict):
                    raise TypeError("payload must be an object")
                cost = data.get("cost_cents")
                if cost is not None and (isinstance(cost, bool) or not isinstance(cost, int)):
                    raise TypeError("cost_cents must be an integer")
                return EnrichmentResult(payload=payload, cost_cents=cost)

            except httpx.TimeoutException as e:
                enrichment_failure_counter.inc()
                raise EnrichmentFailure(f"Enrichment API timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                enrichment_failure_counter.inc()
                raise EnrichmentFailure(f"Enrichment API error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                enrichment_failure_counter.inc()
                raise EnrichmentFailure(f"Enrichment API unreachable: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                enrichment_failure_counter.inc()
                raise EnrichmentFailure(f"Invalid enrichment response: {e}") from e
