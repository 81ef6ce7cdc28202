"""Alert webhook client with exponential backoff retry logic"""

import httpx
import asyncio
from typing import Any, Dict, List, Sequence
from fastapi.encoders import jsonable_encoder
from veritas_gateway.config import settings
from veritas_gateway.domain.models import Alert, Severity
from veritas_gateway.infrastructure.observability.metrics import webhook_latency_histogram, webhook_failure_counter

NOTIFY_SEVERITIES = (Severity.CRITICAL, Severity.HIGH)


def alert_to_dict(alert: Alert) -> Dict[str, Any]:
    """Plain JSON-safe representation of an alert"""
    return jsonable_encoder(alert)


class AlertNotifier:
    """Client for forwarding CRITICAL/HIGH alerts to the CRM webhook"""

    def __init__(
        self,
        webhook_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.webhook_url = webhook_url or settings.alert_webhook_url
        self.max_retries = settings.webhook_max_retries
        self.backoff_base = settings.webhook_backoff_base
        self.transport = transport

    @staticmethod
    def select(alerts: Sequence[Alert]) -> List[Alert]:
        return [a for a in alerts if a.severity in NOTIFY_SEVERITIES]

    async def send_alerts(self, reference: str, alerts: Sequence[Alert]) -> bool:
        """
        Send CRITICAL/HIGH alerts for one analysis with retry logic.

        Retry strategy:
        - Exponential backoff: 1s, 2s, 4s, 8s (base * 2^(attempt-1))
        - Retries on HTTP error statuses and network failures
        - Tracks latency histogram and failure counter

        Returns False when there was nothing to send.
        """
        selected = self.select(alerts)
        if not selected:
            return False

        payload = {
            "event": "RISK_ALERTS",
            "reference": reference,
            "alerts": [alert_to_dict(a) for a in selected],
        }

        attempt = 0
        async with httpx.AsyncClient(transport=self.transport) as client:
            while attempt < self.max_retries:
                try:
                    with webhook_latency_histogram.time():
                        response = await client.post(
                            self.webhook_url,
                            json=payload,
                            timeout=10.0,
                        )
                        response.raise_for_status()
                        return True

                except (httpx.HTTPStatusError, httpx.RequestError):
                    attempt += 1
                    webhook_failure_counter.inc()

                    if attempt >= self.max_retries:
                        raise

                    backoff = self.backoff_base * (2 ** (attempt - 1))
                    await asyncio.sleep(backoff)
        return False
