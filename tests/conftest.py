"""Pytest fixtures for testing"""

import pytest
from datetime import date, timedelta
from typing import Any, Dict, List, Optional
from fastapi.testclient import TestClient
from veritas_gateway.api.main import create_app
from veritas_gateway.api.dependencies import get_alert_notifier, get_enrichment_client, get_registry_client
from veritas_gateway.domain.exceptions import RegistryLookupError
from veritas_gateway.domain.models import (
    Alert,
    BusinessVerification,
    EnrichmentRequest,
    EnrichmentResult,
    Transaction,
)
from veritas_gateway.infrastructure.clients.notifier import AlertNotifier


class FakeEnricher:
    """In-memory enrichment provider recording every request"""

    def __init__(self, cost_cents: Optional[int] = None, payload: Optional[Dict[str, Any]] = None):
        self.cost_cents = cost_cents
        self.payload = payload or {"business_verified": True, "credit_score": 712}
        self.requests: List[EnrichmentRequest] = []

    async def enrich(self, request: EnrichmentRequest) -> EnrichmentResult:
        self.requests.append(request)
        return EnrichmentResult(payload=self.payload, cost_cents=self.cost_cents)


class FakeNotifier(AlertNotifier):
    """Alert notifier that records deliveries instead of posting them"""

    def __init__(self):
        super().__init__(webhook_url="http://crm.test/hook")
        self.sent: List[tuple] = []

    async def send_alerts(self, reference: str, alerts: List[Alert]) -> bool:
        self.sent.append((reference, self.select(alerts)))
        return True


class FakeRegistry:
    def __init__(self, verification: Optional[BusinessVerification] = None):
        self.verification = verification
        self.lookups: List[tuple] = []

    async def get_verification(self, business_name: str, state: str | None = None) -> BusinessVerification:
        self.lookups.append((business_name, state))
        if self.verification is None:
            raise RegistryLookupError("not found")
        return self.verification


def build_statement(
    deposits: List[tuple],
    withdrawals: List[tuple],
    opening: str = "$12,000.00",
    header: str = "JPMorgan Chase Bank, N.A.",
    period: str = "Statement Period: January 1, 2024 through January 31, 2024",
) -> str:
    """Two-page statement: deposits on page 1, withdrawals on page 2"""
    page_one = [header, period, f"Beginning Balance {opening}", "DEPOSITS AND ADDITIONS"]
    page_one += [f"{day} {description} {amount}" for day, description, amount in deposits]
    page_one.append("Page 1 of 2")
    page_two = ["ATM & DEBIT CARD WITHDRAWALS"]
    page_two += [f"{day} {description} {amount}" for day, description, amount in withdrawals]
    page_two.append("Page 2 of 2")
    return "\n".join(page_one) + "\f" + "\n".join(page_two)


HEALTHY_DEPOSITS = [(f"01/{day:02d}", "Remote Online Deposit", "3,000.00") for day in (2, 9, 16, 23, 30)]
HEALTHY_WITHDRAWALS = [(f"01/{day:02d}", "Card Purchase Office Depot", "150.00") for day in range(3, 23)]


@pytest.fixture
def healthy_statement() -> str:
    """
    January 2024, opening $12,000: five weekly $3,000 deposits and twenty
    $150 card purchases. Every sub-score is 100, so the score is 850.
    """
    return build_statement(HEALTHY_DEPOSITS, HEALTHY_WITHDRAWALS)


@pytest.fixture
def risky_statement() -> str:
    """
    March 2024, opening $400: one $1,000 deposit, $1,500 rent and three
    NSF-type fees. Balance is negative from 03/05 on.
    """
    return "\n".join(
        [
            "Statement Period: 03/01/2024 - 03/31/2024",
            "Beginning Balance $400.00",
            "Deposits",
            "03/04 Mobile Deposit 1,000.00",
            "Withdrawals",
            "03/05 Rent Payment 1,500.00",
            "03/06 NSF Fee 35.00",
            "03/07 Overdraft Fee 35.00",
            "03/08 Returned Item Fee 35.00",
            "Page 1 of 1",
        ]
    )


@pytest.fixture
def ach_statement() -> str:
    """ACH credit whose description spans three lines, amount alone on the fourth"""
    return "\n".join(
        [
            "DEPOSITS AND ADDITIONS",
            "01/05 Orig CO Name:Acme Corp",
            "Orig ID:1234567890 Desc Date:010524",
            "CO Entry Descr:Payroll Sec:CCD",
            "1,892.00",
        ]
    )


@pytest.fixture
def make_transaction():
    """Factory for statement transactions; day offsets count from 2024-01-01"""
    start = date(2024, 1, 1)

    def _make(day: int, amount_cents: int, description: str = "Transaction") -> Transaction:
        return Transaction(
            date=start + timedelta(days=day),
            amount_cents=amount_cents,
            type="credit" if amount_cents > 0 else "debit",
            description=description,
            page=1,
            raw_text=description,
        )

    return _make


@pytest.fixture
def fake_enricher() -> FakeEnricher:
    return FakeEnricher()


@pytest.fixture
def fake_notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def fake_registry() -> FakeRegistry:
    return FakeRegistry(
        BusinessVerification(
            registration_date=date(2020, 3, 1),
            is_active=True,
            status="ACTIVE",
            registered_name="Acme Corp LLC",
        )
    )


@pytest.fixture
def client(fake_enricher: FakeEnricher, fake_notifier: FakeNotifier, fake_registry: FakeRegistry) -> TestClient:
    """Create FastAPI test client with in-memory collaborators"""
    app = create_app()
    app.dependency_overrides[get_enrichment_client] = lambda: fake_enricher
    app.dependency_overrides[get_alert_notifier] = lambda: fake_notifier
    app.dependency_overrides[get_registry_client] = lambda: fake_registry
    return TestClient(app)
