"""Dependency injection for FastAPI endpoints"""

from fastapi import Request
from veritas_gateway.config import settings
from veritas_gateway.domain.policies import AnalysisPolicies
from veritas_gateway.infrastructure.clients.enrichment import EnrichmentClient
from veritas_gateway.infrastructure.clients.notifier import AlertNotifier
from veritas_gateway.infrastructure.clients.registry import RegistryClient


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_policies() -> AnalysisPolicies:
    """Provide analysis policies from settings"""
    return settings.analysis_policies()


def get_enrichment_client() -> EnrichmentClient:
    """Provide enrichment API client instance"""
    return EnrichmentClient()


def get_registry_client() -> RegistryClient:
    """Provide business registry client instance"""
    return RegistryClient()


def get_alert_notifier() -> AlertNotifier:
    """Provide alert webhook client instance"""
    return AlertNotifier()
