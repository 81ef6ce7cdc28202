"""Configuration management using Pydantic Settings"""

from pydantic_settings import BaseSettings, SettingsConfigDict

from veritas_gateway.domain.policies import (
    AlertPolicy,
    AnalysisPolicies,
    ExtractionPolicy,
    MetricsPolicy,
    PagePolicy,
    ScoringPolicy,
    WaterfallPolicy,
)


class Settings(BaseSettings):
    """
    Application configuration loaded from environment variables.

    Policy fields are nested: WATERFALL__MIN_SCORE=650 overrides one threshold.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # External Services
    enrichment_api_base: str = "http://localhost:8001"
    registry_api_base: str = "http://localhost:8003"
    alert_webhook_url: str = "http://localhost:8002/mock-crm"

    # Service
    service_name: str = "veritas-gateway"
    log_level: str = "INFO"

    # HTTP Client
    http_timeout_seconds: float = 5.0
    enrichment_timeout_seconds: float = 10.0
    webhook_max_retries: int = 5
    webhook_backoff_base: float = 1.0  # Exponential backoff base in seconds

    # Analysis policies
    extraction: ExtractionPolicy = ExtractionPolicy()
    pages: PagePolicy = PagePolicy()
    metrics: MetricsPolicy = MetricsPolicy()
    scoring: ScoringPolicy = ScoringPolicy()
    alerts: AlertPolicy = AlertPolicy()
    waterfall: WaterfallPolicy = WaterfallPolicy()

    def analysis_policies(self) -> AnalysisPolicies:
        """Bundle the policy blocks, applying the enrichment timeout to the waterfall"""
        waterfall = self.waterfall.model_copy(
            update={"enrichment_timeout_seconds": self.enrichment_timeout_seconds}
        )
        return AnalysisPolicies(
            extraction=self.extraction,
            pages=self.pages,
            metrics=self.metrics,
            scoring=self.scoring,
            alerts=self.alerts,
            waterfall=waterfall,
        )


settings = Settings()
