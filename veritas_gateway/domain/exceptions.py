"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ValidationError(DomainException):
    """Caller violated an explicit parameter contract"""

    pass


class UnreadableStatementError(ValidationError):
    """Statement text is empty or not text at all"""

    pass


class RuleEvaluationError(DomainException):
    """A single alert rule failed; the engine drops that rule's alert"""

    def __init__(self, rule: str, cause: Exception):
        super().__init__(f"Alert rule {rule} failed: {cause}")
        self.rule = rule
        self.cause = cause


class EnrichmentFailure(DomainException):
    """External enrichment call failed or returned unusable data"""

    pass


class RegistryLookupError(DomainException):
    """Business registry is unavailable or returned invalid data"""

    pass
