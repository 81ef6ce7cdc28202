"""Business registry HTTP client for verifying application claims"""

import httpx
from datetime import date
from veritas_gateway.domain.models import BusinessVerification
from veritas_gateway.domain.exceptions import RegistryLookupError
from veritas_gateway.config import settings
from veritas_gateway.infrastructure.observability.metrics import registry_failure_counter


class RegistryClient:
    """Client for an external business registry"""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.registry_api_base
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    async def get_verification(self, business_name: str, state: str | None = None) -> BusinessVerification:
        """
        Look up a business by name (and optionally state of registration).

        Raises:
            RegistryLookupError: On timeout, HTTP errors, or invalid response
        """
        params = {"name": business_name}
        if state:
            params["state"] = state

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.get(f"{self.base_url}/registry/businesses", params=params)
                response.raise_for_status()
                data = response.json()

                registration = data.get("registration_date")
                is_active = data.get("is_active")
                if is_active is not None and not isinstance(is_active, bool):
                    raise TypeError("is_active must be a boolean")
                return BusinessVerification(
                    registration_date=date.fromisoformat(registration) if registration else None,
                    is_active=is_active,
                    status=data.get("status"),
                    registered_name=data.get("registered_name"),
                )

            except httpx.TimeoutException as e:
                registry_failure_counter.inc()
                raise RegistryLookupError(f"Registry timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                registry_failure_counter.inc()
                raise RegistryLookupError(f"Registry error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                registry_failure_counter.inc()
                raise RegistryLookupError(f"Registry unreachable: {e}") from e
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                registry_failure_counter.inc()
                raise RegistryLookupError(f"Invalid registry data: {e}") from e
