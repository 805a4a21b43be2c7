"""
Auth service client for Gateway.
"""

from typing import Any, Dict, Optional

import httpx

from shared.circuit_breaker import CircuitBreaker
from shared.errors import AuthenticationError, ExternalServiceError
from shared.logging import get_logger


class AuthClient:
    """Client for the upstream service that owns user credentials and sessions."""

    def __init__(
        self,
        auth_service_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.auth_service_url = auth_service_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self.logger = get_logger("gateway.auth_client")
        self.circuit_breaker = CircuitBreaker(
            "auth_service",
            failure_threshold=3,
            recovery_timeout=30.0
        )

    async def login(self, identifier: str, password: str) -> Dict[str, Any]:
        """Check credentials; returns the upstream session payload.

        Raises :class:`AuthenticationError` for rejected credentials and
        :class:`ExternalServiceError` when the auth service misbehaves.
        Not retried: a credential check is not idempotent from the
        caller's point of view.
        """

        async def _login() -> httpx.Response:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.auth_service_url}/auth/login",
                    json={"identifier": identifier, "password": password}
                )
            if response.status_code >= 500:
                raise ExternalServiceError(
                    "auth",
                    f"unexpected status {response.status_code}",
                    details={"status_code": response.status_code}
                )
            return response

        try:
            response = await self.circuit_breaker.call(_login)
        except httpx.HTTPError as e:
            self.logger.error("Auth service HTTP error", error=str(e))
            raise ExternalServiceError("auth", "service unavailable", details={"http_error": str(e)}) from e

        if response.status_code in (400, 401, 403):
            self.logger.info("Login rejected by auth service", status_code=response.status_code)
            raise AuthenticationError("Invalid credentials", details={"status_code": response.status_code})
        if response.status_code != 200:
            raise ExternalServiceError(
                "auth",
                f"unexpected status {response.status_code}",
                details={"status_code": response.status_code}
            )
        return response.json()
