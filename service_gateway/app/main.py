"""
API Gateway service for the Campaign Access Gateway.

Fronts the campaign management API and applies the request throttles:
``login`` on authentication, ``api`` on every application route, and the
``write``, ``aggregation`` and ``export`` policies on the routes that
modify data or run heavy queries.
"""

import hmac
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Body, Depends, Header, Request
from starlette.concurrency import run_in_threadpool

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.errors import AuthenticationError, NotFoundError, ValidationError
from service_gateway.app.adapters.auth_client import AuthClient
from service_gateway.app.ratelimit import PolicyRegistry, ThrottleGuard
from service_gateway.app.ratelimit.policies import AGGREGATION, API, EXPORT, LOGIN, WRITE


class GatewayService(BaseService):
    """API Gateway service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        auth_client: Optional[AuthClient] = None,
        policies: Optional[PolicyRegistry] = None,
    ):
        super().__init__("gateway", 8000, config=config)
        self.auth_client = auth_client or AuthClient(self.config.auth_service_url)
        self.policies = policies or PolicyRegistry.from_config(self.config, metrics=self.metrics)
        self.guards: Dict[str, ThrottleGuard] = {
            name: ThrottleGuard(
                self.policies.get(name),
                trusted_proxy_hops=self.config.trusted_proxy_hops,
                trust_user_id_header=self.config.trust_user_id_header,
                read_body=(name == LOGIN),
            )
            for name in self.policies.names()
        }

        self._setup_gateway_routes()
        self._setup_rate_limit_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.gateway_service = self

    def guard(self, policy: str):
        """``Depends`` marker for one throttle policy."""
        try:
            return Depends(self.guards[policy])
        except KeyError:
            raise NotFoundError("Unknown rate limit policy", details={"policy": policy}) from None

    async def _check_dependencies(self) -> Dict[str, str]:
        return {
            "auth": self.auth_client.circuit_breaker.get_state()["state"],
            "throttle_backend": self.config.throttle_backend,
        }

    async def _shutdown(self) -> None:
        await super()._shutdown()
        await run_in_threadpool(self.policies.close)

    def _setup_gateway_routes(self):
        """Set up application routes."""

        @self.app.get("/")
        async def root():
            return {
                "service": "gateway",
                "message": "Campaign Access Gateway",
                "version": "1.0.0",
            }

        @self.app.get("/api/v1/status", dependencies=[self.guard(API)])
        async def api_status():
            return {
                "status": "operational",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "policies": self.policies.names(),
            }

        @self.app.post("/api/auth/login", dependencies=[self.guard(LOGIN)])
        async def login(request: Request, payload: Optional[Dict[str, Any]] = Body(default=None)):
            """Check credentials upstream; a successful login forgives earlier failures."""
            payload = payload or {}
            identifier = payload.get("identifier")
            password = payload.get("password")
            if not identifier or not password:
                raise ValidationError("Identifier and password are required")

            session = await self.auth_client.login(str(identifier).strip(), str(password))

            throttle_key = request.state.throttle_keys[LOGIN]
            await run_in_threadpool(self.policies.get(LOGIN).reset, throttle_key)
            self.logger.info("Login succeeded", throttle_key=throttle_key)

            return {"success": True, "user": session.get("user"), "session": session.get("session")}

        @self.app.post("/api/v1/surveys", dependencies=[self.guard(API), self.guard(WRITE)])
        async def create_survey(payload: Dict[str, Any] = Body(...)):
            if not payload.get("title"):
                raise ValidationError("Survey title is required")
            return {
                "success": True,
                "status": "accepted",
                "survey": payload,
            }

        @self.app.get("/api/v1/reports/{ac_id}", dependencies=[self.guard(API), self.guard(AGGREGATION)])
        async def booth_performance_report(ac_id: int):
            return {
                "success": True,
                "acId": ac_id,
                "status": "queued",
            }

        @self.app.get("/api/v1/exports/{ac_id}", dependencies=[self.guard(API), self.guard(EXPORT)])
        async def export_voters(ac_id: int):
            return {
                "success": True,
                "acId": ac_id,
                "status": "queued",
            }

    async def _require_admin(self, x_admin_token: Optional[str] = Header(default=None)):
        """Admin routes need the configured token; without one they are local-only."""
        expected = self.config.admin_token
        if expected:
            if x_admin_token and hmac.compare_digest(x_admin_token.encode(), expected.encode()):
                return
            raise AuthenticationError("Admin token required")
        if self.config.env != "local":
            raise AuthenticationError("Admin routes are disabled")

    def _setup_rate_limit_routes(self):
        """Administrative view over the throttle policies."""
        admin = [Depends(self._require_admin)]

        @self.app.get("/api/v1/rate-limits", dependencies=admin)
        async def get_rate_limits():
            return {
                "backend": self.config.throttle_backend,
                "policies": await run_in_threadpool(self.policies.describe),
            }

        @self.app.get("/api/v1/rate-limits/{policy}/{key:path}", dependencies=admin)
        async def get_rate_limit_entry(policy: str, key: str):
            entry = await run_in_threadpool(self.policies.get(policy).peek, key)
            if entry is None:
                raise NotFoundError("No live rate limit entry", details={"policy": policy, "key": key})
            return {"policy": policy, "key": entry.key, "count": entry.count, "reset_at": entry.reset_at}

        @self.app.delete("/api/v1/rate-limits/{policy}/{key:path}", dependencies=admin)
        async def reset_rate_limit(policy: str, key: str):
            removed = await run_in_threadpool(self.policies.get(policy).reset, key)
            return {"policy": policy, "key": key, "reset": removed}


def create_app(config: Optional[ServiceConfig] = None):
    """Create FastAPI application."""
    service = GatewayService(config=config)
    return service.app


if __name__ == "__main__":
    service = GatewayService()
    service.run()
