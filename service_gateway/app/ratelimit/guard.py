"""
FastAPI dependency applying a throttle to a route.
"""

from __future__ import annotations

from fastapi import Request
from starlette.concurrency import run_in_threadpool

from shared.errors import RateLimitError
from shared.logging import set_request_context

from .keys import build_request_context
from .throttle import RequestThrottle, ThrottleDecision


class ThrottleGuard:
    """Route dependency: ``Depends(ThrottleGuard(throttle))``.

    Publishes the rate limit headers and the derived key on ``request.state``
    (``rate_limit_headers`` and ``throttle_keys[<policy>]``), and raises
    :class:`RateLimitError` when the throttle rejects the request.

    ``check`` runs in the threadpool since store backends may block on I/O.
    """

    def __init__(
        self,
        throttle: RequestThrottle,
        trusted_proxy_hops: int = 1,
        trust_user_id_header: bool = False,
        read_body: bool = False,
    ):
        self.throttle = throttle
        self.trusted_proxy_hops = trusted_proxy_hops
        self.trust_user_id_header = trust_user_id_header
        self.read_body = read_body

    async def __call__(self, request: Request) -> ThrottleDecision:
        context = await build_request_context(
            request,
            trusted_proxy_hops=self.trusted_proxy_hops,
            trust_user_id_header=self.trust_user_id_header,
            read_body=self.read_body,
        )
        set_request_context(user_id=context.user_id, client_address=context.client_address)

        key = self.throttle.key_for(context)
        decision = await run_in_threadpool(self.throttle.check, key)

        headers = decision.headers()
        published = dict(getattr(request.state, "rate_limit_headers", None) or {})
        published.update(headers)
        request.state.rate_limit_headers = published

        keys = dict(getattr(request.state, "throttle_keys", None) or {})
        keys[self.throttle.name] = key
        request.state.throttle_keys = keys

        if not decision.admitted:
            raise RateLimitError(
                self.throttle.config.message,
                retry_after=decision.retry_after_seconds or 0,
                headers=headers,
                details={"policy": self.throttle.name},
            )
        return decision
