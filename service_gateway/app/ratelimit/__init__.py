"""
Rate limiting package for the Gateway.

Holds the fixed-window request throttle, its stores, the preconfigured
policies and the FastAPI dependency that enforces them on routes.
"""

from .guard import ThrottleGuard
from .keys import RequestContext, build_request_context, client_address_key, login_key, user_scoped_key
from .policies import DEFAULT_POLICIES, PolicyRegistry
from .store import InMemoryThrottleStore, RedisThrottleStore, ThrottleEntry, ThrottleStore, ThrottleStoreError
from .sweeper import ThrottleSweeper
from .throttle import RequestThrottle, ThrottleConfig, ThrottleDecision

__all__ = [
    "DEFAULT_POLICIES",
    "InMemoryThrottleStore",
    "PolicyRegistry",
    "RedisThrottleStore",
    "RequestContext",
    "RequestThrottle",
    "ThrottleConfig",
    "ThrottleDecision",
    "ThrottleEntry",
    "ThrottleGuard",
    "ThrottleStore",
    "ThrottleStoreError",
    "ThrottleSweeper",
    "build_request_context",
    "client_address_key",
    "login_key",
    "user_scoped_key",
]
