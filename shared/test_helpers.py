"""
Test helper functions and factory methods for the Campaign Access Gateway.
"""

import json
from typing import Any, Dict, List, Optional, Tuple

from starlette.requests import Request

from shared.config import ServiceConfig, get_config


class FakeClock:
    """Manually advanced clock for time-dependent tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


def create_test_config(**overrides) -> ServiceConfig:
    """Gateway config with the background sweeper disabled."""
    options: Dict[str, Any] = {
        "env": "local",
        "throttle_backend": "memory",
        "throttle_sweep_interval": 0,
        "auth_service_url": "http://auth.test",
    }
    options.update(overrides)
    return get_config("gateway", 8000, **options)


def create_mock_request(
    path: str = "/",
    method: str = "GET",
    headers: Optional[Dict[str, str]] = None,
    client: Optional[Tuple[str, int]] = ("10.0.0.1", 51000),
    json_body: Any = None,
    body: Optional[bytes] = None,
    state: Optional[Dict[str, Any]] = None,
) -> Request:
    """Build a Starlette request without a running server."""
    raw_headers: List[Tuple[bytes, bytes]] = []
    if json_body is not None:
        body = json.dumps(json_body).encode("utf-8")
        raw_headers.append((b"content-type", b"application/json"))
    for name, value in (headers or {}).items():
        raw_headers.append((name.lower().encode("latin-1"), value.encode("latin-1")))

    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "raw_path": path.encode("utf-8"),
        "query_string": b"",
        "headers": raw_headers,
        "client": client,
        "server": ("gateway.test", 80),
        "scheme": "http",
        "root_path": "",
        "state": dict(state or {}),
    }

    payload = body or b""

    async def receive() -> Dict[str, Any]:
        return {"type": "http.request", "body": payload, "more_body": False}

    return Request(scope, receive)
