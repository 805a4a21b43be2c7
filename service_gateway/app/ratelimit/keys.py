"""
Throttle key derivation.

Key functions receive a :class:`RequestContext` rather than the raw request
so they stay synchronous and trivially testable; the context is assembled
once per request by :func:`build_request_context`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Request

UNKNOWN_CLIENT = "unknown"
ANONYMOUS_USER = "anon"


@dataclass(frozen=True)
class RequestContext:
    """Caller attributes a throttle key can be built from."""

    client_address: str = UNKNOWN_CLIENT
    identifier: str = ""
    user_id: Optional[str] = None
    path: str = "/"


KeyFunc = Callable[[RequestContext], str]


def client_address_key(context: RequestContext) -> str:
    """Key on the caller address alone."""
    return context.client_address or UNKNOWN_CLIENT


def login_key(context: RequestContext) -> str:
    """``login:<address>:<identifier>``, so one address can't lock out every account."""
    return f"login:{client_address_key(context)}:{context.identifier}"


def user_scoped_key(purpose: str) -> KeyFunc:
    """Build ``<purpose>:<address>:<user id or anon>`` keys."""

    def _key(context: RequestContext) -> str:
        return f"{purpose}:{client_address_key(context)}:{context.user_id or ANONYMOUS_USER}"

    _key.__name__ = f"{purpose}_key"
    return _key


def get_client_address(request: Request, trusted_proxy_hops: int = 1) -> str:
    """Caller address as recorded by the outermost trusted proxy.

    Each proxy appends the peer it received the request from to
    ``X-Forwarded-For``, so only the last ``trusted_proxy_hops`` entries were
    written by our own infrastructure; anything to their left is whatever the
    client sent.
    """
    if trusted_proxy_hops > 0:
        forwarded_for = request.headers.get("X-Forwarded-For", "")
        hops = [hop.strip() for hop in forwarded_for.split(",") if hop.strip()]
        if len(hops) >= trusted_proxy_hops:
            return hops[-trusted_proxy_hops]

    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_CLIENT


def get_user_id(request: Request, trust_header: bool = False) -> Optional[str]:
    """Authenticated user id set by the session layer, if any.

    ``X-User-Id`` is only honoured when an upstream component that
    authenticates the caller is known to set it.
    """
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return str(user_id)
    if trust_header:
        header_value = request.headers.get("X-User-Id")
        if header_value and header_value.strip():
            return header_value.strip()
    return None


async def get_login_identifier(request: Request) -> str:
    """``identifier`` field of a JSON body as sent, or an empty string."""
    content_type = request.headers.get("content-type", "")
    if "json" not in content_type:
        return ""
    try:
        payload = await request.json()
    except (ValueError, UnicodeDecodeError):
        return ""
    if not isinstance(payload, dict):
        return ""
    identifier = payload.get("identifier")
    return str(identifier) if identifier else ""


async def build_request_context(
    request: Request,
    trusted_proxy_hops: int = 1,
    trust_user_id_header: bool = False,
    read_body: bool = False
) -> RequestContext:
    """Assemble the key-derivation context for ``request``.

    Never raises: anything that can't be determined falls back to the
    sentinel values.
    """
    identifier = await get_login_identifier(request) if read_body else ""
    return RequestContext(
        client_address=get_client_address(request, trusted_proxy_hops),
        identifier=identifier,
        user_id=get_user_id(request, trust_user_id_header),
        path=request.url.path,
    )
