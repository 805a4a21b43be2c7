"""
Adapters for upstream services used by the gateway.
"""

from .auth_client import AuthClient

__all__ = ["AuthClient"]
