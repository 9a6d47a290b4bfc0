"""
Authentication Package

This package issues the bearer token the proxy presents to the remote
sandbox on behalf of the developer.

Modules:
- token: RSA/EC signed JWT creation (``iss`` = sandbox name, 24h lifetime)
  and verification

The token is generated once at startup from the configured private key and
injected into every proxied request by the request rewriter.
"""

from .token import (
    DEFAULT_ALGORITHM,
    SUPPORTED_ALGORITHMS,
    TOKEN_LIFETIME,
    decode_bearer_token,
    issue_bearer_token,
    load_signing_key,
    token_expiry,
)

__all__ = [
    "DEFAULT_ALGORITHM",
    "SUPPORTED_ALGORITHMS",
    "TOKEN_LIFETIME",
    "decode_bearer_token",
    "issue_bearer_token",
    "load_signing_key",
    "token_expiry",
]
