"""
Error taxonomy for the sandbox proxy.

Startup errors (configuration, key material, signing, binding) are fatal and
abort the launch before any listener serves traffic. Upstream errors are
per-request: they become a gateway response for that one caller.
"""

from typing import Optional


class ProxyError(Exception):
    """Base exception for all sandbox proxy errors"""
    pass


class ConfigurationError(ProxyError):
    """Missing or invalid configuration detected at startup"""
    pass


class SigningKeyError(ProxyError):
    """Private key could not be parsed or does not fit the signing algorithm"""
    pass


class SigningError(ProxyError):
    """The bearer token could not be signed"""
    pass


class BindError(ProxyError):
    """A listener could not bind its local port"""

    def __init__(self, domain: str, address: str, port: int, reason: str):
        self.domain = domain
        self.address = address
        self.port = port
        self.reason = reason
        super().__init__(
            f"Cannot bind {address}:{port} for '{domain}': {reason}"
        )


class UpstreamForwardError(ProxyError):
    """
    Forwarding a request to the remote sandbox failed.

    Attributes:
        status_code: Gateway status returned to the caller (502 or 504)
        upstream: Outbound URL that failed
    """

    def __init__(self, message: str, status_code: int = 502, upstream: Optional[str] = None):
        self.message = message
        self.status_code = status_code
        self.upstream = upstream
        super().__init__(message)


__all__ = [
    "ProxyError",
    "ConfigurationError",
    "SigningKeyError",
    "SigningError",
    "BindError",
    "UpstreamForwardError",
]
