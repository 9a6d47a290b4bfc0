"""
Sandbox Proxy
=============

Local multi-port reverse proxy for a shared sandbox backend.

For every registered service the launcher binds one local port. Requests
arriving on that port are forwarded to the remote sandbox with their path
prefixed by the sandbox name and the service's cluster, and with a bearer
token (signed once at startup from the developer's private key) attached.

Modules:
- config: Pydantic settings and sandbox context construction
- registry: The fixed list of services and their local ports
- auth: Bearer token issuing
- proxy: Request rewriting and forwarding
- main: Per-service FastAPI application factory and logging setup
- launcher: Socket binding and concurrent uvicorn servers
- cli: The ``sandbox-proxy`` command
"""

from .errors import (
    BindError,
    ConfigurationError,
    ProxyError,
    SigningError,
    SigningKeyError,
    UpstreamForwardError,
)
from .models import Cluster, SandboxContext, ServiceDescriptor

__version__ = "1.0.0"

__all__ = [
    "BindError",
    "Cluster",
    "ConfigurationError",
    "ProxyError",
    "SandboxContext",
    "ServiceDescriptor",
    "SigningError",
    "SigningKeyError",
    "UpstreamForwardError",
]
