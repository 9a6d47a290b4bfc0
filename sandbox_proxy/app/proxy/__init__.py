"""
Proxy Package
=============

This package rewrites and forwards requests from a local listener to the
remote sandbox.

Main Components:
----------------
- rewriter.py: Pure request rewriting (path prefix, target host, bearer token)
- routes.py: ASGI catch-all endpoint forwarding every method through httpx

Usage:
------
    from sandbox_proxy.app.proxy import PROXY_PATH, create_proxy_endpoint
    app.router.add_route(PROXY_PATH, create_proxy_endpoint(service, sandbox),
                         include_in_schema=False)
"""

from .rewriter import rewrite_path, rewrite_request
from .routes import PROXY_PATH, SandboxForwarder, create_proxy_endpoint

__all__ = [
    "PROXY_PATH",
    "SandboxForwarder",
    "create_proxy_endpoint",
    "rewrite_path",
    "rewrite_request",
]
