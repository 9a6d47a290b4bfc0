"""
Proxy Routes - Sandbox Request Forwarding
=========================================

This module implements the catch-all endpoint of a per-service listener.
Every request received on the listener's port, whatever its path or method
(extension methods such as PROPFIND included), is rewritten for the remote
sandbox and forwarded there.

Flow:
-----
1. Snapshot the inbound request from the raw ASGI scope (escaped path and
   query exactly as received)
2. Rewrite it (path prefix, target host, bearer token, forwarding headers)
3. Forward it with the listener's httpx.AsyncClient (no retry, no redirects)
4. Relay the upstream status, headers and body to the caller

Upstream failures become UpstreamForwardError, which the application turns
into a 502 (unreachable) or 504 (timeout) response.
"""

import logging
from typing import Optional

import httpx
from fastapi import HTTPException, Request, status
from fastapi.responses import Response
from starlette.types import Receive, Scope, Send

from ..errors import UpstreamForwardError
from ..models import InboundRequest, SandboxContext, ServiceDescriptor
from .rewriter import escape_request_target, filter_response_headers, redact_headers, rewrite_request

logger = logging.getLogger(__name__)

PROXY_PATH = "/{path:path}"


# ============================================================================
# Request Helpers
# ============================================================================

def get_upstream_client(request: Request) -> httpx.AsyncClient:
    """
    Get the upstream HTTP client from app state.

    Raises:
        HTTPException: If the listener has not finished starting up
    """
    client = getattr(request.app.state, "upstream_client", None)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Upstream client not initialized"
        )
    return client


def _listener_host(request: Request) -> str:
    server = request.scope.get("server")
    if not server:
        return request.headers.get("host", "")

    host, port = server[0], server[1]
    if ":" in host:
        host = f"[{host}]"
    return f"{host}:{port}" if port is not None else host


def inbound_from_request(request: Request) -> InboundRequest:
    """Snapshot the parts of a Starlette request the rewriter needs."""
    raw_path = request.scope.get("raw_path")
    if not raw_path:
        # Server did not provide the raw target, fall back to the decoded path
        raw_path = request.url.path.encode("utf-8")

    return InboundRequest(
        method=request.method,
        path=escape_request_target(raw_path) or "/",
        query=escape_request_target(request.scope.get("query_string", b"")),
        headers=tuple(request.headers.items()),
        listener_host=_listener_host(request),
        client_host=request.client.host if request.client else None,
    )


# ============================================================================
# Forwarding Endpoint
# ============================================================================

class SandboxForwarder:
    """
    ASGI endpoint forwarding everything it receives to one service.

    Mounted as a plain Starlette route without a method list, so the router
    hands it every method instead of answering 405 locally.
    """

    def __init__(
        self,
        service: ServiceDescriptor,
        sandbox: SandboxContext,
        log: Optional[logging.Logger] = None,
    ):
        self.service = service
        self.sandbox = sandbox
        self.log = log or logger.getChild(service.domain)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        response = await self.forward(request)
        await response(scope, receive, send)

    async def forward(self, request: Request) -> Response:
        """Forward one request to the remote sandbox and relay the answer."""
        client = get_upstream_client(request)
        sandbox, log = self.sandbox, self.log

        outbound = rewrite_request(inbound_from_request(request), self.service, sandbox)

        if sandbox.token_expired():
            log.warning(
                "Bearer token expired; restart the proxy to issue a new one",
                extra={"expired_at": sandbox.token_expires_at.isoformat()}
            )

        log.info(
            f"{outbound.method} {outbound.url}",
            extra={"headers": redact_headers(outbound.headers, sandbox.auth_header_name)}
        )

        body = await request.body()

        try:
            # Header values may carry obs-text; send them byte for byte
            upstream_request = client.build_request(
                outbound.method,
                outbound.url,
                headers=[
                    (key.encode("latin-1"), value.encode("latin-1"))
                    for key, value in outbound.headers
                ],
                content=body or None,
            )
            upstream_response = await client.send(upstream_request, follow_redirects=False)

        except httpx.TimeoutException as e:
            log.error(
                f"Upstream timeout: {outbound.method} {outbound.url}",
                extra={"service": self.service.domain, "exception_type": type(e).__name__}
            )
            raise UpstreamForwardError(
                "Upstream sandbox did not respond in time",
                status_code=status.HTTP_504_GATEWAY_TIMEOUT,
                upstream=outbound.url,
            ) from e

        except httpx.RequestError as e:
            log.error(
                f"Upstream error: {outbound.method} {outbound.url}: {e}",
                extra={"service": self.service.domain, "exception_type": type(e).__name__}
            )
            raise UpstreamForwardError(
                f"Cannot reach upstream sandbox: {e}",
                status_code=status.HTTP_502_BAD_GATEWAY,
                upstream=outbound.url,
            ) from e

        log.info(
            f"{upstream_response.status_code} {upstream_response.reason_phrase} "
            f"<- {outbound.method} {outbound.url}",
            extra={
                "status_code": upstream_response.status_code,
                "headers": upstream_response.headers.multi_items(),
                "content_length": len(upstream_response.content),
            }
        )

        response = Response(
            content=upstream_response.content,
            status_code=upstream_response.status_code,
        )
        upstream_headers = [
            (key.decode("latin-1"), value.decode("latin-1"))
            for key, value in upstream_response.headers.raw
        ]
        response.raw_headers.extend(
            (key.lower().encode("latin-1"), value.encode("latin-1"))
            for key, value in filter_response_headers(upstream_headers)
        )
        return response


def create_proxy_endpoint(
    service: ServiceDescriptor,
    sandbox: SandboxContext,
    log: Optional[logging.Logger] = None,
) -> SandboxForwarder:
    """
    Create the catch-all endpoint forwarding everything to one service.

    Args:
        service: Service this listener fronts
        sandbox: Shared read-only sandbox context
        log: Logger for request/response lines (defaults to a per-service child)

    Usage:
        app.router.add_route(PROXY_PATH, create_proxy_endpoint(service, sandbox),
                             include_in_schema=False)
    """
    return SandboxForwarder(service, sandbox, log=log)
