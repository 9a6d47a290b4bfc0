"""
Sandbox Proxy Application Factory
=================================

Builds the FastAPI application served by each per-service listener.

Architecture:
    Local client → Listener (one per service, this app) → Remote sandbox

Each listener application has exactly one route, matching every path and
method, which forwards the request to the remote sandbox under
/{sandbox}/{cluster}/... with the bearer token injected. There are no docs,
health or OpenAPI routes so that no path is shadowed.

Running the Service:
    sandbox-proxy --sandbox-name acme --private-key ~/.sandbox/key.pem

    Or with environment variables:
        SANDBOX_NAME=acme PRIVATE_KEY=~/.sandbox/key.pem python -m sandbox_proxy.app.main
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .errors import UpstreamForwardError
from .models import SandboxContext, ServiceDescriptor
from .proxy.routes import PROXY_PATH, create_proxy_endpoint

logger = logging.getLogger(__name__)

LOG_FORMAT = (
    '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", '
    '"message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}'
)


class _BelowErrorFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < logging.ERROR


# Configure structured logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the launcher.

    Records below ERROR go to stdout, ERROR and above to stderr.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.addFilter(_BelowErrorFilter())

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.ERROR)

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format=LOG_FORMAT,
        handlers=[stdout_handler, stderr_handler],
        force=True,
    )


def create_service_app(
    service: ServiceDescriptor,
    sandbox: SandboxContext,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    timeout: Optional[float] = None,
    log: Optional[logging.Logger] = None,
) -> FastAPI:
    """
    Application factory for one per-service listener.

    Creates a FastAPI application with:
        - Lifespan management of the upstream httpx client
        - The catch-all proxy endpoint for ``service`` (every method)
        - Exception handlers turning failures into gateway responses

    Args:
        service: Service this listener fronts
        sandbox: Shared read-only sandbox context
        transport: Optional httpx transport (tests inject a MockTransport)
        timeout: Upstream timeout in seconds, None for no timeout
        log: Logger for this listener

    Returns:
        FastAPI: Configured application instance
    """
    log = log or logger.getChild(service.domain)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        app.state.upstream_client = httpx.AsyncClient(
            transport=transport,
            timeout=httpx.Timeout(timeout),
            follow_redirects=False,
        )
        log.debug(
            f"Upstream client ready for '{service.domain}'",
            extra={"remote_url": sandbox.remote_url, "port": service.port}
        )

        yield

        # Shutdown
        await app.state.upstream_client.aclose()
        app.state.upstream_client = None
        log.debug(f"Upstream client closed for '{service.domain}'")

    app = FastAPI(
        title=f"Sandbox Proxy - {service.domain}",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    app.state.service = service
    app.state.sandbox = sandbox
    app.state.upstream_client = None

    # No method list: every method, extension methods included, is forwarded
    app.router.add_route(
        PROXY_PATH,
        create_proxy_endpoint(service, sandbox, log=log),
        name="proxy_to_sandbox",
        include_in_schema=False,
    )

    @app.exception_handler(UpstreamForwardError)
    async def upstream_error_handler(request: Request, exc: UpstreamForwardError) -> JSONResponse:
        """Gateway response for a failed forward; already logged by the route."""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": "gateway_timeout" if exc.status_code == 504 else "bad_gateway",
                "message": exc.message,
                "upstream": exc.upstream,
            }
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        log.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred in the proxy",
            }
        )

    return app


if __name__ == "__main__":
    from .cli import main

    main()
