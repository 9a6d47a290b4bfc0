"""
Listener Launcher
=================

Starts one uvicorn server per registered service on a single asyncio loop.

Every listener socket is bound before any server starts: if one port cannot
be bound the whole launch is aborted and the sockets already bound are
released, so the proxy never runs half-started. Once serving, listeners are
independent; a listener that fails is logged and its siblings keep running.
asyncio.gather is the completion barrier for all of them.
"""

import asyncio
import contextlib
import functools
import logging
import signal
import socket
from typing import List, Optional, Sequence

import httpx
import uvicorn

from .errors import BindError, ProxyError
from .main import create_service_app
from .models import SandboxContext, ServiceDescriptor

logger = logging.getLogger(__name__)

LISTEN_BACKLOG = 2048


class ListenerServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the launcher."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


# =============================================================================
# Binding
# =============================================================================

def bind_socket(service: ServiceDescriptor, bind_address: str) -> socket.socket:
    """
    Bind and listen on ``bind_address:service.port``.

    Raises:
        BindError: If the port cannot be bound
    """
    family = socket.AF_INET6 if ":" in bind_address else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((bind_address, service.port))
        sock.listen(LISTEN_BACKLOG)
    except OSError as e:
        sock.close()
        raise BindError(service.domain, bind_address, service.port, e.strerror or str(e)) from e

    sock.set_inheritable(True)
    return sock


def bind_listeners(
    registry: Sequence[ServiceDescriptor],
    bind_address: str,
    log: Optional[logging.Logger] = None,
) -> List[socket.socket]:
    """
    Bind one socket per service, in registry order.

    Raises:
        BindError: On the first port that cannot be bound; sockets bound
                   before it are closed first
    """
    log = log or logger
    sockets: List[socket.socket] = []
    try:
        for service in registry:
            sockets.append(bind_socket(service, bind_address))
    except BindError as e:
        log.error(str(e))
        for sock in sockets:
            sock.close()
        raise

    return sockets


# =============================================================================
# Serving
# =============================================================================

def build_server(
    service: ServiceDescriptor,
    sandbox: SandboxContext,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    timeout: Optional[float] = None,
    log: Optional[logging.Logger] = None,
) -> ListenerServer:
    """Create the uvicorn server for one service (not started)."""
    app = create_service_app(service, sandbox, transport=transport, timeout=timeout, log=log)
    config = uvicorn.Config(
        app,
        # logging already setup
        log_config=None,
        lifespan="on",
        access_log=False,
    )
    return ListenerServer(config)


async def serve_service(
    service: ServiceDescriptor,
    sandbox: SandboxContext,
    bind_address: str,
    sock: Optional[socket.socket] = None,
    server: Optional[ListenerServer] = None,
    log: Optional[logging.Logger] = None,
) -> None:
    """
    Serve one listener until it stops.

    Args:
        service: Service to serve
        sandbox: Shared read-only sandbox context
        bind_address: Address the listener is bound to
        sock: Socket bound by the launcher; bound here when omitted
        server: Prebuilt server (the launcher keeps a handle for shutdown)
        log: Logger for this listener

    Raises:
        BindError: If ``sock`` is omitted and the port cannot be bound
        ProxyError: If the server fails to start or stops with an error
    """
    log = log or logger
    if sock is None:
        sock = bind_socket(service, bind_address)
    server = server or build_server(service, sandbox)

    log.info(
        f"Sandbox '{sandbox.name}' is listening on {bind_address}:{service.port} "
        f"for '{service.domain}' requests..."
    )

    try:
        await server.serve(sockets=[sock])
    except Exception as e:
        log.error(f"Listener for '{service.domain}' on port {service.port} failed: {e}")
        raise ProxyError(f"Listener for '{service.domain}' failed: {e}") from e
    finally:
        sock.close()

    if not server.started:
        log.error(f"Listener for '{service.domain}' on port {service.port} failed to start")
        raise ProxyError(f"Listener for '{service.domain}' failed to start")

    log.info(f"Listener for '{service.domain}' on port {service.port} stopped")


def request_shutdown(servers: Sequence[ListenerServer], log: logging.Logger) -> None:
    """Ask every listener to stop after its in-flight requests."""
    log.info("Shutdown requested, stopping all listeners")
    for server in servers:
        server.should_exit = True


def _install_shutdown_handlers(servers: Sequence[ListenerServer], log: logging.Logger) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, functools.partial(request_shutdown, servers, log))


async def launch(
    registry: Sequence[ServiceDescriptor],
    sandbox: SandboxContext,
    bind_address: str,
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    install_signal_handlers: bool = True,
    log: Optional[logging.Logger] = None,
) -> List[Optional[BaseException]]:
    """
    Bind every listener, then serve them all until each has stopped.

    Returns:
        One entry per service, in registry order: None when the listener
        stopped cleanly, otherwise the exception it failed with

    Raises:
        BindError: If any port cannot be bound; nothing is served
    """
    log = log or logger
    sockets = bind_listeners(registry, bind_address, log=log)

    servers = [
        build_server(
            service,
            sandbox,
            transport=transport,
            timeout=timeout,
            log=log.getChild(service.domain),
        )
        for service in registry
    ]

    if install_signal_handlers:
        _install_shutdown_handlers(servers, log)

    results = await asyncio.gather(
        *(
            serve_service(
                service,
                sandbox,
                bind_address,
                sock=sock,
                server=server,
                log=log.getChild(service.domain),
            )
            for service, sock, server in zip(registry, sockets, servers)
        ),
        return_exceptions=True,
    )

    failed = [result for result in results if result is not None]
    if failed and len(failed) == len(results):
        log.error("All listeners have stopped with errors")
    elif failed:
        log.warning(f"{len(failed)} of {len(results)} listeners stopped with errors")
    else:
        log.info("All listeners stopped")

    return list(results)


def run_launcher(
    registry: Sequence[ServiceDescriptor],
    sandbox: SandboxContext,
    bind_address: str,
    timeout: Optional[float] = None,
    log: Optional[logging.Logger] = None,
) -> List[Optional[BaseException]]:
    """Blocking entry point around launch()."""
    return asyncio.run(launch(registry, sandbox, bind_address, timeout=timeout, log=log))
