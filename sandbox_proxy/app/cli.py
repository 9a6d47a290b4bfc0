"""Sandbox Proxy CLI - local tunnel to the PDOK sandbox environment."""

import logging

import click

from .config import load_settings, sandbox_from_settings, validate_configuration
from .errors import ProxyError
from .launcher import run_launcher
from .main import setup_logging
from .registry import get_registry

logger = logging.getLogger("sandbox_proxy")


@click.command(name="sandbox-proxy")
@click.option("--sandbox-name", default=None, help="Name of the sandbox environment [env: SANDBOX_NAME]")
@click.option("--private-key", default=None, help="Private key file used to sign the bearer token [env: PRIVATE_KEY]")
@click.option("--dev/--no-dev", default=None, help="Connect to your local development sandbox [env: DEV]")
@click.option("--bind-address", default=None, help="Bind address, default 127.0.0.1 [env: BIND_ADDRESS]")
@click.option("--remote-url", default=None, help="Remote sandbox URL [env: REMOTE_URL]")
@click.option("--auth-header", default=None, help="Header carrying the bearer token [env: AUTH_HEADER]")
@click.option("--token-algorithm", default=None, help="JWT signing algorithm, default RS256 [env: TOKEN_ALGORITHM]")
@click.option("--upstream-timeout", type=float, default=None, help="Upstream timeout in seconds [env: UPSTREAM_TIMEOUT]")
@click.option("--log-level", default=None, help="Logging level, default INFO [env: LOG_LEVEL]")
def main(
    sandbox_name,
    private_key,
    dev,
    bind_address,
    remote_url,
    auth_header,
    token_algorithm,
    upstream_timeout,
    log_level,
):
    """Sandbox Proxy - sets up local tunnels to the sandbox and handles routing and security.

    Every service gets its own local port; requests are forwarded to the
    sandbox under /<sandbox-name>/<cluster>/ with a bearer token attached.
    """
    try:
        settings = load_settings(
            SANDBOX_NAME=sandbox_name,
            PRIVATE_KEY=private_key,
            DEV=dev,
            BIND_ADDRESS=bind_address,
            REMOTE_URL=remote_url,
            AUTH_HEADER=auth_header,
            TOKEN_ALGORITHM=token_algorithm,
            UPSTREAM_TIMEOUT=upstream_timeout,
            LOG_LEVEL=log_level,
        )
    except ProxyError as e:
        setup_logging()
        logger.error(str(e))
        raise click.ClickException(str(e))

    setup_logging(settings.LOG_LEVEL)
    logger.info("Starting Sandbox Proxy")

    for warning in validate_configuration(settings):
        logger.warning(warning)

    try:
        sandbox = sandbox_from_settings(settings)
        registry = get_registry()
    except ProxyError as e:
        logger.error(str(e))
        raise click.ClickException(str(e))

    logger.info(
        f"Forwarding sandbox '{sandbox.name}' to {sandbox.remote_url}",
        extra={"dev": sandbox.dev, "token_expires_at": sandbox.token_expires_at.isoformat()}
    )

    try:
        results = run_launcher(
            registry,
            sandbox,
            settings.BIND_ADDRESS,
            timeout=settings.UPSTREAM_TIMEOUT,
        )
    except ProxyError as e:
        raise click.ClickException(str(e))

    if results and all(result is not None for result in results):
        raise click.ClickException("All listeners failed")


if __name__ == "__main__":
    main()
