"""
Shared fixtures for the sandbox proxy tests.
"""

import socket
from datetime import datetime, timedelta, timezone
from typing import List

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from sandbox_proxy.app.auth.token import issue_bearer_token, token_expiry
from sandbox_proxy.app.config import get_settings
from sandbox_proxy.app.models import Cluster, SandboxContext, ServiceDescriptor


SETTINGS_ENV_VARS = (
    "SANDBOX_NAME",
    "PRIVATE_KEY",
    "DEV",
    "BIND_ADDRESS",
    "REMOTE_URL",
    "AUTH_HEADER",
    "TOKEN_ALGORITHM",
    "UPSTREAM_TIMEOUT",
    "LOG_LEVEL",
)


# Test RSA key pair generation
def generate_rsa_keys():
    """Generate RSA key pair for testing"""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )

    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )

    return private_pem, public_pem


def generate_ec_keys():
    """Generate P-256 key pair for testing"""
    private_key = ec.generate_private_key(ec.SECP256R1())

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )

    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )

    return private_pem, public_pem


# Generate test keys once for reuse
TEST_RSA_PRIVATE_KEY, TEST_RSA_PUBLIC_KEY = generate_rsa_keys()
TEST_EC_PRIVATE_KEY, TEST_EC_PUBLIC_KEY = generate_ec_keys()


def free_port() -> int:
    """Ask the OS for a currently unused local port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class UpstreamRecorder:
    """MockTransport handler recording every request the proxy forwards."""

    def __init__(self, response: httpx.Response = None):
        self.requests: List[httpx.Request] = []
        self.bodies: List[bytes] = []
        self.response = response

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.bodies.append(request.read())
        if self.response is not None:
            return self.response
        return httpx.Response(200, json={"path": request.url.path})

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the developer's environment out of Settings"""
    for name in SETTINGS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def private_key_file(tmp_path):
    """PEM RSA private key written to disk"""
    path = tmp_path / "sandbox-key.pem"
    path.write_bytes(TEST_RSA_PRIVATE_KEY)
    return path


@pytest.fixture
def issued_at():
    return datetime.now(timezone.utc)


@pytest.fixture
def bearer_token(issued_at):
    return issue_bearer_token("acme", TEST_RSA_PRIVATE_KEY, now=issued_at)


@pytest.fixture
def sandbox(bearer_token, issued_at):
    """Sandbox context pointing at the production sandbox"""
    return SandboxContext(
        name="acme",
        bearer_token=bearer_token,
        token_expires_at=token_expiry(issued_at),
        remote_url="https://sandbox.pdok.nl",
    )


@pytest.fixture
def api_service():
    return ServiceDescriptor(domain="api", port=5002, cluster=Cluster.SERVICES)


@pytest.fixture
def delivery_service():
    return ServiceDescriptor(domain="delivery.pdok.nl", port=5004, cluster=Cluster.PROCESSING)


@pytest.fixture
def expired_sandbox(sandbox):
    return sandbox.model_copy(
        update={"token_expires_at": datetime.now(timezone.utc) - timedelta(minutes=5)}
    )
