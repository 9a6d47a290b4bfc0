"""
Configuration module for the Sandbox Proxy.

This module uses Pydantic Settings to load and validate the values the
launcher needs: the sandbox identity, the private key used to sign the
bearer token, where the remote sandbox lives, and how listeners bind.

Environment variables are loaded from .env file or system environment.
CLI flags are passed in as overrides and take precedence over both.
"""

import logging
import re
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, List, Optional

import httpx
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .auth.token import DEFAULT_ALGORITHM, SUPPORTED_ALGORITHMS, issue_bearer_token, token_expiry
from .errors import ConfigurationError
from .models import SandboxContext


PROD_REMOTE_URL = "https://sandbox.pdok.nl"
DEV_REMOTE_URL = "http://localhost:32788"
DEFAULT_BIND_ADDRESS = "127.0.0.1"

_SANDBOX_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_HEADER_NAME_RE = re.compile(r"^[!#$%&'*+.^_`|~0-9A-Za-z-]+$")


class Settings(BaseSettings):
    """
    Launcher settings loaded from environment variables.

    Required: SANDBOX_NAME and PRIVATE_KEY. Everything else has a default.
    """

    # =========================================================================
    # Sandbox Identity
    # =========================================================================

    SANDBOX_NAME: str = Field(
        ...,
        description="Name of the sandbox environment",
        min_length=1,
    )

    PRIVATE_KEY: str = Field(
        ...,
        description="Path to the PEM private key used to sign the bearer token",
        min_length=1,
    )

    TOKEN_ALGORITHM: str = Field(
        default=DEFAULT_ALGORITHM,
        description="Asymmetric JWT signing algorithm",
    )

    # =========================================================================
    # Remote Sandbox
    # =========================================================================

    DEV: bool = Field(
        default=False,
        description="Connect to the local development sandbox instead of the remote one",
    )

    REMOTE_URL: Optional[str] = Field(
        default=None,
        description="Base URL of the remote sandbox (default: https://sandbox.pdok.nl)",
    )

    AUTH_HEADER: str = Field(
        default="Authorization",
        description="Header carrying the bearer token",
    )

    UPSTREAM_TIMEOUT: Optional[float] = Field(
        default=None,
        description="Timeout in seconds for upstream requests (default: none)",
        gt=0,
    )

    # =========================================================================
    # Listener Configuration
    # =========================================================================

    BIND_ADDRESS: str = Field(
        default=DEFAULT_BIND_ADDRESS,
        description="Address every listener binds",
        min_length=1,
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def remote_url(self) -> str:
        """
        Base URL every listener forwards to.

        Development mode always wins over REMOTE_URL.
        """
        if self.DEV:
            return DEV_REMOTE_URL
        return self.REMOTE_URL or PROD_REMOTE_URL

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("SANDBOX_NAME")
    @classmethod
    def validate_sandbox_name(cls, v: str) -> str:
        """The sandbox name becomes a single path segment upstream."""
        v = v.strip()
        if not _SANDBOX_NAME_RE.match(v):
            raise ValueError(
                f"Invalid sandbox name: '{v}'. "
                "Use letters, digits, '.', '_' or '-' and start with a letter or digit"
            )
        return v

    @field_validator("TOKEN_ALGORITHM")
    @classmethod
    def validate_token_algorithm(cls, v: str) -> str:
        v = v.upper()
        if v not in SUPPORTED_ALGORITHMS:
            raise ValueError(
                f"Token algorithm must be one of {sorted(SUPPORTED_ALGORITHMS)}, got: {v}"
            )
        return v

    @field_validator("REMOTE_URL")
    @classmethod
    def validate_remote_url(cls, v: Optional[str]) -> Optional[str]:
        """
        Validate that REMOTE_URL is an absolute http(s) URL.

        Raises:
            ValueError: If the URL cannot be parsed or has no host
        """
        if v is None or not v.strip():
            return None

        try:
            url = httpx.URL(v.strip())
        except httpx.InvalidURL as e:
            raise ValueError(f"Invalid remote URL: {v}: {e}")

        if url.scheme not in ("http", "https"):
            raise ValueError(f"Remote URL must use http or https, got: {v}")
        if not url.host:
            raise ValueError(f"Remote URL has no host: {v}")

        return str(url)

    @field_validator("AUTH_HEADER")
    @classmethod
    def validate_auth_header(cls, v: str) -> str:
        v = v.strip()
        if not _HEADER_NAME_RE.match(v):
            raise ValueError(f"Invalid header name: '{v}'")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return v


# =============================================================================
# Settings Loading
# =============================================================================

def load_settings(**overrides: Any) -> Settings:
    """
    Build Settings from environment, .env file and explicit overrides.

    Overrides whose value is None are ignored so unset CLI flags fall back
    to the environment.

    Raises:
        ConfigurationError: If required values are missing or invalid
    """
    values = {key: value for key, value in overrides.items() if value is not None}
    try:
        return Settings(**values)
    except ValidationError as e:
        problems = []
        for error in e.errors():
            field = ".".join(str(part) for part in error.get("loc", ())) or "settings"
            problems.append(f"{field}: {error.get('msg')}")
        raise ConfigurationError("Invalid configuration: " + "; ".join(problems)) from e


@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance from the environment.

    Raises:
        ConfigurationError: If required environment variables are missing
    """
    return load_settings()


def validate_configuration(settings: Settings) -> List[str]:
    """
    Return warnings about settings that are valid but probably unintended.
    """
    warnings = []

    if settings.DEV and settings.REMOTE_URL:
        warnings.append(
            f"DEV is enabled, REMOTE_URL {settings.REMOTE_URL} is ignored in favour of {DEV_REMOTE_URL}"
        )

    if settings.BIND_ADDRESS not in ("127.0.0.1", "localhost", "::1"):
        warnings.append(
            f"Listeners bind {settings.BIND_ADDRESS}; the bearer token is usable by anyone who can reach them"
        )

    if settings.remote_url.startswith("http://") and not settings.DEV:
        warnings.append("Remote URL is plain http; the bearer token is sent unencrypted")

    return warnings


# =============================================================================
# Sandbox Context
# =============================================================================

def read_private_key(path: str) -> bytes:
    """
    Read PEM key material from disk.

    Raises:
        ConfigurationError: If the file cannot be read
    """
    try:
        return Path(path).expanduser().read_bytes()
    except OSError as e:
        raise ConfigurationError(f"Cannot read private key '{path}': {e.strerror or e}") from e


def sandbox_from_settings(
    settings: Settings,
    now: Optional[datetime] = None,
    log: Optional[logging.Logger] = None,
) -> SandboxContext:
    """
    Read the private key, issue the bearer token and build the sandbox context.

    Raises:
        ConfigurationError: If the key file cannot be read
        SigningKeyError: If the key cannot be parsed or does not match
        SigningError: If the token cannot be signed
    """
    now = now or datetime.now(timezone.utc)
    signing_key = read_private_key(settings.PRIVATE_KEY)

    bearer_token = issue_bearer_token(
        settings.SANDBOX_NAME,
        signing_key,
        now=now,
        algorithm=settings.TOKEN_ALGORITHM,
        log=log,
    )

    return SandboxContext(
        name=settings.SANDBOX_NAME,
        bearer_token=bearer_token,
        token_expires_at=token_expiry(now),
        remote_url=settings.remote_url,
        auth_header_name=settings.AUTH_HEADER,
        dev=settings.DEV,
    )
