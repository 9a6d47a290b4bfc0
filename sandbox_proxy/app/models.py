"""
Data Models Module

This module defines the Pydantic models shared by every listener.

Models are organized by functional area:
- Registry models (clusters and service descriptors)
- Sandbox models (the read-only context built once at startup)
- Proxy models (inbound request snapshot and rewritten outbound request)

All models are frozen: they are created at startup (or once per request) and
never mutated afterwards, so listeners can share them without locking.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

import httpx
from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Registry Models
# ============================================================================

class Cluster(str, Enum):
    """Backend partition a service lives in; the value is its path segment."""

    PROCESSING = "processing"
    SERVICES = "services"
    MONITORING = "monitoring"

    def __str__(self) -> str:
        return self.value


class ServiceDescriptor(BaseModel):
    """One upstream service exposed on one local port."""

    model_config = ConfigDict(frozen=True)

    domain: str = Field(..., description="Public domain label of the service", min_length=1)
    port: int = Field(..., description="Local port the listener binds", ge=1, le=65535)
    cluster: Optional[Cluster] = Field(None, description="Backend cluster the service belongs to")

    @property
    def path_segment(self) -> str:
        """Segment placed after the sandbox name in every rewritten path."""
        if self.cluster is not None:
            return self.cluster.value
        return self.domain


# ============================================================================
# Sandbox Models
# ============================================================================

class SandboxContext(BaseModel):
    """
    Everything a listener needs to reach the remote sandbox.

    Built once from configuration and shared read-only by all listeners.
    The bearer token is never refreshed.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Sandbox name, first segment of every upstream path", min_length=1)
    bearer_token: str = Field(..., description="Signed JWT presented to the sandbox", min_length=1)
    token_expires_at: datetime = Field(..., description="Expiry of the bearer token (UTC)")
    remote_url: str = Field(..., description="Base URL of the remote sandbox")
    auth_header_name: str = Field(default="Authorization", description="Header carrying the bearer token")
    dev: bool = Field(default=False, description="True when routed to the local development sandbox")

    @property
    def remote(self) -> httpx.URL:
        return httpx.URL(self.remote_url)

    @property
    def authorization_value(self) -> str:
        return f"Bearer {self.bearer_token}"

    def token_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.token_expires_at


# ============================================================================
# Proxy Models
# ============================================================================

class InboundRequest(BaseModel):
    """Snapshot of a request received by a local listener."""

    model_config = ConfigDict(frozen=True)

    method: str
    path: str = Field(..., description="Escaped request path as received, starting with '/'")
    query: str = Field(default="", description="Escaped query string as received, without '?'")
    headers: Tuple[Tuple[str, str], ...] = ()
    listener_host: str = Field(..., description="host:port the caller addressed")
    client_host: Optional[str] = None


class OutboundRequest(BaseModel):
    """Request ready to be sent to the remote sandbox."""

    model_config = ConfigDict(frozen=True)

    method: str
    url: str
    headers: Tuple[Tuple[str, str], ...] = ()

    def header(self, name: str) -> Optional[str]:
        """Return the first value of a header (case-insensitive)."""
        name = name.lower()
        for key, value in self.headers:
            if key.lower() == name:
                return value
        return None

