"""
Service Registry
================

The fixed, ordered list of upstream services the proxy exposes locally.
Each service gets exactly one local port; the registry is validated once at
startup so a duplicate port is reported before any listener binds.
"""

import logging
from typing import Dict, Iterable, Tuple

from .errors import ConfigurationError
from .models import Cluster, ServiceDescriptor

logger = logging.getLogger(__name__)


DEFAULT_SERVICES: Tuple[ServiceDescriptor, ...] = (
    ServiceDescriptor(domain="service.pdok.nl", port=5000, cluster=Cluster.SERVICES),
    ServiceDescriptor(domain="download.pdok.nl", port=5001, cluster=Cluster.SERVICES),
    ServiceDescriptor(domain="api.pdok.nl", port=5002, cluster=Cluster.SERVICES),
    ServiceDescriptor(domain="app.pdok.nl", port=5003, cluster=Cluster.SERVICES),
    ServiceDescriptor(domain="delivery.pdok.nl", port=5004, cluster=Cluster.PROCESSING),
    ServiceDescriptor(domain="s3.delivery.pdok.nl", port=5005, cluster=Cluster.PROCESSING),
    ServiceDescriptor(domain="pdok.cloud.kadaster.nl", port=5006, cluster=Cluster.MONITORING),
)


def build_registry(entries: Iterable[ServiceDescriptor]) -> Tuple[ServiceDescriptor, ...]:
    """
    Validate service descriptors and freeze them into a registry.

    Args:
        entries: Service descriptors in listener start order

    Returns:
        Tuple of descriptors, order preserved

    Raises:
        ConfigurationError: If the registry is empty or two services share a port
    """
    registry = tuple(entries)
    if not registry:
        raise ConfigurationError("Service registry is empty")

    seen: Dict[int, ServiceDescriptor] = {}
    for service in registry:
        other = seen.get(service.port)
        if other is not None:
            raise ConfigurationError(
                f"Duplicate local port {service.port}: "
                f"'{other.domain}' and '{service.domain}'"
            )
        seen[service.port] = service

    logger.debug(f"Service registry built with {len(registry)} services")
    return registry


def get_registry() -> Tuple[ServiceDescriptor, ...]:
    """Registry of the default PDOK services."""
    return build_registry(DEFAULT_SERVICES)
