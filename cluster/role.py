"""
Drives the service registry when this node's role changes.
"""

import logging
import socket
from typing import Optional

from .errors import AddressResolutionError, CoordinationError
from .registry import MembershipRegistry, Outcome

logger = logging.getLogger(__name__)


class RoleTransitionHandler:
    def __init__(self, registry: MembershipRegistry, port: int,
                 host: Optional[str] = None, scheme: str = "http"):
        """
        Args:
            registry: The process's membership registry
            port: Port this node serves on, part of the advertised address
            host: Advertised host name (default: local FQDN)
            scheme: URL scheme of the advertised address
        """
        self.registry = registry
        self.port = port
        self.host = host
        self.scheme = scheme
        self.role = None

    def current_address(self) -> str:
        """Address other nodes should use to reach this one."""
        host = self.host
        if not host:
            try:
                hostname = socket.gethostname()
                socket.gethostbyname(hostname)
                host = socket.getfqdn(hostname)
            except OSError as e:
                raise AddressResolutionError(f"Cannot resolve local host name: {e}") from e
        return f"{self.scheme}://{host}:{self.port}"

    def on_becomes_leader(self):
        """
        Stop advertising as a worker, then start watching the worker pool.

        unregister() is a no-op for a node that was never a worker.
        """
        self.role = "leader"
        try:
            self.registry.unregister()
        except CoordinationError as e:
            logger.error("Leader could not withdraw its worker registration: %s (%s)", e, e.kind)
        self.registry.subscribe_to_updates()
        logger.info("Now acting as leader, watching %s", self.registry.registry_root)

    def on_becomes_worker(self) -> Optional[Outcome]:
        """Advertise this node's address. Failure leaves it unregistered."""
        self.role = "worker"
        try:
            address = self.current_address()
            return self.registry.register(address)
        except AddressResolutionError as e:
            logger.error("Worker registration skipped: %s", e)
        except CoordinationError as e:
            logger.error("Worker registration failed: %s (%s)", e, e.kind)
        return None
