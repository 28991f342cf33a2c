"""
Connectivity tracking for the storage gateway.
"""

import logging
import socket
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from shared.constants import DEFAULT_CONNECT_TIMEOUT
from .storage_provider import S3StorageProvider

logger = logging.getLogger(__name__)


@dataclass
class ConnectionStatus:
    """Snapshot of what the gateway knows about the network and backend."""
    online: bool
    backend_reachable: bool
    user_id: str = ""
    checked_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def ready(self) -> bool:
        return self.online and self.backend_reachable


class ConnectivityProbe:
    """
    Decides whether the network is up by opening a TCP connection to the
    provider endpoint. Local providers are always online.

    A manual override (set_online) wins over the probe; None clears it.
    """

    def __init__(self, provider: S3StorageProvider, timeout: float = DEFAULT_CONNECT_TIMEOUT):
        self.provider = provider
        self.timeout = timeout
        self.override: Optional[bool] = None

    def set_online(self, online: Optional[bool]) -> None:
        self.override = online

    def check(self) -> bool:
        if self.override is not None:
            return self.override

        address = self.provider.endpoint_address()
        if address is None:
            return True

        try:
            with socket.create_connection(address, timeout=self.timeout):
                return True
        except OSError as e:
            logger.info(f"Endpoint {address[0]}:{address[1]} unreachable: {e}")
            return False
