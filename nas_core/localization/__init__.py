"""
Localization Module: Network anchor discovery protocol.

Key classes:
- NetworkAnchorService: Per-peer protocol engine
- AnchorSessionController: One-at-a-time find-or-create workflows
- PendingRequest / PendingRequestTable: Response slots with deadlines
- PeerDirectory: Connected peers in connection order
- EventHook: Synchronous observer registry
"""

from typing import Optional

from .config import AckPolicy, ServiceConfig
from .observers import EventHook
from .pending_request import PendingRequest, PendingRequestTable, RequestKind
from .peer_directory import PeerDirectory
from .anchor_service import (
    NetworkAnchorService,
    NetworkAnchorResult,
    RemoteCoordinatesResult,
)
from .controller import AnchorSessionController

# Process-wide service for adapters that cannot pass one around
_service: Optional[NetworkAnchorService] = None


def get_service(config: Optional[ServiceConfig] = None) -> NetworkAnchorService:
    """Get the process-wide service, creating it on first use."""
    global _service
    if _service is None:
        _service = NetworkAnchorService(config)
    return _service


def reset_service():
    """Drop the process-wide service (for testing)."""
    global _service
    _service = None


__all__ = [
    'AckPolicy',
    'ServiceConfig',
    'EventHook',
    'PendingRequest',
    'PendingRequestTable',
    'RequestKind',
    'PeerDirectory',
    'NetworkAnchorService',
    'NetworkAnchorResult',
    'RemoteCoordinatesResult',
    'AnchorSessionController',
    'get_service',
    'reset_service',
]
