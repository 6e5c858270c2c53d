"""
Domain Module: Coordinates and network anchors.

Implements:
- Coordinate frames observed by a peer
- Per-peer coordinate snapshots
- Network anchors and co-localization between peers
"""

from .coordinate import (
    Coordinate,
    PeerCoordinates,
)
from .network_anchor import (
    NetworkAnchor,
    is_valid,
    find_shared_coordinate,
    try_colocalize,
)

__all__ = [
    'Coordinate',
    'PeerCoordinates',
    'NetworkAnchor',
    'is_valid',
    'find_shared_coordinate',
    'try_colocalize',
]
