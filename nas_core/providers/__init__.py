"""
Providers Module: Sources of coordinate frames.

Key classes:
- CoordinateProvider: Interface consumed by the service
- StaticCoordinateProvider: In-memory coordinates for virtual sessions
- RemoteCoordinateProvider: Adopts a connected peer's coordinates
"""

from .base import CoordinateProvider
from .static_provider import (
    StaticCoordinateProvider,
    create_virtual_coordinates,
)
from .remote_provider import RemoteCoordinateProvider

__all__ = [
    'CoordinateProvider',
    'StaticCoordinateProvider',
    'create_virtual_coordinates',
    'RemoteCoordinateProvider',
]
