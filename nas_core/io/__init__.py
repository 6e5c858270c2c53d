"""
IO Module: Transports carrying protocol events between peers.

Key components:
- resolve_targets: Sentinel-aware recipient resolution
- LoopbackHub: In-process transport for tests and demos
- Framing: Length-prefixed JSON envelopes
- RelayServer / RelayTransport: asyncio TCP relay
"""

from .routing import resolve_targets
from .loopback import LoopbackHub
from .framing import (
    HELLO_CODE,
    MAX_FRAME_SIZE,
    Envelope,
    FrameDecoder,
    FrameError,
    encode_frame,
)
from .relay import RelayServer, RelayTransport

__all__ = [
    'resolve_targets',
    'LoopbackHub',
    'HELLO_CODE',
    'MAX_FRAME_SIZE',
    'Envelope',
    'FrameDecoder',
    'FrameError',
    'encode_frame',
    'RelayServer',
    'RelayTransport',
]
