"""
Stream framing for the TCP relay.

Each frame is a 4-byte big-endian length prefix followed by a UTF-8 JSON
envelope: {"code": int, "targets": [int], "sender": int, "data": str}.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)

HEADER_SIZE = 4
MAX_FRAME_SIZE = 16 * 1024 * 1024

# Sent once by a client to announce its peer id
HELLO_CODE = 0


class FrameError(ValueError):
    """A frame that cannot be decoded without losing stream sync."""


@dataclass
class Envelope:
    """One routed event."""

    code: int
    targets: List[int] = field(default_factory=list)
    sender: Optional[int] = None
    data: str = ""

    def to_dict(self) -> dict:
        return {
            'code': self.code,
            'targets': list(self.targets),
            'sender': self.sender,
            'data': self.data,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> 'Envelope':
        if not isinstance(payload, dict) or 'code' not in payload:
            raise ValueError("Envelope must be an object with a code")
        return cls(
            code=int(payload['code']),
            targets=[int(t) for t in payload.get('targets') or []],
            sender=payload.get('sender'),
            data=payload.get('data') or "",
        )


def encode_frame(envelope: Envelope) -> bytes:
    """Serialize an envelope with its length prefix."""
    body = json.dumps(envelope.to_dict()).encode('utf-8')
    if len(body) > MAX_FRAME_SIZE:
        raise FrameError(f"Frame of {len(body)} bytes exceeds {MAX_FRAME_SIZE}")
    return len(body).to_bytes(HEADER_SIZE, byteorder='big') + body


class FrameDecoder:
    """
    Incremental decoder for a byte stream.

    Partial frames stay buffered until the rest arrives. A frame whose body
    is not a valid envelope is logged and skipped.
    """

    def __init__(self, max_frame_size: int = MAX_FRAME_SIZE):
        self.max_frame_size = max_frame_size
        self._buffer = b''

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> List[Envelope]:
        """
        Add received bytes.

        Returns:
            Envelopes completed by this chunk

        Raises:
            FrameError: If a length prefix exceeds the frame limit
        """
        self._buffer += data
        envelopes = []

        while len(self._buffer) >= HEADER_SIZE:
            length = int.from_bytes(self._buffer[:HEADER_SIZE], byteorder='big')
            if length > self.max_frame_size:
                raise FrameError(f"Frame length {length} exceeds {self.max_frame_size}")
            if len(self._buffer) < HEADER_SIZE + length:
                break  # wait for the rest

            body = self._buffer[HEADER_SIZE:HEADER_SIZE + length]
            self._buffer = self._buffer[HEADER_SIZE + length:]

            try:
                envelopes.append(Envelope.from_dict(json.loads(body.decode('utf-8'))))
            except (UnicodeDecodeError, json.JSONDecodeError, ValueError, TypeError) as e:
                logger.warning(f"Skipping undecodable frame: {e}")

        return envelopes
