"""
TCP relay for sessions spanning several processes.

RelayServer accepts peers over asyncio streams and routes framed events
between them. RelayTransport connects one service to a relay.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from .framing import HELLO_CODE, Envelope, FrameDecoder, FrameError, encode_frame
from .routing import resolve_targets

logger = logging.getLogger(__name__)

READ_CHUNK = 4096


class RelayServer:
    """
    Event relay.

    A client first sends a hello frame (code 0) whose sender is its peer id.
    Every later frame is forwarded to the peers resolved from its targets.
    The earliest connected peer still present is the master.
    """

    def __init__(self, host: str = '127.0.0.1', port: int = 0):
        """
        Initialize relay.

        Args:
            host: Listen address
            port: Listen port (0 picks a free port)
        """
        self.host = host
        self.port = port
        self._server: Optional[asyncio.AbstractServer] = None
        self._writers: Dict[int, asyncio.StreamWriter] = {}
        self.routed = 0

    @property
    def peers(self) -> List[int]:
        return list(self._writers)

    @property
    def master(self) -> Optional[int]:
        return next(iter(self._writers), None)

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle_client, self.host, self.port)
        self.port = self._server.sockets[0].getsockname()[1]
        logger.info(f"Relay listening on {self.host}:{self.port}")

    async def stop(self) -> None:
        for writer in list(self._writers.values()):
            writer.close()
        self._writers.clear()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        logger.info("Relay stopped")

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        address = writer.get_extra_info('peername')
        decoder = FrameDecoder()
        peer_id: Optional[int] = None

        try:
            while True:
                data = await reader.read(READ_CHUNK)
                if not data:
                    break

                for envelope in decoder.feed(data):
                    if envelope.code == HELLO_CODE:
                        if peer_id is not None:
                            logger.warning(f"Ignoring repeated hello from peer {peer_id}")
                            continue
                        peer_id = self._register(envelope.sender, writer, address)
                        if peer_id is None:
                            return
                        continue
                    if peer_id is None:
                        logger.warning(f"Dropping frame from {address} before hello")
                        continue
                    self._route(peer_id, envelope)

        except (ConnectionError, FrameError) as e:
            logger.warning(f"Relay connection {address} failed: {e}")
        finally:
            if peer_id is not None and self._writers.get(peer_id) is writer:
                del self._writers[peer_id]
                logger.info(f"Peer {peer_id} left the relay")
            writer.close()

    def _register(self, peer_id, writer: asyncio.StreamWriter, address) -> Optional[int]:
        if not isinstance(peer_id, int) or peer_id <= 0:
            logger.warning(f"Rejecting hello from {address}: invalid peer id {peer_id!r}")
            return None
        if peer_id in self._writers:
            logger.warning(f"Rejecting hello from {address}: peer {peer_id} already connected")
            return None
        self._writers[peer_id] = writer
        logger.info(f"Peer {peer_id} joined the relay from {address}")
        return peer_id

    def _route(self, sender: int, envelope: Envelope) -> None:
        frame = encode_frame(Envelope(envelope.code, envelope.targets, sender, envelope.data))
        for peer_id in resolve_targets(envelope.targets, sender, self._writers, self.master):
            self._writers[peer_id].write(frame)
        self.routed += 1


class RelayTransport:
    """
    Client side of the relay for one service.

    Usage:
        transport = RelayTransport(service, peer_id=2, host='127.0.0.1', port=port)
        await transport.open()
        await service.connect(2, provider)
    """

    def __init__(self, service, peer_id: int, host: str, port: int):
        self.service = service
        self.peer_id = peer_id
        self.host = host
        self.port = port
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._read_task: Optional[asyncio.Task] = None

    @property
    def is_open(self) -> bool:
        return self._writer is not None

    async def open(self) -> None:
        """Connect, announce the peer id and start receiving."""
        self._reader, self._writer = await asyncio.open_connection(self.host, self.port)
        self._writer.write(encode_frame(Envelope(HELLO_CODE, [], self.peer_id, "")))
        await self._writer.drain()
        self.service.attach_transport(self.send)
        self._read_task = asyncio.ensure_future(self._read_loop())
        logger.info(f"Peer {self.peer_id} connected to relay {self.host}:{self.port}")

    def send(self, code: int, json_data: str, targets: List[int]) -> None:
        if self._writer is None:
            logger.warning(f"Relay transport closed; dropping event {code}")
            return
        self._writer.write(encode_frame(Envelope(int(code), list(targets), self.peer_id, json_data)))

    async def _read_loop(self) -> None:
        decoder = FrameDecoder()
        try:
            while True:
                data = await self._reader.read(READ_CHUNK)
                if not data:
                    logger.info(f"Relay closed the connection of peer {self.peer_id}")
                    break
                for envelope in decoder.feed(data):
                    self.service.process_network_event(envelope.code, envelope.data)
        except (ConnectionError, FrameError) as e:
            logger.warning(f"Relay connection of peer {self.peer_id} failed: {e}")

    async def close(self) -> None:
        if self._read_task is not None:
            self._read_task.cancel()
            await asyncio.gather(self._read_task, return_exceptions=True)
            self._read_task = None
        if self._writer is not None:
            self.service.on_broadcast_network_event.unsubscribe(self.send)
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except ConnectionError:
                pass
            self._writer = None
