"""
Peer directory: connected peer ids in connection order.
"""

from typing import Iterable, Iterator, List, Optional


class PeerDirectory:
    """
    Ordered set of connected peer ids.

    The master owns the authoritative copy and broadcasts it after every
    change; other peers replace theirs wholesale from that broadcast.
    """

    def __init__(self, peer_ids: Optional[Iterable[int]] = None):
        self._peers: List[int] = []
        if peer_ids:
            self.replace(peer_ids)

    def add(self, peer_id: int) -> bool:
        """
        Insert a peer if absent.

        Returns:
            True if the peer was added
        """
        if peer_id in self._peers:
            return False
        self._peers.append(peer_id)
        return True

    def remove(self, peer_id: int) -> bool:
        """
        Remove a peer if present.

        Returns:
            True if the peer was removed
        """
        if peer_id not in self._peers:
            return False
        self._peers.remove(peer_id)
        return True

    def replace(self, peer_ids: Iterable[int]) -> None:
        """Replace the directory, dropping duplicates but keeping order."""
        peers: List[int] = []
        for peer_id in peer_ids:
            if peer_id not in peers:
                peers.append(peer_id)
        self._peers = peers

    def clear(self) -> None:
        self._peers = []

    def others(self, local_peer_id: Optional[int]) -> List[int]:
        """Peers in connection order, without the local peer."""
        return [p for p in self._peers if p != local_peer_id]

    def as_list(self) -> List[int]:
        """Copy of the directory."""
        return list(self._peers)

    def __contains__(self, peer_id: int) -> bool:
        return peer_id in self._peers

    def __len__(self) -> int:
        return len(self._peers)

    def __iter__(self) -> Iterator[int]:
        return iter(list(self._peers))

    def __repr__(self) -> str:
        return f"PeerDirectory({self._peers})"
