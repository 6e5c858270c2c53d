"""
Target resolution for transports.

Outbound events carry a target list of peer ids and sentinels
(-1 master, -2 everyone except the sender, -3 everyone). Transports turn
that list into concrete recipients.
"""

import logging
from typing import Iterable, List, Optional, Sequence

from nas_core.proto import Targets

logger = logging.getLogger(__name__)


def resolve_targets(targets: Sequence[int], sender: Optional[int],
                    peers: Iterable[int], master: Optional[int] = None) -> List[int]:
    """
    Resolve a target list to recipients.

    Args:
        targets: Peer ids and sentinels; empty means everyone
        sender: Peer id of the sender (excluded by OTHERS)
        peers: Registered peers in registration order
        master: Master peer id (defaults to the earliest registered peer)

    Returns:
        Recipients without duplicates, in first-seen order
    """
    peers = list(peers)
    if master is None and peers:
        master = peers[0]

    if not targets:
        return peers

    recipients: List[int] = []
    for target in targets:
        if target == Targets.MASTER:
            ids = [master] if master is not None else []
        elif target == Targets.OTHERS:
            ids = [p for p in peers if p != sender]
        elif target == Targets.ALL:
            ids = peers
        elif target > 0:
            ids = [target] if target in peers else []
            if not ids:
                logger.debug(f"Target peer {target} is not registered")
        else:
            logger.warning(f"Unknown target sentinel {target}")
            ids = []

        for peer_id in ids:
            if peer_id not in recipients:
                recipients.append(peer_id)

    return recipients
