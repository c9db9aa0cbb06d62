import logging
from typing import FrozenSet, Iterable, Optional

from ledmesh.enums import SENTINEL_NODE_ID

logger = logging.getLogger(__name__)


def filter_membership(node_ids: Iterable[int]) -> FrozenSet[int]:
    return frozenset(node_id for node_id in node_ids if node_id != SENTINEL_NODE_ID)


class MembershipTracker():
    """Reads the transport's view of reachable peers, minus sentinel entries.

    Every call returns a fresh snapshot, nothing is merged with earlier views.
    """

    def __init__(self, transport) -> None:
        self.__transport = transport
        self.__last_logged: Optional[FrozenSet[int]] = None

    def current_membership(self) -> FrozenSet[int]:
        membership = filter_membership(self.__transport.membership_snapshot())

        if membership != self.__last_logged:
            self.__last_logged = membership
            logger.info("Connection list (%d nodes): %s", len(membership),
                        " ".join(str(node_id) for node_id in sorted(membership)) or "-")

        return membership
