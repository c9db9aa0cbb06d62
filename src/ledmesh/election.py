import logging
from typing import Iterable, NamedTuple

from ledmesh.enums import SENTINEL_NODE_ID
from ledmesh.state import CoordinationState

logger = logging.getLogger(__name__)


class ElectionResult(NamedTuple):
    leader_id: int
    is_leader: bool


class LeaderElector():
    """Lowest node id wins. No terms, no votes, recomputed from scratch each time."""

    @staticmethod
    def elect(self_id: int, membership: Iterable[int]) -> ElectionResult:
        candidates = [node_id for node_id in membership if node_id != SENTINEL_NODE_ID]
        if self_id != SENTINEL_NODE_ID:
            candidates.append(self_id)

        # Only happens if we were handed an invalid self id and nobody else is around
        if not candidates:
            return ElectionResult(SENTINEL_NODE_ID, False)

        leader_id = min(candidates)
        return ElectionResult(leader_id, leader_id == self_id)

    # =============================================================================
    def run(self, state: CoordinationState) -> ElectionResult:
        result = self.elect(state.self_id, state.membership)

        if result.leader_id != state.leader_id or result.is_leader != state.is_leader:
            if result.is_leader:
                logger.info("Election result: I am the leader now (node id: %d)", state.self_id)
            else:
                logger.info("Election result: node %d is the leader", result.leader_id)

        state.leader_id, state.is_leader = result
        return result
