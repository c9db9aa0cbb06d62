import logging

from ledmesh.enums import AnimationMode, MessageKind
from ledmesh.messages import SyncMessage
from ledmesh.state import CoordinationState

logger = logging.getLogger(__name__)


class AnimationModeController():
    """Solo/Synced state machine.

    Only the leader promotes itself to Synced. Followers get there by accepting
    mode updates from whoever won the most recent election, and anyone who
    loses all peers drops back to Solo on its own.
    """

    def __set_mode(self, state: CoordinationState, mode: AnimationMode, reason: str) -> bool:
        if state.mode == mode:
            return False
        logger.info("Mode %s -> %s (%s)", state.mode.name, mode.name, reason)
        state.mode = mode
        return True

    # =============================================================================
    def evaluate(self, state: CoordinationState) -> bool:
        # Alone on the network, nobody to sync with
        if not state.membership:
            return self.__set_mode(state, AnimationMode.SOLO, "no peers")

        if state.is_leader and state.mode == AnimationMode.SOLO:
            return self.__set_mode(state, AnimationMode.SYNCED, "leading %d peers" % len(state.membership))

        return False

    # =============================================================================
    def on_mode_update(self, state: CoordinationState, message: SyncMessage) -> bool:
        if message.kind != MessageKind.MODE_UPDATE:
            return False

        # Only the node we elected gets to steer us
        if message.sender_id != state.leader_id or message.sender_id == state.self_id:
            logger.debug("Ignoring mode update from %d, leader is %d", message.sender_id, state.leader_id)
            return False

        return self.__set_mode(state, message.mode, "update from leader %d" % message.sender_id)

    # =============================================================================
    def should_broadcast(self, state: CoordinationState) -> bool:
        return state.is_leader and bool(state.membership)
