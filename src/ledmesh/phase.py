import logging
from enum import Enum, unique
from typing import Optional

from ledmesh.clock import clock_age, us_to_ms
from ledmesh.config import PHASE_MODULUS, SyncConfig
from ledmesh.enums import AnimationMode, MessageKind
from ledmesh.health import HealthMonitor
from ledmesh.messages import SyncMessage
from ledmesh.state import CoordinationState

logger = logging.getLogger(__name__)

PHASE_MAX = PHASE_MODULUS - 1


@unique
class KeyframeOutcome(Enum):
    APPLIED = 1
    UNCHANGED = 2
    DEAD_ZONE = 3
    STALE = 4
    CLOCK_SKEW = 5
    IGNORED = 6


class PhaseSyncEngine():
    """Shared 0-255 phase counter.

    The leader broadcasts a keyframe every time its counter wraps. Followers
    work out how many ticks the leader has advanced since sending it and jump
    straight to that phase, unless they are already close to the wrap point.
    """

    def __init__(self, config: SyncConfig, health: HealthMonitor) -> None:
        self.__config = config
        self.__health = health

    # =============================================================================
    def tick(self, state: CoordinationState, now: int) -> Optional[SyncMessage]:
        """Advance the phase by one; returns the keyframe to broadcast, if any."""
        state.phase = (state.phase + 1) % PHASE_MODULUS

        if state.phase == 0 and state.is_leader and state.mode != AnimationMode.SOLO:
            logger.debug("Leader keyframe at clock %d", now)
            return SyncMessage.keyframe(state.self_id, now)

        return None

    # =============================================================================
    def estimate_phase(self, message_age_us: int) -> int:
        return (us_to_ms(message_age_us) // self.__config.tick_interval_ms) % PHASE_MODULUS

    def in_correction_band(self, phase: int) -> bool:
        distance_to_wrap = PHASE_MAX - phase
        return self.__config.phase_tolerance_low < distance_to_wrap < self.__config.phase_tolerance_high

    # =============================================================================
    def on_keyframe(self, state: CoordinationState, message: SyncMessage, now: int) -> KeyframeOutcome:
        if message.kind != MessageKind.KEYFRAME:
            return KeyframeOutcome.IGNORED

        # Same provenance rule as mode updates
        if message.sender_id != state.leader_id or message.sender_id == state.self_id:
            logger.debug("Ignoring keyframe from %d, leader is %d", message.sender_id, state.leader_id)
            return KeyframeOutcome.IGNORED

        message_age = clock_age(now, message.timestamp, self.__config.clock_modulus)

        # The leader's clock is ahead of ours, can't trust the age
        if message_age < 0:
            logger.debug("Keyframe from %d is %dus in the future", message.sender_id, -message_age)
            self.__health.on_clock_anomaly(state)
            return KeyframeOutcome.CLOCK_SKEW

        if message_age >= self.__config.max_message_age_us:
            logger.debug("Dropping stale keyframe from %d, age %dus", message.sender_id, message_age)
            return KeyframeOutcome.STALE

        self.__health.on_clock_healthy(state)

        if not self.in_correction_band(state.phase):
            return KeyframeOutcome.DEAD_ZONE

        estimated_phase = self.estimate_phase(message_age)
        if estimated_phase == state.phase:
            return KeyframeOutcome.UNCHANGED

        logger.debug("Keyframe from %d aged %dms, phase %d -> %d",
                     message.sender_id, us_to_ms(message_age), state.phase, estimated_phase)
        state.phase = estimated_phase
        return KeyframeOutcome.APPLIED
