import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Optional, Union

from ledmesh.config import SyncConfig
from ledmesh.election import LeaderElector
from ledmesh.enums import AnimationMode, MessageKind, SENTINEL_NODE_ID
from ledmesh.errors import ConfigurationError, MalformedMessageError
from ledmesh.health import HealthMonitor
from ledmesh.membership import MembershipTracker
from ledmesh.messages import Messenger, SyncMessage
from ledmesh.mode import AnimationModeController
from ledmesh.phase import KeyframeOutcome, PhaseSyncEngine
from ledmesh.renderer import Renderer
from ledmesh.state import CoordinationState
from ledmesh.transport import Transport

logger = logging.getLogger(__name__)


# Events the transport hands to the loop, processed in arrival order
@dataclass(frozen=True)
class MembershipChanged:
    pass

@dataclass(frozen=True)
class MessageReceived:
    sender_id: int
    data: bytes

@dataclass(frozen=True)
class TimeAdjusted:
    offset: int

Event = Union[MembershipChanged, MessageReceived, TimeAdjusted]


class PeriodicTrigger():
    """Fires at most once per call when ``interval_ms`` has passed since it last fired."""

    def __init__(self, interval_ms: int, start_ms: Optional[float] = None) -> None:
        self.interval_ms = interval_ms
        self.next_due_ms = start_ms

    def due(self, now_ms: float) -> bool:
        if self.next_due_ms is None:
            self.next_due_ms = now_ms + self.interval_ms
            return False
        if now_ms < self.next_due_ms:
            return False
        self.next_due_ms = now_ms + self.interval_ms
        return True

    def remaining_ms(self, now_ms: float) -> float:
        if self.next_due_ms is None:
            return 0.0
        return max(0.0, self.next_due_ms - now_ms)


class Coordinator():
    """Single coordination loop for one node.

    Transport callbacks only enqueue events. ``step`` drains the queue and then
    runs whichever of the election, tick and mode broadcast timers are due, so
    all of the state is only ever touched from one thread.
    """

    def __init__(self, transport: Transport, renderer: Renderer, config: Optional[SyncConfig] = None) -> None:
        self.config = config or SyncConfig()
        self.config.validate()

        self_id = transport.self_id()
        if self_id == SENTINEL_NODE_ID:
            raise ConfigurationError("Node id 0 is reserved", {"node_id": self_id})

        self.__transport = transport
        self.__renderer = renderer
        self.__messenger = Messenger()
        self.__state = CoordinationState(self_id=self_id)

        self.__membership = MembershipTracker(transport)
        self.__elector = LeaderElector()
        self.__modes = AnimationModeController()
        self.__health = HealthMonitor(self.config, transport)
        self.__phase = PhaseSyncEngine(self.config, self.__health)

        self.__events: queue.Queue = queue.Queue()
        self.__election_timer = PeriodicTrigger(self.config.election_interval_ms)
        self.__tick_timer = PeriodicTrigger(self.config.tick_interval_ms)
        self.__message_timer = PeriodicTrigger(self.config.message_interval_ms)

        self.__stop_event = threading.Event()
        self.__thread: Optional[threading.Thread] = None

        transport.on_membership_changed(lambda: self.__events.put(MembershipChanged()))
        transport.on_message_received(lambda sender_id, data: self.__events.put(MessageReceived(sender_id, data)))
        transport.on_time_adjusted(lambda offset: self.__events.put(TimeAdjusted(offset)))

    # =============================================================================
    # Read-only views for the renderer and for tests
    # =============================================================================
    @property
    def state(self) -> CoordinationState:
        return self.__state

    def current_mode(self) -> AnimationMode:
        return self.__state.mode

    def current_phase(self) -> int:
        return self.__state.phase

    def is_leader(self) -> bool:
        return self.__state.is_leader

    def leader_id(self) -> int:
        return self.__state.leader_id

    # =============================================================================
    def connect(self) -> None:
        self.__transport.start()
        self.run_election()

    def disconnect(self) -> None:
        self.__transport.stop()

    # =============================================================================
    def run_election(self) -> None:
        """One election cycle: transport health, fresh membership, leader."""
        self.__health.observe_transport(self.__state)
        self.__state.membership = self.__membership.current_membership()
        self.__elector.run(self.__state)
        self.__modes.evaluate(self.__state)

    # =============================================================================
    def handle_event(self, event: Event) -> None:
        if isinstance(event, MembershipChanged):
            self.run_election()
        elif isinstance(event, MessageReceived):
            self.handle_message(event.sender_id, event.data)
        elif isinstance(event, TimeAdjusted):
            logger.debug("Adjusted time %d. Offset = %d", self.__transport.logical_clock_now(), event.offset)

    def handle_message(self, sender_id: int, data: bytes) -> None:
        try:
            message = self.__messenger.decode(sender_id, data)
        except MalformedMessageError as e:
            logger.debug("Discarding message from %d: %s", sender_id, e)
            return

        if message.kind == MessageKind.KEYFRAME:
            outcome = self.__phase.on_keyframe(self.__state, message, self.__transport.logical_clock_now())
            if outcome == KeyframeOutcome.APPLIED:
                logger.debug("Keyframe received from %d", sender_id)
        else:
            self.__modes.on_mode_update(self.__state, message)

    def drain_events(self) -> int:
        handled = 0
        while True:
            try:
                event = self.__events.get_nowait()
            except queue.Empty:
                return handled
            self.handle_event(event)
            handled += 1

    # =============================================================================
    def tick(self) -> None:
        self.__modes.evaluate(self.__state)

        keyframe = self.__phase.tick(self.__state, self.__transport.logical_clock_now())
        if keyframe is not None:
            self.__transport.broadcast(self.__messenger.encode(keyframe))
            logger.debug("Leader keyframe broadcast message sent")

        self.__renderer.render(self.__state.mode, self.__state.phase, self.__state.is_leader)

    def broadcast_mode(self) -> None:
        if not self.__modes.should_broadcast(self.__state):
            return
        message = SyncMessage.mode_update(self.__state.self_id, self.__transport.logical_clock_now(), self.__state.mode)
        self.__transport.broadcast(self.__messenger.encode(message))

    # =============================================================================
    def step(self, now_ms: Optional[float] = None) -> None:
        now_ms = time.monotonic() * 1000 if now_ms is None else now_ms

        # Elections triggered by membership changes finish before this cycle's decisions
        self.drain_events()

        if self.__election_timer.due(now_ms):
            self.run_election()

        if self.__tick_timer.due(now_ms):
            self.tick()

        if self.__message_timer.due(now_ms):
            self.broadcast_mode()

    def next_wakeup_ms(self, now_ms: float) -> float:
        return min(timer.remaining_ms(now_ms)
                   for timer in (self.__election_timer, self.__tick_timer, self.__message_timer))

    # =============================================================================
    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        stop_event = stop_event or self.__stop_event
        while not stop_event.is_set():
            self.step()
            stop_event.wait(self.next_wakeup_ms(time.monotonic() * 1000) / 1000)

    def start(self) -> None:
        self.connect()
        self.__stop_event.clear()
        self.__thread = threading.Thread(target=self.run, name="ledmesh-coordinator", daemon=True)
        self.__thread.start()

    def stop(self) -> None:
        self.__stop_event.set()
        if self.__thread is not None:
            self.__thread.join()
            self.__thread = None
        self.disconnect()
