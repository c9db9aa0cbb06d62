import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, FrozenSet, List, Optional, Set

from ledmesh.config import DEFAULT_CLOCK_MODULUS

logger = logging.getLogger(__name__)

MembershipCallback = Callable[[], None]
MessageCallback = Callable[[int, bytes], None]
TimeAdjustedCallback = Callable[[int], None]


class Transport(ABC):
    """Broadcast network the coordination layer runs on.

    Sends are fire-and-forget and queries never block. Callbacks may fire from
    any thread, consumers are expected to hand the work off to their own loop.
    """

    def __init__(self) -> None:
        self.__membership_callbacks: List[MembershipCallback] = []
        self.__message_callbacks: List[MessageCallback] = []
        self.__time_adjusted_callbacks: List[TimeAdjustedCallback] = []

    # =============================================================================
    def on_membership_changed(self, callback: MembershipCallback) -> None:
        self.__membership_callbacks.append(callback)

    def on_message_received(self, callback: MessageCallback) -> None:
        self.__message_callbacks.append(callback)

    def on_time_adjusted(self, callback: TimeAdjustedCallback) -> None:
        self.__time_adjusted_callbacks.append(callback)

    def _notify_membership_changed(self) -> None:
        for callback in list(self.__membership_callbacks):
            callback()

    def _notify_message_received(self, sender_id: int, data: bytes) -> None:
        for callback in list(self.__message_callbacks):
            callback(sender_id, data)

    def _notify_time_adjusted(self, offset: int) -> None:
        for callback in list(self.__time_adjusted_callbacks):
            callback(offset)

    # =============================================================================
    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    def request_clock_resync(self) -> None:
        logger.info("Clock resync requested, transport has no explicit resync")

    # =============================================================================
    @abstractmethod
    def self_id(self) -> int: ...

    @abstractmethod
    def broadcast(self, data: bytes) -> None: ...

    @abstractmethod
    def membership_snapshot(self) -> FrozenSet[int]: ...

    @abstractmethod
    def logical_clock_now(self) -> int: ...

    @abstractmethod
    def is_attached(self) -> bool: ...

    @abstractmethod
    def reinitialize(self) -> None: ...


class LoopbackNetwork():
    """In-process broadcast network with a shared, manually advanced clock.

    Every attached node can reach every other attached node unless the link
    between them has been cut. Delivery is synchronous.
    """

    def __init__(self, clock_modulus: int = DEFAULT_CLOCK_MODULUS, start_us: int = 0) -> None:
        self.clock_modulus = clock_modulus
        self.now_us = start_us
        self.__lock = threading.RLock()
        self.__nodes: Dict[int, "LoopbackTransport"] = {}
        self.__cut_links: Set[FrozenSet[int]] = set()
        self.drop_filter: Optional[Callable[[int, int, bytes], bool]] = None

    # =============================================================================
    def create_transport(self, node_id: int, clock_offset_us: int = 0) -> "LoopbackTransport":
        with self.__lock:
            transport = LoopbackTransport(self, node_id, clock_offset_us)
            self.__nodes[node_id] = transport
        return transport

    def node(self, node_id: int) -> "LoopbackTransport":
        return self.__nodes[node_id]

    def advance(self, ms: int) -> None:
        self.now_us += ms * 1000

    # =============================================================================
    def cut(self, a: int, b: int) -> None:
        with self.__lock:
            self.__cut_links.add(frozenset((a, b)))
        self.topology_changed()

    def heal(self, a: int, b: int) -> None:
        with self.__lock:
            self.__cut_links.discard(frozenset((a, b)))
        self.topology_changed()

    def reachable(self, a: int, b: int) -> bool:
        if a == b:
            return False
        with self.__lock:
            first, second = self.__nodes.get(a), self.__nodes.get(b)
            if first is None or second is None:
                return False
            if not (first.online and second.online):
                return False
            return frozenset((a, b)) not in self.__cut_links

    def peers_of(self, node_id: int) -> FrozenSet[int]:
        with self.__lock:
            return frozenset(other for other in self.__nodes if self.reachable(node_id, other))

    def topology_changed(self) -> None:
        with self.__lock:
            nodes = [node for node in self.__nodes.values() if node.running]
        for node in nodes:
            node._notify_membership_changed()

    # =============================================================================
    def deliver(self, sender_id: int, data: bytes) -> int:
        delivered = 0
        with self.__lock:
            receivers = [node for node_id, node in self.__nodes.items() if self.reachable(sender_id, node_id)]
        for receiver in receivers:
            if self.drop_filter is not None and self.drop_filter(sender_id, receiver.self_id(), data):
                continue
            receiver._notify_message_received(sender_id, data)
            delivered += 1
        return delivered


class LoopbackTransport(Transport):
    def __init__(self, network: LoopbackNetwork, node_id: int, clock_offset_us: int = 0) -> None:
        super().__init__()
        self.__network = network
        self.__node_id = node_id
        self.clock_offset_us = clock_offset_us
        self.attached = True
        self.running = False
        self.extra_members: Set[int] = set()
        self.sent: List[bytes] = []
        self.reinitialize_count = 0
        self.resync_requests = 0

    @property
    def online(self) -> bool:
        return self.running and self.attached

    # =============================================================================
    def start(self) -> None:
        self.running = True
        self.__network.topology_changed()

    def stop(self) -> None:
        self.running = False
        self.__network.topology_changed()

    def detach(self) -> None:
        self.attached = False
        self.__network.topology_changed()

    def attach(self) -> None:
        self.attached = True
        self.__network.topology_changed()

    # =============================================================================
    def self_id(self) -> int:
        return self.__node_id

    def broadcast(self, data: bytes) -> None:
        self.sent.append(data)
        if self.online:
            self.__network.deliver(self.__node_id, data)

    def membership_snapshot(self) -> FrozenSet[int]:
        return self.__network.peers_of(self.__node_id) | frozenset(self.extra_members)

    def logical_clock_now(self) -> int:
        return (self.__network.now_us + self.clock_offset_us) % self.__network.clock_modulus

    def is_attached(self) -> bool:
        return self.attached

    def reinitialize(self) -> None:
        self.reinitialize_count += 1
        logger.info("Loopback node %d reinitializing", self.__node_id)
        self.running = True
        self.attach()

    def request_clock_resync(self) -> None:
        self.resync_requests += 1

    # =============================================================================
    def adjust_clock(self, offset_us: int) -> None:
        self.clock_offset_us += offset_us
        self._notify_time_adjusted(offset_us)
