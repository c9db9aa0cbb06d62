import logging
import socket
import struct
import threading
import time
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from ledmesh.config import DEFAULT_CLOCK_MODULUS
from ledmesh.enums import Signal
from ledmesh.errors import MalformedMessageError, TransportError
from ledmesh.transport import Transport

logger = logging.getLogger(__name__)

DEFAULT_GROUP = ('224.3.29.71', 10000)
DEFAULT_HELLO_INTERVAL = 1.0
DEFAULT_PEER_TIMEOUT = 3.5
DEFAULT_RECV_TIMEOUT = 0.2
MAX_FRAME_SIZE = 1024

# Consecutive failed sends before the transport reports itself unattached
MAX_SEND_FAILURES = 3

# Typehint types
GroupType = Tuple[str, int]


def route_address(group: GroupType) -> str:
    """Local address the kernel would send to ``group`` from.

    Connecting a UDP socket only selects a route, nothing goes on the wire.
    """
    probe = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        probe.connect(group)
        return probe.getsockname()[0]
    finally:
        probe.close()


class FrameCodec():
    """``signal|node_id|body`` framing for multicast datagrams.

    The body is the last field so it may itself contain ``|``.
    """

    def __init__(self, node_id: int):
        self.node_id = node_id
        self.valid_keys_to_send = ["signal", "node_id", "body"]

    def format_frame(self, signal: Signal, body: bytes = b"") -> bytes:
        return b"|".join([str(signal.value).encode("ascii"), str(self.node_id).encode("ascii"), body])

    def parse_frame(self, data: bytes) -> Tuple[Signal, int, bytes]:
        parts = data.split(b"|", len(self.valid_keys_to_send) - 1)
        if len(parts) != len(self.valid_keys_to_send):
            raise MalformedMessageError("Frame has too few fields", {"size": len(data)})

        raw_signal, raw_node_id, body = parts
        try:
            signal = Signal(int(raw_signal))
            node_id = int(raw_node_id)
        except ValueError:
            raise MalformedMessageError("Frame header is not numeric", {"signal": raw_signal, "node_id": raw_node_id})

        if node_id < 0:
            raise MalformedMessageError("Frame has a negative node id", {"node_id": node_id})
        return signal, node_id, body


class UdpMulticastTransport(Transport):
    """Transport over an IPv4 multicast group.

    Peers announce themselves with HELLO frames; a peer that has not been
    heard from for ``peer_timeout`` seconds drops out of the membership.
    """

    def __init__(self, node_id: int, group: GroupType = DEFAULT_GROUP,
                 hello_interval: float = DEFAULT_HELLO_INTERVAL, peer_timeout: float = DEFAULT_PEER_TIMEOUT,
                 clock_modulus: int = DEFAULT_CLOCK_MODULUS, ttl: int = 1,
                 socket_factory: Optional[Callable[[], socket.socket]] = None) -> None:
        super().__init__()
        self.__node_id = node_id
        self.multicast_group = group
        self.hello_interval = hello_interval
        self.peer_timeout = peer_timeout
        self.clock_modulus = clock_modulus
        self.ttl = ttl
        self.send_failures = 0

        self.__codec = FrameCodec(node_id)
        self.__socket_factory = socket_factory or self.__open_socket
        self.__sock: Optional[socket.socket] = None
        self.__peers: Dict[int, float] = {}
        self.__peer_lock = threading.Lock()
        self.__stop_event = threading.Event()
        self.__threads: List[threading.Thread] = []

    # =============================================================================
    def __open_socket(self) -> socket.socket:
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if hasattr(socket, "SO_REUSEPORT"):
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            sock.bind(('', self.multicast_group[1]))

            # Tell the operating system to add the socket to the multicast group on all interfaces.
            group = socket.inet_aton(self.multicast_group[0])
            mreq = struct.pack('4sL', group, socket.INADDR_ANY)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)

            # Keep traffic on the local network segment
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, struct.pack('b', self.ttl))
            sock.settimeout(DEFAULT_RECV_TIMEOUT)
        except OSError as e:
            raise TransportError("Could not join multicast group",
                                 {"group": self.multicast_group, "error": str(e)})
        return sock

    # =============================================================================
    def start(self) -> None:
        if self.__sock is not None:
            return

        self.__sock = self.__socket_factory()
        self.send_failures = 0
        self.__stop_event.clear()
        logger.info("Node %d joined multicast group %s:%d", self.__node_id, *self.multicast_group)

        self.__threads = [
            threading.Thread(target=self.__listen, name="ledmesh-listener", daemon=True),
            threading.Thread(target=self.__heartbeat, name="ledmesh-heartbeat", daemon=True),
        ]
        for thread in self.__threads:
            thread.start()

    # =============================================================================
    def stop(self) -> None:
        if self.__sock is None:
            return

        # Let the others drop us right away instead of waiting for the timeout
        self.__send_frame(Signal.BYE)
        self.__stop_event.set()
        for thread in self.__threads:
            thread.join()
        self.__threads = []

        self.__sock.close()
        self.__sock = None

        with self.__peer_lock:
            had_peers = bool(self.__peers)
            self.__peers.clear()
        if had_peers:
            self._notify_membership_changed()

    # =============================================================================
    def reinitialize(self) -> None:
        logger.info("Reinitializing multicast transport for node %d", self.__node_id)
        self.stop()
        self.start()

    # =============================================================================
    def self_id(self) -> int:
        return self.__node_id

    def broadcast(self, data: bytes) -> None:
        self.__send_frame(Signal.DATA, data)

    def membership_snapshot(self) -> FrozenSet[int]:
        with self.__peer_lock:
            return frozenset(self.__peers)

    def logical_clock_now(self) -> int:
        # Wall clock in microseconds, nodes are assumed to run NTP
        return (time.time_ns() // 1000) % self.clock_modulus

    def is_attached(self) -> bool:
        if self.__sock is None:
            return False
        if self.send_failures >= MAX_SEND_FAILURES:
            return False
        try:
            address = route_address(self.multicast_group)
        except OSError:
            return False
        return address != "0.0.0.0" and not address.startswith("127.")

    # =============================================================================
    def __send_frame(self, signal: Signal, body: bytes = b"") -> None:
        sock = self.__sock
        if sock is None:
            return
        try:
            sock.sendto(self.__codec.format_frame(signal, body), self.multicast_group)
            self.send_failures = 0
        except OSError as e:
            self.send_failures += 1
            # Fire and forget, the health probe will notice if this keeps happening
            logger.debug("Send of %s failed: %s", signal.name, e)

    # =============================================================================
    def __touch_peer(self, node_id: int) -> bool:
        with self.__peer_lock:
            is_new = node_id not in self.__peers
            self.__peers[node_id] = time.monotonic()
        return is_new

    def __drop_peer(self, node_id: int) -> bool:
        with self.__peer_lock:
            return self.__peers.pop(node_id, None) is not None

    def expire_peers(self, now: Optional[float] = None) -> List[int]:
        now = time.monotonic() if now is None else now
        with self.__peer_lock:
            expired = [node_id for node_id, seen in self.__peers.items() if now - seen > self.peer_timeout]
            for node_id in expired:
                del self.__peers[node_id]
        return expired

    # =============================================================================
    def handle_datagram(self, data: bytes) -> None:
        try:
            signal, node_id, body = self.__codec.parse_frame(data)
        except MalformedMessageError as e:
            logger.debug("Dropping frame: %s", e)
            return

        # Multicast loopback hands us our own frames
        if node_id == self.__node_id:
            return

        if signal == Signal.BYE:
            if self.__drop_peer(node_id):
                logger.info("Node %d left", node_id)
                self._notify_membership_changed()
            return

        if self.__touch_peer(node_id):
            logger.info("New connection, node id = %d", node_id)
            self._notify_membership_changed()

        if signal == Signal.DATA:
            self._notify_message_received(node_id, body)

    # =============================================================================
    def __listen(self) -> None:
        sock = self.__sock
        while not self.__stop_event.is_set():
            try:
                data, _ = sock.recvfrom(MAX_FRAME_SIZE)
            except socket.timeout:
                continue
            except OSError as e:
                if not self.__stop_event.is_set():
                    logger.warning("Multicast receive failed: %s", e)
                break
            self.handle_datagram(data)

    # =============================================================================
    def __heartbeat(self) -> None:
        while not self.__stop_event.is_set():
            self.__send_frame(Signal.HELLO)

            expired = self.expire_peers()
            if expired:
                logger.info("Lost contact with nodes %s", " ".join(str(node_id) for node_id in sorted(expired)))
                self._notify_membership_changed()

            self.__stop_event.wait(self.hello_interval)
