"""Framing and peer bookkeeping of the multicast transport, exercised without sockets."""

from __future__ import annotations

import socket
import time
from typing import List, Tuple

import pytest

from ledmesh.enums import Signal
from ledmesh.errors import MalformedMessageError
from ledmesh import multicast
from ledmesh.multicast import MAX_SEND_FAILURES, FrameCodec, UdpMulticastTransport


@pytest.fixture
def transport() -> UdpMulticastTransport:
    return UdpMulticastTransport(7, peer_timeout=3.0)


def record(transport: UdpMulticastTransport) -> Tuple[List[int], List[Tuple[int, bytes]]]:
    changes: List[int] = []
    messages: List[Tuple[int, bytes]] = []
    transport.on_membership_changed(lambda: changes.append(1))
    transport.on_message_received(lambda sender_id, data: messages.append((sender_id, data)))
    return changes, messages


def test_frame_body_may_contain_separator() -> None:
    codec = FrameCodec(12)

    frame = codec.format_frame(Signal.DATA, b'{"msg":"a|b"}')

    assert frame == b'2|12|{"msg":"a|b"}'
    assert codec.parse_frame(frame) == (Signal.DATA, 12, b'{"msg":"a|b"}')


@pytest.mark.parametrize("frame", [b"", b"2|12", b"x|12|", b"2|abc|", b"9|12|", b"2|-4|"])
def test_parse_frame_rejects_garbage(frame: bytes) -> None:
    with pytest.raises(MalformedMessageError):
        FrameCodec(1).parse_frame(frame)


def test_hello_adds_peer_and_notifies(transport: UdpMulticastTransport) -> None:
    changes, messages = record(transport)

    transport.handle_datagram(FrameCodec(3).format_frame(Signal.HELLO))
    transport.handle_datagram(FrameCodec(3).format_frame(Signal.HELLO))

    assert transport.membership_snapshot() == frozenset({3})
    assert len(changes) == 1
    assert messages == []


def test_data_is_delivered_with_sender(transport: UdpMulticastTransport) -> None:
    changes, messages = record(transport)

    transport.handle_datagram(FrameCodec(3).format_frame(Signal.DATA, b"payload"))

    assert messages == [(3, b"payload")]
    assert transport.membership_snapshot() == frozenset({3})


def test_own_frames_and_garbage_are_ignored(transport: UdpMulticastTransport) -> None:
    changes, messages = record(transport)

    transport.handle_datagram(FrameCodec(7).format_frame(Signal.DATA, b"echo"))
    transport.handle_datagram(b"\x00\x01")

    assert transport.membership_snapshot() == frozenset()
    assert changes == []
    assert messages == []


def test_bye_and_timeout_remove_peers(transport: UdpMulticastTransport) -> None:
    changes, _ = record(transport)
    transport.handle_datagram(FrameCodec(3).format_frame(Signal.HELLO))
    transport.handle_datagram(FrameCodec(4).format_frame(Signal.HELLO))

    transport.handle_datagram(FrameCodec(3).format_frame(Signal.BYE))
    assert transport.membership_snapshot() == frozenset({4})

    assert transport.expire_peers(time.monotonic() + 10) == [4]
    assert transport.membership_snapshot() == frozenset()
    assert len(changes) == 3


def test_unstarted_transport_is_not_attached(transport: UdpMulticastTransport) -> None:
    assert not transport.is_attached()
    # Sending before start is a silent no-op
    transport.broadcast(b"ignored")


def test_logical_clock_is_within_modulus() -> None:
    transport = UdpMulticastTransport(7, clock_modulus=1000)

    assert 0 <= transport.logical_clock_now() < 1000


class FlakySocket:
    """Stands in for the multicast socket; sends fail while ``failing`` is set."""

    def __init__(self) -> None:
        self.failing = False
        self.sent: List[bytes] = []

    def sendto(self, data: bytes, group: Tuple[str, int]) -> int:
        if self.failing:
            raise OSError("Network is unreachable")
        self.sent.append(data)
        return len(data)

    def recvfrom(self, size: int) -> Tuple[bytes, Tuple[str, int]]:
        time.sleep(0.01)
        raise socket.timeout()

    def close(self) -> None:
        pass


@pytest.fixture
def flaky_transport(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(multicast, "route_address", lambda group: "192.168.1.50")
    sock = FlakySocket()
    transport = UdpMulticastTransport(7, hello_interval=60.0, socket_factory=lambda: sock)
    transport.start()
    deadline = time.monotonic() + 5
    while not sock.sent and time.monotonic() < deadline:
        time.sleep(0.01)
    yield transport, sock
    sock.failing = False
    transport.stop()


def test_consecutive_send_failures_mean_unattached(flaky_transport) -> None:
    transport, sock = flaky_transport
    assert transport.is_attached()

    sock.failing = True
    for _ in range(MAX_SEND_FAILURES):
        transport.broadcast(b"lost")
    assert not transport.is_attached()

    sock.failing = False
    transport.broadcast(b"delivered")
    assert transport.is_attached()


@pytest.mark.parametrize("address", ["127.0.1.1", "127.0.0.1", "0.0.0.0"])
def test_loopback_route_means_unattached(flaky_transport, monkeypatch: pytest.MonkeyPatch, address: str) -> None:
    transport, _ = flaky_transport
    monkeypatch.setattr(multicast, "route_address", lambda group: address)

    assert not transport.is_attached()


def test_unroutable_group_means_unattached(flaky_transport, monkeypatch: pytest.MonkeyPatch) -> None:
    transport, _ = flaky_transport

    def unreachable(group: Tuple[str, int]) -> str:
        raise OSError("Network is unreachable")

    monkeypatch.setattr(multicast, "route_address", unreachable)

    assert not transport.is_attached()


def test_reinitialize_reopens_socket_and_clears_failures(flaky_transport) -> None:
    transport, sock = flaky_transport
    sock.failing = True
    for _ in range(MAX_SEND_FAILURES):
        transport.broadcast(b"lost")
    sock.failing = False

    transport.reinitialize()

    assert transport.send_failures == 0
    assert transport.is_attached()
