from __future__ import annotations

from ledmesh.membership import MembershipTracker, filter_membership
from ledmesh.transport import LoopbackNetwork


def test_filter_membership_drops_sentinel() -> None:
    assert filter_membership([0, 5, 0, 9]) == frozenset({5, 9})
    assert filter_membership([0]) == frozenset()


def test_tracker_reports_reachable_peers(network: LoopbackNetwork) -> None:
    transports = [network.create_transport(node_id) for node_id in (1, 2, 3)]
    for transport in transports:
        transport.start()
    tracker = MembershipTracker(transports[0])

    assert tracker.current_membership() == frozenset({2, 3})

    network.cut(1, 3)
    assert tracker.current_membership() == frozenset({2})

    transports[1].detach()
    assert tracker.current_membership() == frozenset()


def test_tracker_treats_sentinel_only_report_as_empty(network: LoopbackNetwork) -> None:
    transport = network.create_transport(4)
    transport.start()
    transport.extra_members = {0}

    assert MembershipTracker(transport).current_membership() == frozenset()


def test_tracker_snapshot_replaces_previous_view(network: LoopbackNetwork) -> None:
    first = network.create_transport(1)
    second = network.create_transport(2)
    first.start()
    second.start()
    tracker = MembershipTracker(first)
    assert tracker.current_membership() == frozenset({2})

    second.stop()
    third = network.create_transport(3)
    third.start()

    assert tracker.current_membership() == frozenset({3})
