from __future__ import annotations

from ledmesh.config import SyncConfig
from ledmesh.errors import TransportError
from ledmesh.health import HealthMonitor
from ledmesh.state import CoordinationState
from ledmesh.transport import LoopbackNetwork


def test_transport_reinitialized_once_after_threshold(config: SyncConfig, network: LoopbackNetwork) -> None:
    transport = network.create_transport(1)
    monitor = HealthMonitor(config, transport)
    state = CoordinationState(self_id=1)

    results = [monitor.on_transport_unhealthy(state) for _ in range(config.max_wifi_errors + 1)]

    assert results == [False] * config.max_wifi_errors + [True]
    assert transport.reinitialize_count == 1
    assert state.transport_errors == 0


def test_healthy_observation_resets_transport_errors(config: SyncConfig, network: LoopbackNetwork) -> None:
    transport = network.create_transport(1)
    monitor = HealthMonitor(config, transport)
    state = CoordinationState(self_id=1)

    for _ in range(config.max_wifi_errors):
        monitor.on_transport_unhealthy(state)
    monitor.on_transport_healthy(state)
    for _ in range(config.max_wifi_errors):
        monitor.on_transport_unhealthy(state)

    assert transport.reinitialize_count == 0
    assert state.transport_errors == config.max_wifi_errors


def test_observe_transport_probes_attachment(config: SyncConfig, network: LoopbackNetwork) -> None:
    transport = network.create_transport(1)
    monitor = HealthMonitor(config, transport)
    state = CoordinationState(self_id=1)

    assert monitor.observe_transport(state)
    transport.detach()
    assert not monitor.observe_transport(state)
    assert state.transport_errors == 1


def test_clock_anomaly_threshold(config: SyncConfig, network: LoopbackNetwork) -> None:
    transport = network.create_transport(1)
    monitor = HealthMonitor(config, transport)
    state = CoordinationState(self_id=1)

    signals = [monitor.on_clock_anomaly(state) for _ in range(2 * (config.max_time_errors + 1))]

    assert signals.count(True) == 2
    assert transport.resync_requests == 2
    assert state.clock_skew_errors == 0


def test_failed_reinitialize_does_not_propagate(config: SyncConfig, network: LoopbackNetwork) -> None:
    transport = network.create_transport(1)

    def broken_reinitialize() -> None:
        raise TransportError("no radio")

    transport.reinitialize = broken_reinitialize
    monitor = HealthMonitor(config, transport)
    state = CoordinationState(self_id=1)

    for _ in range(config.max_wifi_errors + 1):
        monitor.on_transport_unhealthy(state)

    assert state.transport_errors == 0
