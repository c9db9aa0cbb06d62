import logging

from ledmesh.config import SyncConfig
from ledmesh.errors import TransportError
from ledmesh.state import CoordinationState

logger = logging.getLogger(__name__)


class HealthMonitor():
    """Consecutive-anomaly counters with a recovery action at each threshold.

    Crossing means the counter went past the configured maximum. The counter is
    reset to 0 when that happens and on every healthy observation.
    """

    def __init__(self, config: SyncConfig, transport) -> None:
        self.__config = config
        self.__transport = transport

    # =============================================================================
    def on_clock_anomaly(self, state: CoordinationState) -> bool:
        state.clock_skew_errors += 1
        logger.debug("Clock skew error %d/%d", state.clock_skew_errors, self.__config.max_time_errors)

        if state.clock_skew_errors <= self.__config.max_time_errors:
            return False

        logger.warning("Clock disagrees with leader %d for %d keyframes in a row, requesting resync",
                       state.leader_id, state.clock_skew_errors)
        state.clock_skew_errors = 0
        self.__transport.request_clock_resync()
        return True

    def on_clock_healthy(self, state: CoordinationState) -> None:
        state.clock_skew_errors = 0

    # =============================================================================
    def on_transport_healthy(self, state: CoordinationState) -> None:
        state.transport_errors = 0

    def on_transport_unhealthy(self, state: CoordinationState) -> bool:
        state.transport_errors += 1
        logger.debug("Transport not attached %d/%d", state.transport_errors, self.__config.max_wifi_errors)

        if state.transport_errors <= self.__config.max_wifi_errors:
            return False

        logger.warning("Transport unattached for %d election cycles, reinitializing", state.transport_errors)
        state.transport_errors = 0
        try:
            self.__transport.reinitialize()
        except TransportError as e:
            logger.error("Transport reinitialize failed: %s", e)
        return True

    # =============================================================================
    def observe_transport(self, state: CoordinationState) -> bool:
        """Probe the transport once and feed the result to the counters.

        Returns True when the probe found the transport attached.
        """
        if self.__transport.is_attached():
            self.on_transport_healthy(state)
            return True

        self.on_transport_unhealthy(state)
        return False
