import argparse
import dataclasses
import logging
import random
import uuid
from typing import List, Optional, Sequence

from ledmesh.config import SyncConfig
from ledmesh.coordinator import Coordinator
from ledmesh.enums import SENTINEL_NODE_ID
from ledmesh.errors import LedMeshError
from ledmesh.multicast import DEFAULT_GROUP, DEFAULT_HELLO_INTERVAL, DEFAULT_PEER_TIMEOUT, UdpMulticastTransport
from ledmesh.renderer import LoggingRenderer
from ledmesh.transport import LoopbackNetwork

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def default_node_id() -> int:
    # Derived from the MAC like the ESP32 chip id, kept to 32 bits
    node_id = uuid.getnode() & 0xFFFFFFFF
    return node_id if node_id != SENTINEL_NODE_ID else 1


def _add_config_arguments(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("coordination")
    group.add_argument("--tick-ms", type=int, help="phase tick interval")
    group.add_argument("--election-ms", type=int, help="forced election interval")
    group.add_argument("--message-ms", type=int, help="leader mode broadcast interval")
    group.add_argument("--max-message-age-ms", type=int, help="keyframes older than this are dropped")
    group.add_argument("--max-time-errors", type=int, help="clock skew errors before a resync")
    group.add_argument("--max-wifi-errors", type=int, help="unattached election cycles before a transport reset")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])


def _config_from_args(args: argparse.Namespace) -> SyncConfig:
    config = SyncConfig.from_env()
    overrides = {
        "tick_interval_ms": args.tick_ms,
        "election_interval_ms": args.election_ms,
        "message_interval_ms": args.message_ms,
        "max_message_age_ms": args.max_message_age_ms,
        "max_time_errors": args.max_time_errors,
        "max_wifi_errors": args.max_wifi_errors,
    }
    values = {key: value for key, value in overrides.items() if value is not None}
    if not values:
        return config

    config = dataclasses.replace(config, **values)
    config.validate()
    return config


def _configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level), format=LOG_FORMAT)


# =============================================================================
def build_node_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ledmesh", description="Run a synchronized animation node over UDP multicast")
    parser.add_argument("--node-id", type=int, default=None, help="unique non-zero node id (default: from MAC)")
    parser.add_argument("--group", default=DEFAULT_GROUP[0], help="multicast group address")
    parser.add_argument("--port", type=int, default=DEFAULT_GROUP[1], help="multicast port")
    parser.add_argument("--hello-interval", type=float, default=DEFAULT_HELLO_INTERVAL, help="seconds between heartbeats")
    parser.add_argument("--peer-timeout", type=float, default=DEFAULT_PEER_TIMEOUT, help="seconds before a silent peer is dropped")
    _add_config_arguments(parser)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_node_parser().parse_args(argv)
    _configure_logging(args.log_level)

    node_id = args.node_id if args.node_id is not None else default_node_id()
    try:
        config = _config_from_args(args)
        transport = UdpMulticastTransport(node_id, (args.group, args.port),
                                          hello_interval=args.hello_interval, peer_timeout=args.peer_timeout,
                                          clock_modulus=config.clock_modulus)
        coordinator = Coordinator(transport, LoggingRenderer(), config)
        coordinator.connect()
    except LedMeshError as e:
        logger.error("%s", e)
        return 2

    logger.info("Node id: %d", node_id)
    try:
        coordinator.run()
    except KeyboardInterrupt:
        logger.info("Interrupted, leaving the mesh")
    finally:
        coordinator.disconnect()
    return 0


# =============================================================================
def build_sim_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ledmesh-sim", description="Simulate a mesh of nodes in-process")
    parser.add_argument("--nodes", type=int, default=3, help="number of nodes")
    parser.add_argument("--node-ids", type=int, nargs="*", help="explicit node ids (overrides --nodes)")
    parser.add_argument("--duration-ms", type=int, default=30000, help="simulated time to run")
    parser.add_argument("--max-skew-us", type=int, default=0, help="largest per-node clock offset")
    parser.add_argument("--seed", type=int, default=None)
    _add_config_arguments(parser)
    return parser


def simulate(node_ids: List[int], duration_ms: int, config: SyncConfig,
             max_skew_us: int = 0, rng: Optional[random.Random] = None) -> List[Coordinator]:
    """Run ``node_ids`` on a loopback network for ``duration_ms`` of simulated time."""
    rng = rng or random.Random()
    network = LoopbackNetwork(clock_modulus=config.clock_modulus)
    coordinators = []
    for node_id in node_ids:
        skew = rng.randint(-max_skew_us, max_skew_us) if max_skew_us else 0
        transport = network.create_transport(node_id, clock_offset_us=skew)
        coordinators.append(Coordinator(transport, LoggingRenderer(), config))

    for coordinator in coordinators:
        coordinator.connect()

    now_ms = 0
    while now_ms <= duration_ms:
        network.now_us = now_ms * 1000
        for coordinator in coordinators:
            coordinator.step(now_ms)
        now_ms += config.tick_interval_ms
    return coordinators


def sim_main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_sim_parser().parse_args(argv)
    _configure_logging(args.log_level)
    rng = random.Random(args.seed)

    try:
        config = _config_from_args(args)
    except LedMeshError as e:
        logger.error("%s", e)
        return 2

    node_ids = args.node_ids or rng.sample(range(1, 2 ** 32), args.nodes)
    if SENTINEL_NODE_ID in node_ids:
        logger.error("Node id 0 is reserved")
        return 2

    for coordinator in simulate(node_ids, args.duration_ms, config, args.max_skew_us, rng):
        logger.info("node %d: leader=%d mode=%s phase=%d",
                    coordinator.state.self_id, coordinator.leader_id(),
                    coordinator.current_mode().name, coordinator.current_phase())
    return 0
