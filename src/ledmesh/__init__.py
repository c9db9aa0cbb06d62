from ledmesh.config import SyncConfig
from ledmesh.coordinator import Coordinator
from ledmesh.enums import AnimationMode, MessageKind, SENTINEL_NODE_ID
from ledmesh.errors import ConfigurationError, LedMeshError, MalformedMessageError, TransportError
from ledmesh.messages import Messenger, SyncMessage
from ledmesh.renderer import LoggingRenderer, Renderer
from ledmesh.transport import LoopbackNetwork, LoopbackTransport, Transport

__all__ = [
    "AnimationMode",
    "ConfigurationError",
    "Coordinator",
    "LedMeshError",
    "LoggingRenderer",
    "LoopbackNetwork",
    "LoopbackTransport",
    "MalformedMessageError",
    "MessageKind",
    "Messenger",
    "Renderer",
    "SENTINEL_NODE_ID",
    "SyncConfig",
    "SyncMessage",
    "Transport",
    "TransportError",
]

__version__ = "0.3.0"
