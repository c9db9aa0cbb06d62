from enum import Enum, unique

# Node id reported by the transport for orphaned / half-open connections
SENTINEL_NODE_ID = 0

# There are only two animation modes, the values are what goes on the wire in a mode update
@unique
class AnimationMode(Enum):
    SOLO = 1
    SYNCED = 2

@unique
class MessageKind(Enum):
    KEYFRAME = 1
    MODE_UPDATE = 2

# Framing signals used by the multicast transport, never seen by the coordination layer
@unique
class Signal(Enum):
    HELLO = 1
    DATA = 2
    BYE = 3
