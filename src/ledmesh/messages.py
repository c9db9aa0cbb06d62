import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ledmesh.enums import AnimationMode, MessageKind
from ledmesh.errors import MalformedMessageError

KEYFRAME_TOKEN = "KEYFRAME"


@dataclass(frozen=True)
class SyncMessage:
    kind: MessageKind
    sender_id: int
    timestamp: int
    mode: Optional[AnimationMode] = None

    @classmethod
    def keyframe(cls, sender_id: int, timestamp: int) -> "SyncMessage":
        return cls(MessageKind.KEYFRAME, sender_id, timestamp)

    @classmethod
    def mode_update(cls, sender_id: int, timestamp: int, mode: AnimationMode) -> "SyncMessage":
        return cls(MessageKind.MODE_UPDATE, sender_id, timestamp, mode)


class Messenger():
    """Converts SyncMessages to and from ``{"msg": ..., "timestamp": ...}`` JSON.

    The sender id is not part of the payload, the transport reports it alongside
    the bytes.
    """

    def __init__(self) -> None:
        self.valid_keys_to_send = ["msg", "timestamp"]

    def __format_message(self, message: SyncMessage) -> Dict[str, Any]:
        # Keyframes carry a fixed token, mode updates carry the mode as an int
        if message.kind == MessageKind.KEYFRAME:
            msg: Any = KEYFRAME_TOKEN
        else:
            msg = message.mode.value
        return {"msg": msg, "timestamp": int(message.timestamp)}

    def __parse_message(self, sender_id: int, data: Dict[str, Any]) -> SyncMessage:
        missing = [key for key in self.valid_keys_to_send if key not in data]
        if missing:
            raise MalformedMessageError("Message is missing fields", {"missing": missing})

        timestamp = data["timestamp"]
        if not _is_int(timestamp) or timestamp < 0:
            raise MalformedMessageError("Timestamp is not a non-negative integer", {"timestamp": timestamp})

        msg = data["msg"]
        if msg == KEYFRAME_TOKEN:
            return SyncMessage.keyframe(sender_id, timestamp)

        if not _is_int(msg):
            raise MalformedMessageError("Unknown message body", {"msg": msg})
        try:
            mode = AnimationMode(msg)
        except ValueError:
            raise MalformedMessageError("Unknown animation mode", {"msg": msg})
        return SyncMessage.mode_update(sender_id, timestamp, mode)

    # =============================================================================
    def encode(self, message: SyncMessage) -> bytes:
        return json.dumps(self.__format_message(message), separators=(",", ":")).encode("utf-8")

    # =============================================================================
    def decode(self, sender_id: int, data: bytes) -> SyncMessage:
        try:
            payload = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, ValueError, RecursionError) as e:
            raise MalformedMessageError("Payload is not JSON", {"sender_id": sender_id, "error": str(e)})

        if not isinstance(payload, dict):
            raise MalformedMessageError("Payload is not a JSON object", {"sender_id": sender_id})

        return self.__parse_message(sender_id, payload)


def _is_int(value: Any) -> bool:
    # json gives us bools for true/false, which are ints as far as isinstance cares
    return isinstance(value, int) and not isinstance(value, bool)
