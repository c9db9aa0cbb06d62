from __future__ import annotations

import json

import pytest

from ledmesh.enums import AnimationMode, MessageKind
from ledmesh.errors import MalformedMessageError
from ledmesh.messages import Messenger, SyncMessage


def test_keyframe_encoding_matches_wire_format() -> None:
    data = Messenger().encode(SyncMessage.keyframe(10, 123456))

    assert json.loads(data) == {"msg": "KEYFRAME", "timestamp": 123456}


def test_mode_update_encodes_mode_as_integer() -> None:
    data = Messenger().encode(SyncMessage.mode_update(10, 5, AnimationMode.SYNCED))

    assert json.loads(data) == {"msg": 2, "timestamp": 5}


def test_decode_attaches_sender_from_transport() -> None:
    message = Messenger().decode(10, b'{"msg": 1, "timestamp": 77}')

    assert message == SyncMessage(MessageKind.MODE_UPDATE, 10, 77, AnimationMode.SOLO)


@pytest.mark.parametrize(
    "payload",
    [
        b"\xff\xfe",
        b"not json",
        b"[1, 2]",
        b'{"msg": "KEYFRAME"}',
        b'{"timestamp": 1}',
        b'{"msg": "HELLO", "timestamp": 1}',
        b'{"msg": 7, "timestamp": 1}',
        b'{"msg": true, "timestamp": 1}',
        b'{"msg": "KEYFRAME", "timestamp": "1"}',
        b'{"msg": "KEYFRAME", "timestamp": -1}',
        b'{"msg": "KEYFRAME", "timestamp": 1.5}',
    ],
)
def test_decode_rejects_malformed_payloads(payload: bytes) -> None:
    with pytest.raises(MalformedMessageError):
        Messenger().decode(10, payload)
