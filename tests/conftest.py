"""Shared fixtures: a small config, a loopback network and a renderer that records frames."""

from __future__ import annotations

from typing import List, Tuple

import pytest

from ledmesh.config import SyncConfig
from ledmesh.enums import AnimationMode
from ledmesh.renderer import Renderer
from ledmesh.transport import LoopbackNetwork


class RecordingRenderer(Renderer):
    def __init__(self) -> None:
        self.frames: List[Tuple[AnimationMode, int, bool]] = []

    def render(self, mode: AnimationMode, phase: int, is_leader: bool) -> None:
        self.frames.append((mode, phase, is_leader))


@pytest.fixture
def config() -> SyncConfig:
    return SyncConfig(
        tick_interval_ms=12,
        election_interval_ms=10000,
        message_interval_ms=1000,
        max_message_age_ms=1000,
        max_time_errors=3,
        max_wifi_errors=3,
    )


@pytest.fixture
def network() -> LoopbackNetwork:
    return LoopbackNetwork()


@pytest.fixture
def renderer() -> RecordingRenderer:
    return RecordingRenderer()
