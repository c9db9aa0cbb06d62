from dataclasses import dataclass, field
from typing import FrozenSet

from ledmesh.enums import AnimationMode


@dataclass
class CoordinationState:
    """Everything the coordination loop mutates, in one place.

    Components get this object passed in and never keep their own copy of
    membership, leadership, mode, phase or the error counters.
    """

    self_id: int
    membership: FrozenSet[int] = field(default_factory=frozenset)
    leader_id: int = 0
    is_leader: bool = False
    mode: AnimationMode = AnimationMode.SOLO
    phase: int = 0
    clock_skew_errors: int = 0
    transport_errors: int = 0

    def __post_init__(self) -> None:
        # Until the first election we only know about ourselves
        if not self.leader_id:
            self.leader_id = self.self_id
