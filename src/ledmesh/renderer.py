import logging
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from ledmesh.enums import AnimationMode

logger = logging.getLogger(__name__)


class Renderer(ABC):
    """Sink for the animation position, called once per tick."""

    @abstractmethod
    def render(self, mode: AnimationMode, phase: int, is_leader: bool) -> None: ...


class LoggingRenderer(Renderer):
    """Logs whenever what would be drawn changes character.

    Phase changes every tick so it is only reported at debug level on wrap.
    """

    def __init__(self) -> None:
        self.__last: Optional[Tuple[AnimationMode, bool]] = None
        self.frames = 0

    def render(self, mode: AnimationMode, phase: int, is_leader: bool) -> None:
        self.frames += 1

        if self.__last != (mode, is_leader):
            self.__last = (mode, is_leader)
            logger.info("Now rendering %s animation%s", mode.name.lower(), " as leader" if is_leader else "")

        if phase == 0:
            logger.debug("Phase wrapped after %d frames", self.frames)
