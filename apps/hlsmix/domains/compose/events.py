import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from infra.ffmpeg import CompositorUnexpectedExit

from hlsmix.domains.participants import MediaKind


class EventType(str, Enum):
    PUBLISH_STARTED = "publish_started"
    PUBLISH_STOPPED = "publish_stopped"
    PARTICIPANT_LEFT = "participant_left"
    RUN_PASS = "run_pass"
    COMPOSITOR_EXITED = "compositor_exited"
    SHUTDOWN = "shutdown"


@dataclass
class OrchestratorEvent:
    type: EventType
    participant_id: Optional[str] = None
    kind: Optional[MediaKind] = None
    stream_id: Optional[str] = None
    generation: Optional[int] = None
    error: Optional[CompositorUnexpectedExit] = None
    done: Optional["asyncio.Future"] = field(default=None, repr=False)

    def resolve(self, value=None) -> None:
        if self.done is not None and not self.done.done():
            self.done.set_result(value)

    def fail(self, exc: BaseException) -> None:
        if self.done is not None and not self.done.done():
            self.done.set_exception(exc)
