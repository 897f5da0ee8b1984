from hlsmix.domains.compose.command import (
    CompositorInput,
    build_audio_filter,
    build_compositor_command,
    build_video_filter,
    collect_inputs,
    hls_flags,
)
from hlsmix.domains.compose.events import EventType, OrchestratorEvent
from hlsmix.domains.compose.orchestrator import OrchestratorClosed, StreamOrchestrator
from hlsmix.domains.compose.status import CompositionStatus, ParticipantStatus
from hlsmix.domains.compose.supervisor import CompositorProcessSupervisor, StartResult

__all__ = [
    "CompositorInput",
    "build_audio_filter",
    "build_compositor_command",
    "build_video_filter",
    "collect_inputs",
    "hls_flags",
    "EventType",
    "OrchestratorEvent",
    "OrchestratorClosed",
    "StreamOrchestrator",
    "CompositionStatus",
    "ParticipantStatus",
    "CompositorProcessSupervisor",
    "StartResult",
]
