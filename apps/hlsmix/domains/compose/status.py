import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from hlsmix.domains.participants import ParticipantStreamState


@dataclass
class ParticipantStatus:
    id: str
    eligible: bool
    joined_at: float
    layout: Optional[dict] = None
    legs: Dict[str, dict] = field(default_factory=dict)

    @classmethod
    def from_state(cls, state: ParticipantStreamState) -> "ParticipantStatus":
        snapshot = state.as_dict()
        return cls(
            id=state.id,
            eligible=state.eligible,
            joined_at=state.joined_at,
            layout=snapshot["layout"],
            legs=snapshot["legs"],
        )

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "eligible": self.eligible,
            "joined_at": self.joined_at,
            "layout": self.layout,
            "legs": self.legs,
        }


@dataclass
class CompositionStatus:
    generation: int
    state: str
    running: bool
    pid: Optional[int] = None
    pending: bool = False
    passes: int = 0
    last_error: Optional[str] = None
    last_start: Optional[dict] = None
    playlist: Optional[str] = None
    reserved_ports: List[int] = field(default_factory=list)
    participants: List[ParticipantStatus] = field(default_factory=list)
    updated_at: float = field(default_factory=time.time)

    def as_dict(self) -> dict:
        return {
            "generation": self.generation,
            "state": self.state,
            "running": self.running,
            "pid": self.pid,
            "pending": self.pending,
            "passes": self.passes,
            "last_error": self.last_error,
            "last_start": self.last_start,
            "playlist": self.playlist,
            "reserved_ports": list(self.reserved_ports),
            "participants": [item.as_dict() for item in self.participants],
            "updated_at": self.updated_at,
        }
