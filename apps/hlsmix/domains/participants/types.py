import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from infra.net import PortPair
from shared.utils import Rect

from hlsmix.domains.ports import BridgeTransport, MediaTap


class MediaKind(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"

    @classmethod
    def parse(cls, value) -> "MediaKind":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        try:
            return cls(text)
        except ValueError as exc:
            raise ValueError("unknown media kind: {}".format(value)) from exc


@dataclass
class MediaLeg:
    kind: MediaKind
    stream_id: Optional[str] = None
    transport: Optional[BridgeTransport] = None
    tap: Optional[MediaTap] = None
    ports: Optional[PortPair] = None
    local_ip: Optional[str] = None
    descriptor_path: Optional[Path] = None
    keyframe_task: Optional[asyncio.Task] = None
    last_error: Optional[str] = None

    @property
    def published(self) -> bool:
        return self.stream_id is not None

    @property
    def ready(self) -> bool:
        return self.published and self.descriptor_path is not None

    @property
    def bridged(self) -> bool:
        return any(
            item is not None
            for item in (self.transport, self.tap, self.ports, self.descriptor_path)
        )

    def as_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "stream_id": self.stream_id,
            "ports": self.ports.as_dict() if self.ports else None,
            "local_ip": self.local_ip,
            "descriptor_path": (
                str(self.descriptor_path) if self.descriptor_path else None
            ),
            "ready": self.ready,
            "last_error": self.last_error,
        }


def _empty_legs() -> Dict[MediaKind, MediaLeg]:
    return {kind: MediaLeg(kind) for kind in MediaKind}


@dataclass
class ParticipantStreamState:
    id: str
    legs: Dict[MediaKind, MediaLeg] = field(default_factory=_empty_legs)
    layout: Optional[Rect] = None
    joined_at: float = field(default_factory=time.time)

    def leg(self, kind: MediaKind) -> MediaLeg:
        return self.legs[kind]

    @property
    def video(self) -> MediaLeg:
        return self.legs[MediaKind.VIDEO]

    @property
    def audio(self) -> MediaLeg:
        return self.legs[MediaKind.AUDIO]

    @property
    def eligible(self) -> bool:
        return any(leg.published for leg in self.legs.values())

    def published_legs(self) -> List[MediaLeg]:
        return [leg for leg in self.legs.values() if leg.published]

    def ready_legs(self) -> List[MediaLeg]:
        return [leg for leg in self.legs.values() if leg.ready]

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "joined_at": self.joined_at,
            "layout": self.layout.as_dict() if self.layout else None,
            "legs": {kind.value: leg.as_dict() for kind, leg in self.legs.items()},
        }
