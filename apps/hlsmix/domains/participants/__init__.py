from hlsmix.domains.participants.types import (
    MediaKind,
    MediaLeg,
    ParticipantStreamState,
)

__all__ = ["MediaKind", "MediaLeg", "ParticipantStreamState"]
