import pytest

from infra.net import PortPair
from hlsmix.domains.participants import MediaKind, ParticipantStreamState


def test_media_kind_parse():
    assert MediaKind.parse(" Video ") is MediaKind.VIDEO
    assert MediaKind.parse(MediaKind.AUDIO) is MediaKind.AUDIO
    with pytest.raises(ValueError):
        MediaKind.parse("screen")


def test_eligibility_and_readiness(tmp_path):
    participant = ParticipantStreamState("alice")
    assert not participant.eligible

    participant.audio.stream_id = "mic-a"
    assert participant.eligible
    assert participant.published_legs() == [participant.audio]
    assert participant.ready_legs() == []

    participant.audio.ports = PortPair.from_rtp(21000)
    participant.audio.descriptor_path = tmp_path / "alice_audio.sdp"
    assert participant.audio.ready
    assert participant.audio.bridged

    snapshot = participant.as_dict()
    assert snapshot["legs"]["audio"]["ports"] == {"rtp": 21000, "rtcp": 21001}
    assert snapshot["legs"]["video"]["ready"] is False
    assert snapshot["layout"] is None
