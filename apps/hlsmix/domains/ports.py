from typing import List, Protocol

from aiortc.rtcrtpparameters import RTCRtpCodecParameters


class MediaTap(Protocol):
    """Receive-side consumer of one published stream on the SFU."""

    @property
    def kind(self) -> str:
        ...

    @property
    def closed(self) -> bool:
        ...

    @property
    def codecs(self) -> List[RTCRtpCodecParameters]:
        ...

    async def request_keyframe(self) -> None:
        ...

    async def close(self) -> None:
        ...


class BridgeTransport(Protocol):
    """Plain RTP transport forwarding SFU media to a local address."""

    @property
    def local_ip(self) -> str:
        ...

    @property
    def closed(self) -> bool:
        ...

    async def connect(self, ip: str, rtp_port: int, rtcp_port: int) -> None:
        ...

    async def consume(self, stream_id: str, *, paused: bool = False) -> MediaTap:
        ...

    async def close(self) -> None:
        ...


class MediaRouter(Protocol):
    async def create_bridge_transport(self, listen_ip: str) -> BridgeTransport:
        ...

