import asyncio
from typing import Dict, List, Optional

import pytest
from aiortc.rtcrtpparameters import RTCRtpCodecParameters

from infra.ffmpeg import CompositorStartupError, ProcessState
from infra.net import PortAllocator
from hlsmix.domains.compose import StartResult
from hlsmix.settings import ComposeSettings


def vp8_codec() -> RTCRtpCodecParameters:
    return RTCRtpCodecParameters(mimeType="video/VP8", clockRate=90000, payloadType=96)


def opus_codec() -> RTCRtpCodecParameters:
    return RTCRtpCodecParameters(
        mimeType="audio/opus",
        clockRate=48000,
        channels=2,
        payloadType=111,
        parameters={"minptime": 10, "useinbandfec": 1},
    )


class FakeTap:
    def __init__(self, kind: str, stream_id: str, codecs) -> None:
        self.kind = kind
        self.stream_id = stream_id
        self.codecs = list(codecs)
        self.closed = False
        self.keyframes = 0
        self.close_calls = 0
        self.paused = False

    async def request_keyframe(self) -> None:
        self.keyframes += 1

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True


class FakeTransport:
    def __init__(self, router: "FakeRouter", local_ip: str) -> None:
        self._router = router
        self.local_ip = local_ip
        self.closed = False
        self.connected: Optional[tuple] = None
        self.taps: List[FakeTap] = []
        self.close_calls = 0

    async def connect(self, ip: str, rtp_port: int, rtcp_port: int) -> None:
        if self._router.fail_connect:
            raise RuntimeError("connect refused")
        self.connected = (ip, rtp_port, rtcp_port)

    async def consume(self, stream_id: str, *, paused: bool = False) -> FakeTap:
        if stream_id in self._router.fail_consume:
            raise RuntimeError("cannot consume {}".format(stream_id))
        kind = self._router.stream_kinds.get(stream_id) or (
            "audio" if stream_id.startswith(("mic", "audio")) else "video"
        )
        codecs = self._router.codecs_for(stream_id, kind)
        tap = FakeTap(kind, stream_id, codecs)
        tap.paused = paused
        self.taps.append(tap)
        self._router.taps.append(tap)
        return tap

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True


class FakeRouter:
    def __init__(self) -> None:
        self.transports: List[FakeTransport] = []
        self.taps: List[FakeTap] = []
        self.stream_kinds: Dict[str, str] = {}
        self.stream_codecs: Dict[str, list] = {}
        self.fail_connect = False
        self.fail_consume = set()
        self.delay = 0.0

    def codecs_for(self, stream_id: str, kind: str):
        if stream_id in self.stream_codecs:
            return self.stream_codecs[stream_id]
        return [opus_codec()] if kind == "audio" else [vp8_codec()]

    async def create_bridge_transport(self, listen_ip: str) -> FakeTransport:
        if self.delay:
            await asyncio.sleep(self.delay)
        transport = FakeTransport(self, listen_ip)
        self.transports.append(transport)
        return transport

    def open_transports(self) -> List[FakeTransport]:
        return [item for item in self.transports if not item.closed]


class FakeSupervisor:
    def __init__(self, *, succeed: bool = True, start_delay: float = 0.0) -> None:
        self.succeed = succeed
        self.start_delay = start_delay
        self.starts: List[list] = []
        self.stops = 0
        self.events: List[str] = []
        self.last_result: Optional[StartResult] = None
        self._running = False
        self._listener = None

    def set_exit_listener(self, listener) -> None:
        self._listener = listener

    @property
    def state(self) -> ProcessState:
        return ProcessState.RUNNING if self._running else ProcessState.STOPPED

    @property
    def pid(self) -> Optional[int]:
        return 4242 if self._running else None

    def is_running(self) -> bool:
        return self._running

    async def start(self, inputs) -> StartResult:
        inputs = list(inputs)
        self.events.append("start")
        self.starts.append(inputs)
        if self.start_delay:
            await asyncio.sleep(self.start_delay)
        self._running = self.succeed
        error = None
        if not self.succeed:
            error = CompositorStartupError("ffmpeg reported parse_error")
        self.last_result = StartResult(
            self.succeed, pid=self.pid, error=error, inputs=inputs
        )
        return self.last_result

    async def stop(self) -> None:
        self.events.append("stop")
        self.stops += 1
        self._running = False

    def crash(self, error) -> None:
        self._running = False
        self._listener(error)


async def always_free(host: str, port: int) -> bool:
    await asyncio.sleep(0)
    return True


@pytest.fixture
def compose_settings(tmp_path) -> ComposeSettings:
    return ComposeSettings(
        output_dir=tmp_path / "hls",
        debounce_seconds=0.05,
        restart_settle=0.0,
        startup_timeout=5.0,
        stop_grace=1.0,
        port_retry_delay=0.0,
        keyframe_interval=0.02,
        bridge_listen_ip="127.0.0.1",
        ffmpeg_loglevel="info",
    )


@pytest.fixture
def allocator() -> PortAllocator:
    return PortAllocator(retry_delay=0.0, probe=always_free)


@pytest.fixture
def router() -> FakeRouter:
    return FakeRouter()
