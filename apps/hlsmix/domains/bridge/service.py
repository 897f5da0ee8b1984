import asyncio
import logging
import re
from pathlib import Path
from typing import List, Optional

from infra.net import PortAllocator
from shared.utils import atomic_write_text, remove_file

from hlsmix.settings import ComposeSettings
from hlsmix.domains.participants import MediaKind, MediaLeg, ParticipantStreamState
from hlsmix.domains.ports import MediaRouter, MediaTap
from hlsmix.domains.bridge.sdp import render_descriptor, select_codec

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class BridgeSetupFailure(RuntimeError):
    def __init__(self, participant_id: str, kind: MediaKind, message: str) -> None:
        super().__init__(
            "bridge setup failed for {}/{}: {}".format(
                participant_id, kind.value, message
            )
        )
        self.participant_id = participant_id
        self.kind = kind


def sanitize_participant_id(participant_id: str) -> str:
    value = _UNSAFE_CHARS.sub("_", str(participant_id or "").strip())
    return value.strip(".") or "participant"


class MediaBridgeDescriptorWriter:
    """Forwards published SFU streams to local RTP ports and describes them.

    Each bridged leg owns a port pair, a bridge transport, a receive tap and
    an SDP file the compositor reads its input from.
    """

    def __init__(
        self,
        router: MediaRouter,
        allocator: PortAllocator,
        settings: ComposeSettings,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._router = router
        self._allocator = allocator
        self._settings = settings
        self._logger = logger or logging.getLogger("hlsmix.bridge")

    @property
    def descriptor_dir(self) -> Path:
        return self._settings.sdp_dir

    def descriptor_path(self, participant_id: str, kind: MediaKind) -> Path:
        name = "{}_{}.sdp".format(sanitize_participant_id(participant_id), kind.value)
        return self.descriptor_dir / name

    def _port_base(self, kind: MediaKind) -> int:
        if kind is MediaKind.VIDEO:
            return self._settings.video_port_base
        return self._settings.audio_port_base

    async def bridge(self, participant: ParticipantStreamState, leg: MediaLeg) -> Path:
        if not leg.published:
            raise BridgeSetupFailure(participant.id, leg.kind, "leg is not published")
        if leg.ready:
            return leg.descriptor_path
        if leg.bridged:
            await self.release(leg)
        try:
            return await self._open(participant, leg)
        except asyncio.CancelledError:
            await self.release(leg)
            raise
        except BridgeSetupFailure as exc:
            leg.last_error = str(exc)
            await self.release(leg)
            raise
        except Exception as exc:
            leg.last_error = str(exc)
            self._logger.warning(
                "bridge %s/%s failed: %s", participant.id, leg.kind.value, exc
            )
            await self.release(leg)
            raise BridgeSetupFailure(participant.id, leg.kind, str(exc)) from exc

    async def _open(self, participant: ParticipantStreamState, leg: MediaLeg) -> Path:
        leg.ports = await self._allocator.allocate(self._port_base(leg.kind))
        listen_ip = self._settings.bridge_listen_ip
        leg.transport = await self._router.create_bridge_transport(listen_ip)
        local_ip = leg.transport.local_ip or listen_ip
        await leg.transport.connect(local_ip, leg.ports.rtp_port, leg.ports.rtcp_port)
        leg.tap = await leg.transport.consume(leg.stream_id, paused=False)
        codecs = list(leg.tap.codecs or [])
        if not codecs:
            raise BridgeSetupFailure(participant.id, leg.kind, "tap has no codecs")
        text = render_descriptor(
            leg.kind,
            select_codec(codecs),
            local_ip,
            leg.ports,
            session_name=self._settings.sdp_session_name,
        )
        path = self.descriptor_path(participant.id, leg.kind)
        leg.descriptor_path = path
        atomic_write_text(path, text)
        leg.local_ip = local_ip
        leg.last_error = None
        if leg.kind is MediaKind.VIDEO and self._settings.keyframe_interval > 0:
            leg.keyframe_task = asyncio.create_task(
                self._request_keyframes(participant.id, leg.tap)
            )
        self._logger.info(
            "bridged %s/%s on %s:%s -> %s",
            participant.id,
            leg.kind.value,
            local_ip,
            leg.ports.rtp_port,
            path,
        )
        return path

    async def _request_keyframes(self, participant_id: str, tap: MediaTap) -> None:
        interval = self._settings.keyframe_interval
        while not tap.closed:
            await asyncio.sleep(interval)
            if tap.closed:
                break
            try:
                await tap.request_keyframe()
            except Exception as exc:
                self._logger.warning(
                    "keyframe request for %s failed: %s", participant_id, exc
                )

    async def release(self, leg: MediaLeg) -> None:
        task, leg.keyframe_task = leg.keyframe_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        tap, leg.tap = leg.tap, None
        if tap is not None:
            try:
                await tap.close()
            except Exception:
                self._logger.exception("closing %s tap failed", leg.kind.value)
        transport, leg.transport = leg.transport, None
        if transport is not None:
            try:
                await transport.close()
            except Exception:
                self._logger.exception("closing %s transport failed", leg.kind.value)
        ports, leg.ports = leg.ports, None
        self._allocator.release_pair(ports)
        self.remove_descriptor(leg)
        leg.local_ip = None

    def remove_descriptor(self, leg: MediaLeg) -> bool:
        path, leg.descriptor_path = leg.descriptor_path, None
        if path is None:
            return False
        return self._remove(path)

    def remove_all_descriptors(self) -> List[Path]:
        root = self.descriptor_dir
        if not root.is_dir():
            return []
        removed = []
        for path in sorted(root.glob("*.sdp")) + sorted(root.glob("*.sdp.tmp")):
            if self._remove(path):
                removed.append(path)
        return removed

    def _remove(self, path: Path) -> bool:
        try:
            removed = remove_file(path)
        except OSError as exc:
            self._logger.warning("failed to remove descriptor %s: %s", path, exc)
            return False
        if removed:
            self._logger.debug("removed descriptor %s", path)
        return removed
