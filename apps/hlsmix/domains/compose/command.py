from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from shared.utils import Rect

from hlsmix.domains.participants import MediaKind, ParticipantStreamState
from hlsmix.settings import ComposeSettings

VIDEO_LABEL = "mixed_video"
AUDIO_LABEL = "mixed_audio"
INPUT_PROTOCOLS = "file,rtp,udp"
BASE_HLS_FLAGS = (
    "delete_segments",
    "independent_segments",
    "omit_endlist",
    "round_durations",
    "discont_start",
)


@dataclass(frozen=True)
class CompositorInput:
    participant_id: str
    kind: MediaKind
    descriptor_path: Path
    layout: Optional[Rect] = None

    def as_dict(self) -> dict:
        return {
            "participant_id": self.participant_id,
            "kind": self.kind.value,
            "descriptor_path": str(self.descriptor_path),
            "layout": self.layout.as_dict() if self.layout else None,
        }


def collect_inputs(participants: Sequence[ParticipantStreamState]) -> List[CompositorInput]:
    """Ready legs in participant order, video before audio."""
    inputs: List[CompositorInput] = []
    for participant in participants:
        for kind in (MediaKind.VIDEO, MediaKind.AUDIO):
            leg = participant.leg(kind)
            if not leg.ready:
                continue
            inputs.append(
                CompositorInput(
                    participant_id=participant.id,
                    kind=kind,
                    descriptor_path=leg.descriptor_path,
                    layout=participant.layout if kind is MediaKind.VIDEO else None,
                )
            )
    return inputs


def build_video_filter(
    video_indexes: Sequence[int],
    layouts: Sequence[Optional[Rect]],
    settings: ComposeSettings,
) -> str:
    width = settings.canvas_width
    height = settings.canvas_height
    if not video_indexes:
        return "color=black:size={}x{}:rate={}:duration={}[{}]".format(
            width, height, settings.fps, _seconds(settings.filler_seconds), VIDEO_LABEL
        )
    if len(video_indexes) == 1:
        return "[{}:v]scale={}:{}[{}]".format(
            video_indexes[0], width, height, VIDEO_LABEL
        )
    parts = []
    for position, index in enumerate(video_indexes):
        cell = layouts[position] if position < len(layouts) else None
        if cell is None:
            raise ValueError("video input {} has no layout".format(index))
        parts.append(
            "[{}:v]scale={}:{}[scaled{}]".format(index, cell.width, cell.height, position)
        )
    parts.append("color=black:size={}x{}[base]".format(width, height))
    current = "base"
    last = len(video_indexes) - 1
    for position in range(len(video_indexes)):
        cell = layouts[position]
        output = VIDEO_LABEL if position == last else "layer_{}".format(position)
        parts.append(
            "[{}][scaled{}]overlay={}:{}[{}]".format(
                current, position, cell.x, cell.y, output
            )
        )
        current = output
    return ";".join(parts)


def build_audio_filter(audio_indexes: Sequence[int], settings: ComposeSettings) -> str:
    rate = settings.audio_sample_rate
    if not audio_indexes:
        return "anullsrc=channel_layout=stereo:sample_rate={}[{}]".format(
            rate, AUDIO_LABEL
        )
    if len(audio_indexes) == 1:
        return "[{}:a]aformat=sample_rates={}:channel_layouts=stereo[{}]".format(
            audio_indexes[0], rate, AUDIO_LABEL
        )
    labels = "".join("[{}:a]".format(index) for index in audio_indexes)
    return "{}amix=inputs={}:duration=longest[{}]".format(
        labels, len(audio_indexes), AUDIO_LABEL
    )


def hls_flags(playlist_exists: bool) -> str:
    flags = list(BASE_HLS_FLAGS)
    if playlist_exists:
        flags.insert(3, "append_list")
    return "+".join(flags)


def build_compositor_command(
    inputs: Sequence[CompositorInput],
    settings: ComposeSettings,
    *,
    binary: Optional[str] = None,
    playlist_exists: Optional[bool] = None,
) -> List[str]:
    if not inputs:
        raise ValueError("compositor needs at least one input")
    cmd = [
        binary or settings.ffmpeg_binary,
        "-hide_banner",
        "-nostats",
        "-loglevel",
        settings.ffmpeg_loglevel,
        "-y",
    ]
    video_indexes: List[int] = []
    layouts: List[Optional[Rect]] = []
    audio_indexes: List[int] = []
    for index, item in enumerate(inputs):
        cmd.extend(
            ["-protocol_whitelist", INPUT_PROTOCOLS, "-i", str(item.descriptor_path)]
        )
        if item.kind is MediaKind.VIDEO:
            video_indexes.append(index)
            layouts.append(item.layout)
        else:
            audio_indexes.append(index)

    filters = [
        build_video_filter(video_indexes, layouts, settings),
        build_audio_filter(audio_indexes, settings),
    ]
    cmd.extend(["-filter_complex", ";".join(filters)])
    cmd.extend(["-map", "[{}]".format(VIDEO_LABEL), "-map", "[{}]".format(AUDIO_LABEL)])

    if playlist_exists is None:
        playlist_exists = settings.playlist_path.exists()
    fps = str(settings.fps)
    cmd.extend(
        [
            "-use_wallclock_as_timestamps",
            "1",
            "-c:v",
            "libx264",
            "-preset",
            "ultrafast",
            "-tune",
            "zerolatency",
            "-profile:v",
            "baseline",
            "-level",
            "3.0",
            "-pix_fmt",
            "yuv420p",
            "-r",
            fps,
            "-b:v",
            settings.video_bitrate,
            "-maxrate",
            settings.video_bitrate,
            "-bufsize",
            settings.video_bufsize,
            "-keyint_min",
            fps,
            "-g",
            str(settings.gop_size),
            "-sc_threshold",
            "0",
            "-c:a",
            "aac",
            "-b:a",
            settings.audio_bitrate,
            "-ar",
            str(settings.audio_sample_rate),
            "-ac",
            "2",
            "-f",
            "hls",
            "-hls_time",
            str(settings.segment_seconds),
            "-hls_list_size",
            str(settings.playlist_size),
            "-hls_flags",
            hls_flags(playlist_exists),
            "-hls_segment_filename",
            str(settings.segment_path),
            "-hls_allow_cache",
            "0",
            str(settings.playlist_path),
        ]
    )
    return cmd


def _seconds(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return str(value)
