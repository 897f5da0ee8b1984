import argparse
import json
import os
from pathlib import Path

from aiortc.rtcrtpparameters import RTCRtpCodecParameters

from infra.net import PortPair
from shared.utils import atomic_write_text, grid_cells
from hlsmix.domains.bridge import parse_fmtp, render_descriptor
from hlsmix.domains.compose import CompositorInput, build_compositor_command
from hlsmix.domains.participants import MediaKind
from hlsmix.settings import ComposeSettings, ServerSettings


class CliError(RuntimeError):
    pass


def build_parser():
    parser = argparse.ArgumentParser(
        description="Compose live call streams into one HLS output"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP/WebSocket service")
    serve_parser.add_argument("--host", default=None, help="Bind address")
    serve_parser.add_argument("--port", type=int, default=None, help="Bind port")
    serve_parser.add_argument("--log-level", default=None, help="Logging level")
    serve_parser.add_argument(
        "--router",
        default=None,
        help="Media router factory as module:attr (overrides HLSMIX_MEDIA_ROUTER)",
    )

    command_parser = subparsers.add_parser(
        "command", help="Print the compositor command for SDP inputs"
    )
    command_parser.add_argument(
        "--video", action="append", default=[], help="Video SDP file (repeatable)"
    )
    command_parser.add_argument(
        "--audio", action="append", default=[], help="Audio SDP file (repeatable)"
    )
    command_parser.add_argument("--ffmpeg", default=None, help="Path to ffmpeg")
    command_parser.add_argument(
        "--json", action="store_true", help="Print the argument list as JSON"
    )

    sdp_parser = subparsers.add_parser("sdp", help="Render a bridge SDP descriptor")
    sdp_parser.add_argument("--kind", choices=("video", "audio"), required=True)
    sdp_parser.add_argument(
        "--codec", required=True, help="Codec mime type, e.g. video/VP8"
    )
    sdp_parser.add_argument("--clock-rate", type=int, required=True)
    sdp_parser.add_argument("--payload-type", type=int, required=True)
    sdp_parser.add_argument("--channels", type=int, default=None)
    sdp_parser.add_argument("--fmtp", default="", help="Format parameters k=v;k=v")
    sdp_parser.add_argument("--ip", default="127.0.0.1")
    sdp_parser.add_argument("--port", type=int, required=True, help="RTP port")
    sdp_parser.add_argument("--output", default=None, help="Write SDP to file")
    return parser


def _compositor_inputs(video_paths, audio_paths, settings):
    inputs = []
    cells = grid_cells(len(video_paths), settings.canvas_width, settings.canvas_height)
    for index, (path, cell) in enumerate(zip(video_paths, cells)):
        inputs.append(
            CompositorInput(
                participant_id="video{}".format(index),
                kind=MediaKind.VIDEO,
                descriptor_path=Path(path),
                layout=cell,
            )
        )
    for index, path in enumerate(audio_paths):
        inputs.append(
            CompositorInput(
                participant_id="audio{}".format(index),
                kind=MediaKind.AUDIO,
                descriptor_path=Path(path),
            )
        )
    return inputs


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "serve":
        import uvicorn

        from hlsmix.server import configure_logging

        settings = ServerSettings()
        if args.router:
            os.environ["HLSMIX_MEDIA_ROUTER"] = args.router
        log_level = args.log_level or settings.log_level
        configure_logging(log_level)
        uvicorn.run(
            "hlsmix.server:create_app",
            factory=True,
            host=args.host or settings.host,
            port=args.port or settings.port,
            log_level=log_level,
        )
        return 0

    if args.command == "command":
        if not args.video and not args.audio:
            raise CliError("pass at least one --video or --audio SDP file")
        settings = ComposeSettings()
        inputs = _compositor_inputs(args.video, args.audio, settings)
        cmd = build_compositor_command(
            inputs, settings, binary=args.ffmpeg or settings.ffmpeg_binary
        )
        if args.json:
            print(json.dumps(cmd, indent=2))
        else:
            print(" ".join(cmd))
        return 0

    if args.command == "sdp":
        codec = RTCRtpCodecParameters(
            mimeType=args.codec,
            clockRate=args.clock_rate,
            channels=args.channels,
            payloadType=args.payload_type,
            parameters=parse_fmtp(args.fmtp) if args.fmtp else {},
        )
        try:
            text = render_descriptor(
                MediaKind.parse(args.kind), codec, args.ip, PortPair.from_rtp(args.port)
            )
        except ValueError as exc:
            raise CliError(str(exc)) from exc
        if args.output:
            atomic_write_text(args.output, text)
        print(text, end="")
        return 0

    raise CliError("unknown command")
