from infra.ffmpeg.errors import (
    CompositorError,
    CompositorStartTimeout,
    CompositorStartupError,
    CompositorUnexpectedExit,
)
from infra.ffmpeg.paths import FfmpegNotFound, require_binary, resolve_ffmpeg_path
from infra.ffmpeg.process import FfmpegProcess, ProcessState, StartOutcome
from infra.ffmpeg.signatures import (
    DEFAULT_SIGNATURES,
    FATAL_SIGNATURES,
    OPENED_SIGNATURES,
    OutputClassifier,
    Signature,
    SignatureKind,
)

__all__ = [
    "CompositorError",
    "CompositorStartTimeout",
    "CompositorStartupError",
    "CompositorUnexpectedExit",
    "FfmpegNotFound",
    "require_binary",
    "resolve_ffmpeg_path",
    "FfmpegProcess",
    "ProcessState",
    "StartOutcome",
    "DEFAULT_SIGNATURES",
    "FATAL_SIGNATURES",
    "OPENED_SIGNATURES",
    "OutputClassifier",
    "Signature",
    "SignatureKind",
]
