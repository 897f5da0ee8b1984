from pathlib import Path
from typing import List, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from infra.ffmpeg import resolve_ffmpeg_path

ROOT_DIR = Path(__file__).resolve().parents[2]
TOOLS_DIR = ROOT_DIR / "tools"
# later files win
ENV_FILES = (ROOT_DIR / ".env.example", ROOT_DIR / ".env")


class ComposeSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=[str(path) for path in ENV_FILES],
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    output_dir: Path = Field(
        default=Path("hls_output"),
        validation_alias=AliasChoices("HLSMIX_OUTPUT_DIR", "HLS_OUTPUT_DIR"),
    )
    descriptor_dir: Optional[Path] = Field(
        default=None,
        validation_alias=AliasChoices("HLSMIX_SDP_DIR", "SDP_DIR"),
    )
    playlist_name: str = Field(
        default="playlist.m3u8", validation_alias="HLSMIX_PLAYLIST_NAME"
    )
    segment_pattern: str = Field(
        default="segment_%03d.ts", validation_alias="HLSMIX_SEGMENT_PATTERN"
    )
    ffmpeg_path: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("HLSMIX_FFMPEG_PATH", "FFMPEG_PATH"),
    )
    ffmpeg_loglevel: str = Field(
        default="info", validation_alias="HLSMIX_FFMPEG_LOGLEVEL"
    )

    canvas_width: int = Field(default=1920, validation_alias="HLSMIX_CANVAS_WIDTH")
    canvas_height: int = Field(
        default=1080, validation_alias="HLSMIX_CANVAS_HEIGHT"
    )
    fps: int = Field(default=30, validation_alias="HLSMIX_FPS")
    video_bitrate: str = Field(default="2000k", validation_alias="HLSMIX_VIDEO_BITRATE")
    video_bufsize: str = Field(default="4000k", validation_alias="HLSMIX_VIDEO_BUFSIZE")
    gop_size: int = Field(default=60, validation_alias="HLSMIX_GOP")
    audio_bitrate: str = Field(default="128k", validation_alias="HLSMIX_AUDIO_BITRATE")
    audio_sample_rate: int = Field(
        default=44100, validation_alias="HLSMIX_AUDIO_SAMPLE_RATE"
    )
    filler_seconds: float = Field(
        default=10.0, validation_alias="HLSMIX_FILLER_SECONDS"
    )

    segment_seconds: int = Field(default=4, validation_alias="HLSMIX_HLS_TIME")
    playlist_size: int = Field(default=10, validation_alias="HLSMIX_HLS_LIST_SIZE")

    startup_timeout: float = Field(
        default=15.0, validation_alias="HLSMIX_STARTUP_TIMEOUT"
    )
    stop_grace: float = Field(default=5.0, validation_alias="HLSMIX_STOP_GRACE")
    restart_settle: float = Field(
        default=3.0, validation_alias="HLSMIX_RESTART_SETTLE"
    )
    debounce_seconds: float = Field(
        default=5.0, validation_alias="HLSMIX_DEBOUNCE"
    )

    video_port_base: int = Field(
        default=20000, validation_alias="HLSMIX_VIDEO_PORT_BASE"
    )
    audio_port_base: int = Field(
        default=21000, validation_alias="HLSMIX_AUDIO_PORT_BASE"
    )
    port_retries: int = Field(default=5, validation_alias="HLSMIX_PORT_RETRIES")
    port_retry_delay: float = Field(
        default=1.0, validation_alias="HLSMIX_PORT_RETRY_DELAY"
    )
    port_scan_probes: int = Field(
        default=100, validation_alias="HLSMIX_PORT_SCAN_PROBES"
    )
    port_probe_host: str = Field(
        default="0.0.0.0", validation_alias="HLSMIX_PORT_PROBE_HOST"
    )

    bridge_listen_ip: str = Field(
        default="127.0.0.1",
        validation_alias=AliasChoices("HLSMIX_BRIDGE_IP", "BRIDGE_LISTEN_IP"),
    )
    keyframe_interval: float = Field(
        default=2.0, validation_alias="HLSMIX_KEYFRAME_INTERVAL"
    )
    sdp_session_name: str = Field(
        default="hlsmix", validation_alias="HLSMIX_SDP_SESSION_NAME"
    )

    @field_validator("ffmpeg_path", mode="before")
    @classmethod
    def _strip_optional(cls, value):
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @field_validator(
        "ffmpeg_loglevel", "port_probe_host", "bridge_listen_ip", mode="before"
    )
    @classmethod
    def _strip(cls, value):
        return str(value).strip()

    @field_validator("canvas_width", "canvas_height", "fps", "playlist_size")
    @classmethod
    def _positive(cls, value):
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @property
    def sdp_dir(self) -> Path:
        """Descriptors live beside the output directory, outside the served tree."""
        if self.descriptor_dir:
            return self.descriptor_dir
        name = self.output_dir.name or "hls"
        return self.output_dir.parent / "{}_sdp".format(name)

    @property
    def playlist_path(self) -> Path:
        return self.output_dir / self.playlist_name

    @property
    def segment_path(self) -> Path:
        return self.output_dir / self.segment_pattern

    @property
    def ffmpeg_binary(self) -> str:
        return resolve_ffmpeg_path(self.ffmpeg_path, TOOLS_DIR)


class ServerSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=[str(path) for path in ENV_FILES],
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    host: str = Field(
        default="0.0.0.0", validation_alias=AliasChoices("HLSMIX_HOST", "HOST")
    )
    port: int = Field(
        default=8030, validation_alias=AliasChoices("HLSMIX_PORT", "PORT")
    )
    log_level: str = Field(
        default="info",
        validation_alias=AliasChoices("HLSMIX_LOG_LEVEL", "LOG_LEVEL"),
    )
    cors_origins: str = Field(
        default="",
        validation_alias=AliasChoices("HLSMIX_CORS_ORIGINS", "CLIENT_URL"),
    )
    signaling_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("HLSMIX_SIGNALING_TOKEN", "SIGNALING_TOKEN"),
    )
    signaling_ws_path: str = Field(
        default="/ws/signaling", validation_alias="HLSMIX_SIGNALING_WS_PATH"
    )
    ws_trace: bool = Field(default=False, validation_alias="HLSMIX_WS_TRACE")
    serve_hls: bool = Field(default=True, validation_alias="HLSMIX_SERVE_HLS")
    media_router: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("HLSMIX_MEDIA_ROUTER", "MEDIA_ROUTER"),
    )

    @field_validator(
        "cors_origins",
        "signaling_token",
        "signaling_ws_path",
        "media_router",
        mode="before",
    )
    @classmethod
    def _strip_optional(cls, value):
        if value is None:
            return None
        return str(value).strip()

    @field_validator("log_level", mode="before")
    @classmethod
    def _strip_lower(cls, value):
        if value is None:
            return "info"
        return str(value).strip().lower()

    @property
    def cors_origins_list(self) -> List[str]:
        if not self.cors_origins:
            return []
        value = self.cors_origins.strip()
        if value == "*":
            return ["*"]
        return [item.strip() for item in value.split(",") if item.strip()]
