from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


class PublishRequest(BaseModel):
    kind: Literal["video", "audio"]
    stream_id: str = Field(min_length=1)

    @field_validator("kind", mode="before")
    @classmethod
    def _lower_kind(cls, value):
        return str(value or "").strip().lower()


class UnpublishRequest(BaseModel):
    kind: Literal["video", "audio"]

    @field_validator("kind", mode="before")
    @classmethod
    def _lower_kind(cls, value):
        return str(value or "").strip().lower()


class MembershipResponse(BaseModel):
    participant_id: str
    changed: bool
    generation: int


class HealthResponse(BaseModel):
    status: str = "ok"


class PortPairModel(BaseModel):
    rtp: int
    rtcp: int


class LayoutModel(BaseModel):
    x: int
    y: int
    width: int
    height: int


class LegStatus(BaseModel):
    kind: str
    stream_id: Optional[str] = None
    ports: Optional[PortPairModel] = None
    local_ip: Optional[str] = None
    descriptor_path: Optional[str] = None
    ready: bool = False
    last_error: Optional[str] = None


class ParticipantStatusResponse(BaseModel):
    id: str
    eligible: bool
    joined_at: float
    layout: Optional[LayoutModel] = None
    legs: Dict[str, LegStatus] = Field(default_factory=dict)


class CompositorInputModel(BaseModel):
    participant_id: str
    kind: str
    descriptor_path: str
    layout: Optional[LayoutModel] = None


class StartResultModel(BaseModel):
    success: bool
    pid: Optional[int] = None
    signature: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    inputs: List[CompositorInputModel] = Field(default_factory=list)
    started_at: float


class CompositionStatusResponse(BaseModel):
    generation: int
    state: str
    running: bool
    pid: Optional[int] = None
    pending: bool = False
    passes: int = 0
    last_error: Optional[str] = None
    last_start: Optional[StartResultModel] = None
    playlist: Optional[str] = None
    reserved_ports: List[int] = Field(default_factory=list)
    participants: List[ParticipantStatusResponse] = Field(default_factory=list)
    updated_at: float
