from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field, field_validator

AspectRatio = Literal["1:1", "3:4", "4:3", "9:16", "16:9"]
ImageResolution = Literal["1K", "2K", "4K"]


class ModelType(str, Enum):
    NanoBanana = "NanoBanana"  # gemini-2.5-flash-image
    NanoBananaPro = "NanoBananaPro"  # gemini-3-pro-image-preview


class JobStatus(str, Enum):
    Idle = "Idle"
    DraftingStructure = "DraftingStructure"
    RenderingScenes = "RenderingScenes"
    Complete = "Complete"
    Failed = "Failed"


class RenderState(str, Enum):
    Pending = "Pending"
    Rendering = "Rendering"
    Ready = "Ready"
    Failed = "Failed"


class HistoryKind(str, Enum):
    image = "image"
    video = "video"


class StoryRequest(BaseModel):
    topic: str
    reference_image: Optional[str] = None
    scene_count: int = Field(default=10, ge=1, le=20)
    model: ModelType = ModelType.NanoBanana
    aspect_ratio: AspectRatio = "16:9"
    resolution: ImageResolution = "1K"

    @field_validator("topic")
    @classmethod
    def _topic_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("topic is required")
        return v


# --- Provider payloads (field names follow the response schema) ---

class SceneDraft(BaseModel):
    sceneNumber: int
    description: str
    imagePrompt: str
    i2vPrompt: str


class TitlePayload(BaseModel):
    english: str
    korean: str


class StoryPayload(BaseModel):
    scenes: List[SceneDraft]
    titles: List[TitlePayload] = Field(default_factory=list)
    musicPrompt: str = ""
    lyrics: str = ""
    lyricsKorean: str = ""


class TitlesPayload(BaseModel):
    titles: List[TitlePayload] = Field(default_factory=list)


class MotionPromptPayload(BaseModel):
    english: str
    korean: str


# --- Domain types ---

class TitleCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    primary: str
    localized: str


class MotionPromptDraft(BaseModel):
    model_config = ConfigDict(frozen=True)

    primary: str
    localized: str


class StoryDraft(BaseModel):
    scenes: List[SceneDraft]
    titles: List[TitleCandidate]
    music_prompt: str
    lyrics: str
    lyrics_localized: str


class Scene(BaseModel):
    model_config = ConfigDict(frozen=True)

    scene_number: int
    narrative: str
    image_prompt: str
    motion_prompt: str
    image: Optional[str] = None
    render_state: RenderState = RenderState.Pending
    render_error: Optional[str] = None
    # bumped by every manual regenerate; stale renders compare against it
    revision: int = 0


class JobState(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_id: Optional[str] = None
    request: Optional[StoryRequest] = None
    status: JobStatus = JobStatus.Idle
    error: Optional[str] = None
    scenes: List[Scene] = Field(default_factory=list)
    titles: List[TitleCandidate] = Field(default_factory=list)
    music_prompt: Optional[str] = None
    lyrics: Optional[str] = None
    lyrics_localized: Optional[str] = None
    motion_prompt: Optional[MotionPromptDraft] = None
    outstanding: int = 0


class HistoryEntry(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    kind: HistoryKind = HistoryKind.image
    artifact_ref: str
    source_prompt: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ConnectionResult(BaseModel):
    success: bool
    message: str


class ActivationResult(BaseModel):
    accepted: bool
    message: str
