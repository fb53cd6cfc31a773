"""Request and response schemas for generation dispatch.

One payload schema per generation kind. Schemas forbid unknown fields; the
server-owned fields (cost, user) are stripped by the request validator before
these models ever see the payload.
"""

from datetime import datetime
from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, model_validator

ShortText = Annotated[str, Field(max_length=255)]
Prompt = Annotated[str, Field(min_length=1, max_length=10000)]
LongText = Annotated[str, Field(max_length=10000)]
ScriptText = Annotated[str, Field(min_length=1, max_length=10000)]

AspectRatio = Literal["1:1", "9:16", "16:9"]
VideoResolution = Literal["480p", "720p", "1080p"]
FrameResolution = Literal["1K", "2K", "4K"]
ImageType = Literal["ugc", "studio"]


class PayloadBase(BaseModel):
    model_config = ConfigDict(extra="forbid")


# =============================================================================
# Single-request kinds
# =============================================================================


class FilePayload(PayloadBase):
    """Fields shared by every single-request kind."""

    file_id: UUID | None = None
    project_id: UUID | None = None
    folder_id: UUID | None = None
    pipeline_id: UUID | None = None
    file_name: ShortText | None = None
    tags: list[ShortText] = Field(default_factory=list, max_length=20)

    @model_validator(mode="after")
    def _require_owner(self) -> "FilePayload":
        if self.project_id is None and self.pipeline_id is None:
            raise ValueError("project_id or pipeline_id is required")
        return self


class FirstFramePayload(FilePayload):
    prompt: Prompt
    image_type: ImageType | None = None
    aspect_ratio: AspectRatio | None = None
    reference_images: list[HttpUrl] = Field(default_factory=list, max_length=5)
    actor_id: UUID | None = None
    actor_360_url: HttpUrl | None = None
    camera_perspective: Literal["1st_person", "3rd_person"] | None = None


class ScriptPayload(FilePayload):
    prompt: LongText | None = None
    description: Annotated[str, Field(max_length=2000)] | None = None
    script_type: Literal["prompt", "recreate", "walkthrough"] | None = None
    script_format: Literal[
        "demo", "listicle", "problem-solution", "educational", "comparison", "promotional", "vsl"
    ] | None = None
    perspective: Literal["mixed", "1st", "2nd", "3rd"] | None = None
    duration_seconds: Annotated[float, Field(gt=0, le=1800)] | None = None
    is_refine: bool = False
    previous_script: Annotated[str, Field(max_length=50000)] | None = None
    video_url: HttpUrl | None = None


class SpeechPayload(FilePayload):
    script: ScriptText
    voice_id: ShortText | None = None


class HumanizePayload(FilePayload):
    script: ScriptText


class LipSyncPayload(FilePayload):
    audio_url: HttpUrl
    audio_duration: Annotated[float, Field(gt=0, le=600)] | None = None
    image_url: HttpUrl | None = None
    video_url: HttpUrl | None = None
    resolution: VideoResolution | None = None
    actor_id: UUID | None = None

    @model_validator(mode="after")
    def _require_visual(self) -> "LipSyncPayload":
        if self.image_url is None and self.video_url is None:
            raise ValueError("image_url or video_url is required")
        return self


class TalkingHeadPayload(FilePayload):
    audio_url: HttpUrl | None = None
    audio_duration: Annotated[float, Field(gt=0, le=600)] | None = None
    image_url: HttpUrl | None = None
    script: LongText | None = None
    voice_id: ShortText | None = None
    actor_voice_url: HttpUrl | None = None
    resolution: VideoResolution | None = None
    actor_id: UUID | None = None


class BRollPayload(FilePayload):
    prompt: Prompt
    audio_duration: Annotated[float, Field(gt=0, le=600)] | None = None
    first_frame_url: HttpUrl | None = None
    last_frame_url: HttpUrl | None = None
    aspect_ratio: AspectRatio | None = None
    resolution: VideoResolution | None = None


class AnimatePayload(FilePayload):
    first_frame_url: HttpUrl
    last_frame_url: HttpUrl | None = None
    prompt: LongText | None = None
    animation_type: Literal["broll", "motion_graphics"] | None = None
    duration: Annotated[float, Field(gt=0, le=600)] | None = None
    duration_seconds: Annotated[float, Field(gt=0, le=1800)] | None = None
    resolution: VideoResolution | None = None


class FramePayload(FilePayload):
    prompt: Prompt
    frame_type: Literal["first", "last"] = "first"
    style: Literal["talking_head", "broll", "motion_graphics"] | None = None
    substyle: ImageType | None = None
    frame_resolution: FrameResolution = "1K"
    aspect_ratio: AspectRatio | None = None
    reference_images: list[HttpUrl] = Field(default_factory=list, max_length=5)
    image_url: HttpUrl | None = None
    output_image_url: HttpUrl | None = None
    actor_id: UUID | None = None
    actor_360_url: HttpUrl | None = None


# =============================================================================
# Pipeline kinds
# =============================================================================


class PipelineStagePayload(PayloadBase):
    pipeline_id: UUID
    file_id: UUID | None = None


class PipelineFirstFramePayload(PipelineStagePayload):
    prompt: Annotated[str, Field(min_length=1, max_length=2000)]
    image_type: ImageType | None = None
    aspect_ratio: AspectRatio | None = None
    reference_images: list[HttpUrl] = Field(default_factory=list, max_length=5)
    is_edit: bool = False


class PipelineScriptPayload(PipelineStagePayload):
    description: Annotated[str, Field(max_length=2000)] | None = None
    script_type: ShortText | None = None
    duration_seconds: Annotated[float, Field(gt=0, le=1800)] | None = None
    previous_script: LongText | None = None


class VoiceSettings(PayloadBase):
    stability: Annotated[float, Field(ge=0, le=1)] | None = None
    similarity: Annotated[float, Field(ge=0, le=1)] | None = None
    speed: Annotated[float, Field(ge=0.5, le=2)] | None = None


class PipelineVoicePayload(PipelineStagePayload):
    script_text: ScriptText
    voice_id: ShortText | None = None
    voice_settings: VoiceSettings | None = None
    char_count: int | None = None  # informational; cost uses script_text


class PipelineFinalVideoPayload(PipelineStagePayload):
    first_frame_url: HttpUrl | None = None
    audio_url: HttpUrl | None = None
    audio_duration_seconds: Annotated[float, Field(gt=0, le=300)] | None = None
    duration_seconds: Annotated[float, Field(gt=0, le=1800)] | None = None
    resolution: VideoResolution | None = None
    pipeline_type: ShortText | None = None
    motion_prompt: Annotated[str, Field(max_length=2000)] | None = None
    camera_motion: ShortText | None = None
    motion_intensity: Annotated[float, Field(ge=0, le=100)] | None = None


KIND_SCHEMAS: dict[str, type[PayloadBase]] = {
    "first_frame": FirstFramePayload,
    "script": ScriptPayload,
    "speech": SpeechPayload,
    "audio": SpeechPayload,
    "humanize": HumanizePayload,
    "lip_sync": LipSyncPayload,
    "talking_head": TalkingHeadPayload,
    "b_roll": BRollPayload,
    "animate": AnimatePayload,
    "frame": FramePayload,
    "pipeline_first_frame": PipelineFirstFramePayload,
    "pipeline_first_frame_b_roll": PipelineFirstFramePayload,
    "pipeline_script": PipelineScriptPayload,
    "pipeline_voice": PipelineVoicePayload,
    "pipeline_final_video": PipelineFinalVideoPayload,
}


# =============================================================================
# API bodies
# =============================================================================


class GenerationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    kind: str
    status: str
    progress: int
    cost: float
    project_id: UUID | None
    folder_id: UUID | None
    pipeline_id: UUID | None
    stage: str | None
    name: str | None
    preview_url: str | None
    download_url: str | None
    result: dict[str, Any] | None
    error_message: str | None
    generation_started_at: datetime | None
    estimated_duration_seconds: int | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime
    time_remaining: str | None = None
