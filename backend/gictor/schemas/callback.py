"""Status callback payloads sent by the generation worker.

Two shapes share one endpoint:
- single-request form, keyed by `file_id`
- pipeline-stage form, keyed by `pipeline_id` plus `stage` (or `type: pipeline_<stage>`)
Worker variants name a few fields differently; the aliases below accept all of them.
"""

from typing import Any, Literal
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from gictor.constants.generation import PIPELINE_KIND_STAGES, PIPELINE_STAGES, STAGE_ALIASES

CallbackStatus = Literal["completed", "failed", "processing"]


class CallbackBase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: CallbackStatus
    progress: int | None = None
    error_message: str | None = Field(default=None, max_length=10000)
    metadata: dict[str, Any] | None = None

    # Informational only; the record's own user and cost are authoritative
    user_id: str | None = None
    credits_cost: float | None = None


class FileStatusCallback(CallbackBase):
    file_id: UUID
    preview_url: str | None = None
    download_url: str | None = Field(
        default=None, validation_alias=AliasChoices("download_url", "audio_url", "video_url")
    )
    duration_seconds: float | None = Field(
        default=None, validation_alias=AliasChoices("duration_seconds", "audio_duration")
    )
    text: str | None = None


class StageOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: str | None = None
    duration_seconds: float | None = None
    text: str | None = None


class PipelineStageCallback(CallbackBase):
    pipeline_id: UUID
    type: str | None = None
    stage: str | None = None
    file_id: UUID | None = None
    output: StageOutput | None = None

    # Flat variants of `output`
    output_url: str | None = None
    preview_url: str | None = None
    script_text: str | None = None
    duration_seconds: float | None = Field(
        default=None, validation_alias=AliasChoices("duration_seconds", "audio_duration")
    )

    @model_validator(mode="after")
    def _resolve_stage_and_output(self) -> "PipelineStageCallback":
        if self.stage is None and self.type:
            self.stage = PIPELINE_KIND_STAGES.get(self.type) or self.type.removeprefix("pipeline_")
        self.stage = STAGE_ALIASES.get(self.stage, self.stage)
        if self.stage not in PIPELINE_STAGES:
            raise ValueError(f"Unknown pipeline stage: {self.stage}")

        output = self.output or StageOutput()
        self.output = StageOutput(
            url=output.url or self.output_url,
            duration_seconds=output.duration_seconds or self.duration_seconds,
            text=output.text or self.script_text,
        )
        return self


def is_pipeline_callback(payload: dict[str, Any]) -> bool:
    kind = payload.get("type")
    return (isinstance(kind, str) and kind.startswith("pipeline_")) or "stage" in payload
