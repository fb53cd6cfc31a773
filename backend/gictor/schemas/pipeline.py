from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

PipelineType = Literal["talking_head", "lip_sync", "clips", "motion_graphics"]


class PipelineCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    project_id: UUID
    folder_id: UUID | None = None
    name: str = Field(default="Untitled", min_length=1, max_length=255)
    pipeline_type: PipelineType = "talking_head"


class PipelineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_id: UUID
    folder_id: UUID | None
    name: str
    pipeline_type: str
    status: str
    current_stage: str
    progress: int
    stage_flags: dict[str, Any]
    stage_outputs: dict[str, Any]
    created_at: datetime
    updated_at: datetime
