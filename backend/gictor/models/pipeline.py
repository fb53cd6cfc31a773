import uuid
from typing import Any

from sqlalchemy import ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from gictor.constants.generation import PIPELINE_DRAFT
from gictor.models.base import Base, TimestampMixin, UUIDMixin
from gictor.models.generation import JSONType


class Pipeline(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "pipelines"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    folder_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="Untitled")

    # Type: talking_head, lip_sync, clips, motion_graphics
    pipeline_type: Mapped[str] = mapped_column(String(50), nullable=False, default="talking_head")

    # Status: draft, processing, completed, failed
    status: Mapped[str] = mapped_column(String(20), default=PIPELINE_DRAFT, nullable=False)
    current_stage: Mapped[str] = mapped_column(String(50), default="first_frame", nullable=False)
    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # {stage: bool} and {stage: {url, duration_seconds, text, generated_at}}
    stage_flags: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    stage_outputs: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)

    def __repr__(self) -> str:
        return f"<Pipeline {self.id} {self.pipeline_type} ({self.status})>"
