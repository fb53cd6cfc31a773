import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from gictor.constants.generation import STATUS_PENDING
from gictor.models.base import Base, TimestampMixin, UUIDMixin

JSONType = JSON().with_variant(JSONB(), "postgresql")


class GenerationRequest(Base, UUIDMixin, TimestampMixin):
    """One unit of asynchronous generation work (a "file" in the UI).

    Created by the dispatch gateway as pending, moved to processing once the
    worker accepted it, and settled exactly once by the status reconciler.
    """

    __tablename__ = "generation_requests"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    project_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True, index=True)
    folder_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)

    # Pipeline membership
    pipeline_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("pipelines.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    stage: Mapped[str | None] = mapped_column(String(50), nullable=True)

    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Status: pending, processing, completed, failed
    status: Mapped[str] = mapped_column(String(20), default=STATUS_PENDING, nullable=False, index=True)
    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Credits reserved at dispatch time; never rewritten
    cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # Validated request parameters forwarded to the worker
    params: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)

    # Result (completed only)
    preview_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    download_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    # Error handling (failed only)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timing
    generation_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    estimated_duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<GenerationRequest {self.id} {self.kind} ({self.status})>"
