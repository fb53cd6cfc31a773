import uuid

from sqlalchemy import ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from gictor.models.base import Base, TimestampMixin, UUIDMixin


class GeneratedAsset(Base, UUIDMixin, TimestampMixin):
    """Finished file materialized when a pipeline completes its final stage."""

    __tablename__ = "generated_assets"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    folder_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Type: video, audio, image, text
    file_type: Mapped[str] = mapped_column(String(50), nullable=False)

    download_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    preview_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_seconds: Mapped[float | None] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=True)

    # Source
    pipeline_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("pipelines.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    generation_request_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)

    def __repr__(self) -> str:
        return f"<GeneratedAsset {self.name} ({self.file_type})>"
