"""SQLAlchemy 2.0 ORM models for clipforge."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Float, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class Project(Base):
    """A video project: an ordered list of clips compiled into one video."""
    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200))
    status: Mapped[str] = mapped_column(String(20), default="draft")
    style: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    settings: Mapped[dict] = mapped_column(JSON, default=dict)
    final_video_ref: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now()
    )

    clips: Mapped[list["Clip"]] = relationship(
        back_populates="project",
        order_by="Clip.clip_index",
        cascade="all, delete-orphan",
    )


class Clip(Base):
    """One clip of a project, generated as an image then a video."""
    __tablename__ = "clips"
    __table_args__ = (
        UniqueConstraint("project_id", "clip_index", name="uq_clips_project_index"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), index=True
    )
    clip_index: Mapped[int] = mapped_column(Integer)
    image_prompt: Mapped[str] = mapped_column(Text, default="")
    video_prompt: Mapped[str] = mapped_column(Text, default="")
    voice_line: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="pending")
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    image_ref: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    video_ref: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    project: Mapped[Project] = relationship(back_populates="clips")


class PipelineRun(Base):
    """Execution metrics for one generation run of a project."""
    __tablename__ = "pipeline_runs"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), index=True
    )
    started_at: Mapped[datetime] = mapped_column(server_default=func.now())
    completed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    total_duration_seconds: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    final_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    log: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
