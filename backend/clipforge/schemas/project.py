"""Pydantic schemas for projects, clips and progress events.

Snapshots are frozen value objects built from the database rows. Two
snapshots read with no intervening write compare equal.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from clipforge.schemas.script import Product


class ProjectStatus(str, Enum):
    """Project lifecycle states."""

    DRAFT = "draft"
    GENERATING = "generating"
    COMPILING = "compiling"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


class ClipStatus(str, Enum):
    """Per-clip generation states."""

    PENDING = "pending"
    IMAGE_GENERATING = "image_generating"
    VIDEO_GENERATING = "video_generating"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_CLIP_STATUSES = frozenset(
    {ClipStatus.DONE, ClipStatus.FAILED, ClipStatus.CANCELLED}
)


class ProjectSettings(BaseModel):
    """Compilation settings for the final video."""

    aspect_ratio: Literal["9:16", "16:9"] = "9:16"
    title_text: str = ""
    border_width_percent: float = Field(default=0.0, ge=0, lt=50)
    title_font_size: int = Field(default=42, ge=1)
    title_color: str = Field(default="#ffffff", pattern=r"^#?[0-9a-fA-F]{6}$")
    title_box_opacity: float = Field(default=0.6, ge=0, le=1)
    title_y_percent: float = Field(default=85.0, ge=0, le=100)


# ============================================================================
# Requests
# ============================================================================

class ClipInput(BaseModel):
    """Prompt fields for one clip, as supplied by the caller."""

    image_prompt: str = ""
    video_prompt: str = ""
    voice_line: Optional[str] = None

    @property
    def is_eligible(self) -> bool:
        return bool(self.image_prompt.strip() or self.video_prompt.strip())


class ScriptRequest(BaseModel):
    """Style parameters for synthesizing clip prompts from a template."""

    style: str = Field(description="Script style tag, e.g. 'transformation'")
    product: Product
    avatar_description: str = Field(
        description="Free-text description of the on-screen character"
    )


class CreateProjectRequest(BaseModel):
    """Request schema for creating a project.

    Clips can be given explicitly, synthesized from a script, or both; script
    clips come first in timeline order.
    """

    name: Optional[str] = None
    clips: list[ClipInput] = Field(default_factory=list)
    script: Optional[ScriptRequest] = None
    settings: ProjectSettings = Field(default_factory=ProjectSettings)

    @model_validator(mode="after")
    def _require_clips_or_script(self):
        if not self.clips and self.script is None:
            raise ValueError("Provide at least one clip or a script request")
        return self


# ============================================================================
# Snapshots
# ============================================================================

class ClipSnapshot(BaseModel):
    """Read-only view of one clip."""

    model_config = ConfigDict(frozen=True)

    index: int
    image_prompt: str
    video_prompt: str
    voice_line: Optional[str] = None
    status: ClipStatus
    retry_count: int = 0
    error: Optional[str] = None
    failure_reason: Optional[str] = None
    image_ref: Optional[str] = None
    video_ref: Optional[str] = None

    @property
    def is_eligible(self) -> bool:
        return bool(self.image_prompt.strip() or self.video_prompt.strip())

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_CLIP_STATUSES


class ProjectSnapshot(BaseModel):
    """Read-only view of a project and its ordered clips."""

    model_config = ConfigDict(frozen=True)

    id: uuid.UUID
    name: str
    status: ProjectStatus
    style: Optional[str] = None
    settings: ProjectSettings
    clips: tuple[ClipSnapshot, ...]
    created_at: datetime
    final_video_ref: Optional[str] = None
    error_message: Optional[str] = None

    @computed_field
    @property
    def clip_count(self) -> int:
        return len(self.clips)

    @computed_field
    @property
    def completed_clips(self) -> int:
        return sum(1 for c in self.clips if c.status == ClipStatus.DONE)

    def clip(self, index: int) -> ClipSnapshot:
        return self.clips[index]


class ProjectSummary(BaseModel):
    """Row for project listings."""

    id: uuid.UUID
    name: str
    status: ProjectStatus
    created_at: datetime
    clip_count: int
    completed_clips: int


# ============================================================================
# Progress events
# ============================================================================

class PipelineEvent(BaseModel):
    """One status transition broadcast to progress subscribers."""

    model_config = ConfigDict(frozen=True)

    type: str
    project_id: uuid.UUID
    clip_index: Optional[int] = None
    snapshot: ProjectSnapshot
    # Extra detail for events that carry no state change, e.g. video_progress
    data: Optional[dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
