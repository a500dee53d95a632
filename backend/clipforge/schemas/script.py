"""Pydantic schemas for script template output.

A PromptClip is a generation-ready prompt set that is not yet attached to a
project. Its image_prompt, video_prompt and voice_line seed a Clip.
"""

from pydantic import BaseModel, ConfigDict, Field


class Product(BaseModel):
    """Product the script is written for."""

    name: str
    target_audience: str = Field(
        default="",
        description="Free-text audience description, e.g. "
        "'women aged 45-65 experiencing joint pain, low energy'",
    )


class PromptClip(BaseModel):
    """One clip of a synthesized script."""

    model_config = ConfigDict(frozen=True)

    clip_number: int = Field(ge=1, description="1-based position in the script")
    timestamp: str = Field(description="Time window label, e.g. '0-8s'")
    section: str = Field(description="Narrative section label")
    image_prompt: str
    video_prompt: str
    voice_line: str
