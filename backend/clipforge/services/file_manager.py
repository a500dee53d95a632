"""
File management service for clipforge.

Stores generated artifacts under per-project directories with path
traversal protection:

- {base_dir}/{project_id}/images/ - Clip source images
- {base_dir}/{project_id}/clips/  - Generated video clips
- {base_dir}/{project_id}/output/ - Compiled final video
"""
import logging
import uuid
from pathlib import Path

from clipforge.config import settings

logger = logging.getLogger(__name__)

_SUBDIRS = ("images", "clips", "output")


class FileManager:
    """Manage filesystem artifacts for clipforge projects."""

    def __init__(self, base_dir: str | Path | None = None):
        """
        Args:
            base_dir: Root directory for all project artifacts.
                     If None, uses settings.storage.tmp_dir
        """
        if base_dir is None:
            base_dir = settings.storage.tmp_dir

        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def get_project_dir(self, project_id: uuid.UUID) -> Path:
        """
        Get or create a project directory with its subdirectories.

        Raises:
            ValueError: If project_id resolves outside base_dir
        """
        project_dir = (self.base_dir / str(project_id)).resolve()

        if not project_dir.is_relative_to(self.base_dir):
            raise ValueError("Invalid project path")

        project_dir.mkdir(exist_ok=True)
        for name in _SUBDIRS:
            (project_dir / name).mkdir(exist_ok=True)

        return project_dir

    def save_image(self, project_id: uuid.UUID, clip_idx: int, data: bytes) -> Path:
        """Save the source image for a clip as clip_{idx}.png."""
        filepath = self.get_project_dir(project_id) / "images" / f"clip_{clip_idx}.png"
        filepath.write_bytes(data)
        logger.debug(f"Saved image {filepath} ({len(data)} bytes)")
        return filepath

    def save_clip(self, project_id: uuid.UUID, clip_idx: int, data: bytes) -> Path:
        """Save the generated video for a clip as clip_{idx}.mp4."""
        filepath = self.get_project_dir(project_id) / "clips" / f"clip_{clip_idx}.mp4"
        filepath.write_bytes(data)
        logger.debug(f"Saved clip {filepath} ({len(data)} bytes)")
        return filepath

    def get_output_path(
        self, project_id: uuid.UUID, filename: str = "final.mp4"
    ) -> Path:
        """Path for the compiled video of a project."""
        return self.get_project_dir(project_id) / "output" / filename
