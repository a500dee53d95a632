"""Exception hierarchy for clipforge.

Input errors are raised synchronously to the caller and never change
pipeline state. Generation errors are raised by providers and classified
by the clip worker as transient (retried) or terminal for the clip.
"""

import uuid
from typing import Optional


class ClipforgeError(Exception):
    """Base class for all clipforge errors."""


# ---------------------------------------------------------------------------
# Input errors
# ---------------------------------------------------------------------------
class UnrecognizedStyleError(ClipforgeError, ValueError):
    """Raised when a script style is outside the supported set."""

    def __init__(self, style: str, supported: Optional[list[str]] = None):
        self.style = style
        self.supported = supported or []
        message = f"Unrecognized script style: {style!r}"
        if self.supported:
            message += f" (supported: {', '.join(self.supported)})"
        super().__init__(message)


class ProjectNotFoundError(ClipforgeError, LookupError):
    """Raised when a project id does not exist in the store."""

    def __init__(self, project_id: uuid.UUID | str):
        self.project_id = project_id
        super().__init__(f"Project {project_id} not found")


class InvalidStateError(ClipforgeError):
    """Raised when an operation is not allowed in the project's current status."""

    def __init__(self, message: str, status: Optional[str] = None):
        self.status = status
        super().__init__(message)


class NoEligibleClipsError(ClipforgeError):
    """Raised when generation is requested but no clip has a prompt."""

    def __init__(self, project_id: uuid.UUID | str):
        self.project_id = project_id
        super().__init__(
            f"Project {project_id} has no clip with an image or video prompt"
        )


# ---------------------------------------------------------------------------
# Generation errors
# ---------------------------------------------------------------------------
class GenerationError(ClipforgeError):
    """A generation capability call failed and should not be retried."""

    reason = "provider_error"


class TransientGenerationError(GenerationError):
    """Timeout, rate limit or server-side failure worth retrying."""

    reason = "transient"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ContentRejectedError(GenerationError):
    """The provider refused the prompt (content policy, invalid input)."""

    reason = "content_rejected"


class CompilationError(GenerationError):
    """Assembling the finished clips into one video failed."""

    reason = "compile_failed"
