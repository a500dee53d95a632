"""State machine constants and transition rules for the project pipeline.

Project lifecycle:

    draft → generating → compiling → completed
                 │            │
                 └──→ error ←─┘
    generating/compiling → cancelled

completed, error and cancelled are terminal: a project never leaves them.
"""

from clipforge.schemas.project import ClipStatus, ProjectStatus

PIPELINE_STATES = {
    ProjectStatus.DRAFT: "Created, clips editable, waiting for a start request",
    ProjectStatus.GENERATING: "Generating clips one at a time in index order",
    ProjectStatus.COMPILING: "Concatenating finished clips into the final video",
    ProjectStatus.COMPLETED: "Final video compiled",
    ProjectStatus.ERROR: "Pipeline hit an unrecoverable failure",
    ProjectStatus.CANCELLED: "Pipeline cancelled by user",
}

PROJECT_TRANSITIONS = {
    ProjectStatus.DRAFT: {ProjectStatus.GENERATING},
    ProjectStatus.GENERATING: {
        ProjectStatus.COMPILING,
        ProjectStatus.ERROR,
        ProjectStatus.CANCELLED,
    },
    ProjectStatus.COMPILING: {
        ProjectStatus.COMPLETED,
        ProjectStatus.ERROR,
        ProjectStatus.CANCELLED,
    },
    ProjectStatus.COMPLETED: set(),
    ProjectStatus.ERROR: set(),
    ProjectStatus.CANCELLED: set(),
}

TERMINAL_STATES = frozenset(
    status for status, targets in PROJECT_TRANSITIONS.items() if not targets
)

ACTIVE_STATES = frozenset({ProjectStatus.GENERATING, ProjectStatus.COMPILING})

# Per-clip transitions; failed is reachable from both generating stages
CLIP_TRANSITIONS = {
    ClipStatus.PENDING: {ClipStatus.IMAGE_GENERATING, ClipStatus.FAILED, ClipStatus.CANCELLED},
    ClipStatus.IMAGE_GENERATING: {
        ClipStatus.VIDEO_GENERATING,
        ClipStatus.FAILED,
        ClipStatus.CANCELLED,
    },
    ClipStatus.VIDEO_GENERATING: {ClipStatus.DONE, ClipStatus.FAILED, ClipStatus.CANCELLED},
    ClipStatus.DONE: set(),
    ClipStatus.FAILED: set(),
    ClipStatus.CANCELLED: set(),
}


def can_transition(current: ProjectStatus, target: ProjectStatus) -> bool:
    """Check if a project may move from current to target status."""
    return target in PROJECT_TRANSITIONS.get(ProjectStatus(current), set())


def can_start(status: ProjectStatus) -> bool:
    """Only draft projects can start generation."""
    return ProjectStatus(status) == ProjectStatus.DRAFT


def is_terminal(status: ProjectStatus) -> bool:
    return ProjectStatus(status) in TERMINAL_STATES


def can_transition_clip(current: ClipStatus, target: ClipStatus) -> bool:
    """Check if a clip may move from current to target status."""
    return ClipStatus(target) in CLIP_TRANSITIONS.get(ClipStatus(current), set())


def can_delete(status: ProjectStatus) -> bool:
    """Projects cannot be deleted while a pipeline owns them."""
    return ProjectStatus(status) not in ACTIVE_STATES

