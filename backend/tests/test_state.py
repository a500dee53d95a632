"""Tests for the project lifecycle rules."""

import pytest

from clipforge.orchestrator.state import (
    ACTIVE_STATES,
    PIPELINE_STATES,
    PROJECT_TRANSITIONS,
    TERMINAL_STATES,
    can_delete,
    can_start,
    can_transition,
    is_terminal,
)
from clipforge.schemas.project import ProjectStatus


def test_01_every_status_is_described():
    assert set(PIPELINE_STATES) == set(ProjectStatus)
    assert set(PROJECT_TRANSITIONS) == set(ProjectStatus)


def test_02_terminal_states():
    assert TERMINAL_STATES == {
        ProjectStatus.COMPLETED,
        ProjectStatus.ERROR,
        ProjectStatus.CANCELLED,
    }
    for status in TERMINAL_STATES:
        assert is_terminal(status)
        assert not any(can_transition(status, target) for target in ProjectStatus)


@pytest.mark.parametrize(
    "current, target, allowed",
    [
        ("draft", "generating", True),
        ("draft", "compiling", False),
        ("generating", "compiling", True),
        ("generating", "completed", False),
        ("generating", "cancelled", True),
        ("compiling", "completed", True),
        ("compiling", "error", True),
        ("completed", "generating", False),
    ],
)
def test_03_transitions(current, target, allowed):
    assert can_transition(current, ProjectStatus(target)) is allowed


def test_04_only_draft_can_start():
    assert can_start(ProjectStatus.DRAFT)
    assert not any(can_start(s) for s in ProjectStatus if s != ProjectStatus.DRAFT)


def test_05_active_projects_cannot_be_deleted():
    for status in ProjectStatus:
        assert can_delete(status) is (status not in ACTIVE_STATES)
