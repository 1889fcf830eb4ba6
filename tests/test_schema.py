"""Tests for vtm.schema module."""

import pytest
from pydantic import ValidationError

from vtm.schema import (
    Task,
    TaskInput,
    TaskStatus,
    compute_stats,
    create_manifest,
    format_task_id,
    is_blocked,
    parse_task_number,
)
from vtm.schema import TestStrategy as Strategy


def _task(task_id, status="pending", deps=None):
    return Task(id=task_id, title=task_id, status=status, dependencies=deps or [])


class TestTaskIds:
    """Test TASK-NNN formatting helpers."""

    def test_format_pads_to_three_digits(self):
        assert format_task_id(1) == "TASK-001"
        assert format_task_id(42) == "TASK-042"

    def test_format_allows_more_than_three_digits(self):
        assert format_task_id(1234) == "TASK-1234"

    def test_parse_task_number(self):
        assert parse_task_number("TASK-007") == 7
        assert parse_task_number("TASK-1234") == 1234

    def test_parse_rejects_other_formats(self):
        assert parse_task_number("task-007") is None
        assert parse_task_number("TASK-") is None
        assert parse_task_number("FEAT-001") is None


class TestComputeStats:
    """Test stats derivation from the task list."""

    def test_empty(self):
        stats = compute_stats([])
        assert stats.total_tasks == 0
        assert stats.blocked == 0

    def test_counts_by_status(self):
        tasks = [
            _task("TASK-001", "completed"),
            _task("TASK-002", "in-progress"),
            _task("TASK-003", "pending"),
            _task("TASK-004", "pending"),
        ]
        stats = compute_stats(tasks)
        assert stats.total_tasks == 4
        assert stats.completed == 1
        assert stats.in_progress == 1
        assert stats.pending == 2

    def test_blocked_is_derived_from_incomplete_dependencies(self):
        tasks = [
            _task("TASK-001", "pending"),
            _task("TASK-002", "pending", ["TASK-001"]),
            _task("TASK-003", "pending", ["TASK-002"]),
        ]
        assert compute_stats(tasks).blocked == 2

    def test_completed_dependencies_do_not_block(self):
        tasks = [
            _task("TASK-001", "completed"),
            _task("TASK-002", "pending", ["TASK-001"]),
        ]
        assert compute_stats(tasks).blocked == 0

    def test_completed_task_is_never_blocked(self):
        tasks = [
            _task("TASK-001", "pending"),
            _task("TASK-002", "completed", ["TASK-001"]),
        ]
        assert compute_stats(tasks).blocked == 0

    def test_explicit_blocked_status_counts(self):
        tasks = [_task("TASK-001", "blocked")]
        assert compute_stats(tasks).blocked == 1


class TestIsBlocked:
    def test_unknown_dependency_does_not_block(self):
        task = _task("TASK-002", "pending", ["TASK-999"])
        assert is_blocked(task, {"TASK-002": task}) is False


class TestTaskInput:
    """Test the ingestion-side task model."""

    def test_defaults(self):
        task = TaskInput(title="A")
        assert task.status == TaskStatus.PENDING
        assert task.test_strategy == Strategy.TDD
        assert task.risk.value == "medium"
        assert task.dependencies == []

    def test_mixed_dependency_references(self):
        task = TaskInput(title="A", dependencies=[0, "TASK-003"])
        assert task.dependencies == [0, "TASK-003"]
        assert isinstance(task.dependencies[0], int)

    def test_rejects_boolean_dependency(self):
        with pytest.raises(ValidationError):
            TaskInput(title="A", dependencies=[True])

    def test_rejects_empty_title(self):
        with pytest.raises(ValidationError):
            TaskInput(title="")

    def test_rejects_non_string_title(self):
        with pytest.raises(ValidationError):
            TaskInput(title=123)

    def test_keeps_unknown_fields(self):
        task = TaskInput(title="A", type="fix")
        assert task.type == "fix"


class TestCreateManifest:
    def test_empty_manifest(self):
        vtm = create_manifest("Demo", "A demo")
        assert vtm.project.name == "Demo"
        assert vtm.tasks == []
        assert vtm.history == []
        assert vtm.stats.total_tasks == 0
