"""Shared fixtures for the VTM test suite."""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from vtm.manager import TaskManager
from vtm.writer import VTMWriter


def make_task(task_id, status="pending", dependencies=None, **extra):
    """Raw persisted task dict with sensible defaults."""
    task = {
        "id": task_id,
        "title": extra.pop("title", f"Task {task_id}"),
        "description": "",
        "acceptance_criteria": [],
        "dependencies": dependencies or [],
        "blocks": [],
        "status": status,
        "test_strategy": "TDD",
        "risk": "medium",
        "files": {"create": [], "modify": [], "delete": []},
        "validation": {"tests_pass": False, "ac_verified": []},
        "adr_source": "",
        "spec_source": "",
    }
    task.update(extra)
    return task


def write_manifest(path: Path, tasks=None, history=None) -> Path:
    """Write a raw manifest straight to disk, bypassing the writer."""
    data = {
        "version": "1.0",
        "project": {"name": "Test Project", "description": "Fixture"},
        "stats": {"total_tasks": 0, "completed": 0, "in_progress": 0, "pending": 0, "blocked": 0},
        "tasks": tasks or [],
    }
    if history is not None:
        data["history"] = history
    path.write_text(json.dumps(data, indent=2))
    return path


class FakeClock:
    """Deterministic clock; advances one second per call unless moved."""

    def __init__(self, start=datetime(2026, 1, 28, 12, 0, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current

    def set(self, value):
        self.now = value


@pytest.fixture
def vtm_path(tmp_path):
    """An initialised, empty manifest."""
    path = tmp_path / "vtm.json"
    VTMWriter(path).init("Test Project", "Fixture")
    return path


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manager(vtm_path, clock):
    return TaskManager(vtm_path, clock=clock)
