"""Tests for vtm.manager module."""

import pytest

from vtm.config import VTMConfig
from vtm.errors import RollbackBlockedError, TaskNotFoundError
from vtm.manager import TaskManager
from vtm.schema import HistoryAction, TaskStatus


class TestIngest:
    """Test validate -> append -> record."""

    def test_example_batch_end_to_end(self, manager):
        result = manager.ingest([{"title": "A"}, {"title": "B", "dependencies": [0]}], source="adr/ADR-001.md")

        assert result.valid
        assert result.task_ids == ["TASK-001", "TASK-002"]
        assert result.transaction_id == "2026-01-28-001"

        vtm = manager.load()
        assert vtm.tasks[1].dependencies == ["TASK-001"]
        assert vtm.tasks[0].blocks == ["TASK-002"]
        assert vtm.stats.total_tasks == 2
        assert vtm.stats.blocked == 1
        assert [t.id for t in manager.reader.get_ready_tasks()] == ["TASK-001"]

        entry = manager.history.get_entry(result.transaction_id)
        assert entry.action == HistoryAction.INGEST
        assert entry.tasks_added == ["TASK-001", "TASK-002"]

    def test_invalid_batch_writes_nothing(self, manager, vtm_path):
        before = vtm_path.read_bytes()
        result = manager.ingest([{"title": "A", "dependencies": ["TASK-404"]}], source="x")
        assert not result.valid
        assert result.errors[0].type == "dependency"
        assert result.transaction_id is None
        assert vtm_path.read_bytes() == before

    def test_second_batch_continues_numbering(self, manager):
        manager.ingest([{"title": "A"}], source="a")
        result = manager.ingest([{"title": "B", "dependencies": ["TASK-001"]}], source="b")
        assert result.task_ids == ["TASK-002"]
        assert result.transaction_id == "2026-01-28-002"


class TestTaskLifecycle:
    """Test start and complete."""

    @pytest.fixture
    def ingested(self, manager):
        manager.ingest([{"title": "A"}, {"title": "B", "dependencies": [0]}], source="adr/ADR-001.md")
        return manager

    def test_start_ready_task(self, ingested):
        task = ingested.start_task("TASK-001")
        assert task.status == TaskStatus.IN_PROGRESS
        assert task.started_at is not None
        assert ingested.load().stats.in_progress == 1
        assert ingested.history.get_history(limit=1)[0].description == "Marked as in-progress"

    def test_start_with_incomplete_dependencies_blocks(self, ingested):
        task = ingested.start_task("TASK-002")
        assert task.status == TaskStatus.BLOCKED
        assert ingested.history.get_history(limit=1)[0].description == "Blocked by TASK-001"

    def test_start_unknown_task(self, ingested):
        with pytest.raises(TaskNotFoundError):
            ingested.start_task("TASK-999")

    def test_complete_unblocks_dependents(self, ingested):
        ingested.start_task("TASK-002")
        ingested.start_task("TASK-001")

        completed = ingested.complete_task("TASK-001", commits=["abc123"], files_created=["a.py"], tests_pass=True)

        assert completed.status == TaskStatus.COMPLETED
        assert completed.completed_at is not None
        assert completed.commits == ["abc123"]
        assert completed.files.create == ["a.py"]
        assert completed.validation.tests_pass is True

        assert ingested.reader.get_task("TASK-002").status == TaskStatus.PENDING
        assert [t.id for t in ingested.reader.get_ready_tasks()] == ["TASK-002"]

        entry = ingested.history.get_history(limit=1)[0]
        assert entry.tasks_updated == ["TASK-001", "TASK-002"]
        assert "unblocked TASK-002" in entry.description

    def test_complete_unknown_task(self, ingested):
        with pytest.raises(TaskNotFoundError):
            ingested.complete_task("TASK-999")


class TestRollback:
    def test_rollback_blocked_by_later_ingest(self, manager):
        first = manager.ingest([{"title": "A"}], source="a")
        manager.ingest([{"title": "B", "dependencies": ["TASK-001"]}], source="b")
        with pytest.raises(RollbackBlockedError):
            manager.rollback(first.transaction_id)

    def test_rollback_removes_tasks(self, manager):
        result = manager.ingest([{"title": "A"}, {"title": "B"}], source="a")
        rolled = manager.rollback(result.transaction_id)
        assert rolled.removed == ["TASK-001", "TASK-002"]
        assert manager.load().tasks == []


class TestStatusReport:
    def test_report_lists_tasks_and_progress(self, manager):
        manager.ingest([{"title": "Build API"}, {"title": "Write docs", "dependencies": [0]}], source="a")
        manager.complete_task("TASK-001")

        report = manager.get_status_report()
        assert "Test Project" in report
        assert "50%" in report
        assert "✅ [TASK-001] Build API" in report
        assert "⬜ [TASK-002] Write docs" in report

    def test_report_shows_waiting_dependencies(self, manager):
        manager.ingest([{"title": "A"}, {"title": "B", "dependencies": [0]}], source="a")
        assert "(waiting on: TASK-001)" in manager.get_status_report()


class TestFromConfig:
    def test_uses_configured_path(self, tmp_path):
        config = VTMConfig(manifest_path=str(tmp_path / "custom.json"), lock_timeout=2.5)
        manager = TaskManager.from_config(config)
        assert manager.vtm_path == (tmp_path / "custom.json").resolve()
        assert manager.writer.lock_timeout == 2.5
