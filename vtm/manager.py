"""
VTM - Task Manager
==================
Wires the reader, validator, writer and history ledger together into the
operations the CLI and agent pipelines use: ingest a batch, start and
complete tasks, roll back a transaction.

The manifest file is the single source of truth. Each operation reloads it;
nothing is kept between calls except the reader's read cache.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, Field

from .config import VTMConfig
from .errors import TaskNotFoundError
from .history import RollbackResult, VTMHistory, utc_now
from .reader import VTMReader
from .schema import VTM, Task, TaskStatus
from .validator import TaskValidator, ValidationIssue
from .writer import TaskUpdate, VTMWriter, apply_update

logger = logging.getLogger("vtm")


class IngestResult(BaseModel):
    valid: bool
    errors: List[ValidationIssue] = Field(default_factory=list)
    task_ids: List[str] = Field(default_factory=list)
    transaction_id: Optional[str] = None


def get_blocking_dependencies(task: Task, by_id: Dict[str, Task]) -> List[str]:
    """Dependency IDs of `task` that are not completed yet."""
    blocking = []
    for dep_id in task.dependencies:
        dep_task = by_id.get(dep_id)
        if dep_task is None or dep_task.status != TaskStatus.COMPLETED:
            blocking.append(dep_id)
    return blocking


class TaskManager:
    """
    VTM Task Manager

    Storage: a single JSON manifest (default ./vtm.json) holding tasks,
    derived stats and the transaction history.
    """

    def __init__(
        self,
        vtm_path: Union[str, Path] = "vtm.json",
        lock_timeout: float = 10.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.reader = VTMReader(vtm_path)
        self.writer = VTMWriter(reader=self.reader, lock_timeout=lock_timeout)
        self.validator = TaskValidator(reader=self.reader)
        self.history = VTMHistory(writer=self.writer, clock=clock)
        self.clock = clock

    @classmethod
    def from_config(cls, config: VTMConfig) -> "TaskManager":
        return cls(vtm_path=config.manifest_path, lock_timeout=config.lock_timeout)

    @property
    def vtm_path(self) -> Path:
        return self.reader.vtm_path

    def _now(self) -> str:
        return self.clock().isoformat()

    # ========================================
    # MANIFEST OPERATIONS
    # ========================================

    def init(self, name: str, description: str = "", force: bool = False) -> VTM:
        return self.writer.init(name, description, force=force)

    def load(self, force: bool = False) -> VTM:
        return self.reader.load(force=force)

    def ingest(
        self,
        batch: Sequence[Any],
        source: str,
        files: Optional[Dict[str, str]] = None,
    ) -> IngestResult:
        """
        Validate a batch, append it, and record the ingest transaction.

        Validation problems come back in the result; nothing is written
        unless the whole batch is valid.
        """
        result = self.validator.validate(batch)
        if not result.valid:
            logger.warning(f"⛔ Ingest from {source} rejected: {len(result.errors)} error(s)")
            return IngestResult(valid=False, errors=result.errors)

        task_ids = [t.id for t in result.tasks]
        self.writer.append_tasks(result.tasks)
        transaction_id = self.history.record_ingest(task_ids, source, files)

        logger.info(f"🚀 Ingested {len(task_ids)} task(s) from {source} as {transaction_id}")
        return IngestResult(valid=True, task_ids=task_ids, transaction_id=transaction_id)

    # ========================================
    # TASK OPERATIONS
    # ========================================

    def start_task(self, task_id: str) -> Task:
        """
        Mark a task in-progress.

        A task with incomplete dependencies is marked blocked instead and
        returned with that status.
        """
        with self.writer.transaction() as vtm:
            by_id = vtm.task_index()
            task = by_id.get(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)

            blocked_by = get_blocking_dependencies(task, by_id)
            if blocked_by:
                update = TaskUpdate(status=TaskStatus.BLOCKED)
            else:
                update = TaskUpdate(status=TaskStatus.IN_PROGRESS, started_at=self._now())

            task = apply_update(task, update)
            vtm.tasks = [task if t.id == task_id else t for t in vtm.tasks]

        if blocked_by:
            logger.warning(f"⛔ Task {task_id} blocked by: {', '.join(blocked_by)}")
            self.history.record_update([task_id], f"Blocked by {', '.join(blocked_by)}")
        else:
            logger.info(f"▶️ Started task: {task.title} ({task_id})")
            self.history.record_update([task_id], "Marked as in-progress")
        return task

    def complete_task(
        self,
        task_id: str,
        commits: Optional[List[str]] = None,
        files_created: Optional[List[str]] = None,
        tests_pass: Optional[bool] = None,
        ac_verified: Optional[List[str]] = None,
    ) -> Task:
        """Mark a task completed and unblock dependents that are now free."""
        fields: Dict[str, Any] = {"status": TaskStatus.COMPLETED, "completed_at": self._now()}
        if commits:
            fields["commits"] = commits
        if files_created:
            fields["files"] = {"create": files_created}
        validation = {k: v for k, v in (("tests_pass", tests_pass), ("ac_verified", ac_verified)) if v is not None}
        if validation:
            fields["validation"] = validation
        update = TaskUpdate.model_validate(fields)

        with self.writer.transaction() as vtm:
            by_id = vtm.task_index()
            if task_id not in by_id:
                raise TaskNotFoundError(task_id)

            completed = apply_update(by_id[task_id], update)
            vtm.tasks = [completed if t.id == task_id else t for t in vtm.tasks]
            unblocked = _unblock_ready_tasks(vtm)

        for task in unblocked:
            logger.info(f"🔓 Unblocked task: {task.title} ({task.id})")
        logger.info(f"✅ Completed task: {completed.title} ({task_id})")

        description = "Marked as completed"
        if unblocked:
            description += f", unblocked {', '.join(t.id for t in unblocked)}"
        self.history.record_update([task_id] + [t.id for t in unblocked], description)
        return completed

    def rollback(self, transaction_id: str, force: bool = False, dry_run: bool = False) -> RollbackResult:
        return self.history.rollback(transaction_id, force=force, dry_run=dry_run)

    # ========================================
    # REPORTING
    # ========================================

    def get_status_report(self) -> str:
        """Human-readable status report"""
        vtm = self.reader.load()
        stats = vtm.stats
        pct = int(stats.completed / stats.total_tasks * 100) if stats.total_tasks else 0

        lines = [
            f"📋 {vtm.project.name}",
            f"Progress: {'█' * (pct // 10)}{'░' * (10 - pct // 10)} {pct}%",
            "",
            "Tasks:",
        ]

        status_icons = {
            TaskStatus.PENDING: "⬜",
            TaskStatus.IN_PROGRESS: "🔵",
            TaskStatus.BLOCKED: "🟡",
            TaskStatus.COMPLETED: "✅",
        }

        by_id = vtm.task_index()
        for task in vtm.tasks:
            icon = status_icons.get(task.status, "❓")
            blocking = get_blocking_dependencies(task, by_id) if task.status != TaskStatus.COMPLETED else []
            deps = f" (waiting on: {', '.join(blocking)})" if blocking else ""
            lines.append(f"  {icon} [{task.id}] {task.title}{deps}")

        return "\n".join(lines)


def _unblock_ready_tasks(vtm: VTM) -> List[Task]:
    """Move blocked tasks whose dependencies are all complete back to pending."""
    by_id = vtm.task_index()
    unblocked = []
    for index, task in enumerate(vtm.tasks):
        if task.status == TaskStatus.BLOCKED and not get_blocking_dependencies(task, by_id):
            vtm.tasks[index] = task.model_copy(update={"status": TaskStatus.PENDING})
            unblocked.append(vtm.tasks[index])
    return unblocked
