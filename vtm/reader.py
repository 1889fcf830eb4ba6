"""
VTM - Manifest Reader
=====================
Loads the manifest and answers graph queries over it. Parsed manifests are
cached against the file's stat signature so repeated queries in one process
don't re-parse the JSON.
"""

import json
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ValidationError

from .errors import ManifestNotFoundError, ManifestParseError, TaskNotFoundError
from .schema import VTM, Task, TaskStatus, is_blocked

logger = logging.getLogger("vtm.reader")


class TaskWithDependencies(BaseModel):
    """A task with its upstream dependencies and the pending tasks it blocks"""
    task: Task
    dependencies: List[Task]
    blocked_tasks: List[Task]


def read_manifest(path: Path) -> VTM:
    """Read and validate a manifest file, bypassing any cache."""
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ManifestNotFoundError(path) from None

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ManifestParseError(path, str(e)) from e

    try:
        return VTM.model_validate(data)
    except ValidationError as e:
        raise ManifestParseError(path, str(e)) from e


class VTMReader:
    """
    Cached, change-aware view of a manifest file.

    The cache is a read optimisation only. Anything that writes the manifest
    must call load(force=True) first.
    """

    def __init__(self, vtm_path: Union[str, Path] = "vtm.json"):
        self.vtm_path = Path(vtm_path).resolve()
        self._vtm: Optional[VTM] = None
        self._signature: Optional[Tuple[int, int, int]] = None

    def _stat_signature(self) -> Tuple[int, int, int]:
        try:
            st = os.stat(self.vtm_path)
        except FileNotFoundError:
            raise ManifestNotFoundError(self.vtm_path) from None
        # An atomic replace always lands a new inode, so this catches
        # rewrites inside the filesystem's mtime granularity.
        return (st.st_mtime_ns, st.st_size, st.st_ino)

    def load(self, force: bool = False) -> VTM:
        """Load the manifest, returning the cached copy if the file is unchanged."""
        signature = self._stat_signature()
        if not force and self._vtm is not None and signature == self._signature:
            logger.debug(f"Using cached manifest {self.vtm_path}")
            return self._vtm

        self._vtm = read_manifest(self.vtm_path)
        self._signature = signature
        logger.debug(f"Loaded manifest {self.vtm_path} ({len(self._vtm.tasks)} tasks)")
        return self._vtm

    def invalidate(self) -> None:
        self._vtm = None
        self._signature = None

    # ========================================
    # QUERIES
    # ========================================

    def get_task(self, task_id: str) -> Optional[Task]:
        vtm = self.load()
        for task in vtm.tasks:
            if task.id == task_id:
                return task
        return None

    def get_ready_tasks(self) -> List[Task]:
        """Pending tasks whose dependencies are all completed."""
        vtm = self.load()
        completed = {t.id for t in vtm.tasks if t.status == TaskStatus.COMPLETED}
        return [
            task for task in vtm.tasks
            if task.status == TaskStatus.PENDING
            and all(dep in completed for dep in task.dependencies)
        ]

    def get_task_with_dependencies(self, task_id: str) -> TaskWithDependencies:
        """
        Resolve a task's upstream and downstream edges.

        Unresolvable dependency IDs are dropped. Downstream tasks are those
        still pending that list this task as a dependency.

        Raises:
            TaskNotFoundError: if no task has this ID
        """
        vtm = self.load()
        by_id = vtm.task_index()
        task = by_id.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)

        dependencies = [by_id[dep] for dep in task.dependencies if dep in by_id]
        blocked_tasks = [
            t for t in vtm.tasks
            if task_id in t.dependencies and t.status == TaskStatus.PENDING
        ]
        return TaskWithDependencies(task=task, dependencies=dependencies, blocked_tasks=blocked_tasks)

    def get_blocked_tasks(self) -> List[Task]:
        vtm = self.load()
        by_id = vtm.task_index()
        return [t for t in vtm.tasks if is_blocked(t, by_id)]

    def get_in_progress_tasks(self) -> List[Task]:
        vtm = self.load()
        return [t for t in vtm.tasks if t.status == TaskStatus.IN_PROGRESS]

    def get_stats_by_adr(self) -> Dict[str, Dict[str, int]]:
        """Total and completed task counts grouped by ADR source."""
        vtm = self.load()
        stats: Dict[str, Dict[str, int]] = {}
        for task in vtm.tasks:
            adr_stats = stats.setdefault(task.adr_source, {"total": 0, "completed": 0})
            adr_stats["total"] += 1
            if task.status == TaskStatus.COMPLETED:
                adr_stats["completed"] += 1
        return stats

    def list_tasks(
        self,
        status: Optional[Union[TaskStatus, str]] = None,
        adr: Optional[str] = None,
    ) -> List[Task]:
        """List tasks, optionally filtered by status and ADR source substring."""
        tasks = self.load().tasks
        if status is not None:
            wanted = TaskStatus(status)
            tasks = [t for t in tasks if t.status == wanted]
        if adr:
            tasks = [t for t in tasks if adr in t.adr_source]
        return list(tasks)
