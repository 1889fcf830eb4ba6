"""
VTM - Manifest Writer
=====================
Applies mutations to the manifest and persists them atomically.

Every mutation runs inside `transaction()`:
    lock -> force-reload -> mutate -> recompute stats -> write .tmp -> rename

A crash before the rename leaves the previous manifest untouched; a crash
after it leaves the new one complete. The advisory lock held across the whole
span stops a second cooperating process from clobbering the change with its
own rename (see vtm.locking).
"""

import json
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .errors import DuplicateTaskError, ManifestExistsError, TaskNotFoundError
from .locking import manifest_lock
from .reader import VTMReader
from .schema import VTM, RiskLevel, Task, TaskStatus, TestStrategy, compute_stats, create_manifest

logger = logging.getLogger("vtm.writer")


class FilesUpdate(BaseModel):
    """File paths to add to a task's records. Existing entries are kept."""
    create: List[str] = Field(default_factory=list, validation_alias=AliasChoices("create", "created"))
    modify: List[str] = Field(default_factory=list, validation_alias=AliasChoices("modify", "modified"))
    delete: List[str] = Field(default_factory=list, validation_alias=AliasChoices("delete", "deleted"))


class ValidationUpdate(BaseModel):
    tests_pass: Optional[bool] = None
    ac_verified: Optional[List[str]] = None


class TaskUpdate(BaseModel):
    """
    A partial task update.

    Scalars replace the stored value. `files` and `commits` are appended,
    `validation` keys are merged. Dependencies can't be changed after
    ingestion, which is what keeps the graph acyclic.
    """
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    acceptance_criteria: Optional[List[str]] = None
    test_strategy: Optional[TestStrategy] = None
    test_strategy_rationale: Optional[str] = None
    estimated_hours: Optional[float] = None
    risk: Optional[RiskLevel] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    commits: Optional[List[str]] = None
    files: Optional[FilesUpdate] = None
    validation: Optional[ValidationUpdate] = None
    type: Optional[str] = None


def atomic_write_json(path: Path, data: Any) -> None:
    """Write JSON to `<path>.tmp`, fsync, then rename over `path`."""
    tmp_path = path.with_name(path.name + ".tmp")
    content = json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if tmp_path.exists():
            tmp_path.unlink()
        raise


def _append_unique(existing: List[str], additions: List[str]) -> List[str]:
    merged = list(existing)
    for item in additions:
        if item not in merged:
            merged.append(item)
    return merged


def apply_update(task: Task, update: TaskUpdate) -> Task:
    """Return a copy of `task` with `update` merged in."""
    changes: Dict[str, Any] = update.model_dump(
        exclude_unset=True, exclude_none=True, exclude={"files", "validation", "commits"}
    )

    if update.files is not None:
        changes["files"] = task.files.model_copy(update={
            "create": _append_unique(task.files.create, update.files.create),
            "modify": _append_unique(task.files.modify, update.files.modify),
            "delete": _append_unique(task.files.delete, update.files.delete),
        })

    if update.validation is not None:
        changes["validation"] = task.validation.model_copy(
            update=update.validation.model_dump(exclude_none=True)
        )

    if update.commits is not None:
        changes["commits"] = _append_unique(task.commits, update.commits)

    return task.model_copy(update=changes)


class VTMWriter:
    """Mutates the manifest file with atomic, lock-protected writes."""

    def __init__(
        self,
        vtm_path: Union[str, Path] = "vtm.json",
        reader: Optional[VTMReader] = None,
        lock_timeout: float = 10.0,
    ):
        self.reader = reader or VTMReader(vtm_path)
        self.vtm_path = self.reader.vtm_path
        self.lock_timeout = lock_timeout

    # ========================================
    # PERSISTENCE
    # ========================================

    def save(self, vtm: VTM) -> None:
        """Recompute stats and write the manifest atomically."""
        vtm.stats = compute_stats(vtm.tasks)
        atomic_write_json(self.vtm_path, vtm.model_dump(mode="json", exclude_none=True))
        self.reader.invalidate()
        logger.debug(f"Saved manifest {self.vtm_path} ({vtm.stats.total_tasks} tasks)")

    @contextmanager
    def transaction(self) -> Iterator[VTM]:
        """
        Yield a freshly loaded manifest to mutate, then save it.

        Nothing is written if the body raises, and on any failure the reader
        cache is dropped.
        """
        with manifest_lock(self.vtm_path, timeout=self.lock_timeout):
            vtm = self.reader.load(force=True)
            try:
                yield vtm
                self.save(vtm)
            except BaseException:
                self.reader.invalidate()
                raise

    def init(self, name: str, description: str = "", force: bool = False) -> VTM:
        """Create an empty manifest."""
        with manifest_lock(self.vtm_path, timeout=self.lock_timeout):
            if self.vtm_path.exists() and not force:
                raise ManifestExistsError(self.vtm_path)
            self.vtm_path.parent.mkdir(parents=True, exist_ok=True)
            vtm = create_manifest(name, description)
            self.save(vtm)
        logger.info(f"✅ Initialised VTM for {name} at {self.vtm_path}")
        return vtm

    # ========================================
    # TASK OPERATIONS
    # ========================================

    def update_task(self, task_id: str, updates: Union[TaskUpdate, Dict[str, Any]]) -> Task:
        """
        Apply a partial update to one task.

        Raises:
            TaskNotFoundError: if no task has this ID
            pydantic.ValidationError: if `updates` is malformed
        """
        update = updates if isinstance(updates, TaskUpdate) else TaskUpdate.model_validate(updates)

        with self.transaction() as vtm:
            for index, task in enumerate(vtm.tasks):
                if task.id == task_id:
                    break
            else:
                raise TaskNotFoundError(task_id)

            updated = apply_update(task, update)
            vtm.tasks[index] = updated

        logger.info(f"Updated task {task_id}: {', '.join(sorted(update.model_fields_set)) or 'no changes'}")
        return updated

    def append_tasks(self, new_tasks: List[Task]) -> None:
        """
        Append validated tasks to the manifest.

        Raises:
            DuplicateTaskError: if any ID is already present
        """
        with self.transaction() as vtm:
            existing = {t.id for t in vtm.tasks}
            seen = set()
            duplicates = []
            for task in new_tasks:
                if task.id in existing or task.id in seen:
                    duplicates.append(task.id)
                seen.add(task.id)
            if duplicates:
                raise DuplicateTaskError(duplicates)

            vtm.tasks.extend(new_tasks)

        logger.info(f"➕ Appended {len(new_tasks)} task(s) to {self.vtm_path.name}")


def remove_from(vtm: VTM, task_ids: List[str]) -> List[str]:
    """Filter tasks out of a loaded manifest in place."""
    doomed = set(task_ids)
    removed = [t.id for t in vtm.tasks if t.id in doomed]
    vtm.tasks = [t for t in vtm.tasks if t.id not in doomed]
    return removed
