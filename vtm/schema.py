"""
VTM - Task Schema Definition
============================
Entity models for the task manifest: tasks, stats, history entries and the
manifest document itself. The manifest file is the single source of truth;
these models only describe its shape.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr


MANIFEST_VERSION = "1.0"
TASK_ID_PATTERN = re.compile(r"^TASK-(\d+)$")


class TaskStatus(str, Enum):
    """Task lifecycle states"""
    PENDING = "pending"           # Not started
    IN_PROGRESS = "in-progress"   # Currently executing
    COMPLETED = "completed"       # Successfully finished
    BLOCKED = "blocked"           # Waiting on dependencies


class TestStrategy(str, Enum):
    """How a task is expected to be verified"""
    TDD = "TDD"
    UNIT = "Unit"
    INTEGRATION = "Integration"
    DIRECT = "Direct"


class RiskLevel(str, Enum):
    """Task risk levels"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class HistoryAction(str, Enum):
    """Kinds of recorded transactions"""
    INGEST = "ingest"   # New tasks appended
    UPDATE = "update"   # Existing tasks modified
    DELETE = "delete"   # Tasks removed by rollback


class TaskFiles(BaseModel):
    """Files a task creates, modifies or deletes"""
    create: List[str] = Field(default_factory=list)
    modify: List[str] = Field(default_factory=list)
    delete: List[str] = Field(default_factory=list)


class TaskValidation(BaseModel):
    """Verification results recorded against a task"""
    tests_pass: bool = False
    ac_verified: List[str] = Field(default_factory=list)


class SourceContext(BaseModel):
    """Traceability back to the documents a task was derived from"""
    model_config = ConfigDict(extra="allow")

    adr_excerpt: Optional[str] = None
    rationale: Optional[str] = None
    line_range: Optional[List[int]] = None     # [start, end] in the source doc
    code_examples: List[str] = Field(default_factory=list)


class Task(BaseModel):
    """A persisted work item. Dependencies are always resolved task IDs."""
    model_config = ConfigDict(extra="allow")

    id: str
    title: str
    description: str = ""
    acceptance_criteria: List[str] = Field(default_factory=list)

    # Dependency graph edges
    dependencies: List[str] = Field(default_factory=list)  # Task IDs this needs
    blocks: List[str] = Field(default_factory=list)        # Task IDs this blocks

    status: TaskStatus = TaskStatus.PENDING
    test_strategy: TestStrategy = TestStrategy.TDD
    test_strategy_rationale: str = ""
    estimated_hours: float = 0
    risk: RiskLevel = RiskLevel.MEDIUM

    files: TaskFiles = Field(default_factory=TaskFiles)
    validation: TaskValidation = Field(default_factory=TaskValidation)

    # Source references
    adr_source: str = ""
    spec_source: str = ""

    # Execution tracking
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    commits: List[str] = Field(default_factory=list)

    type: Optional[str] = None                 # e.g. "feature", "fix"
    context: Optional[SourceContext] = None


class TaskInput(BaseModel):
    """
    A proposed task as submitted for ingestion.

    Dependencies may reference an existing task by ID (str) or another task
    in the same batch by position (int). Integer references never reach disk.
    """
    model_config = ConfigDict(extra="allow")

    id: Optional[StrictStr] = None
    title: StrictStr = Field(min_length=1)
    description: StrictStr = ""
    acceptance_criteria: List[StrictStr] = Field(default_factory=list)
    dependencies: List[Union[StrictInt, StrictStr]] = Field(default_factory=list)
    # Any supplied `blocks` is discarded; it is derived from dependencies

    status: TaskStatus = TaskStatus.PENDING
    test_strategy: TestStrategy = TestStrategy.TDD
    test_strategy_rationale: StrictStr = ""
    estimated_hours: float = Field(default=0, ge=0)
    risk: RiskLevel = RiskLevel.MEDIUM

    files: TaskFiles = Field(default_factory=TaskFiles)
    validation: TaskValidation = Field(default_factory=TaskValidation)
    adr_source: StrictStr = ""
    spec_source: StrictStr = ""
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    commits: List[StrictStr] = Field(default_factory=list)
    type: Optional[str] = None
    context: Optional[SourceContext] = None


class VTMStats(BaseModel):
    """Aggregate counts, always derived from the task list"""
    total_tasks: int = 0
    completed: int = 0
    in_progress: int = 0
    pending: int = 0
    blocked: int = 0


class Project(BaseModel):
    name: str
    description: str = ""


class HistoryEntry(BaseModel):
    """One recorded transaction. Never modified once written."""
    id: str                                   # YYYY-MM-DD-NNN
    action: HistoryAction
    timestamp: datetime
    source: str
    description: Optional[str] = None
    tasks_added: Optional[List[str]] = None
    tasks_removed: Optional[List[str]] = None
    tasks_updated: Optional[List[str]] = None
    files: Optional[Dict[str, str]] = None     # task ID -> source file
    reverts: Optional[str] = None              # transaction undone by a delete
    metadata: Optional[Dict[str, Any]] = None


class VTM(BaseModel):
    """The complete manifest document"""
    version: str = MANIFEST_VERSION
    project: Project
    stats: VTMStats = Field(default_factory=VTMStats)
    tasks: List[Task] = Field(default_factory=list)
    history: Optional[List[HistoryEntry]] = None

    def task_index(self) -> Dict[str, Task]:
        return {task.id: task for task in self.tasks}


def format_task_id(number: int) -> str:
    """Format a task number as a zero-padded ID (TASK-001)."""
    return f"TASK-{number:03d}"


def parse_task_number(task_id: str) -> Optional[int]:
    """Return the numeric suffix of a TASK-NNN id, or None if it doesn't match."""
    match = TASK_ID_PATTERN.match(task_id)
    return int(match.group(1)) if match else None


def is_blocked(task: Task, by_id: Dict[str, Task]) -> bool:
    """
    A task is blocked when it is not completed and either carries the
    blocked status or waits on at least one incomplete dependency.
    """
    if task.status == TaskStatus.COMPLETED:
        return False
    if task.status == TaskStatus.BLOCKED:
        return True
    for dep_id in task.dependencies:
        dep = by_id.get(dep_id)
        if dep is not None and dep.status != TaskStatus.COMPLETED:
            return True
    return False


def compute_stats(tasks: List[Task]) -> VTMStats:
    """Recalculate manifest stats from the task list."""
    by_id = {task.id: task for task in tasks}
    return VTMStats(
        total_tasks=len(tasks),
        completed=sum(1 for t in tasks if t.status == TaskStatus.COMPLETED),
        in_progress=sum(1 for t in tasks if t.status == TaskStatus.IN_PROGRESS),
        pending=sum(1 for t in tasks if t.status == TaskStatus.PENDING),
        blocked=sum(1 for t in tasks if is_blocked(t, by_id)),
    )


def create_manifest(name: str, description: str = "") -> VTM:
    """Create an empty manifest for a project"""
    return VTM(
        project=Project(name=name, description=description),
        stats=VTMStats(),
        tasks=[],
        history=[],
    )
