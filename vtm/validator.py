"""
VTM - Ingestion Validator
=========================
Turns a batch of proposed tasks into fully resolved Task objects, or a list
of everything wrong with the batch.

Pipeline:
    1. schema      - required fields, types, enum values, supplied IDs
    2. IDs         - sequential TASK-NNN after the highest existing number
    3. resolution  - batch indices and task IDs become concrete dependency IDs
    4. cycles      - DFS over the batch plus all incomplete existing tasks

Schema errors stop the pipeline; dependency and cycle errors are collected
together. Nothing here raises for bad input.
"""

import json
import logging
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Sequence, Set, Tuple, Union

from pydantic import BaseModel, Field, ValidationError

from .reader import VTMReader
from .schema import Task, TaskInput, TaskStatus, format_task_id, parse_task_number

logger = logging.getLogger("vtm.validator")


class SchemaError(BaseModel):
    type: Literal["schema"] = "schema"
    task_index: Optional[int] = None     # None for batch-level problems
    field: str
    message: str


class DependencyError(BaseModel):
    type: Literal["dependency"] = "dependency"
    task_id: str
    dependency_id: str
    message: str


class CircularDependencyError(BaseModel):
    type: Literal["circular"] = "circular"
    cycle: List[str]
    message: str


ValidationIssue = Annotated[
    Union[SchemaError, DependencyError, CircularDependencyError],
    Field(discriminator="type"),
]


class ValidationResult(BaseModel):
    valid: bool
    errors: List[ValidationIssue] = Field(default_factory=list)
    tasks: List[Task] = Field(default_factory=list)
    next_available_id: Optional[int] = None


# ============================================================
# PIPELINE STAGES
# ============================================================

def check_schema(
    batch: Sequence[Any],
    existing_ids: Set[str],
) -> Tuple[List[TaskInput], List[SchemaError]]:
    """Parse every raw task, collecting all schema errors rather than the first."""
    errors: List[SchemaError] = []
    parsed: List[TaskInput] = []

    if len(batch) == 0:
        errors.append(SchemaError(field="tasks", message="Task list cannot be empty"))
        return parsed, errors

    supplied: Set[str] = set()
    for index, raw in enumerate(batch):
        try:
            task = raw if isinstance(raw, TaskInput) else TaskInput.model_validate(raw)
        except ValidationError as e:
            for err in e.errors():
                loc = err["loc"]
                field = str(loc[0]) if loc else "(root)"
                message = err["msg"]
                if len(loc) > 1:
                    message = f"{message} (at {'.'.join(str(p) for p in loc)})"
                errors.append(SchemaError(task_index=index, field=field, message=message))
            continue

        if task.id is not None:
            if parse_task_number(task.id) is None:
                errors.append(SchemaError(
                    task_index=index, field="id",
                    message=f"Invalid task id '{task.id}'. Expected format TASK-NNN",
                ))
            elif task.id in existing_ids:
                errors.append(SchemaError(
                    task_index=index, field="id",
                    message=f"Task id '{task.id}' already exists in the VTM",
                ))
            elif task.id in supplied:
                errors.append(SchemaError(
                    task_index=index, field="id",
                    message=f"Task id '{task.id}' is used more than once in this batch",
                ))
            supplied.add(task.id)

        parsed.append(task)

    return parsed, errors


def assign_task_ids(inputs: List[TaskInput], existing_tasks: List[Task]) -> Tuple[List[str], int]:
    """
    Give every task without an ID the next sequential TASK-NNN.

    Numbering continues after the highest number among existing tasks and
    IDs the batch supplies itself. Returns the IDs in batch order and the
    next number still available.
    """
    numbers = [parse_task_number(t.id) for t in existing_tasks]
    numbers += [parse_task_number(t.id) for t in inputs if t.id]
    next_number = max((n for n in numbers if n is not None), default=0) + 1

    ids: List[str] = []
    for task in inputs:
        if task.id:
            ids.append(task.id)
        else:
            ids.append(format_task_id(next_number))
            next_number += 1
    return ids, next_number


def resolve_dependencies(
    inputs: List[TaskInput],
    ids: List[str],
    existing_tasks: List[Task],
) -> Tuple[List[List[str]], List[DependencyError]]:
    """
    Resolve each dependency reference to a task ID.

    Integers index into the batch. Strings must name a batch task or an
    existing task that is not yet completed; dependencies describe remaining
    work, so pointing at a completed task is an error.
    """
    errors: List[DependencyError] = []
    resolved: List[List[str]] = []

    batch_ids = set(ids)
    completed_ids = {t.id for t in existing_tasks if t.status == TaskStatus.COMPLETED}
    incomplete_ids = {t.id for t in existing_tasks if t.status != TaskStatus.COMPLETED}

    for task, task_id in zip(inputs, ids):
        deps: List[str] = []
        for dep in task.dependencies:
            if isinstance(dep, int):
                if dep < 0 or dep >= len(ids):
                    errors.append(DependencyError(
                        task_id=task_id, dependency_id=str(dep),
                        message=f"Dependency index {dep} out of bounds (batch has {len(ids)} tasks)",
                    ))
                    continue
                dep_id = ids[dep]
            elif dep in batch_ids or dep in incomplete_ids:
                dep_id = dep
            elif dep in completed_ids:
                errors.append(DependencyError(
                    task_id=task_id, dependency_id=dep,
                    message=f"Dependency {dep} is already completed. Tasks should only depend on incomplete tasks.",
                ))
                continue
            else:
                errors.append(DependencyError(
                    task_id=task_id, dependency_id=dep,
                    message=f"Dependency {dep} does not exist in the VTM or the current batch",
                ))
                continue

            if dep_id not in deps:
                deps.append(dep_id)
        resolved.append(deps)

    return resolved, errors


WHITE, GRAY, BLACK = 0, 1, 2


def find_cycles(graph: Dict[str, List[str]]) -> List[List[str]]:
    """
    Three-colour DFS returning every cycle closed by a back edge.

    Each cycle is reported as a path that starts and ends on the same node,
    e.g. ["TASK-001", "TASK-002", "TASK-001"]. Edges to nodes outside the
    graph are ignored. Iterative, so long chains can't hit the recursion limit.
    """
    color = {node: WHITE for node in graph}
    cycles: List[List[str]] = []

    for root in graph:
        if color[root] != WHITE:
            continue
        color[root] = GRAY
        path = [root]
        stack = [iter(graph[root])]

        while stack:
            dep = next(stack[-1], None)
            if dep is None:
                color[path.pop()] = BLACK
                stack.pop()
                continue

            state = color.get(dep)
            if state == GRAY:
                cycles.append(path[path.index(dep):] + [dep])
            elif state == WHITE:
                color[dep] = GRAY
                path.append(dep)
                stack.append(iter(graph[dep]))

    return cycles


def detect_circular_dependencies(
    ids: List[str],
    resolved: List[List[str]],
    existing_tasks: List[Task],
) -> List[CircularDependencyError]:
    graph: Dict[str, List[str]] = {
        t.id: list(t.dependencies) for t in existing_tasks if t.status != TaskStatus.COMPLETED
    }
    for task_id, deps in zip(ids, resolved):
        graph[task_id] = deps

    return [
        CircularDependencyError(
            cycle=cycle,
            message=f"Circular dependency detected: {' -> '.join(cycle)}",
        )
        for cycle in find_cycles(graph)
    ]


def build_tasks(inputs: List[TaskInput], ids: List[str], resolved: List[List[str]]) -> List[Task]:
    """Materialise persisted tasks, recording batch-internal `blocks` edges."""
    tasks = []
    for task, task_id, deps in zip(inputs, ids, resolved):
        data = task.model_dump(exclude={"id", "dependencies", "blocks"})
        tasks.append(Task(**data, id=task_id, dependencies=deps))

    by_id = {t.id: t for t in tasks}
    for task in tasks:
        for dep_id in task.dependencies:
            upstream = by_id.get(dep_id)
            if upstream is not None and task.id not in upstream.blocks:
                upstream.blocks.append(task.id)
    return tasks


def validate_batch(batch: Sequence[Any], existing_tasks: List[Task]) -> ValidationResult:
    """Run the full pipeline against an explicit set of existing tasks."""
    existing_ids = {t.id for t in existing_tasks}

    inputs, schema_errors = check_schema(batch, existing_ids)
    if schema_errors:
        return ValidationResult(valid=False, errors=schema_errors)

    ids, next_number = assign_task_ids(inputs, existing_tasks)
    resolved, dep_errors = resolve_dependencies(inputs, ids, existing_tasks)
    circular_errors = detect_circular_dependencies(ids, resolved, existing_tasks)

    errors: List[Union[DependencyError, CircularDependencyError]] = [*dep_errors, *circular_errors]
    if errors:
        return ValidationResult(valid=False, errors=errors)

    return ValidationResult(
        valid=True,
        tasks=build_tasks(inputs, ids, resolved),
        next_available_id=next_number,
    )


class TaskValidator:
    """Validates ingestion batches against the current manifest."""

    def __init__(self, vtm_path: Union[str, Path] = "vtm.json", reader: Optional[VTMReader] = None):
        self.reader = reader or VTMReader(vtm_path)

    def validate(self, batch: Sequence[Any]) -> ValidationResult:
        """
        Validate a batch of partial tasks for ingestion.

        The manifest is force-reloaded so IDs and dependency checks reflect
        what is on disk now.

        Raises:
            TypeError: if batch is not a list of tasks
            ManifestNotFoundError / ManifestParseError: environment problems
        """
        if isinstance(batch, (str, bytes, dict)) or not isinstance(batch, Sequence):
            raise TypeError("Tasks data must be a list of tasks")

        existing = self.reader.load(force=True).tasks
        result = validate_batch(batch, existing)

        if result.valid:
            logger.info(f"Validated {len(result.tasks)} task(s): {', '.join(t.id for t in result.tasks)}")
        else:
            logger.info(f"Rejected batch of {len(batch)} task(s) with {len(result.errors)} error(s)")
        return result


def load_tasks_from_file(file_path: Union[str, Path]) -> List[Any]:
    """Load a JSON array of raw tasks from a file."""
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Tasks file not found: {path}")

    try:
        parsed = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in tasks file: {e}") from e

    if not isinstance(parsed, list):
        raise ValueError("Tasks file must be an array of tasks")
    return parsed
