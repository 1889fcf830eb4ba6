"""
VTM - Virtual Task Manifest
===========================

A file-backed dependency graph of work items with atomic writes, a
transaction history and dependency-safe rollback.

Usage:
    from vtm import TaskManager

    manager = TaskManager("vtm.json")
    manager.init("My Project")

    result = manager.ingest([
        {"title": "Add auth", "description": "Login flow"},
        {"title": "Add profiles", "dependencies": [0]},
    ], source="adr/ADR-001.md")

    manager.reader.get_ready_tasks()        # [TASK-001]
    manager.start_task("TASK-001")
    manager.complete_task("TASK-001", tests_pass=True)

    manager.rollback(result.transaction_id, dry_run=True)
"""

from .schema import (
    VTM,
    Task,
    TaskInput,
    TaskStatus,
    TestStrategy,
    RiskLevel,
    HistoryAction,
    HistoryEntry,
    VTMStats,
    compute_stats,
    create_manifest,
)
from .errors import (
    VTMError,
    ManifestNotFoundError,
    ManifestParseError,
    ManifestExistsError,
    TaskNotFoundError,
    TransactionNotFoundError,
    DuplicateTaskError,
    RollbackBlockedError,
    LockTimeout,
)
from .config import VTMConfig, load_config
from .reader import VTMReader, TaskWithDependencies
from .validator import TaskValidator, ValidationResult, load_tasks_from_file
from .writer import VTMWriter, TaskUpdate
from .history import VTMHistory, RollbackDetails, RollbackResult
from .summary import VTMSummarizer
from .session import VTMSession
from .manager import TaskManager, IngestResult

__version__ = "2.0.0"
__all__ = [
    "TaskManager",
    "IngestResult",
    "VTMReader",
    "TaskWithDependencies",
    "TaskValidator",
    "ValidationResult",
    "load_tasks_from_file",
    "VTMWriter",
    "TaskUpdate",
    "VTMHistory",
    "RollbackDetails",
    "RollbackResult",
    "VTMSummarizer",
    "VTMSession",
    "VTMConfig",
    "load_config",
    "VTM",
    "Task",
    "TaskInput",
    "TaskStatus",
    "TestStrategy",
    "RiskLevel",
    "HistoryAction",
    "HistoryEntry",
    "VTMStats",
    "compute_stats",
    "create_manifest",
    "VTMError",
    "ManifestNotFoundError",
    "ManifestParseError",
    "ManifestExistsError",
    "TaskNotFoundError",
    "TransactionNotFoundError",
    "DuplicateTaskError",
    "RollbackBlockedError",
    "LockTimeout",
]
