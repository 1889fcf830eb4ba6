"""
VTM - History Ledger
====================
Transaction history and rollback, stored in the manifest's `history` array.

Every ingest, update and rollback appends one immutable entry with an ID of
the form YYYY-MM-DD-NNN (UTC date, per-day sequence). Keeping history in the
manifest itself means a single atomic rename commits both the task change and
its audit record.

Rollback removes the tasks a transaction added. It refuses when surviving
tasks still depend on them unless forced, and is itself recorded as a
`delete` entry rather than erasing the original one.
"""

import logging
import re
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from .errors import RollbackBlockedError, TransactionNotFoundError, VTMError
from .reader import VTMReader
from .schema import VTM, HistoryAction, HistoryEntry
from .writer import VTMWriter, remove_from

logger = logging.getLogger("vtm.history")

TRANSACTION_ID_PATTERN = re.compile(r"^(\d{4}-\d{2}-\d{2})-(\d+)$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RollbackTask(BaseModel):
    id: str
    title: str


class RollbackDependency(BaseModel):
    task_id: str        # surviving task
    depends_on: str     # task the rollback would remove


class RollbackDetails(BaseModel):
    """What rolling back a transaction would remove, and who depends on it"""
    transaction_id: str
    tasks: List[RollbackTask] = Field(default_factory=list)
    dependencies: List[RollbackDependency] = Field(default_factory=list)

    @property
    def dependent_task_ids(self) -> List[str]:
        seen: List[str] = []
        for dep in self.dependencies:
            if dep.task_id not in seen:
                seen.append(dep.task_id)
        return seen


class RollbackResult(BaseModel):
    details: RollbackDetails
    dry_run: bool = False
    rollback_id: Optional[str] = None        # ID of the recorded delete entry
    removed: List[str] = Field(default_factory=list)


class HistoryStats(BaseModel):
    total_entries: int = 0
    oldest_entry: Optional[datetime] = None
    newest_entry: Optional[datetime] = None
    action_breakdown: Dict[str, int] = Field(default_factory=dict)


class VTMHistory:
    """Records transactions and performs dependency-safe rollback."""

    def __init__(
        self,
        vtm_path: Union[str, Path] = "vtm.json",
        writer: Optional[VTMWriter] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.writer = writer or VTMWriter(vtm_path)
        self.reader: VTMReader = self.writer.reader
        self.clock = clock
        self._counter: Dict[str, int] = {}

    # ========================================
    # TRANSACTION IDS
    # ========================================

    def _sync_counter(self, vtm: VTM) -> None:
        """Re-seed the per-day counter from what is persisted."""
        self._counter = {}
        for entry in vtm.history or []:
            match = TRANSACTION_ID_PATTERN.match(entry.id)
            if not match:
                continue
            date_str, seq = match.group(1), int(match.group(2))
            if seq > self._counter.get(date_str, 0):
                self._counter[date_str] = seq

    def _generate_transaction_id(self, now: datetime) -> str:
        date_str = now.astimezone(timezone.utc).strftime("%Y-%m-%d")
        next_count = self._counter.get(date_str, 0) + 1
        self._counter[date_str] = next_count
        return f"{date_str}-{next_count:03d}"

    def _load(self, force: bool = False) -> VTM:
        vtm = self.reader.load(force=force)
        self._sync_counter(vtm)
        return vtm

    def _append_entry(self, vtm: VTM, **fields) -> HistoryEntry:
        self._sync_counter(vtm)
        now = self.clock()
        entry = HistoryEntry(id=self._generate_transaction_id(now), timestamp=now, **fields)
        if vtm.history is None:
            vtm.history = []
        vtm.history.append(entry)
        return entry

    # ========================================
    # RECORDING
    # ========================================

    def record_ingest(
        self,
        task_ids: List[str],
        source: str,
        files: Optional[Dict[str, str]] = None,
    ) -> str:
        """
        Record that tasks were added to the manifest.

        Args:
            task_ids: IDs of the tasks appended, e.g. ["TASK-001", "TASK-002"]
            source: Where they came from, e.g. "adr/ADR-001.md"
            files: Optional task ID -> source file mapping for traceability

        Returns:
            The transaction ID, usable with get_entry() and rollback()
        """
        with self.writer.transaction() as vtm:
            entry = self._append_entry(
                vtm,
                action=HistoryAction.INGEST,
                source=source,
                tasks_added=list(task_ids),
                files=files,
            )
        logger.info(f"📝 Recorded ingest {entry.id}: {len(task_ids)} task(s) from {source}")
        return entry.id

    def record_update(self, task_ids: List[str], description: str, source: str = "manual") -> str:
        """Record a modification of existing tasks."""
        with self.writer.transaction() as vtm:
            entry = self._append_entry(
                vtm,
                action=HistoryAction.UPDATE,
                source=source,
                description=description,
                tasks_updated=list(task_ids),
            )
        logger.info(f"📝 Recorded update {entry.id}: {description}")
        return entry.id

    # ========================================
    # QUERIES
    # ========================================

    def get_history(self, limit: Optional[int] = None) -> List[HistoryEntry]:
        """History entries, newest first. Ties on timestamp are broken by ID."""
        vtm = self._load()
        entries = sorted(vtm.history or [], key=lambda e: (e.timestamp, e.id), reverse=True)
        if limit is not None:
            return entries[:limit]
        return entries

    def get_entry(self, transaction_id: str) -> Optional[HistoryEntry]:
        vtm = self._load()
        return _find_entry(vtm, transaction_id)

    def search(self, query: str) -> List[HistoryEntry]:
        """Entries whose source contains `query`, newest first."""
        return [entry for entry in self.get_history() if query in entry.source]

    def get_stats(self) -> HistoryStats:
        entries = self._load().history or []
        if not entries:
            return HistoryStats()

        timestamps = [e.timestamp for e in entries]
        return HistoryStats(
            total_entries=len(entries),
            oldest_entry=min(timestamps),
            newest_entry=max(timestamps),
            action_breakdown=dict(Counter(e.action.value for e in entries)),
        )

    def get_rollback_details(self, transaction_id: str) -> RollbackDetails:
        """
        Work out which tasks a rollback would remove and which surviving
        tasks depend on them.

        Raises:
            TransactionNotFoundError: unknown ID, or a transaction that added no tasks
        """
        return _rollback_details(self._load(force=True), transaction_id)

    # ========================================
    # ROLLBACK
    # ========================================

    def rollback(self, transaction_id: str, force: bool = False, dry_run: bool = False) -> RollbackResult:
        """
        Remove every task added by a transaction and record the rollback.

        Args:
            transaction_id: Ingest transaction to reverse
            force: Remove the tasks even if surviving tasks depend on them
            dry_run: Run all checks and compute details without changing anything

        Raises:
            TransactionNotFoundError: unknown transaction, or one that added no tasks
            RollbackBlockedError: dependents exist and force is not set
            VTMError: the transaction was already rolled back
        """
        if dry_run:
            vtm = self._load(force=True)
            details = _check_rollback(vtm, transaction_id, force)
            logger.info(f"🔍 Dry run rollback of {transaction_id}: {len(details.tasks)} task(s) would be removed")
            return RollbackResult(details=details, dry_run=True)

        with self.writer.transaction() as vtm:
            details = _check_rollback(vtm, transaction_id, force)
            entry = _find_entry(vtm, transaction_id)
            removed = remove_from(vtm, entry.tasks_added)
            rollback_entry = self._append_entry(
                vtm,
                action=HistoryAction.DELETE,
                source="rollback",
                description=f"Rolled back transaction {transaction_id}",
                tasks_removed=list(entry.tasks_added),
                reverts=transaction_id,
            )

        if force and details.dependencies:
            logger.warning(
                f"⚠️ Forced rollback of {transaction_id} left {len(details.dependent_task_ids)} "
                f"task(s) with dangling dependencies: {', '.join(details.dependent_task_ids)}"
            )
        logger.info(f"⏪ Rolled back {transaction_id} as {rollback_entry.id}: removed {len(removed)} task(s)")
        return RollbackResult(details=details, rollback_id=rollback_entry.id, removed=removed)


def _find_entry(vtm: VTM, transaction_id: str) -> Optional[HistoryEntry]:
    for entry in vtm.history or []:
        if entry.id == transaction_id:
            return entry
    return None


def _rollback_details(vtm: VTM, transaction_id: str) -> RollbackDetails:
    entry = _find_entry(vtm, transaction_id)
    if entry is None:
        raise TransactionNotFoundError(transaction_id)
    if not entry.tasks_added:
        raise TransactionNotFoundError(
            transaction_id, f"Transaction {transaction_id} did not add any tasks to roll back"
        )

    doomed = set(entry.tasks_added)
    tasks = [RollbackTask(id=t.id, title=t.title) for t in vtm.tasks if t.id in doomed]
    dependencies = [
        RollbackDependency(task_id=t.id, depends_on=dep)
        for t in vtm.tasks
        if t.id not in doomed
        for dep in t.dependencies
        if dep in doomed
    ]
    return RollbackDetails(transaction_id=transaction_id, tasks=tasks, dependencies=dependencies)


def _check_rollback(vtm: VTM, transaction_id: str, force: bool) -> RollbackDetails:
    details = _rollback_details(vtm, transaction_id)

    for entry in vtm.history or []:
        if entry.action == HistoryAction.DELETE and entry.reverts == transaction_id:
            raise VTMError(f"Transaction {transaction_id} was already rolled back by {entry.id}")

    if details.dependencies and not force:
        raise RollbackBlockedError(transaction_id, details.dependent_task_ids)
    return details
