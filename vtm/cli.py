#!/usr/bin/env python3
"""
VTM - CLI Interface
===================
Command-line tool for the task manifest.

Usage:
    vtm init "My Project"
    vtm ingest tasks.json --source adr/ADR-001.md
    vtm next
    vtm start TASK-001
    vtm complete TASK-001 --tests-pass
    vtm history
    vtm rollback 2026-01-28-001 --dry-run
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from pydantic import ValidationError

from .config import load_config
from .errors import RollbackBlockedError, VTMError
from .manager import TaskManager, get_blocking_dependencies
from .schema import TaskStatus
from .session import VTMSession
from .summary import VTMSummarizer
from .validator import load_tasks_from_file


def _split(value: Optional[str]) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()] if value else []


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vtm",
        description="VTM - dependency-aware task manifest",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  vtm init "My Project"                   Create vtm.json
  vtm ingest tasks.json -s adr/ADR-001.md Validate and add a batch of tasks
  vtm next                                Show tasks ready to start
  vtm task TASK-001 --json                Show a single task
  vtm start TASK-001                      Mark task as in-progress
  vtm complete TASK-001 --tests-pass      Mark task as completed
  vtm stats                               Show project statistics
  vtm history -n 5                        Show recent transactions
  vtm rollback 2026-01-28-001 --dry-run   Preview a rollback
        """
    )
    parser.add_argument("-f", "--file", help="Manifest path (default from .vtmrc or vtm.json)")
    parser.add_argument("--config", default=None, help="Config file (default .vtmrc)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # INIT command
    init_parser = subparsers.add_parser("init", help="Create a new manifest")
    init_parser.add_argument("name", help="Project name")
    init_parser.add_argument("-d", "--description", default="", help="Project description")
    init_parser.add_argument("--force", action="store_true", help="Overwrite an existing manifest")

    # NEXT command
    next_parser = subparsers.add_parser("next", help="Show tasks ready to start")
    next_parser.add_argument("-n", "--number", type=int, default=5, help="Number of tasks to show")

    # TASK command
    task_parser = subparsers.add_parser("task", help="Show a single task")
    task_parser.add_argument("task_id", help="Task ID")
    task_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # CONTEXT command
    context_parser = subparsers.add_parser("context", help="Task with its dependencies and dependents as JSON")
    context_parser.add_argument("task_id", help="Task ID")

    # START command
    start_parser = subparsers.add_parser("start", help="Mark task as in-progress")
    start_parser.add_argument("task_id", help="Task ID to start")

    # COMPLETE command
    complete_parser = subparsers.add_parser("complete", help="Mark task as completed")
    complete_parser.add_argument("task_id", nargs="?", help="Task ID (default: current session task)")
    complete_parser.add_argument("--commits", help="Comma-separated commit SHAs")
    complete_parser.add_argument("--files-created", help="Comma-separated file paths")
    complete_parser.add_argument("--tests-pass", action="store_true", default=None, help="All tests passing")

    # STATS command
    subparsers.add_parser("stats", help="Show project statistics")

    # LIST command
    list_parser = subparsers.add_parser("list", help="List tasks")
    list_parser.add_argument("-s", "--status", choices=[s.value for s in TaskStatus], help="Filter by status")
    list_parser.add_argument("-a", "--adr", help="Filter by ADR source")
    list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # INGEST command
    ingest_parser = subparsers.add_parser("ingest", help="Validate and add a batch of tasks")
    ingest_parser.add_argument("tasks_file", help="JSON file containing an array of tasks")
    ingest_parser.add_argument("-s", "--source", help="Source recorded in history (default: tasks file)")
    ingest_parser.add_argument("--dry-run", action="store_true", help="Validate only")

    # HISTORY command
    history_parser = subparsers.add_parser("history", help="Show transaction history")
    history_parser.add_argument("-n", "--limit", type=int, help="Number of entries to show")
    history_parser.add_argument("--search", help="Only entries whose source contains this text")
    history_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # ROLLBACK command
    rollback_parser = subparsers.add_parser("rollback", help="Remove the tasks added by a transaction")
    rollback_parser.add_argument("transaction_id", help="Transaction ID (YYYY-MM-DD-NNN)")
    rollback_parser.add_argument("--force", action="store_true", help="Rollback even if other tasks depend on it")
    rollback_parser.add_argument("--dry-run", action="store_true", help="Preview without changing anything")

    # SUMMARY command
    subparsers.add_parser("summary", help="Compact JSON summary of remaining work")

    return parser


def _print_validation_errors(errors) -> None:
    print(f"❌ Validation failed with {len(errors)} error(s):")
    for error in errors:
        if error.type == "schema":
            where = f"Task {error.task_index}" if error.task_index is not None else "Batch"
            print(f"   - {where} [{error.field}]: {error.message}")
        elif error.type == "dependency":
            print(f"   - {error.task_id}: {error.message}")
        else:
            print(f"   - {error.message}")


def run(args: argparse.Namespace, manager: TaskManager, session: VTMSession) -> int:
    if args.command == "init":
        vtm = manager.init(args.name, args.description, force=args.force)
        print(f"✅ Created: {manager.vtm_path}")
        print(f"   Project: {vtm.project.name}")

    elif args.command == "next":
        tasks = manager.reader.get_ready_tasks()
        print(f"📋 Ready Tasks ({len(tasks)}):")
        if not tasks:
            print("No tasks ready. Check blocked or in-progress tasks.")
            return 0
        for task in tasks[:args.number]:
            print(f"  {task.id} [{task.estimated_hours:g}h] │ {task.title}")
            print(f"      Risk: {task.risk.value} │ Test: {task.test_strategy.value}")
            print(f"      Deps: {', '.join(task.dependencies) or 'none'}")

    elif args.command == "task":
        task = manager.reader.get_task(args.task_id)
        if not task:
            print(f"❌ Task not found: {args.task_id}")
            return 1
        if args.json:
            print(json.dumps(task.model_dump(mode="json", exclude_none=True), indent=2))
        else:
            print(f"{task.id}: {task.title}")
            print(f"Status: {task.status.value}")
            print(f"Risk: {task.risk.value} | Test: {task.test_strategy.value}")
            print(f"\nDescription: {task.description}")
            print("\nAcceptance Criteria:")
            for i, ac in enumerate(task.acceptance_criteria, 1):
                print(f"  {i}. {ac}")

    elif args.command == "context":
        context = manager.reader.get_task_with_dependencies(args.task_id)
        print(json.dumps(context.model_dump(mode="json", exclude_none=True), indent=2))

    elif args.command == "start":
        task = manager.start_task(args.task_id)
        if task.status == TaskStatus.BLOCKED:
            blocking = get_blocking_dependencies(task, manager.load().task_index())
            print(f"⛔ Task {task.id} is blocked by: {', '.join(blocking)}")
            return 1
        session.set_current_task(task.id)
        print(f"▶️ Started: {task.id} {task.title}")
        print(f"📅 Started at: {task.started_at}")

    elif args.command == "complete":
        task_id = args.task_id or session.get_current_task()
        if not task_id:
            print("❌ No task ID given and no current task in session")
            return 1
        task = manager.complete_task(
            task_id,
            commits=_split(args.commits),
            files_created=_split(args.files_created),
            tests_pass=args.tests_pass,
        )
        if session.get_current_task() == task_id:
            session.clear_current_task()
        stats = manager.load().stats
        print(f"✅ Completed: {task.id} {task.title}")
        print(f"📊 Completed: {stats.completed}/{stats.total_tasks}")
        ready = manager.reader.get_ready_tasks()
        if ready:
            print("🚀 New tasks available:")
            for t in ready[:3]:
                print(f"   {t.id}: {t.title}")

    elif args.command == "stats":
        stats = manager.load().stats
        pct = (stats.completed / stats.total_tasks * 100) if stats.total_tasks else 0.0
        print("📊 Project Statistics")
        print("━" * 40)
        print(f"Total Tasks:      {stats.total_tasks}")
        print(f"Completed:        {stats.completed} ({pct:.1f}%)")
        print(f"In Progress:      {stats.in_progress}")
        print(f"Pending:          {stats.pending}")
        if stats.blocked:
            print(f"Blocked:          {stats.blocked}")

        print("\n📈 Progress by ADR:")
        for adr, adr_stats in manager.reader.get_stats_by_adr().items():
            adr_pct = adr_stats["completed"] / adr_stats["total"] * 100
            bar = "█" * int(adr_pct // 10) + "░" * (10 - int(adr_pct // 10))
            print(f"  {(adr or '(none)'):<30} {bar} {adr_pct:.0f}% ({adr_stats['completed']}/{adr_stats['total']})")

        print(f"\n🎯 Ready to Start:   {len(manager.reader.get_ready_tasks())}")
        for t in manager.reader.get_in_progress_tasks():
            print(f"  🔵 {t.id}: {t.title}")

    elif args.command == "list":
        tasks = manager.reader.list_tasks(status=args.status, adr=args.adr)
        if args.json:
            print(json.dumps([t.model_dump(mode="json", exclude_none=True) for t in tasks], indent=2))
        elif not (args.status or args.adr):
            print(manager.get_status_report())
        else:
            print(f"📋 Tasks ({len(tasks)}):")
            for task in tasks:
                print(f"  [{task.id}] {task.title} ({task.status.value})")

    elif args.command == "ingest":
        batch = load_tasks_from_file(args.tasks_file)
        if args.dry_run:
            result = manager.validator.validate(batch)
            if not result.valid:
                _print_validation_errors(result.errors)
                return 1
            print(f"✅ {len(result.tasks)} task(s) valid:")
            for task in result.tasks:
                print(f"   {task.id}: {task.title} (deps: {', '.join(task.dependencies) or 'none'})")
            return 0

        result = manager.ingest(batch, source=args.source or args.tasks_file)
        if not result.valid:
            _print_validation_errors(result.errors)
            return 1
        print(f"✅ Ingested {len(result.task_ids)} task(s): {', '.join(result.task_ids)}")
        print(f"   Transaction: {result.transaction_id}")

    elif args.command == "history":
        if args.search:
            entries = manager.history.search(args.search)[:args.limit]
        else:
            entries = manager.history.get_history(args.limit)
        if args.json:
            print(json.dumps([e.model_dump(mode="json", exclude_none=True) for e in entries], indent=2))
            return 0
        if not entries:
            print("No history recorded")
            return 0
        for entry in entries:
            affected = entry.tasks_added or entry.tasks_removed or entry.tasks_updated or []
            print(f"  {entry.id}  {entry.action.value:<7} {entry.source}  [{', '.join(affected)}]")
            if entry.description:
                print(f"      {entry.description}")

    elif args.command == "rollback":
        try:
            result = manager.rollback(args.transaction_id, force=args.force, dry_run=args.dry_run)
        except RollbackBlockedError as e:
            print(f"⛔ {e}")
            for dep in manager.history.get_rollback_details(args.transaction_id).dependencies:
                print(f"   {dep.task_id} depends on {dep.depends_on}")
            return 1
        verb = "Would remove" if result.dry_run else "Removed"
        print(f"{'🔍' if result.dry_run else '⏪'} {verb} {len(result.details.tasks)} task(s):")
        for task in result.details.tasks:
            print(f"   {task.id}: {task.title}")
        if result.rollback_id:
            print(f"   Recorded as {result.rollback_id}")

    elif args.command == "summary":
        print(VTMSummarizer(reader=manager.reader).generate_summary_json())

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    config = load_config(args.config)
    if args.file:
        config.manifest_path = args.file
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(levelname)s %(name)s: %(message)s",
    )

    manager = TaskManager.from_config(config)
    session = VTMSession(config.session_path)

    try:
        return run(args, manager, session)
    except (VTMError, ValidationError, ValueError, OSError) as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
