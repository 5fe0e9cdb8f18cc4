#!/usr/bin/env python3
"""
ForgeHeal CLI
=============

Command-line interface for the self-improvement engine.

Usage:
    forgeheal analyze FILE [--project PATH]
    forgeheal trace FILE [--depth N] [--project PATH]
    forgeheal map [--graph] [--project PATH]
    forgeheal improve DESCRIPTION [--category CAT] [--yes] [--no-llm] [--project PATH]
    forgeheal suggest DESCRIPTION [--project PATH]
    forgeheal stats [--project PATH]
    forgeheal patterns [--clear] [--project PATH]
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from forgeheal.config import HealConfig
from forgeheal.db.connection import dispose_db
from forgeheal.engine import SelfImprovementEngine, open_project
from forgeheal.errors import ForgeHealError
from forgeheal.history import count_by_status
from forgeheal.models import IssueCategory, Task, TaskTrigger
from forgeheal.output import (
    confirm,
    console,
    create_table,
    print_banner,
    print_error,
    print_event,
    print_header,
    print_info,
    print_json_data,
    print_key_value_table,
    print_list,
    print_muted,
    print_success,
    print_table,
    print_task_summary,
    print_verification,
    print_warning,
    print_warning_panel,
    setup_rich_logging,
    spinner,
)


def get_project_dir(args) -> Path:
    """Get project directory from args or current directory."""
    if getattr(args, "project", None):
        return Path(args.project)
    return Path.cwd()


async def _open(args, **kwargs) -> SelfImprovementEngine:
    project_dir = get_project_dir(args)
    if not project_dir.is_dir():
        raise ForgeHealError(f"Project directory not found: {project_dir}")
    config = HealConfig.load(project_dir / "forgeheal_config.json")
    return await open_project(project_dir, config, **kwargs)


# =============================================================================
# Read-only commands
# =============================================================================

async def _analyze(args) -> int:
    engine = await _open(args, use_llm=False)
    with spinner("Scanning project..."):
        file_map = await engine.snapshot()
    analysis = engine.analysis.describe_component(args.file, file_map)
    if analysis is None:
        print_error(f"File not found in project: {args.file}")
        return 1

    print_header(f"Component: {analysis.component_name}")
    print_key_value_table({
        "Path": analysis.file_path,
        "Type": analysis.type.value,
        "Complexity": analysis.complexity.value,
        "Lines": analysis.line_count,
        "Has tests": analysis.has_tests,
    })
    if analysis.imports:
        table = create_table(title="Imports", columns=["Source", "Symbols"])
        for spec in analysis.imports:
            table.add_row(spec.source, ", ".join(spec.symbols))
        print_table(table)
    if analysis.exports:
        console.print("\n[fh.key]Exports:[/]")
        print_list(analysis.exports)
    if analysis.dependents:
        console.print("\n[fh.key]Imported by:[/]")
        print_list(analysis.dependents)
    if analysis.props:
        console.print("\n[fh.key]Props:[/]")
        print_list(analysis.props)
    return 0


async def _trace(args) -> int:
    engine = await _open(args, use_llm=False)
    with spinner("Scanning project..."):
        file_map = await engine.snapshot()
    if args.file not in file_map:
        print_error(f"File not found in project: {args.file}")
        return 1

    trace = engine.analysis.trace_dependencies(args.file, file_map, args.depth)
    print_header(f"Dependencies of {args.file} (depth {trace.depth})")
    console.print(f"[fh.key]Upstream ({len(trace.upstream)}):[/]")
    print_list(trace.upstream or ["none"])
    console.print(f"\n[fh.key]Downstream ({len(trace.downstream)}):[/]")
    print_list(trace.downstream or ["none"])
    if trace.circular_deps:
        console.print()
        print_warning(f"Circular dependencies: {', '.join(trace.circular_deps)}")
    return 0


async def _map(args) -> int:
    engine = await _open(args, use_llm=False)
    with spinner("Building project map..."):
        file_map = await engine.snapshot()
        project_map = engine.analysis.build_project_map(file_map, str(get_project_dir(args)))

    if args.graph:
        print_json_data(project_map.to_dict(include_graph=True))
        return 0

    print_header("Project Map")
    print_key_value_table({
        "Root": project_map.root_path,
        "Files": project_map.total_files,
        "Folders": project_map.total_folders,
        "Components": len(project_map.component_files),
        "Entry points": ", ".join(project_map.entry_points) or "none",
        "Config files": ", ".join(project_map.config_files) or "none",
    })
    table = create_table(title="Files by extension", columns=["Extension", "Count"])
    for ext, count in sorted(project_map.files_by_extension.items(), key=lambda kv: kv[1], reverse=True):
        table.add_row(ext, f"[fh.number]{count}[/]")
    print_table(table)
    return 0


# =============================================================================
# Improvement commands
# =============================================================================

def _approval_prompt(auto_approve: bool):
    def ask(task: Task) -> bool:
        decision = task.decision
        print_warning_panel(
            "\n".join([
                f"Risk: {decision.risk_level.label}",
                f"Impact: {decision.estimated_impact}",
                *[f"- {c}" for c in decision.risk_concerns],
            ]),
            title="Approval required",
        )
        if auto_approve:
            print_muted("Approved by --yes")
            return True
        return confirm("Apply this plan?", default=False)

    return ask


async def _improve(args) -> int:
    engine = await _open(args, use_llm=not args.no_llm)
    engine.controller.on_event(print_event)

    suggestions = engine.memory.find_similar(args.description, max_results=3)
    if suggestions:
        print_info("Similar past fixes:")
        print_list([f"{m.pattern.solution} (score {m.score:.2f})" for m in suggestions])

    file_map = await engine.snapshot()
    task = await engine.controller.start_improvement(
        TaskTrigger.USER_REPORT,
        args.description,
        file_map,
        category=IssueCategory(args.category) if args.category else None,
        on_approval_required=_approval_prompt(args.yes),
    )

    if task.execution.verification_result is not None:
        print_verification(task.execution.verification_result)
    print_task_summary(task)
    await engine.persist_finished()
    return 0 if task.status.value == "completed" else 2


async def _suggest(args) -> int:
    engine = await _open(args, use_llm=False)
    matches = engine.memory.find_similar(args.description, max_results=5)
    if not matches:
        print_muted("No similar fixes remembered yet.")
        return 0

    table = create_table(title="Suggestions", columns=["Score", "Category", "Solution", "Files"])
    for match in matches:
        table.add_row(
            f"[fh.number]{match.score:.2f}[/]",
            match.pattern.category.value,
            match.pattern.solution,
            ", ".join(match.pattern.files_involved[:3]),
        )
    print_table(table)
    return 0


async def _stats(args) -> int:
    engine = await _open(args, use_llm=False)
    stats = engine.memory.get_stats()
    runs = await count_by_status(engine.session_maker)

    print_header("Learning Memory")
    print_key_value_table({
        "Patterns": stats["total_patterns"],
        "Successful patterns": stats["successful_patterns"],
        "Tasks seen": stats["total_tasks"],
        "Completed": stats["completed_tasks"],
        "Failed": stats["failed_tasks"],
    })
    if runs:
        print_key_value_table({status: count for status, count in sorted(runs.items())}, title="Recorded runs")
    if stats["most_modified_files"]:
        table = create_table(title="Most modified files", columns=["File", "Count"])
        for item in stats["most_modified_files"]:
            table.add_row(item["path"], f"[fh.number]{item['count']}[/]")
        print_table(table)
    return 0


async def _patterns(args) -> int:
    engine = await _open(args, use_llm=False)
    if args.clear:
        if not args.yes and not confirm(f"Delete all {len(engine.memory)} stored patterns?"):
            print_muted("Nothing deleted.")
            return 0
        await engine.memory.clear()
        print_success("Learning memory cleared")
        return 0

    patterns = sorted(engine.memory.all_patterns(), key=lambda p: p.success_rate, reverse=True)
    if not patterns:
        print_muted("No patterns stored.")
        return 0
    table = create_table(title=f"Fix patterns ({len(patterns)})",
                         columns=["ID", "Category", "Rate", "Uses", "Solution"])
    for pattern in patterns:
        table.add_row(
            pattern.id,
            pattern.category.value,
            f"{pattern.success_rate:.0%}",
            str(pattern.times_used),
            pattern.solution,
        )
    print_table(table)
    return 0


# =============================================================================
# Entry point
# =============================================================================

def _run(coro_fn, args) -> int:
    async def runner() -> int:
        try:
            return await coro_fn(args)
        finally:
            await dispose_db()

    try:
        return asyncio.run(runner())
    except ForgeHealError as e:
        print_error(str(e))
        return 1
    except KeyboardInterrupt:
        print_warning("Interrupted")
        return 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="forgeheal",
        description="Self-improvement engine for CodeForge projects",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Analyze a component
    forgeheal analyze components/Header.tsx

    # Fix a reported issue, asking before risky plans
    forgeheal improve "The save button is misaligned in the header"

    # Show remembered fixes for an issue
    forgeheal suggest "button misaligned"
        """,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    analyze_parser = subparsers.add_parser("analyze", help="Analyze one component")
    analyze_parser.add_argument("file", help="Project-relative file path")
    analyze_parser.add_argument("--project", "-p", help="Project directory")

    trace_parser = subparsers.add_parser("trace", help="Trace dependencies of a file")
    trace_parser.add_argument("file", help="Project-relative file path")
    trace_parser.add_argument("--depth", "-d", type=int, default=5, help="Trace depth (default: 5)")
    trace_parser.add_argument("--project", "-p", help="Project directory")

    map_parser = subparsers.add_parser("map", help="Show the project map")
    map_parser.add_argument("--graph", action="store_true", help="Print the full map with dependency graph as JSON")
    map_parser.add_argument("--project", "-p", help="Project directory")

    improve_parser = subparsers.add_parser("improve", help="Run an improvement cycle")
    improve_parser.add_argument("description", help="Issue description")
    improve_parser.add_argument("--category", "-c", choices=[c.value for c in IssueCategory],
                                help="Issue category (detected when omitted)")
    improve_parser.add_argument("--yes", "-y", action="store_true", help="Approve risky plans without asking")
    improve_parser.add_argument("--no-llm", action="store_true", help="Plan and verify without proposing edits")
    improve_parser.add_argument("--project", "-p", help="Project directory")

    suggest_parser = subparsers.add_parser("suggest", help="Show similar past fixes")
    suggest_parser.add_argument("description", help="Issue description")
    suggest_parser.add_argument("--project", "-p", help="Project directory")

    stats_parser = subparsers.add_parser("stats", help="Show learning statistics")
    stats_parser.add_argument("--project", "-p", help="Project directory")

    patterns_parser = subparsers.add_parser("patterns", help="List or clear stored fix patterns")
    patterns_parser.add_argument("--clear", action="store_true", help="Delete all stored patterns")
    patterns_parser.add_argument("--yes", "-y", action="store_true", help="Do not ask before clearing")
    patterns_parser.add_argument("--project", "-p", help="Project directory")

    return parser


COMMANDS = {
    "analyze": _analyze,
    "trace": _trace,
    "map": _map,
    "improve": _improve,
    "suggest": _suggest,
    "stats": _stats,
    "patterns": _patterns,
}


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_rich_logging(logging.DEBUG if args.verbose else logging.WARNING)

    if not args.command:
        print_banner()
        console.print()
        parser.print_help()
        return 1

    return _run(COMMANDS[args.command], args)


if __name__ == "__main__":
    sys.exit(main())
