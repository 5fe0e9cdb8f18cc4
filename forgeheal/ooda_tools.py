"""
Self-Improvement Tools
======================

Agent-facing tools over the self-improvement engine.

Tool categories:
- self-improve: read-only analysis plus autonomous improvement cycles
- ooda: agent-driven cycles where the agent supplies the fixes itself

Risk levels (how a host should gate a tool call):
- auto: safe to run without asking
- notify: run, but tell the user
- confirm: ask the user before running

Every tool takes a single ``args`` dict and returns a ToolResult. Input and
policy errors (missing arguments, protected paths, file limits, unknown
cycles) come back as ``ToolResult(success=False, error=...)``; no tool raises
for them.
"""

import functools
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from forgeheal.analysis import AnalysisEngine
from forgeheal.config import HealConfig
from forgeheal.controller import ApprovalCallback, OODAController
from forgeheal.errors import FileLimitError, ForgeHealError, ProtectedPathError, TaskNotFoundError
from forgeheal.fix_executor import FixExecutor
from forgeheal.learning import LearningMemory
from forgeheal.models import FixStep, IssueCategory, StepAction, Task, TaskStatus, TaskTrigger


logger = logging.getLogger(__name__)

FileSupplier = Callable[[], Awaitable[dict[str, str]]]


@dataclass
class ToolResult:
    """Outcome of one tool call."""
    success: bool
    data: Any = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        result: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            result["data"] = self.data
        if self.error is not None:
            result["error"] = self.error
        return result


def _schema(properties: dict, required: Optional[list[str]] = None) -> dict:
    return {"type": "object", "properties": properties, "required": required or []}


TOOL_DEFINITIONS: list[dict[str, Any]] = [
    {
        "name": "self_analyze_component",
        "description": "Analyze one source file: type, imports, exports, dependents, complexity.",
        "input_schema": _schema(
            {"file_path": {"type": "string", "description": "Project-relative file path"}},
            ["file_path"],
        ),
        "category": "self-improve",
        "risk_level": "auto",
    },
    {
        "name": "self_trace_dependency",
        "description": "Trace upstream and downstream dependencies of a file.",
        "input_schema": _schema(
            {
                "file_path": {"type": "string", "description": "Project-relative file path"},
                "max_depth": {"type": "integer", "description": "Trace depth (default: 5)"},
            },
            ["file_path"],
        ),
        "category": "self-improve",
        "risk_level": "auto",
    },
    {
        "name": "self_map_project",
        "description": "Build the project map: file counts, entry points, config files, dependency graph.",
        "input_schema": _schema(
            {"include_graph": {"type": "boolean", "description": "Include the dependency graph (default: true)"}},
        ),
        "category": "self-improve",
        "risk_level": "auto",
    },
    {
        "name": "self_start_improvement",
        "description": "Run a full autonomous OODA improvement cycle for an issue description.",
        "input_schema": _schema(
            {
                "description": {"type": "string", "description": "Issue to fix"},
                "category": {"type": "string", "description": "ui_bug, logic_error, performance, style, "
                                                             "accessibility or feature_enhancement"},
                "trigger": {"type": "string", "description": "user_report, self_detected or scheduled"},
            },
            ["description"],
        ),
        "category": "self-improve",
        "risk_level": "confirm",
    },
    {
        "name": "self_get_task_status",
        "description": "Status of one task, or of the active task and recent history.",
        "input_schema": _schema({"task_id": {"type": "string", "description": "Task id"}}),
        "category": "self-improve",
        "risk_level": "auto",
    },
    {
        "name": "self_cancel_task",
        "description": "Cancel an active improvement task.",
        "input_schema": _schema({"task_id": {"type": "string", "description": "Task id"}}, ["task_id"]),
        "category": "self-improve",
        "risk_level": "notify",
    },
    {
        "name": "self_get_suggestions",
        "description": "Past fix patterns similar to an issue description.",
        "input_schema": _schema(
            {
                "description": {"type": "string", "description": "Issue text"},
                "category": {"type": "string", "description": "Restrict to one category"},
            },
            ["description"],
        ),
        "category": "self-improve",
        "risk_level": "auto",
    },
    {
        "name": "self_get_stats",
        "description": "Learning memory and task history statistics.",
        "input_schema": _schema({}),
        "category": "self-improve",
        "risk_level": "auto",
    },
    {
        "name": "ooda_start_cycle",
        "description": "Open an agent-driven OODA cycle: observe, orient and plan, then wait for fixes.",
        "input_schema": _schema(
            {
                "issue": {"type": "string", "description": "Issue description"},
                "category": {"type": "string", "description": "Issue category"},
                "affected_files": {"type": "array", "items": {"type": "string"},
                                   "description": "Files known to be involved"},
            },
            ["issue", "category", "affected_files"],
        ),
        "category": "ooda",
        "risk_level": "notify",
    },
    {
        "name": "ooda_execute_fix",
        "description": "Apply a batch of fixes to an open cycle. Each fix is an edit "
                       "(old_str/new_str) or a rewrite (content).",
        "input_schema": _schema(
            {
                "cycle_id": {"type": "string", "description": "Cycle id from ooda_start_cycle"},
                "fixes": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "file_path": {"type": "string"},
                            "type": {"type": "string", "enum": ["edit", "rewrite"]},
                            "old_str": {"type": "string"},
                            "new_str": {"type": "string"},
                            "content": {"type": "string"},
                            "description": {"type": "string"},
                        },
                        "required": ["file_path", "type"],
                    },
                },
            },
            ["cycle_id", "fixes"],
        ),
        "category": "ooda",
        "risk_level": "confirm",
    },
    {
        "name": "ooda_verify_fix",
        "description": "Verify the fixes applied in a cycle.",
        "input_schema": _schema(
            {
                "cycle_id": {"type": "string", "description": "Cycle id"},
                "checks": {"type": "array", "items": {"type": "string"},
                           "description": "Subset of checks: exists, imports, exports, protected, "
                                          "scope, syntax, downstream"},
            },
            ["cycle_id"],
        ),
        "category": "ooda",
        "risk_level": "auto",
    },
    {
        "name": "ooda_learn_pattern",
        "description": "Store the pattern learned from a completed cycle.",
        "input_schema": _schema(
            {
                "cycle_id": {"type": "string", "description": "Cycle id"},
                "pattern": {
                    "type": "object",
                    "properties": {
                        "description": {"type": "string"},
                        "root_cause": {"type": "string"},
                        "fix_approach": {"type": "string"},
                        "tags": {"type": "array", "items": {"type": "string"}},
                        "confidence": {"type": "number", "description": "0.0 to 1.0"},
                    },
                    "required": ["description", "fix_approach"],
                },
            },
            ["cycle_id", "pattern"],
        ),
        "category": "ooda",
        "risk_level": "auto",
    },
    {
        "name": "ooda_rollback",
        "description": "Roll back the latest fix batch of a cycle.",
        "input_schema": _schema({"cycle_id": {"type": "string", "description": "Cycle id"}}, ["cycle_id"]),
        "category": "ooda",
        "risk_level": "notify",
    },
    {
        "name": "ooda_get_status",
        "description": "Status of one cycle, or of all active cycles.",
        "input_schema": _schema({"cycle_id": {"type": "string", "description": "Cycle id"}}),
        "category": "ooda",
        "risk_level": "auto",
    },
]

TOOL_NAMES = [t["name"] for t in TOOL_DEFINITIONS]


def _require(args: dict[str, Any], *names: str) -> None:
    missing = [n for n in names if args.get(n) in (None, "")]
    if missing:
        raise ValueError(f"Missing required argument: {', '.join(missing)}")


def tool_handler(func):
    """Convert input and policy errors raised by a tool into a failed ToolResult."""

    @functools.wraps(func)
    async def wrapper(self, args: Optional[dict[str, Any]] = None) -> ToolResult:
        try:
            return await func(self, args or {})
        except (ForgeHealError, ValueError, TypeError, FileNotFoundError) as e:
            logger.info("Tool %s rejected: %s", func.__name__, e)
            return ToolResult(success=False, error=str(e))

    return wrapper


def _task_status(task: Task) -> dict[str, Any]:
    verification = task.execution.verification_result
    return {
        "id": task.id,
        "status": task.status.value,
        "description": task.description,
        "category": task.category.value,
        "iterations": task.execution.iterations,
        "max_iterations": task.execution.max_iterations,
        "risk_level": task.decision.risk_level.label,
        "files_changed": sorted({c.file_path for c in task.execution.changes if not c.is_noop}),
        "errors": list(task.execution.errors),
        "verification": verification.to_dict() if verification else None,
    }


class OODAToolkit:
    """
    Tool surface of one engine instance.

    Args:
        controller: OODA controller
        executor: Fix executor used for agent-supplied fixes
        analysis: Analysis engine
        memory: Learning memory
        file_supplier: Async callable returning the current project snapshot
        config: Engine configuration
        on_approval_required: Approval callback for autonomous cycles
    """

    def __init__(
        self,
        controller: OODAController,
        executor: FixExecutor,
        analysis: AnalysisEngine,
        memory: LearningMemory,
        file_supplier: FileSupplier,
        config: Optional[HealConfig] = None,
        on_approval_required: Optional[ApprovalCallback] = None,
    ):
        self.controller = controller
        self.executor = executor
        self.analysis = analysis
        self.memory = memory
        self.file_supplier = file_supplier
        self.config = config or controller.config
        self.on_approval_required = on_approval_required

    @property
    def definitions(self) -> list[dict[str, Any]]:
        return TOOL_DEFINITIONS

    async def execute(self, name: str, args: Optional[dict[str, Any]] = None) -> ToolResult:
        """Dispatch a tool call by name."""
        if name not in TOOL_NAMES:
            return ToolResult(success=False, error=f"Unknown tool: {name}")
        handler = getattr(self, name)
        return await handler(args or {})

    # =========================================================================
    # self-improve tools
    # =========================================================================

    @tool_handler
    async def self_analyze_component(self, args: dict[str, Any]) -> ToolResult:
        _require(args, "file_path")
        file_map = await self.file_supplier()
        analysis = self.analysis.describe_component(args["file_path"], file_map)
        if analysis is None:
            return ToolResult(success=False, error=f"File not found: {args['file_path']}")
        return ToolResult(success=True, data=analysis.to_dict())

    @tool_handler
    async def self_trace_dependency(self, args: dict[str, Any]) -> ToolResult:
        _require(args, "file_path")
        max_depth = int(args.get("max_depth", 5))
        if max_depth < 1:
            raise ValueError("max_depth must be at least 1")
        file_map = await self.file_supplier()
        if args["file_path"] not in file_map:
            return ToolResult(success=False, error=f"File not found: {args['file_path']}")
        trace = self.analysis.trace_dependencies(args["file_path"], file_map, max_depth)
        return ToolResult(success=True, data=trace.to_dict())

    @tool_handler
    async def self_map_project(self, args: dict[str, Any]) -> ToolResult:
        file_map = await self.file_supplier()
        project_map = self.analysis.build_project_map(file_map)
        return ToolResult(success=True, data=project_map.to_dict(include_graph=bool(args.get("include_graph", True))))

    @tool_handler
    async def self_start_improvement(self, args: dict[str, Any]) -> ToolResult:
        _require(args, "description")
        category = IssueCategory(args["category"]) if args.get("category") else None
        trigger = TaskTrigger(args.get("trigger") or TaskTrigger.USER_REPORT)

        suggestions = [m.to_dict() for m in self.memory.find_similar(args["description"], max_results=3)]
        file_map = await self.file_supplier()
        task = await self.controller.start_improvement(
            trigger,
            args["description"],
            file_map,
            category=category,
            on_approval_required=self.on_approval_required,
        )
        return ToolResult(
            success=task.status == TaskStatus.COMPLETED,
            data={"task": _task_status(task), "suggestions": suggestions},
            error=None if task.status == TaskStatus.COMPLETED else f"Task {task.status.value}",
        )

    @tool_handler
    async def self_get_task_status(self, args: dict[str, Any]) -> ToolResult:
        task_id = args.get("task_id")
        if task_id:
            task = self.controller.get_task(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            return ToolResult(success=True, data=_task_status(task))
        return ToolResult(success=True, data={
            "active": [_task_status(t) for t in self.controller.get_active_tasks()],
            "recent": [_task_status(t) for t in self.controller.get_history()[:10]],
        })

    @tool_handler
    async def self_cancel_task(self, args: dict[str, Any]) -> ToolResult:
        _require(args, "task_id")
        if not self.controller.cancel_task(args["task_id"]):
            return ToolResult(success=False, error=f"No active task with id {args['task_id']}")
        return ToolResult(success=True, data={"task_id": args["task_id"], "status": TaskStatus.CANCELLED.value})

    @tool_handler
    async def self_get_suggestions(self, args: dict[str, Any]) -> ToolResult:
        _require(args, "description")
        matches = self.memory.find_similar(args["description"], max_results=5)
        if args.get("category"):
            category = IssueCategory(args["category"])
            matches = [m for m in matches if m.pattern.category == category]
        return ToolResult(success=True, data={"suggestions": [m.to_dict() for m in matches]})

    @tool_handler
    async def self_get_stats(self, args: dict[str, Any]) -> ToolResult:
        return ToolResult(success=True, data={
            "memory": self.memory.get_stats(),
            "history": self.controller.history_stats(),
        })

    # =========================================================================
    # ooda tools
    # =========================================================================

    @tool_handler
    async def ooda_start_cycle(self, args: dict[str, Any]) -> ToolResult:
        _require(args, "issue", "category")
        affected_files = args.get("affected_files")
        if not isinstance(affected_files, list):
            raise ValueError("Missing required argument: affected_files")
        category = IssueCategory(args["category"])

        file_map = await self.file_supplier()
        task = self.controller.open_cycle(
            TaskTrigger.SELF_DETECTED,
            args["issue"],
            file_map,
            category=category,
            affected_files=affected_files,
        )
        if task.is_terminal:
            return ToolResult(success=False, data=_task_status(task), error="Cycle could not be opened")
        return ToolResult(success=True, data={
            "cycle_id": task.id,
            "status": task.status.value,
            "root_cause": task.orientation.root_cause,
            "scope": list(task.orientation.scope),
            "plan": [s.to_dict() for s in task.decision.plan],
            "risk_level": task.decision.risk_level.label,
            "requires_approval": task.decision.requires_approval,
            "constraints": list(task.orientation.constraints),
        })

    def _build_fix_steps(self, fixes: list[dict[str, Any]], file_map: dict[str, str]) -> list[FixStep]:
        steps = []
        for index, fix in enumerate(fixes, start=1):
            if not isinstance(fix, dict):
                raise ValueError(f"Fix {index} must be an object")
            path = fix.get("file_path")
            kind = fix.get("type")
            if not path:
                raise ValueError(f"Fix {index} is missing file_path")
            description = fix.get("description") or f"{kind} {path}"
            if kind == "edit":
                if fix.get("old_str") is None or fix.get("new_str") is None:
                    raise ValueError(f"Fix {index} ({path}): edit needs old_str and new_str")
                steps.append(FixStep(index, StepAction.EDIT, path, description,
                                     old_str=fix["old_str"], new_str=fix["new_str"]))
            elif kind == "rewrite":
                if fix.get("content") is None:
                    raise ValueError(f"Fix {index} ({path}): rewrite needs content")
                action = StepAction.EDIT if path in file_map else StepAction.CREATE
                steps.append(FixStep(index, action, path, description, content=fix["content"]))
            else:
                raise ValueError(f"Fix {index} ({path}): unknown fix type {kind!r}")
        return steps

    @tool_handler
    async def ooda_execute_fix(self, args: dict[str, Any]) -> ToolResult:
        _require(args, "cycle_id")
        fixes = args.get("fixes")
        if not isinstance(fixes, list) or not fixes:
            raise ValueError("Missing required argument: fixes")

        task = self.controller.require_active(args["cycle_id"])
        if len(fixes) > self.config.max_files:
            raise FileLimitError(len(fixes), self.config.max_files)
        blocked = [f.get("file_path", "") for f in fixes
                   if isinstance(f, dict) and self.config.is_protected(f.get("file_path", ""))]
        if blocked:
            raise ProtectedPathError(blocked)

        working = self.controller.working_map(task.id)
        steps = self._build_fix_steps(fixes, working)
        changes = await self.executor.execute_plan(
            steps,
            working,
            protected_paths=self.config.protected_paths,
            max_files=self.config.max_files,
            owner=task.id,
        )
        errors = list(self.executor.last_errors)
        self.controller.record_changes(task.id, changes)
        task.execution.errors.extend(errors)

        return ToolResult(
            success=not errors,
            data={
                "cycle_id": task.id,
                "applied": [c.to_dict() for c in changes],
                "steps": [s.to_dict() for s in steps],
                "iteration": task.execution.iterations,
            },
            error="; ".join(errors) if errors else None,
        )

    @tool_handler
    async def ooda_verify_fix(self, args: dict[str, Any]) -> ToolResult:
        _require(args, "cycle_id")
        checks = args.get("checks") or None
        result = self.controller.verify_cycle(args["cycle_id"], checks=checks)
        task = self.controller.get_task(args["cycle_id"])
        if task is not None and task.status == TaskStatus.FAILED:
            await self.memory.record_failure(task)

        data = result.to_dict()
        data["score"] = round(result.score, 3)
        data["recommended_action"] = result.recommended_action.value
        data["status"] = task.status.value if task else None
        return ToolResult(success=True, data=data)

    @tool_handler
    async def ooda_learn_pattern(self, args: dict[str, Any]) -> ToolResult:
        _require(args, "cycle_id")
        pattern_args = args.get("pattern")
        if not isinstance(pattern_args, dict):
            raise ValueError("Missing required argument: pattern")
        _require(pattern_args, "description", "fix_approach")
        confidence = float(pattern_args.get("confidence", 1.0))
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"confidence must be between 0 and 1, got {confidence}")

        task = self.controller.get_task(args["cycle_id"])
        if task is None:
            raise TaskNotFoundError(args["cycle_id"])
        if task.status != TaskStatus.COMPLETED:
            return ToolResult(success=False, error=f"Cycle {task.id} is {task.status.value}; "
                                                   f"only completed cycles can be learned from")

        root_cause = pattern_args.get("root_cause") or task.orientation.root_cause
        notes = f"{root_cause[:80]} → {pattern_args['fix_approach']}" if root_cause else pattern_args["fix_approach"]
        tags = list(pattern_args.get("tags") or [])
        tags.append(pattern_args["description"])

        pattern = await self.memory.record_success(task, tags=tags, notes=notes)
        if pattern is None:
            return ToolResult(success=False, error="Cycle has no passing verification to learn from")
        if pattern.times_used == 1 and pattern.success_rate != confidence:
            pattern.success_rate = confidence
            await self.memory.save()
        return ToolResult(success=True, data=pattern.to_dict())

    @tool_handler
    async def ooda_rollback(self, args: dict[str, Any]) -> ToolResult:
        _require(args, "cycle_id")
        task = self.controller.get_task(args["cycle_id"])
        if task is None:
            raise TaskNotFoundError(args["cycle_id"])
        if self.executor.rollback_owner != task.id:
            return ToolResult(success=False, error=f"No fix batch of cycle {task.id} to roll back")
        working = self.controller.working_map(task.id) if not task.is_terminal else None
        reverted = await self.executor.rollback(working)
        return ToolResult(success=True, data={"cycle_id": task.id, "reverted": reverted})

    @tool_handler
    async def ooda_get_status(self, args: dict[str, Any]) -> ToolResult:
        cycle_id = args.get("cycle_id")
        if cycle_id:
            task = self.controller.get_task(cycle_id)
            if task is None:
                raise TaskNotFoundError(cycle_id)
            status = _task_status(task)
            status["plan"] = [s.to_dict() for s in task.decision.plan]
            return ToolResult(success=True, data=status)
        return ToolResult(success=True, data={
            "active": [_task_status(t) for t in self.controller.get_active_tasks()],
        })
