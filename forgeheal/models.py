"""
Self-Improvement Data Model
===========================

Record types shared by the analysis engine, the fix executor, the
verification engine, the learning memory and the OODA controller.

Every record is a dataclass with a closed set of fields. Enumerated fields
accept either the enum member or its string value and are validated at
construction, so downstream code never needs to guard against missing or
malformed values. All records round-trip through ``to_dict``/``from_dict``.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Optional


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def _coerce(enum_cls, value, field_name: str):
    """Convert a raw value into ``enum_cls`` or raise ValueError."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(str(m.value) for m in enum_cls)
        raise ValueError(f"Invalid {field_name}: {value!r} (expected one of: {allowed})")


# =============================================================================
# Enumerations
# =============================================================================

class TaskTrigger(str, Enum):
    """What started an improvement cycle."""
    USER_REPORT = "user_report"
    SELF_DETECTED = "self_detected"
    SCHEDULED = "scheduled"


class IssueCategory(str, Enum):
    """Coarse classification of a reported defect."""
    UI_BUG = "ui_bug"
    LOGIC_ERROR = "logic_error"
    PERFORMANCE = "performance"
    STYLE = "style"
    ACCESSIBILITY = "accessibility"
    FEATURE_ENHANCEMENT = "feature_enhancement"


class TaskStatus(str, Enum):
    """Lifecycle states of a task."""
    OBSERVING = "observing"
    ORIENTING = "orienting"
    DECIDING = "deciding"
    ACTING = "acting"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    FAILED = "failed"


class StepAction(str, Enum):
    READ = "read"
    ANALYZE = "analyze"
    EDIT = "edit"
    CREATE = "create"
    DELETE = "delete"
    VERIFY = "verify"

    @property
    def is_mutating(self) -> bool:
        return self in (StepAction.EDIT, StepAction.CREATE, StepAction.DELETE)


class ChangeType(str, Enum):
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"


class ComponentType(str, Enum):
    """Role of a source file inside the project."""
    UI_COMPONENT = "ui_component"
    HOOK = "hook"
    UTILITY = "utility"
    STORE = "store"
    SERVICE = "service"
    TYPE_DEFINITION = "type_definition"
    CONFIG = "config"
    STYLE = "style"
    TEST = "test"
    UNKNOWN = "unknown"


class Complexity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskLevel(IntEnum):
    """Blast radius of a fix plan, from low to critical."""
    LOW = 1       # single small edit
    MEDIUM = 2    # a couple of files
    HIGH = 3      # several files or shared state
    CRITICAL = 4  # core/safety code or a large rewrite

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value) -> "RiskLevel":
        """Accept a member, its integer value or its lowercase label."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.upper()]
            except KeyError:
                raise ValueError(f"Invalid risk level: {value!r}")
        return cls(value)


class RecommendedAction(str, Enum):
    COMPLETE = "COMPLETE"
    RETRY_FIX = "RETRY_FIX"
    ESCALATE = "ESCALATE"


# =============================================================================
# Analysis Records
# =============================================================================

@dataclass
class ImportSpec:
    """One import statement: the module source and the symbols it binds."""
    source: str
    symbols: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"source": self.source, "symbols": list(self.symbols)}

    @classmethod
    def from_dict(cls, data: dict) -> "ImportSpec":
        return cls(source=data["source"], symbols=list(data.get("symbols", [])))


@dataclass
class ComponentAnalysis:
    """Static analysis of a single source file."""
    file_path: str
    component_name: str
    type: ComponentType
    imports: list[ImportSpec]
    exports: list[str]
    dependencies: list[str]
    complexity: Complexity
    line_count: int
    dependents: list[str] = field(default_factory=list)
    props: list[str] = field(default_factory=list)
    state_usage: list[str] = field(default_factory=list)
    has_tests: Optional[bool] = None

    def __post_init__(self):
        self.type = _coerce(ComponentType, self.type, "component type")
        self.complexity = _coerce(Complexity, self.complexity, "complexity")

    def to_dict(self) -> dict:
        return {
            "file_path": self.file_path,
            "component_name": self.component_name,
            "type": self.type.value,
            "imports": [imp.to_dict() for imp in self.imports],
            "exports": list(self.exports),
            "dependencies": list(self.dependencies),
            "dependents": list(self.dependents),
            "complexity": self.complexity.value,
            "line_count": self.line_count,
            "props": list(self.props),
            "state_usage": list(self.state_usage),
            "has_tests": self.has_tests,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ComponentAnalysis":
        return cls(
            file_path=data["file_path"],
            component_name=data["component_name"],
            type=data["type"],
            imports=[ImportSpec.from_dict(i) for i in data.get("imports", [])],
            exports=list(data.get("exports", [])),
            dependencies=list(data.get("dependencies", [])),
            dependents=list(data.get("dependents", [])),
            complexity=data["complexity"],
            line_count=data["line_count"],
            props=list(data.get("props", [])),
            state_usage=list(data.get("state_usage", [])),
            has_tests=data.get("has_tests"),
        )


@dataclass
class DependencyTreeNode:
    file_path: str
    depth: int
    children: list["DependencyTreeNode"] = field(default_factory=list)
    is_circular: bool = False

    def to_dict(self) -> dict:
        return {
            "file_path": self.file_path,
            "depth": self.depth,
            "is_circular": self.is_circular,
            "children": [c.to_dict() for c in self.children],
        }


@dataclass
class DependencyTrace:
    """Upstream/downstream view of one file. Recomputed per request."""
    root_file: str
    depth: int
    upstream: list[str]
    downstream: list[str]
    circular_deps: list[str]
    trace_tree: Optional[DependencyTreeNode] = None

    def to_dict(self) -> dict:
        return {
            "root_file": self.root_file,
            "depth": self.depth,
            "upstream": list(self.upstream),
            "downstream": list(self.downstream),
            "circular_deps": list(self.circular_deps),
            "trace_tree": self.trace_tree.to_dict() if self.trace_tree else None,
        }


@dataclass
class DependencyNode:
    file_path: str
    imports: list[str]
    exported_symbols: list[str]
    language: str
    size: int
    imported_by: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "file_path": self.file_path,
            "imports": list(self.imports),
            "exported_symbols": list(self.exported_symbols),
            "imported_by": list(self.imported_by),
            "language": self.language,
            "size": self.size,
        }


@dataclass
class ProjectMap:
    """Whole-project structure: histogram, dependency graph and file roles."""
    root_path: str
    total_files: int
    total_folders: int
    files_by_extension: dict[str, int]
    dependency_graph: dict[str, DependencyNode]
    entry_points: list[str]
    config_files: list[str]
    component_files: list[str]
    build_timestamp: int = field(default_factory=now_ms)

    def to_dict(self, include_graph: bool = True) -> dict:
        data = {
            "root_path": self.root_path,
            "total_files": self.total_files,
            "total_folders": self.total_folders,
            "files_by_extension": dict(self.files_by_extension),
            "entry_points": list(self.entry_points),
            "config_files": list(self.config_files),
            "component_files": list(self.component_files),
            "build_timestamp": self.build_timestamp,
        }
        if include_graph:
            data["dependency_graph"] = {
                path: node.to_dict() for path, node in self.dependency_graph.items()
            }
        return data


@dataclass
class RelatedFile:
    """A file ranked as relevant to an issue description."""
    path: str
    score: int
    reason: str

    def to_dict(self) -> dict:
        return {"path": self.path, "score": self.score, "reason": self.reason}


# =============================================================================
# Plan & Change Records
# =============================================================================

@dataclass
class FixStep:
    """
    One step of a fix plan.

    Mutating steps may carry a payload: ``old_str``/``new_str`` for a
    surgical replacement, or ``content`` for a full rewrite or a create.
    """
    order: int
    action: StepAction
    target: str
    description: str
    completed: bool = False
    result: Optional[str] = None
    old_str: Optional[str] = None
    new_str: Optional[str] = None
    content: Optional[str] = None
    error: Optional[str] = None

    def __post_init__(self):
        self.action = _coerce(StepAction, self.action, "step action")
        if not self.target:
            raise ValueError("FixStep.target must not be empty")

    @property
    def is_mutating(self) -> bool:
        return self.action.is_mutating

    @property
    def has_payload(self) -> bool:
        return self.content is not None or (self.old_str is not None and self.new_str is not None)

    def to_dict(self) -> dict:
        return {
            "order": self.order,
            "action": self.action.value,
            "target": self.target,
            "description": self.description,
            "completed": self.completed,
            "result": self.result,
            "old_str": self.old_str,
            "new_str": self.new_str,
            "content": self.content,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FixStep":
        return cls(
            order=data["order"],
            action=data["action"],
            target=data["target"],
            description=data.get("description", ""),
            completed=data.get("completed", False),
            result=data.get("result"),
            old_str=data.get("old_str"),
            new_str=data.get("new_str"),
            content=data.get("content"),
            error=data.get("error"),
        )


@dataclass
class FileChange:
    """A single applied (or, in dry-run mode, intended) file mutation."""
    file_path: str
    change_type: ChangeType
    old_content: Optional[str] = None
    new_content: Optional[str] = None
    timestamp: int = field(default_factory=now_ms)
    dry_run: bool = False

    def __post_init__(self):
        self.change_type = _coerce(ChangeType, self.change_type, "change type")

    @property
    def is_noop(self) -> bool:
        return self.change_type == ChangeType.MODIFY and self.old_content == self.new_content

    def to_dict(self) -> dict:
        return {
            "file_path": self.file_path,
            "change_type": self.change_type.value,
            "old_content": self.old_content,
            "new_content": self.new_content,
            "timestamp": self.timestamp,
            "dry_run": self.dry_run,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FileChange":
        return cls(
            file_path=data["file_path"],
            change_type=data["change_type"],
            old_content=data.get("old_content"),
            new_content=data.get("new_content"),
            timestamp=data.get("timestamp", now_ms()),
            dry_run=data.get("dry_run", False),
        )


# =============================================================================
# Verification Records
# =============================================================================

@dataclass
class VerificationCheck:
    name: str
    passed: bool
    details: str = ""

    def to_dict(self) -> dict:
        return {"name": self.name, "passed": self.passed, "details": self.details}

    @classmethod
    def from_dict(cls, data: dict) -> "VerificationCheck":
        return cls(name=data["name"], passed=data["passed"], details=data.get("details", ""))


@dataclass
class VerificationResult:
    """Aggregate of the individual verification checks."""
    passed: bool
    checks: list[VerificationCheck]
    retry_needed: bool = False
    reason: Optional[str] = None

    @property
    def failed_checks(self) -> list[VerificationCheck]:
        return [c for c in self.checks if not c.passed]

    @property
    def score(self) -> float:
        """Fraction of checks that passed (1.0 when no checks ran)."""
        if not self.checks:
            return 1.0
        return sum(1 for c in self.checks if c.passed) / len(self.checks)

    @property
    def recommended_action(self) -> RecommendedAction:
        failed = len(self.failed_checks)
        if failed == 0:
            return RecommendedAction.COMPLETE
        if failed <= 2:
            return RecommendedAction.RETRY_FIX
        return RecommendedAction.ESCALATE

    def to_dict(self) -> dict:
        return {
            "passed": self.passed,
            "checks": [c.to_dict() for c in self.checks],
            "retry_needed": self.retry_needed,
            "reason": self.reason,
            "score": round(self.score, 3),
            "recommended_action": self.recommended_action.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "VerificationResult":
        return cls(
            passed=data["passed"],
            checks=[VerificationCheck.from_dict(c) for c in data.get("checks", [])],
            retry_needed=data.get("retry_needed", False),
            reason=data.get("reason"),
        )


# =============================================================================
# Task Records
# =============================================================================

@dataclass
class Observation:
    user_message: str = ""
    affected_area: str = ""
    detected_files: list[str] = field(default_factory=list)
    evidence: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "user_message": self.user_message,
            "affected_area": self.affected_area,
            "detected_files": list(self.detected_files),
            "evidence": list(self.evidence),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Observation":
        return cls(
            user_message=data.get("user_message", ""),
            affected_area=data.get("affected_area", ""),
            detected_files=list(data.get("detected_files", [])),
            evidence=list(data.get("evidence", [])),
        )


@dataclass
class Orientation:
    root_cause: str = ""
    scope: list[str] = field(default_factory=list)
    constraints: list[str] = field(default_factory=list)
    skills: list[str] = field(default_factory=list)
    standards: list[str] = field(default_factory=list)
    related_components: list[str] = field(default_factory=list)
    similar_patterns: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "root_cause": self.root_cause,
            "scope": list(self.scope),
            "constraints": list(self.constraints),
            "skills": list(self.skills),
            "standards": list(self.standards),
            "related_components": list(self.related_components),
            "similar_patterns": list(self.similar_patterns),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Orientation":
        return cls(**{k: list(v) if isinstance(v, list) else v for k, v in data.items()})


@dataclass
class Decision:
    plan: list[FixStep] = field(default_factory=list)
    risk_level: RiskLevel = RiskLevel.LOW
    rollback_plan: str = ""
    estimated_impact: str = ""
    requires_approval: bool = False
    risk_concerns: list[str] = field(default_factory=list)

    def __post_init__(self):
        self.risk_level = RiskLevel.parse(self.risk_level)

    def to_dict(self) -> dict:
        return {
            "plan": [s.to_dict() for s in self.plan],
            "risk_level": self.risk_level.label,
            "rollback_plan": self.rollback_plan,
            "estimated_impact": self.estimated_impact,
            "requires_approval": self.requires_approval,
            "risk_concerns": list(self.risk_concerns),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Decision":
        return cls(
            plan=[FixStep.from_dict(s) for s in data.get("plan", [])],
            risk_level=data.get("risk_level", "low"),
            rollback_plan=data.get("rollback_plan", ""),
            estimated_impact=data.get("estimated_impact", ""),
            requires_approval=data.get("requires_approval", False),
            risk_concerns=list(data.get("risk_concerns", [])),
        )


@dataclass
class Execution:
    status: ExecutionStatus = ExecutionStatus.PENDING
    changes: list[FileChange] = field(default_factory=list)
    verification_result: Optional[VerificationResult] = None
    iterations: int = 0
    max_iterations: int = 5
    errors: list[str] = field(default_factory=list)

    def __post_init__(self):
        self.status = _coerce(ExecutionStatus, self.status, "execution status")

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "changes": [c.to_dict() for c in self.changes],
            "verification_result": (
                self.verification_result.to_dict() if self.verification_result else None
            ),
            "iterations": self.iterations,
            "max_iterations": self.max_iterations,
            "errors": list(self.errors),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Execution":
        verification = data.get("verification_result")
        return cls(
            status=data.get("status", "pending"),
            changes=[FileChange.from_dict(c) for c in data.get("changes", [])],
            verification_result=VerificationResult.from_dict(verification) if verification else None,
            iterations=data.get("iterations", 0),
            max_iterations=data.get("max_iterations", 5),
            errors=list(data.get("errors", [])),
        )


@dataclass
class Task:
    """One OODA cycle, from observation to a terminal state."""
    trigger: TaskTrigger
    description: str
    category: IssueCategory
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: TaskStatus = TaskStatus.OBSERVING
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)
    observation: Observation = field(default_factory=Observation)
    orientation: Orientation = field(default_factory=Orientation)
    decision: Decision = field(default_factory=Decision)
    execution: Execution = field(default_factory=Execution)

    def __post_init__(self):
        self.trigger = _coerce(TaskTrigger, self.trigger, "trigger")
        self.category = _coerce(IssueCategory, self.category, "category")
        self.status = _coerce(TaskStatus, self.status, "task status")

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def set_status(self, status: TaskStatus) -> None:
        self.status = _coerce(TaskStatus, status, "task status")
        self.updated_at = now_ms()

    def summary(self) -> str:
        return f"[{self.status.value}] {self.category.value}: {self.description[:60]}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "trigger": self.trigger.value,
            "description": self.description,
            "category": self.category.value,
            "status": self.status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "observation": self.observation.to_dict(),
            "orientation": self.orientation.to_dict(),
            "decision": self.decision.to_dict(),
            "execution": self.execution.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        return cls(
            id=data["id"],
            trigger=data["trigger"],
            description=data.get("description", ""),
            category=data["category"],
            status=data.get("status", "observing"),
            created_at=data.get("created_at", now_ms()),
            updated_at=data.get("updated_at", now_ms()),
            observation=Observation.from_dict(data.get("observation", {})),
            orientation=Orientation.from_dict(data.get("orientation", {})),
            decision=Decision.from_dict(data.get("decision", {})),
            execution=Execution.from_dict(data.get("execution", {})),
        )


# =============================================================================
# Learning Records
# =============================================================================

@dataclass
class FixPattern:
    """A remembered (problem signature -> solution) record."""
    problem_signature: str
    category: IssueCategory
    solution: str
    files_involved: list[str] = field(default_factory=list)
    success_rate: float = 1.0
    times_used: int = 1
    id: str = field(default_factory=lambda: f"pattern_{uuid.uuid4().hex[:12]}")
    last_used: int = field(default_factory=now_ms)
    created_at: int = field(default_factory=now_ms)
    tags: list[str] = field(default_factory=list)

    def __post_init__(self):
        self.category = _coerce(IssueCategory, self.category, "category")
        if not 0.0 <= self.success_rate <= 1.0:
            raise ValueError(f"success_rate must be in [0, 1], got {self.success_rate}")
        if self.times_used < 0:
            raise ValueError("times_used must not be negative")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "problem_signature": self.problem_signature,
            "category": self.category.value,
            "solution": self.solution,
            "files_involved": list(self.files_involved),
            "success_rate": self.success_rate,
            "times_used": self.times_used,
            "last_used": self.last_used,
            "created_at": self.created_at,
            "tags": list(self.tags),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FixPattern":
        return cls(
            id=data["id"],
            problem_signature=data["problem_signature"],
            category=data["category"],
            solution=data.get("solution", ""),
            files_involved=list(data.get("files_involved", [])),
            success_rate=float(data.get("success_rate", 1.0)),
            times_used=int(data.get("times_used", 1)),
            last_used=int(data.get("last_used", now_ms())),
            created_at=int(data.get("created_at", now_ms())),
            tags=list(data.get("tags", [])),
        )
