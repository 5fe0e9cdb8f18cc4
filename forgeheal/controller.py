"""
OODA Controller
===============

Runs self-improvement cycles: OBSERVE -> ORIENT -> DECIDE -> (ACT <-> VERIFY).

Task lifecycle:

    observing -> orienting -> deciding -> acting <-> verifying
                                              -> completed | failed | cancelled

Only one task is active per controller; starting a second one while the
first is running raises TaskConflictError instead of queueing. Whatever the
outcome, a task always ends up in the (capped) history.

Two ways to drive a cycle:

- ``start_improvement`` runs the whole loop autonomously. Edit payloads come
  from the configured FixProposer before each ACT iteration.
- ``open_cycle`` / ``record_changes`` / ``verify_cycle`` let an external agent
  perform ACT itself while the controller keeps the bookkeeping.

Cancellation flips the task to cancelled and finalizes it immediately; a
running cycle notices at its next await and stops. A file mutation already
dispatched to the bridge still completes.
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from forgeheal.analysis import AnalysisEngine
from forgeheal.config import HealConfig
from forgeheal.diagnosis import STANDARDS, derive_skills, detect_category, infer_root_cause
from forgeheal.errors import ProtectedPathError, TaskConflictError, TaskNotFoundError
from forgeheal.events import EventBus, EventListener, EventStatus, OODAEvent, OODAPhase
from forgeheal.fix_executor import FixExecutor
from forgeheal.learning import LearningMemory
from forgeheal.models import (
    ChangeType,
    ExecutionStatus,
    FileChange,
    FixStep,
    IssueCategory,
    StepAction,
    Task,
    TaskStatus,
    TaskTrigger,
    VerificationResult,
)
from forgeheal.proposer import FixProposer
from forgeheal.risk import PlanRiskClassifier
from forgeheal.verification import VerificationEngine


logger = logging.getLogger(__name__)

RELATED_FILE_LIMIT = 15
OBSERVED_FILE_LIMIT = 5
PRIMARY_TARGET_LIMIT = 3
TRACE_DEPTH = 3
RELATED_COMPONENT_LIMIT = 20
PATTERN_BIAS_THRESHOLD = 0.5

ApprovalCallback = Callable[[Task], Union[bool, Awaitable[bool]]]


def _file_name(path: str) -> str:
    return path.split("/")[-1]


def fold_changes(file_map: dict[str, str], changes: Iterable[FileChange]) -> None:
    """Apply change records to a path -> content map."""
    for change in changes:
        if change.dry_run:
            continue
        if change.change_type == ChangeType.DELETE:
            file_map.pop(change.file_path, None)
        elif change.new_content is not None:
            file_map[change.file_path] = change.new_content


class OODAController:
    """
    Orchestrates improvement cycles over injected components.

    Args:
        analysis: Analysis engine
        executor: Fix executor bound to the project's file bridge
        verifier: Verification engine
        config: Engine configuration (limits, protected paths, retry policy)
        memory: Optional learning memory consulted in ORIENT and fed outcomes
        proposer: Optional source of concrete edits for autonomous cycles
        risk: Plan risk classifier
    """

    def __init__(
        self,
        analysis: AnalysisEngine,
        executor: FixExecutor,
        verifier: VerificationEngine,
        config: Optional[HealConfig] = None,
        *,
        memory: Optional[LearningMemory] = None,
        proposer: Optional[FixProposer] = None,
        risk: Optional[PlanRiskClassifier] = None,
    ):
        self.analysis = analysis
        self.executor = executor
        self.verifier = verifier
        self.config = config or HealConfig()
        self.memory = memory
        self.proposer = proposer
        self.risk = risk or PlanRiskClassifier()
        self.events = EventBus()

        self._active: dict[str, Task] = {}
        self._history: list[Task] = []
        self._working_maps: dict[str, dict[str, str]] = {}

    # =========================================================================
    # Queries & events
    # =========================================================================

    def on_event(self, listener: EventListener) -> Callable[[], None]:
        """Register an event listener; returns an unsubscribe callable."""
        return self.events.subscribe(listener)

    def get_task(self, task_id: str) -> Optional[Task]:
        if task_id in self._active:
            return self._active[task_id]
        for task in self._history:
            if task.id == task_id:
                return task
        return None

    def get_active_tasks(self) -> list[Task]:
        return list(self._active.values())

    def get_history(self) -> list[Task]:
        return list(self._history)

    def working_map(self, task_id: str) -> dict[str, str]:
        """Working file map of an active task (the live object, not a copy)."""
        if task_id not in self._working_maps:
            raise TaskNotFoundError(task_id)
        return self._working_maps[task_id]

    def require_active(self, task_id: str) -> Task:
        task = self._active.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def _emit(self, task: Task, phase: OODAPhase, status: EventStatus, message: str,
              data: Optional[dict[str, Any]] = None) -> None:
        logger.debug("[%s] %s/%s: %s", task.id[:8], phase.value, status.value, message)
        self.events.emit(OODAEvent(task_id=task.id, phase=phase, status=status, message=message, data=data))

    # =========================================================================
    # Admission
    # =========================================================================

    def _ensure_idle(self) -> None:
        if self._active:
            raise TaskConflictError(next(iter(self._active)))

    def _reject_protected(self, affected_files: Optional[list[str]]) -> None:
        blocked = [p for p in affected_files or [] if self.config.is_protected(p)]
        if blocked:
            raise ProtectedPathError(blocked)

    def _admit(
        self,
        trigger: Union[TaskTrigger, str],
        description: str,
        file_map: dict[str, str],
        category: Optional[Union[IssueCategory, str]],
        affected_files: Optional[list[str]],
    ) -> Task:
        if not description or not description.strip():
            raise ValueError("Missing required argument: description")
        self._ensure_idle()
        self._reject_protected(affected_files)
        task = Task(
            trigger=trigger,
            description=description.strip(),
            category=category or IssueCategory.UI_BUG,
        )
        task.observation.user_message = task.description
        task.execution.max_iterations = self.config.max_iterations
        self._active[task.id] = task
        self._working_maps[task.id] = dict(file_map)
        return task

    # =========================================================================
    # Autonomous cycle
    # =========================================================================

    async def start_improvement(
        self,
        trigger: Union[TaskTrigger, str],
        description: str,
        file_map: dict[str, str],
        *,
        category: Optional[Union[IssueCategory, str]] = None,
        on_approval_required: Optional[ApprovalCallback] = None,
        affected_files: Optional[list[str]] = None,
    ) -> Task:
        """
        Run a full improvement cycle.

        Args:
            trigger: What started the cycle
            description: Issue text
            file_map: Project snapshot; copied, never mutated
            category: Issue category; classified from the text when omitted
            on_approval_required: Sync or async callback consulted when the
                plan needs approval; a falsy answer cancels the task
            affected_files: Files the caller already knows are involved

        Returns:
            The task in a terminal state

        Raises:
            TaskConflictError: Another task is active
            ProtectedPathError: ``affected_files`` includes a protected path
            ValueError: ``description`` is blank
        """
        task = self._admit(trigger, description, file_map, category, affected_files)
        working = self._working_maps[task.id]

        try:
            self._observe(task, working, affected_files)
            self._orient(task, working, classify=category is None)
            self._decide(task, working)

            if task.decision.requires_approval:
                if on_approval_required is None:
                    logger.warning("Task %s requires approval but no approval callback was given", task.id)
                else:
                    approved = on_approval_required(task)
                    if inspect.isawaitable(approved):
                        approved = await approved
                    if task.is_terminal:
                        return task
                    if not approved:
                        task.set_status(TaskStatus.CANCELLED)
                        self._emit(task, OODAPhase.DECIDE, EventStatus.FAILED,
                                   "Task cancelled: approval denied")
                        self._finalize(task)
                        return task

            await self._act_and_verify(task, working)

        except Exception as e:
            logger.exception("Improvement task %s failed", task.id)
            if not task.is_terminal:
                task.set_status(TaskStatus.FAILED)
                task.execution.status = ExecutionStatus.FAILED
                task.execution.errors.append(str(e))
                self._emit(task, OODAPhase.ACT, EventStatus.FAILED, f"Task failed: {e}")

        self._finalize(task)
        await self._record_outcome(task)
        return task

    # =========================================================================
    # Phases
    # =========================================================================

    def _observe(self, task: Task, file_map: dict[str, str], affected_files: Optional[list[str]]) -> None:
        task.set_status(TaskStatus.OBSERVING)
        self._emit(task, OODAPhase.OBSERVE, EventStatus.STARTED, "Gathering evidence...")

        related = self.analysis.find_related_files(task.observation.user_message, file_map, RELATED_FILE_LIMIT)
        detected = list(dict.fromkeys(affected_files or []))
        reasons = {r.path: r for r in related}
        for item in related:
            if item.path not in detected:
                detected.append(item.path)
        task.observation.detected_files = detected

        analyses = []
        for path in detected[:OBSERVED_FILE_LIMIT]:
            content = file_map.get(path)
            if content is None:
                task.observation.evidence.append(f"{path}: not present in the project snapshot")
                continue
            analysis = self.analysis.analyze_component(path, content)
            analyses.append(analysis)
            ranked = reasons.get(path)
            origin = (
                f"relevance: {ranked.score}, reason: {ranked.reason}" if ranked else "reported as affected"
            )
            task.observation.evidence.append(
                f"{path}: type={analysis.type.value}, complexity={analysis.complexity.value}, "
                f"imports={len(analysis.imports)}, exports={len(analysis.exports)}, "
                f"lines={analysis.line_count} ({origin})"
            )

        if analyses:
            types = list(dict.fromkeys(a.type.value for a in analyses))
            areas = list(dict.fromkeys("/".join(a.file_path.split("/")[:-1]) or "." for a in analyses))
            task.observation.affected_area = f"{', '.join(types)} in {', '.join(areas)}"
        else:
            task.observation.affected_area = "unknown: no matching files found"

        self._emit(task, OODAPhase.OBSERVE, EventStatus.COMPLETED,
                   f"Found {len(detected)} related files, analyzed top {len(analyses)}",
                   {"file_count": len(detected), "analyses": len(analyses)})

    def _orient(self, task: Task, file_map: dict[str, str], classify: bool) -> None:
        task.set_status(TaskStatus.ORIENTING)
        self._emit(task, OODAPhase.ORIENT, EventStatus.STARTED, "Analyzing root cause...")

        top_files = task.observation.detected_files[:OBSERVED_FILE_LIMIT]
        related: list[str] = []
        scope: list[str] = list(top_files)
        circular: list[str] = []

        for path in top_files:
            trace = self.analysis.trace_dependencies(path, file_map, TRACE_DEPTH)
            for other in trace.upstream + trace.downstream:
                if other not in related:
                    related.append(other)
            for other in trace.downstream:
                if other not in scope:
                    scope.append(other)
            circular.extend(p for p in trace.circular_deps if p not in circular)

        scope = [p for p in scope if not self.config.is_protected(p)]

        constraints = [f"Protected: {p}" for p in self.config.protected_paths]
        constraints.append(f"Max files: {self.config.max_files}")
        constraints.append(f"Max iterations: {self.config.max_iterations}")
        if circular:
            constraints.append(f"Circular deps detected: {', '.join(circular)}")

        root_cause = infer_root_cause(task.observation.user_message, top_files)
        similar_ids: list[str] = []
        if self.memory is not None:
            matches = [
                m for m in self.memory.find_similar(task.description, max_results=3)
                if m.similarity >= PATTERN_BIAS_THRESHOLD
            ]
            if matches:
                best = matches[0].pattern
                root_cause = f"{root_cause} (a similar past issue was fixed by: {best.solution[:80]})"
                similar_ids = [m.pattern.id for m in matches]

        task.orientation.root_cause = root_cause
        task.orientation.scope = scope
        task.orientation.constraints = constraints
        task.orientation.skills = derive_skills(scope, file_map)
        task.orientation.standards = list(STANDARDS)
        task.orientation.related_components = related[:RELATED_COMPONENT_LIMIT]
        task.orientation.similar_patterns = similar_ids

        if classify:
            task.category = detect_category(task.observation.user_message, root_cause)

        self._emit(task, OODAPhase.ORIENT, EventStatus.COMPLETED,
                   f"Root cause identified. Scope: {len(scope)} files. "
                   f"Skills: {', '.join(task.orientation.skills) or 'none'}",
                   {"scope": len(scope), "skills": list(task.orientation.skills),
                    "similar_patterns": similar_ids})

    def _decide(self, task: Task, file_map: dict[str, str]) -> None:
        task.set_status(TaskStatus.DECIDING)
        self._emit(task, OODAPhase.DECIDE, EventStatus.STARTED, "Creating fix plan...")

        scope = task.orientation.scope
        plan: list[FixStep] = []
        order = 1

        for path in scope:
            plan.append(FixStep(order, StepAction.READ, path, f"Read current state of {_file_name(path)}"))
            order += 1

        if scope:
            plan.append(FixStep(order, StepAction.ANALYZE, scope[0], "Analyze dependency impact of planned changes"))
            order += 1

        primary_targets = [
            p for p in task.observation.detected_files[:PRIMARY_TARGET_LIMIT]
            if not self.config.is_protected(p)
        ]
        for path in primary_targets:
            plan.append(FixStep(
                order, StepAction.EDIT, path,
                f"Apply fix to {_file_name(path)}: address {task.orientation.root_cause[:80]}",
            ))
            order += 1
        for path in primary_targets:
            plan.append(FixStep(order, StepAction.VERIFY, path, f"Verify changes in {_file_name(path)}"))
            order += 1

        assessment = self.risk.assess(task, plan, primary_targets)
        rollback_plan = "; ".join(f"Revert {_file_name(p)} to pre-edit state" for p in primary_targets)

        task.decision.plan = plan
        task.decision.risk_level = assessment.risk_level
        task.decision.requires_approval = assessment.requires_approval
        task.decision.risk_concerns = assessment.concerns
        task.decision.rollback_plan = rollback_plan or "No files modified: no rollback needed"
        task.decision.estimated_impact = (
            f"{len(primary_targets)} files directly modified, "
            f"{len(task.orientation.related_components)} related components"
        )

        self._emit(task, OODAPhase.DECIDE, EventStatus.COMPLETED,
                   f"Plan created: {len(plan)} steps, risk={assessment.risk_level.label}, "
                   f"approval={assessment.requires_approval}",
                   {"steps": len(plan), "risk_level": assessment.risk_level.label,
                    "requires_approval": assessment.requires_approval})

    async def _propose_edits(self, task: Task, file_map: dict[str, str],
                             feedback: Optional[VerificationResult]) -> None:
        if self.proposer is None:
            return
        for step in task.decision.plan:
            if step.action != StepAction.EDIT or step.completed or step.has_payload:
                continue
            content = file_map.get(step.target)
            if content is None:
                continue
            try:
                proposal = await self.proposer.propose(task, step, content, feedback)
            except Exception as e:
                logger.warning("Proposer failed for %s: %s", step.target, e)
                task.execution.errors.append(f"Proposer failed for {step.target}: {e}")
                continue
            if task.is_terminal:
                return
            if proposal is not None:
                proposal.apply_to(step)

    async def _act_and_verify(self, task: Task, file_map: dict[str, str]) -> None:
        max_iterations = task.execution.max_iterations
        feedback: Optional[VerificationResult] = None

        while task.execution.iterations < max_iterations:
            if task.is_terminal:
                return
            task.execution.iterations += 1
            iteration = task.execution.iterations

            task.set_status(TaskStatus.ACTING)
            task.execution.status = ExecutionStatus.IN_PROGRESS
            self._emit(task, OODAPhase.ACT, EventStatus.STARTED,
                       f"Executing fix plan (iteration {iteration}/{max_iterations})...")

            await self._propose_edits(task, file_map, feedback)
            if task.is_terminal:
                return

            changes = await self.executor.execute_plan(
                task.decision.plan,
                file_map,
                protected_paths=self.config.protected_paths,
                max_files=self.config.max_files,
                dry_run=False,
                owner=task.id,
            )
            if task.is_terminal:
                return

            task.execution.changes.extend(changes)
            fold_changes(file_map, changes)
            step_errors = list(self.executor.last_errors)
            task.execution.errors.extend(step_errors)
            self._emit(task, OODAPhase.ACT, EventStatus.COMPLETED,
                       f"Applied {len(changes)} changes",
                       {"changes_count": len(changes), "step_errors": len(step_errors)})

            task.set_status(TaskStatus.VERIFYING)
            task.execution.status = ExecutionStatus.VERIFYING
            self._emit(task, OODAPhase.VERIFY, EventStatus.STARTED, "Verifying changes...")

            result = self.verifier.verify(task, file_map, task.execution.changes)
            task.execution.verification_result = result

            if result.passed:
                self._complete(task, result)
                return

            self._emit(task, OODAPhase.VERIFY, EventStatus.FAILED,
                       f"Verification failed: {result.reason}. Retry {iteration}/{max_iterations}",
                       {"reason": result.reason})

            if not result.retry_needed or iteration >= max_iterations:
                self._fail(task, f"Verification failed after {iteration} iterations: {result.reason}")
                return

            feedback = result
            if self.config.regenerate_plan_on_retry:
                task.observation.evidence.append(f"Iteration {iteration} verification failed: {result.reason}")
                self._decide(task, file_map)

        if not task.is_terminal:
            self._fail(task, f"Exhausted {max_iterations} iterations without passing verification")

    def _complete(self, task: Task, result: VerificationResult) -> None:
        task.set_status(TaskStatus.COMPLETED)
        task.execution.status = ExecutionStatus.COMPLETED
        self._emit(task, OODAPhase.VERIFY, EventStatus.COMPLETED, "All checks passed! Task complete.",
                   {"checks": len(result.checks), "passed": sum(1 for c in result.checks if c.passed)})

    def _fail(self, task: Task, reason: str) -> None:
        task.set_status(TaskStatus.FAILED)
        task.execution.status = ExecutionStatus.FAILED
        task.execution.errors.append(reason)

    # =========================================================================
    # Agent-driven cycle
    # =========================================================================

    def open_cycle(
        self,
        trigger: Union[TaskTrigger, str],
        description: str,
        file_map: dict[str, str],
        *,
        category: Optional[Union[IssueCategory, str]] = None,
        affected_files: Optional[list[str]] = None,
    ) -> Task:
        """
        Run OBSERVE, ORIENT and DECIDE, then park the task in ``acting``.

        The caller applies the fix itself and reports it through
        ``record_changes`` before calling ``verify_cycle``.

        Raises:
            TaskConflictError: Another task is active
            ProtectedPathError: ``affected_files`` includes a protected path
            ValueError: ``description`` is blank
        """
        task = self._admit(trigger, description, file_map, category, affected_files)
        working = self._working_maps[task.id]
        try:
            self._observe(task, working, affected_files)
            self._orient(task, working, classify=category is None)
            self._decide(task, working)
        except Exception as e:
            logger.exception("Opening cycle %s failed", task.id)
            self._fail(task, str(e))
            self._emit(task, OODAPhase.DECIDE, EventStatus.FAILED, f"Task failed: {e}")
            self._finalize(task)
            return task

        # Files the caller named are part of the declared scope
        for path in affected_files or []:
            if path not in task.orientation.scope:
                task.orientation.scope.append(path)

        task.set_status(TaskStatus.ACTING)
        task.execution.status = ExecutionStatus.IN_PROGRESS
        self._emit(task, OODAPhase.ACT, EventStatus.STARTED, "Waiting for fixes from the agent")
        return task

    def record_changes(self, task_id: str, changes: list[FileChange]) -> Task:
        """Record one externally applied fix batch as an ACT iteration."""
        task = self.require_active(task_id)
        task.execution.iterations += 1
        task.execution.changes.extend(changes)
        fold_changes(self._working_maps[task_id], changes)
        task.set_status(TaskStatus.ACTING)
        self._emit(task, OODAPhase.ACT, EventStatus.COMPLETED, f"Applied {len(changes)} changes",
                   {"changes_count": len(changes)})
        return task

    def verify_cycle(
        self,
        task_id: str,
        file_map: Optional[dict[str, str]] = None,
        checks: Optional[Iterable[str]] = None,
    ) -> VerificationResult:
        """
        Verify an agent-driven cycle.

        Passing completes the task; a non-retryable failure or an exhausted
        iteration budget fails it. Otherwise the task stays active for
        another fix attempt.
        """
        task = self.require_active(task_id)
        working = file_map if file_map is not None else self._working_maps[task_id]

        task.set_status(TaskStatus.VERIFYING)
        task.execution.status = ExecutionStatus.VERIFYING
        self._emit(task, OODAPhase.VERIFY, EventStatus.STARTED, "Verifying changes...")

        result = self.verifier.verify(task, working, task.execution.changes, checks=checks)
        task.execution.verification_result = result

        if result.passed:
            self._complete(task, result)
            self._finalize(task)
        else:
            self._emit(task, OODAPhase.VERIFY, EventStatus.FAILED, f"Verification failed: {result.reason}",
                       {"reason": result.reason})
            if not result.retry_needed or task.execution.iterations >= task.execution.max_iterations:
                self._fail(task, f"Verification failed after {task.execution.iterations} iterations: {result.reason}")
                self._finalize(task)
            else:
                task.set_status(TaskStatus.ACTING)
                task.execution.status = ExecutionStatus.IN_PROGRESS
        return result

    # =========================================================================
    # Termination
    # =========================================================================

    def cancel_task(self, task_id: str) -> bool:
        """Cancel an active task and finalize it immediately."""
        task = self._active.get(task_id)
        if task is None:
            return False
        task.set_status(TaskStatus.CANCELLED)
        self._emit(task, OODAPhase.ACT, EventStatus.FAILED, "Task cancelled by user")
        self._finalize(task)
        return True

    def _finalize(self, task: Task) -> None:
        if task.id not in self._active:
            return
        del self._active[task.id]
        self._working_maps.pop(task.id, None)
        self._history.insert(0, task)
        del self._history[self.config.history_limit:]

    async def _record_outcome(self, task: Task) -> None:
        if self.memory is None:
            return
        if task.status == TaskStatus.COMPLETED:
            await self.memory.record_success(task)
        elif task.status == TaskStatus.FAILED:
            await self.memory.record_failure(task)

    # =========================================================================
    # Statistics
    # =========================================================================

    def history_stats(self) -> dict[str, Any]:
        finished = self._history
        iterations = [t.execution.iterations for t in finished if t.execution.iterations]
        return {
            "history_size": len(finished),
            "completed": sum(1 for t in finished if t.status == TaskStatus.COMPLETED),
            "failed": sum(1 for t in finished if t.status == TaskStatus.FAILED),
            "cancelled": sum(1 for t in finished if t.status == TaskStatus.CANCELLED),
            "average_iterations": round(sum(iterations) / len(iterations), 2) if iterations else 0.0,
            "active": len(self._active),
        }
