"""
Fix Executor
============

Turns a fix plan (an ordered list of FixStep) into calls on the file I/O
boundary and keeps a rollback stack of every change it applied.

Rules enforced per step, in order:
1. Steps already marked completed are skipped (retries resume from the
   first unfinished step).
2. Steps targeting a protected path are marked skipped and never run.
3. Mutating steps beyond ``max_files`` applied changes are marked skipped.
4. ``edit`` requires the target to be present in the working map
   (read-before-write).

A step that fails records its error and stays incomplete; the remaining
steps still run.

Usage:
    executor = FixExecutor(bridge, analysis_engine)
    changes = await executor.execute_plan(plan, working_map,
                                          protected_paths=cfg.protected_paths,
                                          max_files=cfg.max_files)
    ...
    restored = await executor.rollback()
"""

import logging
from typing import Iterable, Optional

from forgeheal.analysis import AnalysisEngine
from forgeheal.config import is_protected_path
from forgeheal.errors import FixExecutionError
from forgeheal.file_bridge import FileBridge
from forgeheal.models import ChangeType, FileChange, FixStep, StepAction


logger = logging.getLogger(__name__)


def _file_name(path: str) -> str:
    return path.split("/")[-1]


class FixExecutor:
    """
    Executes fix plans step by step through a FileBridge.

    Args:
        bridge: File I/O boundary
        analysis: Analysis engine used by ``analyze`` steps
    """

    def __init__(self, bridge: FileBridge, analysis: Optional[AnalysisEngine] = None):
        self.bridge = bridge
        self.analysis = analysis or AnalysisEngine()
        self._rollback_stack: list[FileChange] = []
        self.rollback_owner: Optional[str] = None
        self.last_errors: list[str] = []

    @property
    def rollback_stack(self) -> list[FileChange]:
        return list(self._rollback_stack)

    async def execute_plan(
        self,
        plan: list[FixStep],
        file_map: dict[str, str],
        *,
        protected_paths: Iterable[str] = (),
        max_files: int = 10,
        dry_run: bool = False,
        owner: Optional[str] = None,
    ) -> list[FileChange]:
        """
        Execute a plan against a working file map.

        Applied changes are folded into ``file_map`` as they happen so later
        steps see the updated content. The rollback stack is reset at the
        start of every call.

        Args:
            plan: Steps to execute; mutated in place (completed/result/error)
            file_map: Working path -> content map owned by the caller's cycle
            protected_paths: Path prefixes that must never be touched
            max_files: Ceiling on applied create/modify/delete changes
            dry_run: Record intended changes without touching the bridge
            owner: Id of the task the rollback stack belongs to

        Returns:
            FileChange records in execution order
        """
        protected = tuple(protected_paths)
        changes: list[FileChange] = []
        self._rollback_stack = []
        self.rollback_owner = owner
        self.last_errors = []
        files_changed = 0

        for step in sorted(plan, key=lambda s: s.order):
            if step.completed:
                continue

            if is_protected_path(step.target, protected):
                step.completed = True
                step.result = f"SKIPPED: {step.target} is a protected path"
                logger.info("Skipped protected step %d (%s)", step.order, step.target)
                continue

            if step.is_mutating and files_changed >= max_files:
                step.completed = True
                step.result = f"SKIPPED: max file limit ({max_files}) reached"
                logger.info("Skipped step %d: file limit %d reached", step.order, max_files)
                continue

            try:
                change = await self._execute_step(step, file_map, dry_run)
            except (FixExecutionError, FileNotFoundError, OSError, ValueError) as e:
                step.error = str(e)
                step.result = f"ERROR: {e}"
                self.last_errors.append(f"Step {step.order} ({step.action.value} {step.target}): {e}")
                logger.warning("Step %d failed: %s", step.order, e)
                continue

            step.error = None
            step.completed = True
            if change is None:
                continue

            changes.append(change)
            self._rollback_stack.append(change)
            if not change.is_noop:
                files_changed += 1

        return changes

    async def rollback(self, file_map: Optional[dict[str, str]] = None) -> int:
        """
        Undo the changes of the last plan execution, newest first.

        Modify restores the old content, create is undone by a delete and
        delete by re-writing the old content. Failures are logged per file
        and do not stop the rest. The stack is cleared afterwards.

        Args:
            file_map: Optional working map to restore alongside storage

        Returns:
            Number of changes rolled back
        """
        restored = 0
        for change in reversed(self._rollback_stack):
            if change.dry_run or change.is_noop:
                continue
            name = _file_name(change.file_path)
            try:
                if change.change_type == ChangeType.MODIFY and change.old_content is not None:
                    ok = await self.bridge.write(
                        change.file_path, change.old_content,
                        f"rollback: restore {name} to pre-fix state",
                    )
                elif change.change_type == ChangeType.CREATE:
                    ok = await self.bridge.delete(
                        change.file_path, f"rollback: remove {name} (created during fix)",
                    )
                elif change.change_type == ChangeType.DELETE and change.old_content is not None:
                    ok = await self.bridge.write(
                        change.file_path, change.old_content, f"rollback: restore deleted {name}",
                    )
                else:
                    continue
            except (OSError, ValueError) as e:
                logger.error("Rollback failed for %s: %s", change.file_path, e)
                continue

            if not ok:
                logger.error("Rollback failed for %s: storage rejected the operation", change.file_path)
                continue

            restored += 1
            if file_map is not None:
                if change.change_type == ChangeType.CREATE:
                    file_map.pop(change.file_path, None)
                else:
                    file_map[change.file_path] = change.old_content

        self._rollback_stack = []
        self.rollback_owner = None
        return restored

    # =========================================================================
    # Step execution
    # =========================================================================

    async def _execute_step(self, step: FixStep, file_map: dict[str, str], dry_run: bool) -> Optional[FileChange]:
        if step.action == StepAction.READ:
            return await self._execute_read(step, file_map)
        if step.action == StepAction.ANALYZE:
            return self._execute_analyze(step, file_map)
        if step.action == StepAction.EDIT:
            return await self._execute_edit(step, file_map, dry_run)
        if step.action == StepAction.CREATE:
            return await self._execute_create(step, file_map, dry_run)
        if step.action == StepAction.DELETE:
            return await self._execute_delete(step, file_map, dry_run)
        step.result = "Verification delegated to VerificationEngine"
        return None

    async def _execute_read(self, step: FixStep, file_map: dict[str, str]) -> None:
        content = file_map.get(step.target)
        if content is None:
            content = await self.bridge.read(step.target)
            file_map[step.target] = content
        step.result = f"Read {len(content)} characters from {step.target}"
        return None

    def _execute_analyze(self, step: FixStep, file_map: dict[str, str]) -> None:
        content = file_map.get(step.target)
        if content is None:
            step.result = f"Cannot analyze, file not found: {step.target}"
            return None
        analysis = self.analysis.analyze_component(step.target, content)
        step.result = (
            f"Analyzed: type={analysis.type.value}, complexity={analysis.complexity.value}, "
            f"deps={len(analysis.dependencies)}"
        )
        return None

    async def _execute_edit(self, step: FixStep, file_map: dict[str, str], dry_run: bool) -> FileChange:
        old_content = file_map.get(step.target)
        if old_content is None:
            raise FixExecutionError(f"Cannot edit {step.target}: file not loaded, read it first")

        if step.content is not None:
            new_content = step.content
        elif step.old_str is not None and step.new_str is not None:
            if step.old_str not in old_content:
                raise FixExecutionError(f"Text to replace not found in {step.target}")
            new_content = old_content.replace(step.old_str, step.new_str, 1)
        else:
            step.result = f"Edit recorded for {step.target}, no replacement supplied"
            return FileChange(step.target, ChangeType.MODIFY, old_content, old_content, dry_run=dry_run)

        if dry_run:
            step.result = f"DRY RUN: would edit {step.target}"
            return FileChange(step.target, ChangeType.MODIFY, old_content, new_content, dry_run=True)

        message = step.description or f"fix: update {_file_name(step.target)}"
        if step.content is not None:
            ok = await self.bridge.write(step.target, new_content, message)
        else:
            ok = await self.bridge.edit(step.target, step.old_str, step.new_str, message)
        if not ok:
            raise FixExecutionError(f"Storage rejected edit of {step.target}")

        file_map[step.target] = new_content
        self.analysis.invalidate(step.target)
        step.result = f"Edited {step.target}"
        return FileChange(step.target, ChangeType.MODIFY, old_content, new_content)

    async def _execute_create(self, step: FixStep, file_map: dict[str, str], dry_run: bool) -> FileChange:
        if step.target in file_map:
            raise FixExecutionError(f"Cannot create {step.target}: file already exists")
        if step.content is None:
            raise FixExecutionError(f"Cannot create {step.target}: no content supplied")

        if dry_run:
            step.result = f"DRY RUN: would create {step.target}"
            return FileChange(step.target, ChangeType.CREATE, None, step.content, dry_run=True)

        message = step.description or f"fix: create {_file_name(step.target)}"
        if not await self.bridge.write(step.target, step.content, message):
            raise FixExecutionError(f"Storage rejected creation of {step.target}")

        file_map[step.target] = step.content
        step.result = f"Created {step.target}"
        return FileChange(step.target, ChangeType.CREATE, None, step.content)

    async def _execute_delete(self, step: FixStep, file_map: dict[str, str], dry_run: bool) -> FileChange:
        old_content = file_map.get(step.target)
        if old_content is None:
            old_content = await self.bridge.read(step.target)

        if dry_run:
            step.result = f"DRY RUN: would delete {step.target}"
            return FileChange(step.target, ChangeType.DELETE, old_content, None, dry_run=True)

        message = step.description or f"fix: remove {_file_name(step.target)}"
        if not await self.bridge.delete(step.target, message):
            raise FixExecutionError(f"Storage rejected deletion of {step.target}")

        file_map.pop(step.target, None)
        self.analysis.invalidate(step.target)
        step.result = f"Deleted {step.target}"
        return FileChange(step.target, ChangeType.DELETE, old_content, None)
