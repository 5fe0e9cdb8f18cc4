"""
Tests for the Fix Executor
==========================

Tests for plan execution, the safety rules and rollback.
"""

import pytest

from forgeheal.file_bridge import InMemoryFileBridge
from forgeheal.fix_executor import FixExecutor
from forgeheal.models import ChangeType, FixStep, StepAction


PROTECTED = ("lib/agent/safety/", "lib/agent/constants.ts", ".env")


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def bridge(sample_files):
    return InMemoryFileBridge(sample_files)


@pytest.fixture
def executor(bridge):
    return FixExecutor(bridge)


@pytest.fixture
def working(sample_files):
    return dict(sample_files)


# =============================================================================
# Execution Tests
# =============================================================================

class TestExecutePlan:
    """Tests for execute_plan."""

    @pytest.mark.asyncio
    async def test_read_and_analyze_do_not_mutate(self, executor, bridge, working):
        plan = [
            FixStep(1, StepAction.READ, "lib/utils.ts", "read"),
            FixStep(2, StepAction.ANALYZE, "lib/utils.ts", "analyze"),
        ]
        changes = await executor.execute_plan(plan, working)
        assert changes == []
        assert all(step.completed for step in plan)
        assert plan[1].result.startswith("Analyzed: type=utility")
        assert bridge.mutation_count == 0

    @pytest.mark.asyncio
    async def test_surgical_edit(self, executor, bridge, working):
        step = FixStep(1, StepAction.EDIT, "components/header/save-button.tsx", "center",
                       old_str='className="btn"', new_str='className="btn btn-center"')
        changes = await executor.execute_plan([step], working)

        assert len(changes) == 1
        assert changes[0].change_type == ChangeType.MODIFY
        assert 'btn btn-center' in working["components/header/save-button.tsx"]
        assert 'btn btn-center' in bridge.files["components/header/save-button.tsx"]
        assert step.completed

    @pytest.mark.asyncio
    async def test_edit_without_payload_is_noop(self, executor, bridge, working):
        step = FixStep(1, StepAction.EDIT, "lib/utils.ts", "placeholder")
        changes = await executor.execute_plan([step], working)
        assert len(changes) == 1
        assert changes[0].is_noop
        assert bridge.mutation_count == 0

    @pytest.mark.asyncio
    async def test_edit_unknown_file_records_error(self, executor, working):
        step = FixStep(1, StepAction.EDIT, "lib/missing.ts", "edit", content="x")
        changes = await executor.execute_plan([step], working)
        assert changes == []
        assert not step.completed
        assert "read it first" in step.error
        assert len(executor.last_errors) == 1

    @pytest.mark.asyncio
    async def test_edit_text_not_found(self, executor, working):
        step = FixStep(1, StepAction.EDIT, "lib/utils.ts", "edit", old_str="nope", new_str="x")
        await executor.execute_plan([step], working)
        assert "not found" in step.error

    @pytest.mark.asyncio
    async def test_create_and_delete(self, executor, bridge, working):
        plan = [
            FixStep(1, StepAction.CREATE, "lib/new.ts", "create", content="export const n = 1;\n"),
            FixStep(2, StepAction.DELETE, "components/header/header.css", "delete"),
        ]
        changes = await executor.execute_plan(plan, working)
        assert [c.change_type for c in changes] == [ChangeType.CREATE, ChangeType.DELETE]
        assert "lib/new.ts" in bridge.files
        assert "components/header/header.css" not in working

    @pytest.mark.asyncio
    async def test_create_existing_file_fails(self, executor, working):
        step = FixStep(1, StepAction.CREATE, "lib/utils.ts", "create", content="x")
        await executor.execute_plan([step], working)
        assert "already exists" in step.error

    @pytest.mark.asyncio
    async def test_protected_steps_are_skipped(self, executor, bridge, working):
        step = FixStep(1, StepAction.EDIT, "lib/agent/safety/guard.ts", "edit", content="x")
        changes = await executor.execute_plan([step], working, protected_paths=PROTECTED)
        assert changes == []
        assert step.completed
        assert step.result.startswith("SKIPPED")
        assert bridge.mutation_count == 0

    @pytest.mark.asyncio
    async def test_file_limit(self, executor, bridge, working):
        plan = [
            FixStep(i + 1, StepAction.CREATE, f"lib/gen{i}.ts", "create", content=f"export const v{i} = {i};\n")
            for i in range(3)
        ]
        changes = await executor.execute_plan(plan, working, max_files=2)
        assert len(changes) == 2
        assert plan[2].result.startswith("SKIPPED: max file limit")
        assert bridge.mutation_count == 2

    @pytest.mark.asyncio
    async def test_completed_steps_are_skipped(self, executor, bridge, working):
        step = FixStep(1, StepAction.CREATE, "lib/new.ts", "create", content="x", completed=True)
        assert await executor.execute_plan([step], working) == []
        assert bridge.mutation_count == 0

    @pytest.mark.asyncio
    async def test_dry_run(self, executor, bridge, working):
        step = FixStep(1, StepAction.EDIT, "lib/utils.ts", "edit", content="export {};\n")
        changes = await executor.execute_plan([step], working, dry_run=True)
        assert changes[0].dry_run
        assert bridge.mutation_count == 0
        assert working["lib/utils.ts"] != "export {};\n"


# =============================================================================
# Rollback Tests
# =============================================================================

class TestRollback:
    """Tests for rollback."""

    @pytest.mark.asyncio
    async def test_rollback_restores_every_change(self, executor, bridge, working, sample_files):
        plan = [
            FixStep(1, StepAction.EDIT, "lib/utils.ts", "edit", content="export {};\n"),
            FixStep(2, StepAction.CREATE, "lib/new.ts", "create", content="x"),
            FixStep(3, StepAction.DELETE, "components/header/header.css", "delete"),
        ]
        await executor.execute_plan(plan, working)

        restored = await executor.rollback(working)

        assert restored == 3
        assert bridge.files == sample_files
        assert working == sample_files
        assert executor.rollback_stack == []

    @pytest.mark.asyncio
    async def test_rollback_covers_only_last_execution(self, executor, bridge, working):
        await executor.execute_plan(
            [FixStep(1, StepAction.CREATE, "lib/first.ts", "create", content="1")], working)
        await executor.execute_plan(
            [FixStep(1, StepAction.CREATE, "lib/second.ts", "create", content="2")], working)

        assert await executor.rollback() == 1
        assert "lib/first.ts" in bridge.files
        assert "lib/second.ts" not in bridge.files

    @pytest.mark.asyncio
    async def test_rollback_with_empty_stack(self, executor):
        assert await executor.rollback() == 0

    @pytest.mark.asyncio
    async def test_rollback_owner_tracks_last_execution(self, executor, working):
        await executor.execute_plan(
            [FixStep(1, StepAction.CREATE, "lib/first.ts", "create", content="1")], working, owner="task-a")
        assert executor.rollback_owner == "task-a"

        await executor.execute_plan(
            [FixStep(1, StepAction.CREATE, "lib/second.ts", "create", content="2")], working, owner="task-b")
        assert executor.rollback_owner == "task-b"

        await executor.rollback()
        assert executor.rollback_owner is None
