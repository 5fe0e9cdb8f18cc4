"""
Tests for Database Persistence
==============================

Tests for the SQLAlchemy-backed pattern store and the task history table.
"""

import pytest

from forgeheal.config import HealConfig
from forgeheal.db.connection import dispose_db, get_session_maker, init_db
from forgeheal.engine import create_engine
from forgeheal.file_bridge import InMemoryFileBridge
from forgeheal.history import count_by_status, list_tasks, record_to_dict, save_task
from forgeheal.learning import DatabasePatternStore, LearningMemory
from forgeheal.models import (
    ChangeType,
    FileChange,
    Task,
    TaskStatus,
    VerificationCheck,
    VerificationResult,
)


# =============================================================================
# Fixtures
# =============================================================================

def finished_task(status=TaskStatus.COMPLETED, description="Save button misaligned in header"):
    task = Task(trigger="user_report", description=description, category="ui_bug")
    task.observation.detected_files = ["components/header/save-button.tsx"]
    task.execution.iterations = 1
    task.execution.changes = [
        FileChange("components/header/save-button.tsx", ChangeType.MODIFY, "old", "new"),
        FileChange("components/header/header.tsx", ChangeType.MODIFY, "same", "same"),
    ]
    task.execution.verification_result = VerificationResult(
        passed=status == TaskStatus.COMPLETED, checks=[VerificationCheck("syntax_sanity", True)]
    )
    if status == TaskStatus.FAILED:
        task.execution.errors.append("Verification failed after 1 iterations")
    task.set_status(status)
    return task


# =============================================================================
# Pattern Store Tests
# =============================================================================

class TestDatabasePatternStore:
    """Tests for DatabasePatternStore."""

    @pytest.mark.asyncio
    async def test_patterns_survive_reload(self, tmp_path):
        session_maker = await init_db(tmp_path)
        try:
            memory = LearningMemory(DatabasePatternStore(session_maker))
            assert await memory.load() == 0
            await memory.record_success(finished_task())

            fresh = LearningMemory(DatabasePatternStore(session_maker))
            assert await fresh.load() == 1
            assert fresh.all_patterns()[0].files_involved == [
                "components/header/save-button.tsx",
                "components/header/header.tsx",
            ]
        finally:
            await dispose_db()

    @pytest.mark.asyncio
    async def test_save_overwrites_blob(self, tmp_path):
        session_maker = await init_db(tmp_path)
        try:
            memory = LearningMemory(DatabasePatternStore(session_maker))
            await memory.record_success(finished_task())
            await memory.clear()

            fresh = LearningMemory(DatabasePatternStore(session_maker))
            assert await fresh.load() == 0
        finally:
            await dispose_db()

    @pytest.mark.asyncio
    async def test_database_file_location(self, tmp_path):
        session_maker = await init_db(tmp_path, data_dir=".heal-data")
        try:
            assert (tmp_path / ".heal-data" / "forgeheal.db").exists()
            assert get_session_maker() is session_maker
        finally:
            await dispose_db()


# =============================================================================
# Task History Tests
# =============================================================================

class TestTaskHistory:
    """Tests for the persisted task history."""

    @pytest.mark.asyncio
    async def test_save_and_list(self, tmp_path):
        session_maker = await init_db(tmp_path)
        try:
            done = finished_task()
            failed = finished_task(TaskStatus.FAILED, "Terminal output is slow")
            await save_task(session_maker, done)
            await save_task(session_maker, failed)

            records = await list_tasks(session_maker)
            assert [r.task_uuid for r in records] == [failed.id, done.id]

            data = record_to_dict(records[1])
            assert data["status"] == "completed"
            assert data["files_changed"] == ["components/header/save-button.tsx"]
            assert data["failure_reason"] is None
            assert record_to_dict(records[0])["failure_reason"] == "Verification failed after 1 iterations"
        finally:
            await dispose_db()

    @pytest.mark.asyncio
    async def test_save_replaces_existing_record(self, tmp_path):
        session_maker = await init_db(tmp_path)
        try:
            task = finished_task()
            await save_task(session_maker, task)
            await save_task(session_maker, task)
            assert len(await list_tasks(session_maker)) == 1
        finally:
            await dispose_db()

    @pytest.mark.asyncio
    async def test_filter_and_count_by_status(self, tmp_path):
        session_maker = await init_db(tmp_path)
        try:
            await save_task(session_maker, finished_task())
            await save_task(session_maker, finished_task(TaskStatus.FAILED))
            await save_task(session_maker, finished_task(TaskStatus.FAILED))

            assert len(await list_tasks(session_maker, status="failed")) == 2
            assert await count_by_status(session_maker) == {"completed": 1, "failed": 2}
        finally:
            await dispose_db()

    @pytest.mark.asyncio
    async def test_engine_persists_tool_driven_tasks(self, tmp_path, sample_files):
        engine = create_engine(HealConfig(), InMemoryFileBridge(sample_files), on_approval_required=lambda t: True)
        engine.session_maker = await init_db(tmp_path)
        try:
            await engine.toolkit.execute("self_start_improvement", {"description": "Save button misaligned in header"})
            assert await engine.persist_finished() == 1
            assert await engine.persist_finished() == 0

            opened = await engine.toolkit.execute("ooda_start_cycle", {
                "issue": "Header layout is off", "category": "style", "affected_files": [],
            })
            await engine.toolkit.execute("self_cancel_task", {"task_id": opened.data["cycle_id"]})
            assert await engine.persist_finished() == 1

            records = await list_tasks(engine.session_maker)
            assert [r.status for r in records] == ["cancelled", "completed"]
        finally:
            await dispose_db()

    @pytest.mark.asyncio
    async def test_engine_without_database_persists_nothing(self, sample_files):
        engine = create_engine(HealConfig(), InMemoryFileBridge(sample_files))
        await engine.toolkit.execute("self_start_improvement", {"description": "Save button misaligned in header"})
        assert await engine.persist_finished() == 0
