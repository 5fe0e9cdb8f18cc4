"""
Tests for Learning Memory
=========================

Tests for pattern recording, similarity search, pruning and persistence
through the pattern stores.
"""

import pytest

from forgeheal.learning import (
    InMemoryPatternStore,
    LearningMemory,
    extract_keywords,
    jaccard,
)
from forgeheal.models import (
    ChangeType,
    FileChange,
    FixPattern,
    Task,
    TaskStatus,
    VerificationCheck,
    VerificationResult,
)


# =============================================================================
# Fixtures
# =============================================================================

def make_task(description="Save button misaligned in header", status=TaskStatus.COMPLETED,
              passed=True, files=("components/header/save-button.tsx",), changed=True):
    """Build a finished task the way the controller leaves it."""
    task = Task(trigger="user_report", description=description, category="ui_bug")
    task.observation.affected_area = "ui_component in components/header"
    task.observation.detected_files = list(files)
    task.orientation.root_cause = "Style issue: CSS properties may need correction"
    if changed:
        task.execution.changes = [
            FileChange(path, ChangeType.MODIFY, "old", "new") for path in files
        ]
    task.execution.verification_result = VerificationResult(
        passed=passed, checks=[VerificationCheck("syntax_sanity", passed)]
    )
    task.set_status(status)
    return task


@pytest.fixture
def store():
    return InMemoryPatternStore()


@pytest.fixture
def memory(store):
    return LearningMemory(store)


# =============================================================================
# Keyword Tests
# =============================================================================

class TestKeywords:
    """Tests for keyword extraction and Jaccard similarity."""

    def test_extract_keywords_splits_paths(self):
        keywords = extract_keywords("Fix the components/header/save-button.tsx")
        assert keywords == {"fix", "components", "header", "save-button", "tsx"}

    def test_extract_keywords_empty(self):
        assert extract_keywords(None) == set()
        assert extract_keywords("   ") == set()

    def test_jaccard(self):
        assert jaccard({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)
        assert jaccard(set(), set()) == 0.0


# =============================================================================
# Recording Tests
# =============================================================================

class TestRecording:
    """Tests for record_success and record_failure."""

    @pytest.mark.asyncio
    async def test_success_creates_pattern(self, memory, store):
        pattern = await memory.record_success(make_task())
        assert pattern is not None
        assert pattern.success_rate == 1.0
        assert pattern.times_used == 1
        assert pattern.files_involved == ["components/header/save-button.tsx"]
        assert pattern.solution.endswith("→ modify save-button.tsx")
        assert store.save_count == 1
        assert len(store.blob) == 1

    @pytest.mark.asyncio
    async def test_success_without_changes(self, memory):
        pattern = await memory.record_success(make_task(changed=False))
        assert pattern.solution == "No changes made"

    @pytest.mark.asyncio
    async def test_notes_and_tags(self, memory):
        pattern = await memory.record_success(make_task(), tags=["alignment"], notes="Centered the button")
        assert pattern.solution == "Centered the button"
        assert pattern.tags == ["alignment"]

    @pytest.mark.asyncio
    async def test_unverified_task_not_recorded(self, memory):
        assert await memory.record_success(make_task(passed=False)) is None
        assert await memory.record_success(make_task(status=TaskStatus.FAILED)) is None
        assert len(memory) == 0

    @pytest.mark.asyncio
    async def test_repeat_success_updates_existing(self, memory):
        first = await memory.record_success(make_task())
        second = await memory.record_success(make_task())
        assert first is second
        assert second.times_used == 2
        assert second.success_rate == 1.0
        assert len(memory) == 1

    @pytest.mark.asyncio
    async def test_failure_lowers_rate(self, memory):
        await memory.record_success(make_task())
        pattern = await memory.record_failure(make_task(status=TaskStatus.FAILED, passed=False))
        assert pattern.times_used == 2
        assert pattern.success_rate == 0.5

        stats = memory.get_stats()
        assert stats["total_tasks"] == 2
        assert stats["completed_tasks"] == 1
        assert stats["failed_tasks"] == 1
        assert stats["successful_patterns"] == 0

    @pytest.mark.asyncio
    async def test_failure_never_creates(self, memory):
        assert await memory.record_failure(make_task(status=TaskStatus.FAILED)) is None
        assert len(memory) == 0


# =============================================================================
# Query Tests
# =============================================================================

class TestQueries:
    """Tests for similarity search and statistics."""

    @pytest.mark.asyncio
    async def test_find_similar_ranks_by_blended_score(self, memory):
        await memory.record_success(make_task())
        await memory.record_success(make_task(description="Terminal output is slow",
                                              files=("components/terminal/terminal.tsx",)))

        matches = memory.find_similar("save-button in header")
        assert matches[0].pattern.files_involved == ["components/header/save-button.tsx"]
        assert matches[0].score == pytest.approx(matches[0].similarity * 0.7 + 0.3)

    def test_find_similar_respects_floor(self, store):
        pattern = FixPattern(problem_signature="database timeout", category="performance",
                             solution="x", success_rate=0.1)
        memory = LearningMemory(store)
        memory._patterns = [pattern]
        assert memory.find_similar("header button") == []

    def test_find_similar_accepts_keyword_list(self, store):
        pattern = FixPattern(problem_signature="header button alignment", category="ui_bug", solution="x")
        memory = LearningMemory(store)
        memory._patterns = [pattern]
        matches = memory.find_similar(["header", "button"])
        assert matches[0].similarity == pytest.approx(2 / 3)

    @pytest.mark.asyncio
    async def test_find_by_category(self, memory):
        await memory.record_success(make_task())
        assert len(memory.find_by_category("ui_bug")) == 1
        assert memory.find_by_category("performance") == []

    @pytest.mark.asyncio
    async def test_stats(self, memory):
        await memory.record_success(make_task())
        stats = memory.get_stats()
        assert stats["total_patterns"] == 1
        assert stats["successful_patterns"] == 1
        assert stats["most_modified_files"] == [{"path": "components/header/save-button.tsx", "count": 1}]
        assert stats["common_categories"] == [{"category": "ui_bug", "count": 1}]


# =============================================================================
# Maintenance & Persistence Tests
# =============================================================================

class TestMaintenance:
    """Tests for pruning, clearing and reload."""

    @pytest.mark.asyncio
    async def test_prune_over_capacity(self, store):
        memory = LearningMemory(store, max_patterns=2)
        for area in ("header", "sidebar", "terminal"):
            await memory.record_success(make_task(description=f"{area} issue",
                                                  files=(f"components/{area}/{area}.tsx",)))
        assert len(memory) == 2

    @pytest.mark.asyncio
    async def test_reload_from_store(self, memory, store):
        await memory.record_success(make_task())
        fresh = LearningMemory(store)
        assert await fresh.load() == 1
        assert fresh.all_patterns()[0].problem_signature == memory.all_patterns()[0].problem_signature

    @pytest.mark.asyncio
    async def test_load_drops_malformed_entries(self):
        good = FixPattern(problem_signature="ok", category="ui_bug", solution="x").to_dict()
        memory = LearningMemory(InMemoryPatternStore([{"bad": 1}, good]))
        assert await memory.load() == 1

    @pytest.mark.asyncio
    async def test_load_empty_store(self, memory):
        assert await memory.load() == 0
        assert memory.loaded

    @pytest.mark.asyncio
    async def test_clear(self, memory, store):
        await memory.record_success(make_task())
        await memory.clear()
        assert len(memory) == 0
        assert store.blob == []
