"""
Tests for the File I/O Boundary
===============================

Tests for the in-memory and local-filesystem bridges.
"""

import pytest

from forgeheal.file_bridge import InMemoryFileBridge, LocalFileBridge


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def project_dir(tmp_path):
    """A small project on disk with an excluded node_modules folder."""
    (tmp_path / "components").mkdir()
    (tmp_path / "components" / "button.tsx").write_text("export const Button = 1;\n", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("not collected\n", encoding="utf-8")
    (tmp_path / "node_modules" / "pkg").mkdir(parents=True)
    (tmp_path / "node_modules" / "pkg" / "index.js").write_text("module.exports = {};\n", encoding="utf-8")
    return tmp_path


@pytest.fixture
def local_bridge(project_dir):
    return LocalFileBridge(project_dir)


# =============================================================================
# In-Memory Bridge Tests
# =============================================================================

class TestInMemoryFileBridge:
    """Tests for InMemoryFileBridge."""

    @pytest.mark.asyncio
    async def test_read_missing_raises(self):
        bridge = InMemoryFileBridge()
        with pytest.raises(FileNotFoundError):
            await bridge.read("nope.ts")

    @pytest.mark.asyncio
    async def test_edit_replaces_first_occurrence(self):
        bridge = InMemoryFileBridge({"a.ts": "x x"})
        assert await bridge.edit("a.ts", "x", "y", "fix") is True
        assert bridge.files["a.ts"] == "y x"
        assert bridge.operations == [("edit", "a.ts", "fix")]

    @pytest.mark.asyncio
    async def test_edit_without_match_is_not_a_mutation(self):
        bridge = InMemoryFileBridge({"a.ts": "x"})
        assert await bridge.edit("a.ts", "missing", "y") is False
        assert bridge.mutation_count == 0

    @pytest.mark.asyncio
    async def test_write_and_delete(self):
        bridge = InMemoryFileBridge()
        await bridge.write("b.ts", "content")
        assert await bridge.delete("b.ts") is True
        assert await bridge.delete("b.ts") is False
        assert bridge.mutation_count == 2

    @pytest.mark.asyncio
    async def test_snapshot_is_a_copy(self):
        bridge = InMemoryFileBridge({"a.ts": "x"})
        snapshot = await bridge.snapshot()
        snapshot["a.ts"] = "changed"
        assert bridge.files["a.ts"] == "x"


# =============================================================================
# Local Bridge Tests
# =============================================================================

class TestLocalFileBridge:
    """Tests for LocalFileBridge."""

    @pytest.mark.asyncio
    async def test_snapshot_filters_extensions_and_excluded_dirs(self, local_bridge):
        snapshot = await local_bridge.snapshot()
        assert list(snapshot) == ["components/button.tsx"]

    @pytest.mark.asyncio
    async def test_write_creates_parent_dirs(self, local_bridge, project_dir):
        assert await local_bridge.write("lib/new/util.ts", "export {};\n") is True
        assert (project_dir / "lib" / "new" / "util.ts").read_text(encoding="utf-8") == "export {};\n"

    @pytest.mark.asyncio
    async def test_edit(self, local_bridge, project_dir):
        assert await local_bridge.edit("components/button.tsx", "= 1", "= 2") is True
        assert (project_dir / "components" / "button.tsx").read_text(encoding="utf-8") == \
            "export const Button = 2;\n"

    @pytest.mark.asyncio
    async def test_edit_missing_file(self, local_bridge):
        assert await local_bridge.edit("components/none.tsx", "a", "b") is False

    @pytest.mark.asyncio
    async def test_delete(self, local_bridge, project_dir):
        assert await local_bridge.delete("components/button.tsx") is True
        assert not (project_dir / "components" / "button.tsx").exists()
        assert await local_bridge.delete("components/button.tsx") is False

    @pytest.mark.asyncio
    async def test_path_escape_rejected(self, local_bridge):
        assert await local_bridge.write("../outside.ts", "x") is False
        with pytest.raises(ValueError):
            await local_bridge.read("../outside.ts")
