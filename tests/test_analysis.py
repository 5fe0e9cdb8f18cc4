"""
Tests for the Analysis Engine
=============================

Tests for component analysis, import resolution, dependency tracing, the
project map and related-file ranking.
"""

import pytest

from forgeheal.analysis import (
    AnalysisEngine,
    classify_component,
    extract_keywords,
    normalize_import,
)
from forgeheal.models import ComponentType, Complexity


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def engine():
    return AnalysisEngine()


@pytest.fixture
def circular_files():
    return {
        "lib/a.ts": "import { b } from './b';\nexport const a = () => b();\n",
        "lib/b.ts": "import { a } from './a';\nexport const b = () => a();\n",
    }


# =============================================================================
# Helper Function Tests
# =============================================================================

class TestHelpers:
    """Tests for the module-level helpers."""

    def test_normalize_alias(self):
        assert normalize_import("app/page.tsx", "@/components/x") == "components/x"

    def test_normalize_relative(self):
        assert normalize_import("components/sidebar/file-explorer.tsx", "../../lib/utils") == "lib/utils"
        assert normalize_import("components/header/header.tsx", "./save-button") == "components/header/save-button"

    def test_normalize_package(self):
        assert normalize_import("app/page.tsx", "react") is None

    def test_extract_keywords(self):
        assert extract_keywords("Save button misaligned in header") == ["save", "button", "misaligned", "header"]

    def test_classify_component(self):
        assert classify_component("components/a.test.tsx", "") == ComponentType.TEST
        assert classify_component("styles/a.css", "") == ComponentType.STYLE
        assert classify_component("lib/types/user.ts", "") == ComponentType.TYPE_DEFINITION
        assert classify_component("next.config.js", "") == ComponentType.CONFIG
        assert classify_component("stores/editor-store.ts", "") == ComponentType.STORE
        assert classify_component("hooks/use-theme.ts", "") == ComponentType.HOOK
        assert classify_component("lib/git-service.ts", "") == ComponentType.SERVICE
        assert classify_component("components/x.tsx", "import React from 'react'") == ComponentType.UI_COMPONENT
        assert classify_component("lib/math.ts", "export const add = 1;") == ComponentType.UTILITY


# =============================================================================
# Component Analysis Tests
# =============================================================================

class TestAnalyzeComponent:
    """Tests for single-file analysis."""

    def test_save_button(self, engine, sample_files):
        path = "components/header/save-button.tsx"
        analysis = engine.analyze_component(path, sample_files[path])
        assert analysis.component_name == "save-button"
        assert analysis.type == ComponentType.UI_COMPONENT
        assert analysis.exports == ["SaveButton"]
        assert analysis.props == ["onSave", "disabled"]
        assert analysis.dependencies == []
        assert analysis.complexity == Complexity.LOW

    def test_local_dependencies(self, engine, sample_files):
        path = "components/header/header.tsx"
        analysis = engine.analyze_component(path, sample_files[path])
        assert analysis.dependencies == ["components/header/save-button", "components/header/header.css"]

    def test_cache_keyed_on_content(self, engine, sample_files):
        """Changed content is re-analyzed instead of served from cache."""
        path = "lib/utils.ts"
        first = engine.analyze_component(path, sample_files[path])
        assert engine.analyze_component(path, sample_files[path]) is first

        updated = engine.analyze_component(path, "export const one = 1;\nexport const two = 2;\n")
        assert updated is not first
        assert updated.exports == ["one", "two"]

    def test_invalidate(self, engine, sample_files):
        path = "lib/utils.ts"
        engine.analyze_component(path, sample_files[path])
        assert path in engine.cached_paths()
        engine.invalidate(path)
        assert path not in engine.cached_paths()

    def test_clear_cache(self, engine, sample_files):
        engine.build_project_map(sample_files)
        engine.analyze_component("lib/utils.ts", sample_files["lib/utils.ts"])
        engine.clear_cache()
        assert engine.cached_paths() == []
        assert engine.project_map is None

    def test_describe_component(self, engine, sample_files):
        analysis = engine.describe_component("components/header/save-button.tsx", sample_files)
        assert analysis.dependents == ["components/header/header.tsx"]
        assert analysis.has_tests is False

    def test_describe_component_detects_tests(self, engine, sample_files):
        sample_files["components/header/save-button.test.tsx"] = (
            "import { SaveButton } from './save-button';\n"
        )
        analysis = engine.describe_component("components/header/save-button.tsx", sample_files)
        assert analysis.has_tests is True

    def test_describe_missing_file(self, engine, sample_files):
        assert engine.describe_component("components/missing.tsx", sample_files) is None


# =============================================================================
# Dependency Tracing Tests
# =============================================================================

class TestTraceDependencies:
    """Tests for import resolution and tracing."""

    def test_resolve_import_suffixes(self, engine, sample_files):
        assert engine.resolve_import("app/page.tsx", "@/components/header/header", sample_files) == \
            "components/header/header.tsx"
        assert engine.resolve_import("components/header/header.tsx", "./header.css", sample_files) == \
            "components/header/header.css"
        assert engine.resolve_import("app/page.tsx", "react", sample_files) is None
        assert engine.resolve_import("app/page.tsx", "./missing", sample_files) is None

    def test_upstream_and_downstream(self, engine, sample_files):
        trace = engine.trace_dependencies("components/header/header.tsx", sample_files)
        assert trace.upstream == ["components/header/save-button.tsx", "components/header/header.css"]
        assert trace.downstream == ["app/page.tsx"]
        assert trace.circular_deps == []

    def test_leaf_component(self, engine, sample_files):
        trace = engine.trace_dependencies("components/header/save-button.tsx", sample_files)
        assert trace.upstream == []
        assert trace.downstream == ["components/header/header.tsx"]

    def test_circular_dependency(self, engine, circular_files):
        trace = engine.trace_dependencies("lib/a.ts", circular_files)
        assert trace.circular_deps == ["lib/b.ts"]


# =============================================================================
# Project Map Tests
# =============================================================================

class TestProjectMap:
    """Tests for build_project_map."""

    def test_counts_and_roles(self, engine, sample_files):
        project_map = engine.build_project_map(sample_files)
        assert project_map.total_files == len(sample_files)
        assert project_map.files_by_extension == {"tsx": 4, "css": 1, "ts": 3}
        assert project_map.entry_points == ["app/page.tsx"]
        assert "components/header/save-button.tsx" in project_map.component_files

    def test_imported_by_edges(self, engine, sample_files):
        project_map = engine.build_project_map(sample_files)
        node = project_map.dependency_graph["components/header/save-button.tsx"]
        assert node.imported_by == ["components/header/header.tsx"]
        assert node.exported_symbols == ["SaveButton"]

    def test_project_map_is_remembered(self, engine, sample_files):
        project_map = engine.build_project_map(sample_files)
        assert engine.project_map is project_map


# =============================================================================
# Related Files Tests
# =============================================================================

class TestFindRelatedFiles:
    """Tests for issue-to-file ranking."""

    def test_ranking(self, engine, sample_files):
        related = engine.find_related_files("Save button misaligned in header", sample_files)
        paths = [r.path for r in related]
        assert paths[:4] == [
            "components/header/save-button.tsx",
            "components/header/header.tsx",
            "components/header/header.css",
            "app/page.tsx",
        ]
        assert related[0].score == 27
        assert "lib/agent/safety/guard.ts" not in paths

    def test_area_vocabulary(self, engine, sample_files):
        related = engine.find_related_files("sidebar looks broken", sample_files)
        assert related[0].path == "components/sidebar/file-explorer.tsx"

    def test_max_results(self, engine, sample_files):
        related = engine.find_related_files("Save button misaligned in header", sample_files, max_results=2)
        assert len(related) == 2

    def test_no_keywords(self, engine, sample_files):
        assert engine.find_related_files("a b", sample_files) == []
