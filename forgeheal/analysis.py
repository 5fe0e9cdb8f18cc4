"""
Analysis Engine
===============

Static, heuristic analysis over a project's path -> content map.

The engine never performs I/O and never raises on malformed source: a file
it cannot make sense of simply yields empty imports, exports or scores.

Provides:
- Per-file component analysis (type, imports, exports, complexity)
- Dependency tracing with import resolution and cycle detection
- A project map with a reverse "imported-by" graph
- Ranking of files related to a free-text issue description

Usage:
    from forgeheal.analysis import AnalysisEngine

    engine = AnalysisEngine()
    analysis = engine.analyze_component("components/button.tsx", content)
    trace = engine.trace_dependencies("components/button.tsx", file_map)
    related = engine.find_related_files("sidebar button misaligned", file_map)
"""

import hashlib
import re
from dataclasses import dataclass
from typing import Optional

from forgeheal.models import (
    ComponentAnalysis,
    ComponentType,
    Complexity,
    DependencyNode,
    DependencyTrace,
    DependencyTreeNode,
    ProjectMap,
    RelatedFile,
)
from forgeheal.module_signature import (
    ModuleSignature,
    complexity_score,
    is_script_path,
    parse_module_signature,
)


# =============================================================================
# Constants
# =============================================================================

ALIAS_PREFIX = "@/"

# Tried in order after the bare path; first existing candidate wins
RESOLUTION_SUFFIXES = ("", ".ts", ".tsx", ".js", ".jsx", "/index.ts", "/index.tsx", "/index.js")

HIGH_COMPLEXITY_THRESHOLD = 30
MEDIUM_COMPLEXITY_THRESHOLD = 12

# Issue keyword -> path fragments of the IDE area it refers to
AREA_KEYWORDS: dict[str, list[str]] = {
    "sidebar": ["sidebar", "file-explorer", "panel", "activity-bar"],
    "editor": ["editor", "monaco", "tab", "code-editor"],
    "terminal": ["terminal", "console", "output"],
    "header": ["header", "menu-bar", "title-bar", "toolbar"],
    "status": ["status-bar", "footer", "status"],
    "dialog": ["dialog", "modal", "popup"],
    "settings": ["settings", "config", "preferences"],
    "agent": ["agent", "chat", "ai", "assistant"],
    "git": ["git", "source-control", "version"],
    "left": ["sidebar", "file-explorer", "activity-bar", "panel"],
    "right": ["panel", "agent", "chat"],
    "bottom": ["terminal", "output", "status-bar", "problems"],
    "top": ["header", "menu-bar", "title-bar", "toolbar"],
    "button": ["button", "btn", "action", "click"],
    "layout": ["layout", "grid", "flex", "resize", "split"],
    # Arabic UI vocabulary used by CodeForge users
    "واجهة": ["layout", "ui", "component", "panel"],
    "يسرى": ["sidebar", "file-explorer", "activity-bar", "panel"],
    "يمنى": ["panel", "agent", "chat"],
    "زاوية": ["corner", "sidebar", "panel", "layout"],
    "أزرار": ["button", "btn", "action", "icon"],
}

UI_STYLING_TERMS = {"ui", "واجهة", "button", "أزرار", "layout", "style", "css"}

_KEYWORD_SPLIT = re.compile(r"[\s,.;:!?()\[\]{}]+")
_PROPS_BLOCK = re.compile(r"interface\s+\w*Props\s*\{([^}]*)\}", re.DOTALL)
_USE_STATE = re.compile(r"const\s+\[(\w+),\s*set\w+\]\s*=\s*useState")
_STORE_HOOK = re.compile(r"use(\w+Store)")
_COMPONENT_FUNCTION = re.compile(r"export\s+(?:default\s+)?function\s+\w+.*\(")
_EXTENSION = re.compile(r"\.(ts|tsx|js|jsx)$")


def _digest(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]


def extract_keywords(text: str) -> list[str]:
    """Lowercase words longer than two characters, in order of appearance."""
    return [k for k in _KEYWORD_SPLIT.split(text.lower()) if len(k) > 2]


def normalize_import(from_file: str, source: str) -> Optional[str]:
    """
    Turn a local import source into a project-rooted base path.

    ``@/x`` maps to ``x``; relative sources are resolved against the
    importing file's directory. Package imports return None.
    """
    if source.startswith(ALIAS_PREFIX):
        return source[len(ALIAS_PREFIX):]
    if not source.startswith("."):
        return None

    base_parts = [p for p in from_file.split("/")[:-1] if p]
    for part in source.split("/"):
        if part == "..":
            if base_parts:
                base_parts.pop()
        elif part not in (".", ""):
            base_parts.append(part)
    return "/".join(base_parts)


def classify_component(file_path: str, content: str) -> ComponentType:
    """
    Classify a file by role.

    Precedence: test path, stylesheet, type definitions, config, store,
    hook, service, UI-framework content, then utility.
    """
    lower = file_path.lower()

    if ".test." in lower or ".spec." in lower or "__tests__" in lower:
        return ComponentType.TEST
    if lower.endswith((".css", ".scss", ".module.css")):
        return ComponentType.STYLE
    if "/types" in lower or lower.endswith(".d.ts"):
        return ComponentType.TYPE_DEFINITION
    if "config" in lower:
        return ComponentType.CONFIG
    if "/stores/" in lower or "-store" in lower:
        return ComponentType.STORE
    if "/hooks/" in lower or "use-" in lower:
        return ComponentType.HOOK
    if "-service" in lower or "/services/" in lower:
        return ComponentType.SERVICE
    if "React" in content or "jsx" in content or (
        _COMPONENT_FUNCTION.search(content) and "return (" in content
    ):
        return ComponentType.UI_COMPONENT
    return ComponentType.UTILITY


def classify_complexity(content: str) -> Complexity:
    score = complexity_score(content)
    if score > HIGH_COMPLEXITY_THRESHOLD:
        return Complexity.HIGH
    if score > MEDIUM_COMPLEXITY_THRESHOLD:
        return Complexity.MEDIUM
    return Complexity.LOW


def extract_props(content: str) -> list[str]:
    """Prop names declared in the first ``interface XxxProps { ... }`` block."""
    match = _PROPS_BLOCK.search(content)
    if not match:
        return []
    props = []
    for line in match.group(1).split("\n"):
        line = line.strip()
        if not line or line.startswith("//"):
            continue
        name = line.split(":")[0].replace("?", "").strip()
        if name:
            props.append(name)
    return props


def extract_state_usage(content: str) -> list[str]:
    usage = [f"useState:{m.group(1)}" for m in _USE_STATE.finditer(content)]
    usage.extend(f"zustand:{m.group(1)}" for m in _STORE_HOOK.finditer(content))
    return usage


@dataclass
class _CacheEntry:
    digest: str
    analysis: ComponentAnalysis


# =============================================================================
# Analysis Engine
# =============================================================================

class AnalysisEngine:
    """
    Heuristic static analysis over a path -> content map.

    Component analyses are cached by path. Each entry remembers the digest
    of the content it was computed from, so re-analyzing changed content
    never returns stale data; ``invalidate`` drops an entry explicitly.
    """

    def __init__(self):
        self._cache: dict[str, _CacheEntry] = {}
        self._signatures: dict[str, tuple[str, ModuleSignature]] = {}
        self.project_map: Optional[ProjectMap] = None

    # -------------------------------------------------------------------------
    # Cache management
    # -------------------------------------------------------------------------

    def invalidate(self, file_path: str) -> None:
        """Forget any cached analysis of ``file_path``."""
        self._cache.pop(file_path, None)
        self._signatures.pop(file_path, None)

    def clear_cache(self) -> None:
        self._cache.clear()
        self._signatures.clear()
        self.project_map = None

    def cached_paths(self) -> list[str]:
        return list(self._cache.keys())

    def signature(self, file_path: str, content: str) -> ModuleSignature:
        """Module signature of a file, memoized on its content digest."""
        if not is_script_path(file_path):
            return ModuleSignature()
        digest = _digest(content)
        cached = self._signatures.get(file_path)
        if cached and cached[0] == digest:
            return cached[1]
        sig = parse_module_signature(content)
        self._signatures[file_path] = (digest, sig)
        return sig

    # -------------------------------------------------------------------------
    # Component analysis
    # -------------------------------------------------------------------------

    def analyze_component(self, file_path: str, content: str) -> ComponentAnalysis:
        """
        Analyze a single file.

        Args:
            file_path: Project-relative path
            content: File content

        Returns:
            ComponentAnalysis; structurally equal for identical input
        """
        digest = _digest(content)
        entry = self._cache.get(file_path)
        if entry and entry.digest == digest:
            return entry.analysis

        sig = self.signature(file_path, content)
        component_type = classify_component(file_path, content)
        file_name = file_path.split("/")[-1]

        dependencies = []
        for spec in sig.imports:
            base = normalize_import(file_path, spec.source)
            if base is not None and base not in dependencies:
                dependencies.append(base)

        props: list[str] = []
        state_usage: list[str] = []
        if component_type == ComponentType.UI_COMPONENT:
            props = extract_props(content)
        if component_type in (ComponentType.UI_COMPONENT, ComponentType.HOOK):
            state_usage = extract_state_usage(content)

        analysis = ComponentAnalysis(
            file_path=file_path,
            component_name=_EXTENSION.sub("", file_name),
            type=component_type,
            imports=list(sig.imports),
            exports=list(sig.exports),
            dependencies=dependencies,
            complexity=classify_complexity(content),
            line_count=len(content.split("\n")),
            props=props,
            state_usage=state_usage,
        )
        self._cache[file_path] = _CacheEntry(digest=digest, analysis=analysis)
        return analysis

    def describe_component(self, file_path: str, file_map: dict[str, str]) -> Optional[ComponentAnalysis]:
        """
        Analyze a file and fill in the map-dependent fields.

        Dependents come from a depth-1 trace; ``has_tests`` is true when a
        test file imports the component or shares its base name.

        Returns:
            A copy of the cached analysis with dependents filled, or None
            when the file is not in the map.
        """
        content = file_map.get(file_path)
        if content is None:
            return None

        base = self.analyze_component(file_path, content)
        analysis = ComponentAnalysis.from_dict(base.to_dict())
        trace = self.trace_dependencies(file_path, file_map, max_depth=1)
        analysis.dependents = list(trace.downstream)

        stem = analysis.component_name.lower()
        analysis.has_tests = any(
            classify_component(path, "") == ComponentType.TEST
            and (path in trace.downstream or f"/{stem}." in f"/{path.lower().split('/')[-1]}")
            for path in file_map
        )
        return analysis

    # -------------------------------------------------------------------------
    # Import resolution & dependency tracing
    # -------------------------------------------------------------------------

    def resolve_import(self, from_file: str, source: str, file_map: dict[str, str]) -> Optional[str]:
        """
        Resolve an import source to a path present in ``file_map``.

        Returns None for package imports and for local imports that match
        no file (an unresolved import is not an error here).
        """
        base = normalize_import(from_file, source)
        if base is None:
            return None
        for suffix in RESOLUTION_SUFFIXES:
            candidate = base + suffix
            if candidate in file_map:
                return candidate
        return None

    def resolved_imports(self, file_path: str, file_map: dict[str, str]) -> list[str]:
        """Resolved local imports of one file, deduplicated, in source order."""
        content = file_map.get(file_path)
        if content is None:
            return []
        resolved = []
        for spec in self.signature(file_path, content).imports:
            target = self.resolve_import(file_path, spec.source, file_map)
            if target is not None and target not in resolved:
                resolved.append(target)
        return resolved

    def trace_dependencies(self, file_path: str, file_map: dict[str, str], max_depth: int = 5) -> DependencyTrace:
        """
        Trace what a file imports (upstream) and what imports it (downstream).

        Args:
            file_path: File to trace
            file_map: Full project snapshot
            max_depth: Depth bound for the trace tree

        Returns:
            DependencyTrace; empty when the file is not in the map
        """
        if file_path not in file_map:
            return DependencyTrace(
                root_file=file_path,
                depth=0,
                upstream=[],
                downstream=[],
                circular_deps=[],
                trace_tree=DependencyTreeNode(file_path=file_path, depth=0),
            )

        upstream = self.resolved_imports(file_path, file_map)
        downstream = [
            other for other in file_map
            if other != file_path and file_path in self.resolved_imports(other, file_map)
        ]
        circular = [path for path in upstream if path in downstream]

        return DependencyTrace(
            root_file=file_path,
            depth=max_depth,
            upstream=upstream,
            downstream=downstream,
            circular_deps=circular,
            trace_tree=self._build_trace_tree(file_path, file_map, max_depth, set(), 0),
        )

    def _build_trace_tree(
        self,
        file_path: str,
        file_map: dict[str, str],
        max_depth: int,
        visited: set[str],
        depth: int,
    ) -> DependencyTreeNode:
        is_circular = file_path in visited
        node = DependencyTreeNode(file_path=file_path, depth=depth, is_circular=is_circular)
        if is_circular or depth >= max_depth:
            return node

        branch = visited | {file_path}
        for child in self.resolved_imports(file_path, file_map):
            node.children.append(self._build_trace_tree(child, file_map, max_depth, branch, depth + 1))
        return node

    # -------------------------------------------------------------------------
    # Project map
    # -------------------------------------------------------------------------

    def build_project_map(self, file_map: dict[str, str], project_root: str = "/") -> ProjectMap:
        """
        Build the dependency graph and file-role index for the whole project.

        The first pass collects the extension histogram and one node per
        file; the second pass fills the reverse imported-by edges.
        """
        graph: dict[str, DependencyNode] = {}
        by_extension: dict[str, int] = {}
        folders: set[str] = set()
        entry_points: list[str] = []
        config_files: list[str] = []
        component_files: list[str] = []

        for path, content in file_map.items():
            name = path.split("/")[-1]
            ext = name.rsplit(".", 1)[-1] if "." in name else "unknown"
            by_extension[ext] = by_extension.get(ext, 0) + 1

            parts = path.split("/")
            for i in range(1, len(parts)):
                folders.add("/".join(parts[:i]))

            sig = self.signature(path, content)
            graph[path] = DependencyNode(
                file_path=path,
                imports=sig.import_sources,
                exported_symbols=list(sig.exports),
                language=ext,
                size=len(content),
            )

            if "page.tsx" in path or "layout.tsx" in path:
                entry_points.append(path)
            if ".config." in path or path in ("package.json", "tsconfig.json"):
                config_files.append(path)
            if "/components/" in path or path.startswith("components/") or path.endswith(".tsx"):
                component_files.append(path)

        for path in graph:
            for target in self.resolved_imports(path, file_map):
                if target in graph and path not in graph[target].imported_by:
                    graph[target].imported_by.append(path)

        self.project_map = ProjectMap(
            root_path=project_root,
            total_files=len(file_map),
            total_folders=len(folders),
            files_by_extension=by_extension,
            dependency_graph=graph,
            entry_points=entry_points,
            config_files=config_files,
            component_files=component_files,
        )
        return self.project_map

    # -------------------------------------------------------------------------
    # Related files
    # -------------------------------------------------------------------------

    def find_related_files(self, issue_text: str, file_map: dict[str, str], max_results: int = 10) -> list[RelatedFile]:
        """
        Rank files by relevance to an issue description.

        Scoring per keyword: +5 when the path contains it, +4 per area-table
        fragment the path contains, +1 when the content contains it. UI files
        (.tsx/.css) get +2 when the issue mentions styling terms.

        Returns:
            Top ``max_results`` files with a positive score, best first
        """
        keywords = extract_keywords(issue_text)
        if not keywords:
            return []
        styling_issue = any(k in UI_STYLING_TERMS for k in keywords)

        results: list[RelatedFile] = []
        for path, content in file_map.items():
            score = 0
            reasons: list[str] = []
            lower_path = path.lower()
            lower_content = content.lower()

            for keyword in keywords:
                if keyword in lower_path:
                    score += 5
                    reasons.append(f'path contains "{keyword}"')
                for fragment in AREA_KEYWORDS.get(keyword, ()):
                    if fragment in lower_path:
                        score += 4
                        reasons.append(f'area match: "{keyword}" -> "{fragment}"')

            score += sum(1 for keyword in keywords if keyword in lower_content)

            if styling_issue and lower_path.endswith((".tsx", ".css")):
                score += 2

            if score > 0:
                results.append(RelatedFile(
                    path=path,
                    score=score,
                    reason="; ".join(reasons) or "keyword match in content",
                ))

        results.sort(key=lambda r: r.score, reverse=True)
        return results[:max_results]
