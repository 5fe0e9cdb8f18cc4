"""
Verification Engine
===================

Checks that a set of applied changes left the codebase in a sane state.

Seven independent checks run against the updated file map:

    file_existence      every non-deleted changed file is present
    import_validity     local imports of changed files resolve
    export_consistency  every export of a changed file is defined or re-exported
    protected_paths     no modify/delete touched a protected prefix
    scope_integrity     no modify/delete fell outside the task's scope
    syntax_sanity       brackets balance (strings and comments ignored)
    downstream_impact   no importer references a deleted file or a dropped export

The result passes only when every check passes. A failure is worth a retry
only when it is one a revised edit can plausibly fix (imports, syntax,
exports); protected-path and scope violations are terminal.
"""

import logging
from typing import Iterable, Optional

from forgeheal.analysis import AnalysisEngine
from forgeheal.config import is_protected_path
from forgeheal.models import (
    ChangeType,
    FileChange,
    Task,
    VerificationCheck,
    VerificationResult,
)
from forgeheal.module_signature import is_script_path, tokenize


logger = logging.getLogger(__name__)

CHECK_NAMES = (
    "file_existence",
    "import_validity",
    "export_consistency",
    "protected_paths",
    "scope_integrity",
    "syntax_sanity",
    "downstream_impact",
)

CHECK_ALIASES = {
    "exists": "file_existence",
    "imports": "import_validity",
    "exports": "export_consistency",
    "protected": "protected_paths",
    "scope": "scope_integrity",
    "syntax": "syntax_sanity",
    "downstream": "downstream_impact",
    "related": "downstream_impact",
}

RETRYABLE_CHECKS = {"import_validity", "syntax_sanity", "export_consistency"}

_BRACKET_PAIRS = {"(": ")", "[": "]", "{": "}"}
_CLOSERS = {v: k for k, v in _BRACKET_PAIRS.items()}
_SYNTAX_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx", ".json")


def resolve_check_names(names: Optional[Iterable[str]]) -> list[str]:
    """Map check names or aliases to canonical names, keeping unknown ones."""
    if not names:
        return list(CHECK_NAMES)
    resolved = []
    for name in names:
        canonical = CHECK_ALIASES.get(name, name)
        if canonical not in resolved:
            resolved.append(canonical)
    return resolved


def check_bracket_balance(content: str, file_path: str) -> list[str]:
    """
    Report unbalanced or mismatched brackets.

    Works on the token stream, so brackets inside strings, template
    literals, regexes and comments are never counted.
    """
    issues: list[str] = []
    stack: list[tuple[str, int]] = []

    for token in tokenize(content):
        if token.kind != "punct":
            continue
        if token.value in _BRACKET_PAIRS:
            stack.append((token.value, token.line))
        elif token.value in _CLOSERS:
            if not stack:
                issues.append(f"{file_path}:{token.line} unexpected '{token.value}' with no matching opener")
                continue
            opener, line = stack.pop()
            if _BRACKET_PAIRS[opener] != token.value:
                issues.append(
                    f"{file_path}:{token.line} mismatched '{token.value}', "
                    f"expected '{_BRACKET_PAIRS[opener]}' (opened at line {line})"
                )

    for opener, line in stack:
        issues.append(f"{file_path}:{line} unclosed '{opener}'")
    return issues


def _latest_changes(changes: list[FileChange]) -> list[FileChange]:
    """Collapse cumulative changes to the latest one per path."""
    latest: dict[str, FileChange] = {}
    for change in changes:
        if change.is_noop or change.dry_run:
            continue
        latest[change.file_path] = change
    return list(latest.values())


class VerificationEngine:
    """
    Runs the verification checks.

    Args:
        analysis: Analysis engine used for import resolution and signatures
        protected_paths: Prefixes audited by the protected_paths check, in
            addition to any ``Protected:`` constraints on the task
    """

    def __init__(self, analysis: Optional[AnalysisEngine] = None, protected_paths: Iterable[str] = ()):
        self.analysis = analysis or AnalysisEngine()
        self.protected_paths = tuple(protected_paths)

    def verify(
        self,
        task: Task,
        file_map: dict[str, str],
        changes: list[FileChange],
        checks: Optional[Iterable[str]] = None,
    ) -> VerificationResult:
        """
        Verify changes against the updated file map.

        Args:
            task: Task whose scope and constraints bound the changes
            file_map: Project snapshot after the changes
            changes: Cumulative changes of the cycle
            checks: Optional subset of check names or aliases

        Returns:
            VerificationResult
        """
        effective = _latest_changes(changes)
        for change in effective:
            self.analysis.invalidate(change.file_path)

        runners = {
            "file_existence": lambda: self.check_file_existence(effective, file_map),
            "import_validity": lambda: self.check_import_validity(effective, file_map),
            "export_consistency": lambda: self.check_export_consistency(effective, file_map),
            "protected_paths": lambda: self.check_protected_paths(effective, task),
            "scope_integrity": lambda: self.check_scope_integrity(effective, task),
            "syntax_sanity": lambda: self.check_syntax_sanity(effective, file_map),
            "downstream_impact": lambda: self.check_downstream_impact(effective, file_map),
        }

        results: list[VerificationCheck] = []
        for name in resolve_check_names(checks):
            runner = runners.get(name)
            if runner is None:
                results.append(VerificationCheck(name, False, f"Unknown check: {name}"))
            else:
                results.append(runner())

        failed = [c for c in results if not c.passed]
        passed = not failed
        retry_needed = any(c.name in RETRYABLE_CHECKS for c in failed)
        result = VerificationResult(
            passed=passed,
            checks=results,
            retry_needed=retry_needed,
            reason=None if passed else f"Failed checks: {', '.join(c.name for c in failed)}",
        )
        logger.debug("Verification of task %s: %s", task.id, result.reason or "all checks passed")
        return result

    # =========================================================================
    # Individual checks
    # =========================================================================

    def check_file_existence(self, changes: list[FileChange], file_map: dict[str, str]) -> VerificationCheck:
        missing = [
            c.file_path for c in changes
            if c.change_type != ChangeType.DELETE and c.file_path not in file_map
        ]
        return VerificationCheck(
            "file_existence",
            not missing,
            f"All {len(changes)} changed files exist" if not missing
            else f"Missing files: {', '.join(missing)}",
        )

    def check_import_validity(self, changes: list[FileChange], file_map: dict[str, str]) -> VerificationCheck:
        broken: list[str] = []
        for change in changes:
            content = file_map.get(change.file_path)
            if change.change_type == ChangeType.DELETE or content is None:
                continue
            for spec in self.analysis.signature(change.file_path, content).imports:
                if not (spec.source.startswith(".") or spec.source.startswith("@/")):
                    continue
                if self.analysis.resolve_import(change.file_path, spec.source, file_map) is None:
                    broken.append(f"{change.file_path} -> {spec.source}")
        return VerificationCheck(
            "import_validity",
            not broken,
            "All local imports resolve correctly" if not broken
            else f"Broken imports: {'; '.join(broken)}",
        )

    def check_export_consistency(self, changes: list[FileChange], file_map: dict[str, str]) -> VerificationCheck:
        issues: list[str] = []
        for change in changes:
            content = file_map.get(change.file_path)
            if change.change_type == ChangeType.DELETE or content is None:
                continue
            sig = self.analysis.signature(change.file_path, content)
            defined = set(sig.definitions)
            for name in sig.local_export_refs:
                if name not in defined:
                    issues.append(f"{change.file_path}: exported '{name}' is not defined")
        return VerificationCheck(
            "export_consistency",
            not issues,
            "All exports are properly defined" if not issues
            else f"Export issues: {'; '.join(issues)}",
        )

    def check_protected_paths(self, changes: list[FileChange], task: Task) -> VerificationCheck:
        prefixes = list(self.protected_paths)
        for constraint in task.orientation.constraints:
            if constraint.startswith("Protected: "):
                prefix = constraint[len("Protected: "):]
                if prefix not in prefixes:
                    prefixes.append(prefix)

        violations = [
            c.file_path for c in changes
            if c.change_type in (ChangeType.MODIFY, ChangeType.DELETE)
            and is_protected_path(c.file_path, prefixes)
        ]
        return VerificationCheck(
            "protected_paths",
            not violations,
            "No protected paths were modified" if not violations
            else f"VIOLATION: modified protected paths: {'; '.join(violations)}",
        )

    def check_scope_integrity(self, changes: list[FileChange], task: Task) -> VerificationCheck:
        scope = set(task.orientation.scope)
        outside = [
            c.file_path for c in changes
            if c.change_type in (ChangeType.MODIFY, ChangeType.DELETE) and c.file_path not in scope
        ]
        return VerificationCheck(
            "scope_integrity",
            not outside,
            f"All changes within declared scope ({len(scope)} files)" if not outside
            else f"Out-of-scope modifications: {'; '.join(outside)}",
        )

    def check_syntax_sanity(self, changes: list[FileChange], file_map: dict[str, str]) -> VerificationCheck:
        errors: list[str] = []
        for change in changes:
            content = file_map.get(change.file_path)
            if change.change_type == ChangeType.DELETE or content is None:
                continue
            if not change.file_path.lower().endswith(_SYNTAX_EXTENSIONS):
                continue
            errors.extend(check_bracket_balance(content, change.file_path))
        return VerificationCheck(
            "syntax_sanity",
            not errors,
            "All files pass basic syntax check" if not errors
            else f"Syntax issues: {'; '.join(errors)}",
        )

    def exported_names(self, file_path: str, file_map: dict[str, str],
                       _seen: Optional[set[str]] = None) -> Optional[set[str]]:
        """
        Names a module exports, following unaliased ``export * from`` chains.

        Returns None when a star re-export points outside the map (a package),
        since its names cannot be known.
        """
        seen = _seen if _seen is not None else set()
        seen.add(file_path)
        sig = self.analysis.signature(file_path, file_map.get(file_path, ""))
        names = set(sig.exports)
        for source in sig.reexport_sources:
            target = self.analysis.resolve_import(file_path, source, file_map)
            if target is None:
                return None
            if target in seen:
                continue
            nested = self.exported_names(target, file_map, seen)
            if nested is None:
                return None
            names |= nested - {"default"}
        return names

    def check_downstream_impact(self, changes: list[FileChange], file_map: dict[str, str]) -> VerificationCheck:
        issues: list[str] = []
        deleted = {c.file_path for c in changes if c.change_type == ChangeType.DELETE}
        modified = {
            c.file_path: self.exported_names(c.file_path, file_map)
            for c in changes
            if c.change_type != ChangeType.DELETE and c.file_path in file_map
            and is_script_path(c.file_path)
        }
        if not deleted and not modified:
            return VerificationCheck("downstream_impact", True, "No downstream files are broken")

        # Deleted files are gone from the map, so resolve against map + deleted
        lookup = dict(file_map)
        for path in deleted:
            lookup.setdefault(path, "")

        for path, content in file_map.items():
            if not is_script_path(path):
                continue
            for spec in self.analysis.signature(path, content).imports:
                target = self.analysis.resolve_import(path, spec.source, lookup)
                if target is None or target == path:
                    continue
                if target in deleted:
                    issues.append(f"{path} imports from deleted file {target}")
                elif target in modified and modified[target] is not None:
                    for symbol in spec.symbols:
                        if symbol != "*" and symbol not in modified[target]:
                            issues.append(
                                f"{path} imports '{symbol}' from {target} but it is no longer exported"
                            )

        return VerificationCheck(
            "downstream_impact",
            not issues,
            "No downstream files are broken" if not issues
            else f"Downstream issues: {'; '.join(issues)}",
        )
