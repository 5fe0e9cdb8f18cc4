"""
Learning Memory
===============

Remembers which fixes worked for which problems.

Each completed, verified cycle is condensed into a FixPattern keyed by a
problem signature (category | affected area | root cause | first files).
Repeating a signature nudges its success rate; failures nudge it down.
New issues are matched against stored signatures by keyword Jaccard
similarity blended with each pattern's success rate.

Persistence goes through a PatternStore holding the whole pattern array as
one JSON blob. Loading and saving are best-effort: a store that cannot be
read yields an empty memory and a failed save is logged, never raised.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from forgeheal.db.models import KVBlob
from forgeheal.models import (
    FixPattern,
    IssueCategory,
    Task,
    TaskStatus,
    now_ms,
)


logger = logging.getLogger(__name__)

STORAGE_KEY = "forgeheal-self-improve-memory"
MAX_PATTERNS = 100
RECENCY_WINDOW_DAYS = 30
SIMILARITY_FLOOR = 0.15
STOP_WORDS = {"the", "and", "for", "from", "with", "that", "this"}

_DAY_MS = 24 * 60 * 60 * 1000
_KEYWORD_SPLIT = re.compile(r"[\s|,;:.!?()\[\]{}'\"/\\→]+")


def extract_keywords(text: Optional[str]) -> set[str]:
    """Lowercase keywords of three or more characters, stop words removed."""
    if not text or not text.strip():
        return set()
    return {
        k for k in _KEYWORD_SPLIT.split(text.lower())
        if len(k) > 2 and k not in STOP_WORDS
    }


def jaccard(a: set[str], b: set[str]) -> float:
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


@dataclass
class PatternMatch:
    """A stored pattern matched against a query."""
    pattern: FixPattern
    similarity: float  # raw keyword Jaccard
    score: float       # 0.7 * similarity + 0.3 * success_rate

    def to_dict(self) -> dict:
        return {
            "pattern": self.pattern.to_dict(),
            "similarity": round(self.similarity, 3),
            "score": round(self.score, 3),
        }


# =============================================================================
# Pattern Stores
# =============================================================================

class PatternStore(ABC):
    """Blob store for the serialized pattern array."""

    @abstractmethod
    async def load(self) -> Optional[list[dict]]:
        ...

    @abstractmethod
    async def save(self, patterns: list[dict]) -> None:
        ...


class InMemoryPatternStore(PatternStore):
    def __init__(self, patterns: Optional[list[dict]] = None):
        self.blob: Optional[list[dict]] = list(patterns) if patterns is not None else None
        self.save_count = 0

    async def load(self) -> Optional[list[dict]]:
        return list(self.blob) if self.blob is not None else None

    async def save(self, patterns: list[dict]) -> None:
        self.blob = list(patterns)
        self.save_count += 1


class DatabasePatternStore(PatternStore):
    """Stores the pattern array in the ``kv_blobs`` table under a fixed key."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession], key: str = STORAGE_KEY):
        self.session_maker = session_maker
        self.key = key

    async def load(self) -> Optional[list[dict]]:
        async with self.session_maker() as session:
            result = await session.execute(select(KVBlob).where(KVBlob.key == self.key))
            row = result.scalar_one_or_none()
            return row.value if row else None

    async def save(self, patterns: list[dict]) -> None:
        async with self.session_maker() as session:
            row = await session.get(KVBlob, self.key)
            if row is None:
                session.add(KVBlob(key=self.key, value=patterns))
            else:
                row.value = patterns
            await session.commit()


# =============================================================================
# Learning Memory
# =============================================================================

class LearningMemory:
    """
    Fix-pattern memory with similarity search and bounded capacity.

    Args:
        store: Persistence backend (defaults to an in-memory store)
        max_patterns: Capacity; over it, the lowest-scoring patterns are pruned
        recency_days: Window over which the recency factor decays to zero
        similarity_floor: Minimum blended score returned by find_similar
    """

    def __init__(
        self,
        store: Optional[PatternStore] = None,
        max_patterns: int = MAX_PATTERNS,
        recency_days: int = RECENCY_WINDOW_DAYS,
        similarity_floor: float = SIMILARITY_FLOOR,
    ):
        self.store = store or InMemoryPatternStore()
        self.max_patterns = max_patterns
        self.recency_days = recency_days
        self.similarity_floor = similarity_floor
        self._patterns: list[FixPattern] = []
        self.loaded = False

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    async def load(self) -> int:
        """
        Load patterns from the store.

        Returns:
            Number of patterns loaded (0 when the store is empty or unreadable)
        """
        self.loaded = True
        try:
            raw = await self.store.load()
        except (SQLAlchemyError, OSError, ValueError) as e:
            logger.warning("Learning memory unavailable, starting empty: %s", e)
            self._patterns = []
            return 0

        patterns: list[FixPattern] = []
        for item in raw or []:
            try:
                patterns.append(FixPattern.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.debug("Dropping malformed stored pattern: %s", e)
        self._patterns = patterns
        return len(patterns)

    async def save(self) -> bool:
        try:
            await self.store.save([p.to_dict() for p in self._patterns])
        except (SQLAlchemyError, OSError, ValueError, TypeError) as e:
            logger.warning("Failed to persist learning memory: %s", e)
            return False
        return True

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    @staticmethod
    def build_signature(task: Task) -> str:
        parts: list[str] = [task.category.value]
        if task.observation.affected_area:
            parts.append(task.observation.affected_area)
        if task.orientation.root_cause:
            parts.append(task.orientation.root_cause[:100])
        parts.extend(task.observation.detected_files[:3])
        return " | ".join(p for p in parts if p)

    @staticmethod
    def build_solution_summary(task: Task) -> str:
        changes = [c for c in task.execution.changes if not c.is_noop]
        if not changes:
            return "No changes made"
        actions = ", ".join(
            f"{c.change_type.value} {c.file_path.split('/')[-1]}" for c in changes
        )
        root_cause = task.orientation.root_cause or "Unknown cause"
        return f"{root_cause[:80]} → {actions}"

    def _find_exact(self, signature: str) -> Optional[FixPattern]:
        for pattern in self._patterns:
            if pattern.problem_signature == signature:
                return pattern
        return None

    async def record_success(
        self,
        task: Task,
        tags: Optional[list[str]] = None,
        notes: Optional[str] = None,
    ) -> Optional[FixPattern]:
        """
        Record a completed, verified task.

        An existing pattern with the same signature has its usage bumped and
        its success rate nudged toward 1; otherwise a new pattern is stored.

        Args:
            task: Finished task
            tags: Extra keywords attached to the pattern
            notes: Replaces the generated solution summary when given

        Returns:
            The created or updated pattern, or None if the task did not qualify
        """
        verification = task.execution.verification_result
        if task.status != TaskStatus.COMPLETED or verification is None or not verification.passed:
            return None

        signature = self.build_signature(task)
        pattern = self._find_exact(signature)
        if pattern is not None:
            pattern.times_used += 1
            n = pattern.times_used
            pattern.success_rate = min(1.0, (pattern.success_rate * (n - 1) + 1) / n)
            pattern.last_used = now_ms()
            for tag in tags or []:
                if tag not in pattern.tags:
                    pattern.tags.append(tag)
        else:
            files = []
            for change in task.execution.changes:
                if change.file_path not in files:
                    files.append(change.file_path)
            pattern = FixPattern(
                problem_signature=signature,
                category=task.category,
                solution=notes or self.build_solution_summary(task),
                files_involved=files,
                tags=list(tags or []),
            )
            self._patterns.append(pattern)
            if len(self._patterns) > self.max_patterns:
                self.prune()

        await self.save()
        return pattern

    async def record_failure(self, task: Task) -> Optional[FixPattern]:
        """Nudge the matching pattern's success rate down. Never creates one."""
        pattern = self._find_exact(self.build_signature(task))
        if pattern is None:
            return None
        pattern.times_used += 1
        n = pattern.times_used
        pattern.success_rate = max(0.0, (pattern.success_rate * (n - 1)) / n)
        pattern.last_used = now_ms()
        await self.save()
        return pattern

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def find_similar(self, query: Union[str, list[str], None], max_results: int = 5) -> list[PatternMatch]:
        """
        Find stored patterns similar to a description or keyword list.

        Returns:
            Matches whose blended score exceeds the floor, best first
        """
        if isinstance(query, (list, tuple, set)):
            keywords: set[str] = set()
            for item in query:
                keywords |= extract_keywords(str(item))
        else:
            keywords = extract_keywords(query)

        matches: list[PatternMatch] = []
        for pattern in self._patterns:
            pattern_keywords = extract_keywords(pattern.problem_signature)
            for tag in pattern.tags:
                pattern_keywords |= extract_keywords(tag)
            similarity = jaccard(keywords, pattern_keywords)
            score = similarity * 0.7 + pattern.success_rate * 0.3
            if score > self.similarity_floor:
                matches.append(PatternMatch(pattern=pattern, similarity=similarity, score=score))

        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:max_results]

    def find_by_category(self, category: Union[IssueCategory, str]) -> list[FixPattern]:
        category = IssueCategory(category)
        found = [p for p in self._patterns if p.category == category]
        return sorted(found, key=lambda p: p.success_rate, reverse=True)

    def all_patterns(self) -> list[FixPattern]:
        return list(self._patterns)

    def __len__(self) -> int:
        return len(self._patterns)

    def get_stats(self) -> dict[str, Any]:
        """Aggregate statistics over every stored pattern."""
        file_counts: dict[str, int] = {}
        category_counts: dict[str, int] = {}
        for pattern in self._patterns:
            for path in pattern.files_involved:
                file_counts[path] = file_counts.get(path, 0) + pattern.times_used
            category_counts[pattern.category.value] = category_counts.get(pattern.category.value, 0) + 1

        total = sum(p.times_used for p in self._patterns)
        completed = sum(round(p.times_used * p.success_rate) for p in self._patterns)

        return {
            "total_tasks": total,
            "completed_tasks": completed,
            "failed_tasks": total - completed,
            "most_modified_files": [
                {"path": path, "count": count}
                for path, count in sorted(file_counts.items(), key=lambda kv: kv[1], reverse=True)[:10]
            ],
            "common_categories": [
                {"category": cat, "count": count}
                for cat, count in sorted(category_counts.items(), key=lambda kv: kv[1], reverse=True)
            ],
            "total_patterns": len(self._patterns),
            "successful_patterns": sum(1 for p in self._patterns if p.success_rate > 0.5),
        }

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def _retention_score(self, pattern: FixPattern, now: int) -> float:
        window = self.recency_days * _DAY_MS
        recency = max(0.0, 1 - (now - pattern.last_used) / window) if window else 0.0
        return pattern.success_rate * 0.4 + min(1.0, pattern.times_used / 10) * 0.3 + recency * 0.3

    def prune(self) -> int:
        """
        Keep only the ``max_patterns`` best patterns.

        Returns:
            Number of patterns removed
        """
        if len(self._patterns) <= self.max_patterns:
            return 0
        now = now_ms()
        ranked = sorted(self._patterns, key=lambda p: self._retention_score(p, now), reverse=True)
        removed = len(ranked) - self.max_patterns
        self._patterns = ranked[:self.max_patterns]
        logger.info("Pruned %d fix patterns", removed)
        return removed

    async def clear(self) -> None:
        self._patterns = []
        await self.save()
