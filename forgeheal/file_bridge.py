"""
File I/O Boundary
=================

The only seam through which the engine touches project files.

``FileBridge`` defines four async operations:
- read(path) -> content, raises FileNotFoundError when missing
- edit(path, old, new, message) -> bool, False when ``old`` is absent
- write(path, content, message) -> bool
- delete(path, message) -> bool

Two implementations ship here: ``InMemoryFileBridge`` for tests and the
web backend's scratch projects, and ``LocalFileBridge`` which works against
a directory on disk. Local writes go through a temp file and ``os.replace``
so a file is never left half-written.
"""

import asyncio
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, Optional


logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = (
    ".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs",
    ".css", ".scss", ".json", ".md",
)
DEFAULT_EXCLUDED_DIRS = ("node_modules", ".git", ".next", "dist", "build", ".forgeheal")


class FileBridge(ABC):
    """Abstract async file boundary over project-relative paths."""

    @abstractmethod
    async def read(self, path: str) -> str:
        ...

    @abstractmethod
    async def edit(self, path: str, old_str: str, new_str: str, message: str = "") -> bool:
        ...

    @abstractmethod
    async def write(self, path: str, content: str, message: str = "") -> bool:
        ...

    @abstractmethod
    async def delete(self, path: str, message: str = "") -> bool:
        ...

    @abstractmethod
    async def snapshot(self) -> dict[str, str]:
        """Full path -> content map of the project. Never partial."""
        ...


# =============================================================================
# In-memory bridge
# =============================================================================

class InMemoryFileBridge(FileBridge):
    """
    Dict-backed bridge.

    Keeps an operation log (``operations``) of (op, path, message) tuples so
    tests can assert exactly which mutations reached storage.
    """

    def __init__(self, files: Optional[dict[str, str]] = None):
        self.files: dict[str, str] = dict(files or {})
        self.operations: list[tuple[str, str, str]] = []

    async def read(self, path: str) -> str:
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path]

    async def edit(self, path: str, old_str: str, new_str: str, message: str = "") -> bool:
        content = self.files.get(path)
        if content is None or old_str not in content:
            return False
        self.files[path] = content.replace(old_str, new_str, 1)
        self.operations.append(("edit", path, message))
        return True

    async def write(self, path: str, content: str, message: str = "") -> bool:
        self.files[path] = content
        self.operations.append(("write", path, message))
        return True

    async def delete(self, path: str, message: str = "") -> bool:
        if path not in self.files:
            return False
        del self.files[path]
        self.operations.append(("delete", path, message))
        return True

    async def snapshot(self) -> dict[str, str]:
        return dict(self.files)

    @property
    def mutation_count(self) -> int:
        return len(self.operations)


# =============================================================================
# Local filesystem bridge
# =============================================================================

class LocalFileBridge(FileBridge):
    """
    Bridge over a project directory on disk.

    Args:
        root: Project root; every path is resolved relative to it
        extensions: File suffixes included in snapshots
        excluded_dirs: Directory names never descended into
    """

    def __init__(
        self,
        root: Path,
        extensions: Iterable[str] = DEFAULT_EXTENSIONS,
        excluded_dirs: Iterable[str] = DEFAULT_EXCLUDED_DIRS,
    ):
        self.root = Path(root).resolve()
        self.extensions = tuple(extensions)
        self.excluded_dirs = set(excluded_dirs)

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if target != self.root and self.root not in target.parents:
            raise ValueError(f"Path escapes project root: {path}")
        return target

    def _write_atomic(self, target: Path, content: str) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(content)
            os.replace(tmp_name, target)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    async def read(self, path: str) -> str:
        target = self._resolve(path)
        if not target.is_file():
            raise FileNotFoundError(path)
        return await asyncio.to_thread(target.read_text, encoding="utf-8")

    async def edit(self, path: str, old_str: str, new_str: str, message: str = "") -> bool:
        try:
            content = await self.read(path)
        except (FileNotFoundError, ValueError, OSError) as e:
            logger.warning("Edit of %s failed: %s", path, e)
            return False
        if old_str not in content:
            return False
        return await self.write(path, content.replace(old_str, new_str, 1), message)

    async def write(self, path: str, content: str, message: str = "") -> bool:
        try:
            target = self._resolve(path)
            await asyncio.to_thread(self._write_atomic, target, content)
        except (ValueError, OSError) as e:
            logger.warning("Write of %s failed: %s", path, e)
            return False
        logger.debug("Wrote %s (%s)", path, message or "no message")
        return True

    async def delete(self, path: str, message: str = "") -> bool:
        try:
            target = self._resolve(path)
            if not target.is_file():
                return False
            await asyncio.to_thread(target.unlink)
        except (ValueError, OSError) as e:
            logger.warning("Delete of %s failed: %s", path, e)
            return False
        logger.debug("Deleted %s (%s)", path, message or "no message")
        return True

    def _collect(self) -> dict[str, str]:
        files: dict[str, str] = {}
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if d not in self.excluded_dirs)
            for name in sorted(filenames):
                if not name.endswith(self.extensions):
                    continue
                full = Path(dirpath) / name
                rel = full.relative_to(self.root).as_posix()
                try:
                    files[rel] = full.read_text(encoding="utf-8")
                except (UnicodeDecodeError, OSError) as e:
                    logger.debug("Skipping unreadable file %s: %s", rel, e)
        return files

    async def snapshot(self) -> dict[str, str]:
        return await asyncio.to_thread(self._collect)
