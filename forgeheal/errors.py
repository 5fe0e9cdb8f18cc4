"""
Error Types
===========

Exceptions raised by the self-improvement engine.

Input and policy errors are raised before any I/O happens. Step-level
execution errors are caught by the fix executor and recorded on the step.
The tool layer converts every one of these into a failed ToolResult.
"""


class ForgeHealError(Exception):
    """Base class for all engine errors."""
    pass


class TaskConflictError(ForgeHealError):
    """Raised when a cycle is started while another task is active."""

    def __init__(self, active_task_id: str):
        self.active_task_id = active_task_id
        super().__init__(
            f"Another improvement task is already active: {active_task_id}"
        )


class TaskNotFoundError(ForgeHealError):
    """Raised when a task or cycle id is unknown."""

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class ProtectedPathError(ForgeHealError):
    """Raised when a request targets a protected path."""

    def __init__(self, paths: list[str]):
        self.paths = list(paths)
        super().__init__(f"Cannot modify protected paths: {', '.join(self.paths)}")


class FileLimitError(ForgeHealError):
    """Raised when a fix batch exceeds the per-plan file limit."""

    def __init__(self, requested: int, limit: int):
        self.requested = requested
        self.limit = limit
        super().__init__(
            f"Too many files in one fix: {requested} requested, limit is {limit}"
        )


class FixExecutionError(ForgeHealError):
    """Raised by a single fix step; recorded on the step, never fatal to the plan."""
    pass
