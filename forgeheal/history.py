"""
Task History Store
==================

Persists summaries of finished improvement cycles in the ``task_records``
table so ``forgeheal stats`` and the web backend can show past runs across
process restarts. The in-memory controller history is capped; this one is
not.
"""

import logging
from typing import Optional

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from forgeheal.db.models import TaskRecord
from forgeheal.models import Task


logger = logging.getLogger(__name__)


def task_to_record(task: Task) -> TaskRecord:
    """Build a TaskRecord row from a finished task."""
    return TaskRecord(
        task_uuid=task.id,
        description=task.description,
        category=task.category.value,
        status=task.status.value,
        risk_level=task.decision.risk_level.label,
        iterations=task.execution.iterations,
        files_changed=sorted({c.file_path for c in task.execution.changes if not c.is_noop}),
        failure_reason=task.execution.errors[-1] if task.execution.errors else None,
        payload=task.to_dict(),
    )


async def save_task(session_maker: async_sessionmaker[AsyncSession], task: Task) -> None:
    """Insert or replace the record of a task."""
    async with session_maker() as session:
        result = await session.execute(select(TaskRecord).where(TaskRecord.task_uuid == task.id))
        existing = result.scalar_one_or_none()
        if existing is not None:
            await session.delete(existing)
            await session.flush()
        session.add(task_to_record(task))
        await session.commit()
    logger.debug("Saved task record %s (%s)", task.id, task.status.value)


async def list_tasks(
    session_maker: async_sessionmaker[AsyncSession],
    limit: int = 20,
    status: Optional[str] = None,
) -> list[TaskRecord]:
    """Most recent task records first."""
    async with session_maker() as session:
        query = select(TaskRecord)
        if status:
            query = query.where(TaskRecord.status == status)
        query = query.order_by(desc(TaskRecord.id)).limit(limit)
        result = await session.execute(query)
        return list(result.scalars().all())


async def count_by_status(session_maker: async_sessionmaker[AsyncSession]) -> dict[str, int]:
    async with session_maker() as session:
        result = await session.execute(
            select(TaskRecord.status, func.count(TaskRecord.id)).group_by(TaskRecord.status)
        )
        return {status: count for status, count in result.all()}


def record_to_dict(record: TaskRecord) -> dict:
    return {
        "task_id": record.task_uuid,
        "description": record.description,
        "category": record.category,
        "status": record.status,
        "risk_level": record.risk_level,
        "iterations": record.iterations,
        "files_changed": list(record.files_changed or []),
        "failure_reason": record.failure_reason,
        "created_at": record.created_at.isoformat() if record.created_at else None,
    }
