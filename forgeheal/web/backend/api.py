from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, HTTPException, Request
from pydantic import BaseModel

from forgeheal.engine import SelfImprovementEngine
from forgeheal.history import list_tasks, record_to_dict
from forgeheal.ooda_tools import TOOL_DEFINITIONS, TOOL_NAMES

router = APIRouter()


class ToolInfo(BaseModel):
    name: str
    description: str
    category: str
    risk_level: str
    input_schema: Dict[str, Any]


class ToolResponse(BaseModel):
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None


class TaskSummary(BaseModel):
    id: str
    status: str
    category: str
    description: str
    iterations: int
    risk_level: str


def get_engine(request: Request) -> SelfImprovementEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine


def _summary(task) -> TaskSummary:
    return TaskSummary(
        id=task.id,
        status=task.status.value,
        category=task.category.value,
        description=task.description,
        iterations=task.execution.iterations,
        risk_level=task.decision.risk_level.label,
    )


@router.get("/tools", response_model=List[ToolInfo])
async def list_tools():
    """List the agent tools exposed by the engine."""
    return [ToolInfo(**t) for t in TOOL_DEFINITIONS]


@router.post("/tools/{name}", response_model=ToolResponse)
async def call_tool(name: str, request: Request, args: Optional[Dict[str, Any]] = Body(default=None)):
    """Dispatch a tool call. Policy and input errors come back as success=false."""
    if name not in TOOL_NAMES:
        raise HTTPException(status_code=404, detail=f"Unknown tool: {name}")
    engine = get_engine(request)
    result = await engine.toolkit.execute(name, args or {})
    await engine.persist_finished()
    return ToolResponse(success=result.success, data=result.data, error=result.error)


@router.get("/tasks")
async def list_active_and_recent(request: Request):
    """Active task (if any) and the in-memory history, newest first."""
    engine = get_engine(request)
    return {
        "active": [_summary(t) for t in engine.controller.get_active_tasks()],
        "history": [_summary(t) for t in engine.controller.get_history()],
    }


@router.get("/tasks/{task_id}")
async def get_task(task_id: str, request: Request):
    engine = get_engine(request)
    task = engine.controller.get_task(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return task.to_dict()


@router.get("/patterns")
async def list_patterns(request: Request):
    """Stored fix patterns with aggregate statistics."""
    engine = get_engine(request)
    return {
        "patterns": [p.to_dict() for p in engine.memory.all_patterns()],
        "stats": engine.memory.get_stats(),
    }


@router.get("/history")
async def list_history(request: Request, limit: int = 20, status: Optional[str] = None):
    """Persisted records of finished tasks (CLI and tool calls); empty without a database."""
    engine = get_engine(request)
    if engine.session_maker is None:
        return []
    records = await list_tasks(engine.session_maker, limit=limit, status=status)
    return [record_to_dict(r) for r in records]
