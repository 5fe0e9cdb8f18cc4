"""
Engine Assembly
===============

Builds a fully wired self-improvement engine.

Every component is constructed here and handed to its consumers
explicitly; nothing in the package holds a module-level engine instance.
Tests build engines over an InMemoryFileBridge, the CLI and the web backend
over a LocalFileBridge with a database-backed learning memory.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from forgeheal.analysis import AnalysisEngine
from forgeheal.config import HealConfig
from forgeheal.controller import ApprovalCallback, OODAController
from forgeheal.db.connection import init_db
from forgeheal.file_bridge import DEFAULT_EXCLUDED_DIRS, FileBridge, LocalFileBridge
from forgeheal.fix_executor import FixExecutor
from forgeheal.history import save_task
from forgeheal.learning import DatabasePatternStore, LearningMemory, PatternStore
from forgeheal.ooda_tools import FileSupplier, OODAToolkit
from forgeheal.proposer import AnthropicFixProposer, FixProposer
from forgeheal.risk import PlanRiskClassifier
from forgeheal.verification import VerificationEngine


logger = logging.getLogger(__name__)


@dataclass
class SelfImprovementEngine:
    """Container for one wired engine."""
    config: HealConfig
    bridge: FileBridge
    file_supplier: FileSupplier
    analysis: AnalysisEngine
    executor: FixExecutor
    verifier: VerificationEngine
    risk: PlanRiskClassifier
    memory: LearningMemory
    controller: OODAController
    toolkit: OODAToolkit
    session_maker: Optional[object] = field(default=None, repr=False)
    _persisted: set[str] = field(default_factory=set, repr=False)

    async def snapshot(self) -> dict[str, str]:
        """Current project snapshot from the file supplier."""
        return await self.file_supplier()

    async def persist_finished(self) -> int:
        """
        Write a history record for each finished task not yet saved.

        A no-op without a database. Returns the number of records written.
        """
        if self.session_maker is None:
            return 0
        written = 0
        for task in reversed(self.controller.get_history()):
            if task.id in self._persisted:
                continue
            await save_task(self.session_maker, task)
            self._persisted.add(task.id)
            written += 1
        return written


def create_engine(
    config: Optional[HealConfig],
    bridge: FileBridge,
    file_supplier: Optional[FileSupplier] = None,
    *,
    pattern_store: Optional[PatternStore] = None,
    proposer: Optional[FixProposer] = None,
    on_approval_required: Optional[ApprovalCallback] = None,
) -> SelfImprovementEngine:
    """
    Wire an engine over a file bridge.

    Args:
        config: Engine configuration (defaults when None)
        bridge: File I/O boundary
        file_supplier: Async snapshot callable (defaults to ``bridge.snapshot``)
        pattern_store: Learning memory backend (in-memory when None)
        proposer: Source of concrete edits for autonomous cycles
        on_approval_required: Approval callback used by the tool layer

    Returns:
        SelfImprovementEngine (memory not yet loaded)
    """
    config = config or HealConfig()
    file_supplier = file_supplier or bridge.snapshot

    analysis = AnalysisEngine()
    executor = FixExecutor(bridge, analysis)
    verifier = VerificationEngine(analysis, config.protected_paths)
    risk = PlanRiskClassifier()
    memory = LearningMemory(
        pattern_store,
        max_patterns=config.max_patterns,
        recency_days=config.pattern_recency_days,
        similarity_floor=config.similarity_floor,
    )
    controller = OODAController(
        analysis,
        executor,
        verifier,
        config,
        memory=memory,
        proposer=proposer,
        risk=risk,
    )
    toolkit = OODAToolkit(
        controller,
        executor,
        analysis,
        memory,
        file_supplier,
        config,
        on_approval_required=on_approval_required,
    )
    return SelfImprovementEngine(
        config=config,
        bridge=bridge,
        file_supplier=file_supplier,
        analysis=analysis,
        executor=executor,
        verifier=verifier,
        risk=risk,
        memory=memory,
        controller=controller,
        toolkit=toolkit,
    )


async def create_engine_async(
    config: Optional[HealConfig],
    bridge: FileBridge,
    file_supplier: Optional[FileSupplier] = None,
    **kwargs,
) -> SelfImprovementEngine:
    """Like ``create_engine``, then load the learning memory from its store."""
    engine = create_engine(config, bridge, file_supplier, **kwargs)
    loaded = await engine.memory.load()
    logger.debug("Loaded %d fix patterns", loaded)
    return engine


async def open_project(
    project_dir: Path,
    config: Optional[HealConfig] = None,
    *,
    use_llm: bool = True,
    on_approval_required: Optional[ApprovalCallback] = None,
) -> SelfImprovementEngine:
    """
    Build an engine over a project directory on disk.

    Initializes ``<project>/<data_dir>/forgeheal.db`` for the learning memory
    and, when ``use_llm`` is set and an API key is present, wires the
    Anthropic fix proposer.
    """
    project_dir = Path(project_dir).resolve()
    config = config or HealConfig.load()

    session_maker = await init_db(project_dir, config.data_dir)
    bridge = LocalFileBridge(project_dir, excluded_dirs=set(DEFAULT_EXCLUDED_DIRS) | {config.data_dir})

    proposer = None
    if use_llm:
        if os.environ.get("ANTHROPIC_API_KEY"):
            proposer = AnthropicFixProposer(model=config.model)
        else:
            logger.warning("ANTHROPIC_API_KEY not set: cycles will plan fixes without proposing edits")

    engine = await create_engine_async(
        config,
        bridge,
        pattern_store=DatabasePatternStore(session_maker),
        proposer=proposer,
        on_approval_required=on_approval_required,
    )
    engine.session_maker = session_maker
    return engine
