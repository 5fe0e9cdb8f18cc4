"""
Risk Classification Module
==========================

Classifies a fix plan by blast radius before anything is executed, so the
controller can gate risky plans behind an approval callback.

Risk levels:
- critical: more than 5 mutating steps, or the scope touches core/safety code
- high: more than 3 mutating steps, or the scope touches shared state
  (stores, providers) or the plan needs Zustand knowledge
- medium: 2 or more mutating steps
- low: anything else

Approval is required for high and critical plans, and for any plan that
edits three or more primary targets.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

from forgeheal.models import FixStep, RiskLevel, Task


CRITICAL_STEP_COUNT = 5
HIGH_STEP_COUNT = 3
MEDIUM_STEP_COUNT = 2
APPROVAL_TARGET_COUNT = 3

# Matched against whole path segments so "score.ts" does not count as "core"
CRITICAL_PATH_PATTERN = re.compile(r"(?:^|[/._-])(core|safety|agent-service)(?=[/._-]|$)", re.IGNORECASE)
SHARED_STATE_PATTERN = re.compile(r"(?:^|[/._-])(stores?|providers?)(?=[/._-]|$)", re.IGNORECASE)


@dataclass
class RiskAssessment:
    """Risk assessment of one fix plan."""
    risk_level: RiskLevel
    mutating_steps: int
    primary_targets: list[str]
    concerns: list[str] = field(default_factory=list)
    requires_approval: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "risk_level": self.risk_level.label,
            "mutating_steps": self.mutating_steps,
            "primary_targets": list(self.primary_targets),
            "concerns": list(self.concerns),
            "requires_approval": self.requires_approval,
        }


class PlanRiskClassifier:
    """
    Assesses fix plans.

    Args:
        approval_target_count: Number of primary targets that forces approval
    """

    def __init__(self, approval_target_count: int = APPROVAL_TARGET_COUNT):
        self.approval_target_count = approval_target_count
        self.stats = {"assessed": 0, "approval_required": 0}

    def assess(self, task: Task, plan: list[FixStep], primary_targets: Optional[list[str]] = None) -> RiskAssessment:
        """
        Classify a plan.

        Args:
            task: Task whose orientation (scope, skills) is considered
            plan: Planned steps
            primary_targets: Files the plan edits directly; derived from the
                plan's mutating steps when omitted

        Returns:
            RiskAssessment
        """
        mutating = [s for s in plan if s.is_mutating]
        if primary_targets is None:
            primary_targets = list(dict.fromkeys(s.target for s in mutating))

        scope = task.orientation.scope
        critical_files = [p for p in scope if CRITICAL_PATH_PATTERN.search(p)]
        shared_state_files = [p for p in scope if SHARED_STATE_PATTERN.search(p)]
        uses_zustand = "Zustand" in task.orientation.skills

        concerns: list[str] = []
        if critical_files:
            concerns.append(f"Scope touches core/safety files: {', '.join(critical_files[:5])}")
        if shared_state_files:
            concerns.append(f"Scope touches shared state: {', '.join(shared_state_files[:5])}")
        if uses_zustand:
            concerns.append("Plan involves Zustand store logic")
        if len(mutating) > HIGH_STEP_COUNT:
            concerns.append(f"{len(mutating)} mutating steps planned")

        if len(mutating) > CRITICAL_STEP_COUNT or critical_files:
            level = RiskLevel.CRITICAL
        elif len(mutating) > HIGH_STEP_COUNT or uses_zustand or shared_state_files:
            level = RiskLevel.HIGH
        elif len(mutating) >= MEDIUM_STEP_COUNT:
            level = RiskLevel.MEDIUM
        else:
            level = RiskLevel.LOW

        requires_approval = level >= RiskLevel.HIGH or len(primary_targets) >= self.approval_target_count
        if len(primary_targets) >= self.approval_target_count:
            concerns.append(f"{len(primary_targets)} primary targets")

        self.stats["assessed"] += 1
        if requires_approval:
            self.stats["approval_required"] += 1

        return RiskAssessment(
            risk_level=level,
            mutating_steps=len(mutating),
            primary_targets=list(primary_targets),
            concerns=concerns,
            requires_approval=requires_approval,
        )
