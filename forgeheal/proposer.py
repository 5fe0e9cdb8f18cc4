"""
Fix Proposer
============

Fills in the concrete edit for a planned step.

The controller plans *which* files to edit; a proposer decides *what* the
edit is. ``AnthropicFixProposer`` asks the Anthropic Messages API for either
a surgical replacement (``old_str``/``new_str``) or a full rewrite
(``content``) and parses the JSON answer, tolerating markdown code fences.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from anthropic import APIError, AsyncAnthropic

from forgeheal.config import DEFAULT_MODEL
from forgeheal.models import FixStep, Task, VerificationResult


logger = logging.getLogger(__name__)

MAX_FILE_CHARS = 12000

PROPOSAL_PROMPT = """You are repairing a file in the CodeForge IDE codebase.

Issue: {description}
Category: {category}
Likely root cause: {root_cause}
Standards:
{standards}

{feedback}File: {path}
```
{content}
```

Reply with a single JSON object, either
  {{"old_str": "<exact text to replace>", "new_str": "<replacement>", "rationale": "<why>"}}
or, only if the whole file must change,
  {{"content": "<full new file>", "rationale": "<why>"}}
If this file needs no change, reply {{"skip": true, "rationale": "<why>"}}.
"""


@dataclass
class EditProposal:
    """A concrete edit for one step."""
    old_str: Optional[str] = None
    new_str: Optional[str] = None
    content: Optional[str] = None
    rationale: str = ""

    def __post_init__(self):
        surgical = self.old_str is not None and self.new_str is not None
        if not surgical and self.content is None:
            raise ValueError("EditProposal needs old_str/new_str or content")

    def apply_to(self, step: FixStep) -> None:
        step.old_str = self.old_str
        step.new_str = self.new_str
        step.content = self.content


class FixProposer(ABC):
    """Produces the concrete edit for an edit step."""

    @abstractmethod
    async def propose(
        self,
        task: Task,
        step: FixStep,
        content: str,
        feedback: Optional[VerificationResult] = None,
    ) -> Optional[EditProposal]:
        """
        Args:
            task: Task being fixed (orientation carries the root cause)
            step: Edit step to fill
            content: Current content of the step's target
            feedback: Last failed verification, on retries

        Returns:
            EditProposal, or None when no edit should be made
        """
        ...


def parse_proposal(response_text: str) -> Optional[EditProposal]:
    """
    Parse a model reply into an EditProposal.

    Returns:
        EditProposal if parsing succeeds, None otherwise
    """
    try:
        # Extract JSON from response (handle markdown code blocks)
        json_match = re.search(r"```(?:json)?\s*(\{.*\})\s*```", response_text, re.DOTALL)
        if json_match:
            json_str = json_match.group(1)
        else:
            json_match = re.search(r"\{.*\}", response_text, re.DOTALL)
            if not json_match:
                return None
            json_str = json_match.group(0)

        data = json.loads(json_str)
        if data.get("skip"):
            return None
        return EditProposal(
            old_str=data.get("old_str"),
            new_str=data.get("new_str"),
            content=data.get("content"),
            rationale=data.get("rationale", ""),
        )
    except (json.JSONDecodeError, AttributeError, TypeError, ValueError) as e:
        logger.warning("Failed to parse fix proposal: %s", e)
        return None


class AnthropicFixProposer(FixProposer):
    """
    Proposer backed by the Anthropic Messages API.

    Args:
        model: Model id (defaults to the configured model)
        client: Optional pre-built AsyncAnthropic client
        max_tokens: Reply budget
    """

    def __init__(self, model: str = DEFAULT_MODEL, client: Optional[AsyncAnthropic] = None, max_tokens: int = 4000):
        self.model = model
        self.client = client or AsyncAnthropic()
        self.max_tokens = max_tokens

    def build_prompt(self, task: Task, step: FixStep, content: str, feedback: Optional[VerificationResult]) -> str:
        if len(content) > MAX_FILE_CHARS:
            content = content[:MAX_FILE_CHARS] + "\n[... truncated ...]"
        feedback_text = ""
        if feedback is not None and not feedback.passed:
            failed = "\n".join(f"- {c.name}: {c.details}" for c in feedback.failed_checks)
            feedback_text = f"The previous attempt failed verification:\n{failed}\n\n"
        return PROPOSAL_PROMPT.format(
            description=task.description,
            category=task.category.value,
            root_cause=task.orientation.root_cause,
            standards="\n".join(f"- {s}" for s in task.orientation.standards),
            feedback=feedback_text,
            path=step.target,
            content=content,
        )

    async def propose(
        self,
        task: Task,
        step: FixStep,
        content: str,
        feedback: Optional[VerificationResult] = None,
    ) -> Optional[EditProposal]:
        prompt = self.build_prompt(task, step, content, feedback)
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except APIError as e:
            logger.warning("Fix proposal request failed for %s: %s", step.target, e)
            return None

        response_text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        return parse_proposal(response_text)
