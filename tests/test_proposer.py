"""
Tests for the Fix Proposer
==========================

Tests for reply parsing and the Anthropic-backed proposer, with the
Messages API replaced by a recording fake.
"""

from types import SimpleNamespace

import pytest

from forgeheal.models import FixStep, StepAction, Task, VerificationCheck, VerificationResult
from forgeheal.proposer import AnthropicFixProposer, EditProposal, parse_proposal


# =============================================================================
# Fixtures
# =============================================================================

class FakeMessages:
    def __init__(self, reply: str):
        self.reply = reply
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        return SimpleNamespace(content=[SimpleNamespace(type="text", text=self.reply)])


def fake_client(reply: str):
    return SimpleNamespace(messages=FakeMessages(reply))


@pytest.fixture
def task():
    task = Task(trigger="user_report", description="Save button misaligned", category="ui_bug")
    task.orientation.root_cause = "Style issue in save-button.tsx"
    task.orientation.standards = ["Match existing code style"]
    return task


@pytest.fixture
def step():
    return FixStep(3, StepAction.EDIT, "components/header/save-button.tsx", "Apply fix")


# =============================================================================
# Parsing Tests
# =============================================================================

class TestParseProposal:
    """Tests for parse_proposal."""

    def test_fenced_json(self):
        proposal = parse_proposal('Here you go:\n```json\n{"old_str": "a", "new_str": "b", "rationale": "r"}\n```')
        assert proposal.old_str == "a"
        assert proposal.new_str == "b"
        assert proposal.rationale == "r"

    def test_bare_json_rewrite(self):
        proposal = parse_proposal('{"content": "export {};"}')
        assert proposal.content == "export {};"

    def test_skip(self):
        assert parse_proposal('{"skip": true, "rationale": "fine as is"}') is None

    def test_invalid(self):
        assert parse_proposal("no json here") is None
        assert parse_proposal("{not json}") is None
        assert parse_proposal('{"rationale": "no edit"}') is None

    def test_edit_proposal_requires_payload(self):
        with pytest.raises(ValueError):
            EditProposal(old_str="only old")

    def test_apply_to_step(self, step):
        EditProposal(content="x").apply_to(step)
        assert step.content == "x"
        assert step.has_payload


# =============================================================================
# Anthropic Proposer Tests
# =============================================================================

class TestAnthropicFixProposer:
    """Tests for AnthropicFixProposer."""

    @pytest.mark.asyncio
    async def test_propose(self, task, step):
        client = fake_client('{"old_str": "btn", "new_str": "btn btn-center"}')
        proposer = AnthropicFixProposer(model="test-model", client=client)

        proposal = await proposer.propose(task, step, 'className="btn"')

        assert proposal.new_str == "btn btn-center"
        call = client.messages.calls[0]
        assert call["model"] == "test-model"
        assert "Save button misaligned" in call["messages"][0]["content"]

    def test_prompt_includes_feedback(self, task, step):
        proposer = AnthropicFixProposer(client=fake_client(""))
        feedback = VerificationResult(
            passed=False, checks=[VerificationCheck("syntax_sanity", False, "unclosed '{'")]
        )
        prompt = proposer.build_prompt(task, step, "content", feedback)
        assert "previous attempt failed verification" in prompt
        assert "- syntax_sanity: unclosed '{'" in prompt
        assert "- Match existing code style" in prompt

    def test_prompt_truncates_large_files(self, task, step):
        proposer = AnthropicFixProposer(client=fake_client(""))
        prompt = proposer.build_prompt(task, step, "x" * 20000, None)
        assert "[... truncated ...]" in prompt
