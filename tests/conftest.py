"""
Core pytest configuration and fixtures for DealPilot testing.

This module provides shared test fixtures, a scripted LLM for driving the
agentic loop deterministically, and a small CRM data set.
"""

import asyncio
import copy
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List

import pytest
from dealpilot.crm import (
    CLOSED_LOST,
    CLOSED_WON,
    NEGOTIATION,
    PROPOSAL,
    Activity,
    Contact,
    Deal,
    InMemoryCRM,
)
from dealpilot.llm import LLM
from dealpilot.models import ASSISTANT_ROLE, USER_ROLE, ChatMessage, Conversation

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class ScriptedLLM(LLM):
    """An LLM whose generation steps are scripted up front.

    Each positional argument is one step: a list of text deltas and
    ``ToolCall`` objects (or an exception instance to raise mid-step).
    ``error`` makes every step fail immediately. With ``block_after=n`` the
    first step pauses after its n-th item until ``release`` is set.
    """

    provider = "scripted"

    def __init__(self, *turns, error=None, block_after=None):
        self.turns = [list(turn) for turn in turns]
        self.error = error
        self.block_after = block_after
        self.calls: List[list] = []
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def generate_response(self, messages, tools):
        self.calls.append(copy.deepcopy(messages))
        if self.error is not None:
            raise self.error
        first_step = len(self.calls) == 1
        turn = self.turns.pop(0) if self.turns else []
        for i, item in enumerate(turn, 1):
            if isinstance(item, BaseException):
                raise item
            yield item
            if first_step and self.block_after == i:
                self.started.set()
                await self.release.wait()


# ===== TEST DATA FIXTURES =====


@pytest.fixture
def sample_messages() -> List[ChatMessage]:
    """Sample chat messages for testing."""
    return [
        ChatMessage(role=USER_ROLE, content="How is my pipeline?"),
        ChatMessage(role=ASSISTANT_ROLE, content="You have 2 open deals worth R$ 15,000."),
        ChatMessage(role=USER_ROLE, content="Which one is stuck?"),
        ChatMessage(role=ASSISTANT_ROLE, content="Website redesign, 10 days without updates."),
    ]


@pytest.fixture
def sample_conversation(sample_messages) -> Conversation:
    """Sample conversation for testing."""
    return Conversation(id="001", messages=sample_messages)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def sample_crm() -> InMemoryCRM:
    """Two open deals worth 15,000 in total, one won, one lost."""
    return InMemoryCRM(
        deals=[
            Deal(
                id="d1",
                title="Website redesign",
                value=10000,
                status=NEGOTIATION,
                company_name="Acme",
                contact_name="Maria Silva",
                updated_at=NOW - timedelta(days=10),
            ),
            Deal(
                id="d2",
                title="ERP integration",
                value=5000,
                status=PROPOSAL,
                company_name="Globex",
                updated_at=NOW - timedelta(days=1),
            ),
            Deal(id="d3", title="Support contract", value=8000, status=CLOSED_WON),
            Deal(id="d4", title="Old pilot", value=2000, status=CLOSED_LOST),
        ],
        contacts=[
            Contact(id="c1", name="Maria Silva", email="maria@acme.com", company_id="acme"),
            Contact(id="c2", name="João Souza", email="joao@globex.com", company_id="globex"),
        ],
        activities=[
            Activity(
                id="a1",
                title="Call Maria",
                type="CALL",
                date=NOW + timedelta(hours=2),
                deal_id="d1",
                deal_title="Website redesign",
            ),
            Activity(
                id="a2",
                title="Send proposal",
                type="EMAIL",
                date=NOW - timedelta(days=3),
                deal_id="d2",
                deal_title="ERP integration",
            ),
            Activity(
                id="a3",
                title="Kickoff",
                type="MEETING",
                date=NOW - timedelta(hours=1),
                deal_id="d3",
                completed=True,
            ),
            Activity(
                id="a4",
                title="Prep deck",
                type="TASK",
                date=NOW - timedelta(days=5),
                deal_id="d1",
            ),
        ],
    )


# ===== DIRECTORY FIXTURES =====


@pytest.fixture
def temp_dir():
    """Temporary directory for file-based tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# ===== HELPER FIXTURES =====


@pytest.fixture
def scripted_llm():
    """The ScriptedLLM class, for building LLMs with per-test scripts."""
    return ScriptedLLM


# ===== CONFIGURATION =====


def pytest_configure(config):
    """Pytest configuration."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on location."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
