"""Shared test fixtures for the journeyflow test suite."""

from __future__ import annotations

import os

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("DATABASE_URL", "sqlite://")
    os.environ.setdefault("METRICS_ENABLED", "false")


class FakeOracle:
    """Scripted stand-in for ``TransitionOracle``.

    Each queue is consumed front to back; an ``Exception`` instance in a
    queue is raised instead of returned.  Empty queues fall back to a
    default (a greeting, a reply, "not completed", a fixed summary).
    """

    def __init__(self):
        self.greetings: list = []
        self.replies: list = []
        self.decisions: list = []
        self.summaries: list = []
        self.calls: list[tuple] = []

    @staticmethod
    def _next(queue: list, default):
        if not queue:
            return default
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def initiate(self, system_prompt):
        from journeyflow.messages import InteractiveReply

        self.calls.append(("initiate", system_prompt))
        return self._next(self.greetings, InteractiveReply(concise_text="Hello there!"))

    def converse(self, system_prompt, history, user_input):
        from journeyflow.messages import InteractiveReply

        self.calls.append(("converse", system_prompt, list(history), user_input))
        return self._next(self.replies, InteractiveReply(concise_text="Tell me more."))

    def evaluate_transition(self, current_node_key, transitions, history):
        from journeyflow.messages import TransitionDecision

        self.calls.append(("evaluate", current_node_key, list(transitions), list(history)))
        return self._next(self.decisions, TransitionDecision(completed=False))

    def summarize(self, history, instructions=None):
        self.calls.append(("summarize", list(history), instructions))
        return self._next(self.summaries, "Visitor summary")

    def count(self, kind: str) -> int:
        return sum(1 for call in self.calls if call[0] == kind)


class RecordingJourneys:
    """Journey writer that keeps what it was given."""

    def __init__(self):
        self.saved: list[tuple] = []
        self.fail_with: Exception | None = None

    def save(self, version_id, email, summary):
        if self.fail_with is not None:
            raise self.fail_with
        self.saved.append((version_id, email, summary))


@pytest.fixture
def fake_oracle():
    return FakeOracle()


@pytest.fixture
def journeys():
    return RecordingJourneys()


@pytest.fixture
def scenario_graph():
    """agent A --"user confirms"--> form F --> report R."""
    from journeyflow.workflow import (
        AgentNode,
        FormConfig,
        FormNode,
        FormQuestion,
        ReportConfig,
        ReportNode,
        WorkflowEdge,
        WorkflowGraph,
    )

    return WorkflowGraph(
        nodes=[
            AgentNode(node_key="A", title="Welcome", system_prompt_template="You greet visitors of @brand."),
            FormNode(
                node_key="F",
                title="About you",
                form_config=FormConfig(
                    title="About you",
                    questions=[FormQuestion(id="q1", text="What is your name?")],
                ),
            ),
            ReportNode(
                node_key="R",
                title="Report",
                report_config=ReportConfig(title="Your report", system_prompt_template=""),
            ),
        ],
        edges=[
            WorkflowEdge(edge_key="e1", from_node_key="A", to_node_key="F", llm_prompt_template="user confirms"),
            WorkflowEdge(edge_key="e2", from_node_key="F", to_node_key="R"),
        ],
    )


@pytest.fixture
def db():
    """A fresh in-memory SQLite database per test."""
    from sqlalchemy import create_engine
    from sqlalchemy.orm import sessionmaker
    from sqlalchemy.pool import StaticPool

    from journeyflow.db.models import Base

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    testing_session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = testing_session()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()
