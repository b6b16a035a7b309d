"""Conversation session state machine.

A session is one visitor's walk through one graph version::

    NOT_STARTED ──start()──► ACTIVE(node) ──report saved / dead-end form──► TERMINAL

While ACTIVE, what the visitor may do depends on the current node:

* **agent**  — ``send_message``; runs the LangGraph turn (see ``turn_graph``).
* **form**   — ``submit_form``; then ``choose_transition`` if several edges leave.
* **report** — ``submit_report``; summarise, persist, done.

Entering an agent node whose history is empty or ends in a transition
annotation produces exactly one opening line.  Entering a form or report
node calls nothing: its own configuration is what the visitor sees.

The session is the single owner of its history and variables.  A lock makes
every public action exclusive; a second action arriving mid-turn is rejected
rather than interleaved.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from enum import Enum
from typing import Any, Protocol

from journeyflow.errors import (
    ConfigurationError,
    OracleError,
    SessionStateError,
    ValidationError,
)
from journeyflow.messages import ChatMessage, RuntimeVariable
from journeyflow.resolvers import resolve_node_prompt
from journeyflow.services.metrics import metrics
from journeyflow.services.oracle_client import TransitionOracle
from journeyflow.turn_graph import create_turn_graph, run_turn, transition_note
from journeyflow.validation import validate_email
from journeyflow.workflow import (
    AgentNode,
    FormNode,
    ReportNode,
    WorkflowEdge,
    WorkflowGraph,
    WorkflowNode,
)

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    TERMINAL = "terminal"


class JourneyWriter(Protocol):
    """Where a finished journey goes (the journey repository in production)."""

    def save(self, version_id: str, email: str, summary: dict[str, Any]) -> Any: ...


class ConversationSession:
    """Authoritative in-memory state of one visitor run."""

    def __init__(
        self,
        workflow: WorkflowGraph,
        oracle: TransitionOracle,
        *,
        version_id: str,
        project_variables: Mapping[str, str] | None = None,
        session_id: str | None = None,
    ):
        self.session_id = session_id or str(uuid.uuid4())
        self.version_id = version_id
        self.workflow = workflow
        self.project_variables: dict[str, str] = dict(project_variables or {})

        self.status = SessionStatus.NOT_STARTED
        self.current_node_key: str | None = None
        self.history: list[ChatMessage] = []
        self.runtime_variables: dict[str, RuntimeVariable] = {}
        self.pending_choices: list[WorkflowEdge] = []
        self.report_summary: str | None = None
        self.last_activity = time.monotonic()
        self._opening_due = False

        self._oracle = oracle
        self._lock = threading.Lock()
        self._turn_graph = create_turn_graph(oracle, workflow, self.render)

    # ── Read helpers ──────────────────────────────────────────────────

    def render(self, template: str) -> str:
        """Resolve *template* against project and runtime variables."""
        return resolve_node_prompt(template, self.project_variables, self.runtime_variables)

    @property
    def current_node(self) -> WorkflowNode | None:
        if self.current_node_key is None:
            return None
        return self.workflow.get_node(self.current_node_key)

    @property
    def needs_opening(self) -> bool:
        """True while a newly entered agent node is waiting for its opening line."""
        if self.status is not SessionStatus.ACTIVE:
            return False
        return self._opening_due and isinstance(self.current_node, AgentNode)

    def journey_record(self, summary: str) -> dict[str, Any]:
        """The JSON document stored for a completed journey."""
        return {
            "history": [{"role": m.role, "text": m.text} for m in self.history],
            "variables": {k: v.to_record() for k, v in self.runtime_variables.items()},
            "aiReport": summary,
        }

    # ── Lifecycle ─────────────────────────────────────────────────────

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise SessionStateError("A previous action is still being processed.")
        try:
            yield
        finally:
            self.last_activity = time.monotonic()
            self._lock.release()

    def start(self) -> None:
        """Move to the start node (and greet, if it is an agent node)."""
        with self._exclusive():
            if self.status is not SessionStatus.NOT_STARTED:
                raise SessionStateError("Session has already started.")
            start = self.workflow.start_node()
            if start is None:
                raise ConfigurationError("The graph has no nodes; a session cannot start.")
            self.status = SessionStatus.ACTIVE
            metrics.record_event("Session/Started", Category=start.category)
            logger.info("Session %s started at node %s", self.session_id, start.node_key)
            self._enter(start.node_key)

    def open(self) -> ChatMessage | None:
        """Produce the current agent node's opening line if it still lacks one.

        Idempotent: returns ``None`` without calling the oracle when no
        opening is due.  Oracle failures propagate so the caller can retry.
        """
        with self._exclusive():
            return self._open_current()

    def _open_current(self) -> ChatMessage | None:
        if not self.needs_opening:
            return None
        node = self.current_node
        reply = self._oracle.initiate(self.render(node.system_prompt_template))
        message = ChatMessage.from_reply(reply)
        self.history.append(message)
        self._opening_due = False
        return message

    def _enter(self, node_key: str) -> None:
        node = self.workflow.get_node(node_key)
        if node is None:
            raise ConfigurationError(f"Transition target {node_key!r} is not in the graph.")

        previous = self.current_node_key
        if node_key == previous:
            # Self-loop: the conversation carries on at the same node
            logger.info("Session %s stays at node %s", self.session_id, node_key)
            return

        self.current_node_key = node_key
        self._opening_due = isinstance(node, AgentNode)
        if previous is not None:
            metrics.record_event("Session/Transition", Category=node.category)
            logger.info("Session %s moved %s -> %s", self.session_id, previous, node_key)

        if isinstance(node, AgentNode):
            # The move is already committed; a failed greeting is retried via open()
            try:
                self._open_current()
            except OracleError as exc:
                logger.warning(
                    "Session %s: opening line for %s failed (%s); awaiting open()",
                    self.session_id, node_key, exc,
                )

    def _require_node(self, node_type: type, action: str):
        if self.status is not SessionStatus.ACTIVE:
            raise SessionStateError(f"Session is {self.status.value}; cannot accept {action}.")
        node = self.current_node
        if not isinstance(node, node_type):
            raise SessionStateError(
                f"Current node {self.current_node_key!r} is a {node.category} node; "
                f"cannot accept {action}."
            )
        return node

    # ── Agent nodes ───────────────────────────────────────────────────

    def send_message(self, text: str) -> list[ChatMessage]:
        """Run one visitor turn; returns the messages the turn added.

        On any oracle failure the exception propagates and neither the
        history nor the current node has changed.
        """
        text = (text or "").strip()
        if not text:
            raise ValidationError("Message must not be empty.")

        with self._exclusive():
            node = self._require_node(AgentNode, "chat messages")
            before = len(self.history)
            outcome = run_turn(self._turn_graph, self.history, node.node_key, text)

            self.history = outcome.history
            if outcome.next_node_key is not None:
                self._enter(outcome.next_node_key)
            return self.history[before:]

    # ── Form nodes ────────────────────────────────────────────────────

    def submit_form(self, answers: Mapping[str, Any]) -> None:
        """Store the answers, then follow the single edge or offer a choice."""
        with self._exclusive():
            node = self._require_node(FormNode, "form answers")
            if self.pending_choices:
                raise SessionStateError("The form was already submitted; choose the next step.")

            enriched = node.form_config.enrich_answers(dict(answers))
            recap = "\n".join(f"{v.question_text}: {v.display_value}" for v in enriched.values())
            self.history.append(ChatMessage.user(f"Form Completed:\n{recap}"))
            self.runtime_variables.update(enriched)

            edges = self.workflow.outgoing_edges(node.node_key)
            if len(edges) == 1:
                target = edges[0].to_node_key
                self.history.append(ChatMessage.system(f"Form completed. Transitioning to: {target}"))
                self._enter(target)
            elif edges:
                self.pending_choices = edges
            else:
                self.status = SessionStatus.TERMINAL
                logger.info("Session %s ended at dead-end form %s", self.session_id, node.node_key)

    def choose_transition(self, to_node_key: str) -> None:
        """Follow one of the edges offered after a form with several exits."""
        with self._exclusive():
            self._require_node(FormNode, "a transition choice")
            if not self.pending_choices:
                raise SessionStateError("No transition choice is pending.")
            if to_node_key not in {edge.to_node_key for edge in self.pending_choices}:
                raise ValidationError(f"{to_node_key!r} is not one of the offered next steps.")

            self.history.append(transition_note(to_node_key))
            self.pending_choices = []
            self._enter(to_node_key)

    # ── Report nodes ──────────────────────────────────────────────────

    def submit_report(self, email: str, journeys: JourneyWriter) -> str:
        """Summarise, persist the journey and return the summary.

        A summary failure already degrades to the fallback text inside the
        oracle client.  A persistence failure propagates; nothing changes and
        the visitor may submit again.  Each successful submission inserts a
        new journey row.
        """
        email = validate_email(email)
        with self._exclusive():
            node = self.current_node
            if self.status is SessionStatus.NOT_STARTED or not isinstance(node, ReportNode):
                raise SessionStateError("The session is not at a report step.")

            instructions = self.render(node.report_config.system_prompt_template).strip()
            summary = self._oracle.summarize(self.history, instructions or None)
            journeys.save(self.version_id, email, self.journey_record(summary))

            self.report_summary = summary
            self.status = SessionStatus.TERMINAL
            metrics.record_event("Journey/Saved")
            logger.info("Session %s saved its journey", self.session_id)
            return summary
