"""LangGraph decision loop for one visitor turn at an agent node.

Graph:

    evaluate_before ──(target is a form?)──► transition ──► END
          │
          └──────────► converse ──► evaluate_after ──(completed?)──► transition ──► END
                                              └──(not completed)──► END

* **evaluate_before** judges the history *before* the agent answers.  When it
  points at a form node the conversation is cut short and no agent reply is
  produced for this turn.
* **converse** asks the persona for its reply.
* **evaluate_after** judges the history *including* that reply.
* **transition** appends the ``system`` annotation and names the target.

The graph runs on a copy of the session history; the session only adopts
the result after ``invoke`` returns, so an oracle error anywhere in the loop
leaves the session exactly as it was.
"""

from __future__ import annotations

import logging
import operator
from collections.abc import Callable
from dataclasses import dataclass
from typing import Annotated

from langgraph.graph import END, StateGraph
from typing_extensions import TypedDict

from journeyflow.messages import ChatMessage, TransitionDecision
from journeyflow.services.oracle_client import TransitionOracle
from journeyflow.workflow import FormNode, TransitionOption, WorkflowGraph

logger = logging.getLogger(__name__)


# ── State schema ─────────────────────────────────────────────────────


class TurnState(TypedDict):
    """The state that flows through one turn.

    ``history`` uses an ``operator.add`` reducer so each node appends rather
    than overwrites.  ``decision`` holds the latest evaluation and is
    internal plumbing read by the conditional edges.
    """

    history: Annotated[list[ChatMessage], operator.add]
    node_key: str
    user_input: str
    decision: TransitionDecision | None
    next_node_key: str | None
    replied: bool


@dataclass(frozen=True)
class TurnOutcome:
    history: list[ChatMessage]
    next_node_key: str | None
    replied: bool


def transition_note(target: str) -> ChatMessage:
    return ChatMessage.system(f"Transitioning to: {target}")


# ── Graph assembly ───────────────────────────────────────────────────


def create_turn_graph(
    oracle: TransitionOracle,
    workflow: WorkflowGraph,
    render: Callable[[str], str],
):
    """Build and compile the per-turn graph for one session.

    *render* resolves a template against the session's current variables;
    it is used for the persona prompt and for every edge condition.
    """

    def _options(node_key: str) -> list[TransitionOption]:
        return [
            TransitionOption(edge.edge_key, edge.to_node_key, render(edge.llm_prompt_template))
            for edge in workflow.outgoing_edges(node_key)
        ]

    def _evaluate(state: TurnState) -> dict:
        decision = oracle.evaluate_transition(
            state["node_key"], _options(state["node_key"]), state["history"],
        )
        logger.debug(
            "Evaluation at %s: completed=%s next=%s (%s)",
            state["node_key"], decision.completed, decision.next_node_key, decision.reason,
        )
        return {"decision": decision}

    def converse(state: TurnState) -> dict:
        node = workflow.get_node(state["node_key"])
        reply = oracle.converse(
            render(node.system_prompt_template),
            state["history"][:-1],
            state["user_input"],
        )
        return {"history": [ChatMessage.from_reply(reply)], "replied": True}

    def transition(state: TurnState) -> dict:
        target = state["decision"].target
        return {"history": [transition_note(target)], "next_node_key": target}

    def route_before_reply(state: TurnState) -> str:
        target = state["decision"].target
        if target is not None and isinstance(workflow.get_node(target), FormNode):
            return "transition"
        return "converse"

    def route_after_reply(state: TurnState) -> str:
        if state["decision"].target is not None:
            return "transition"
        return END

    graph = StateGraph(TurnState)

    graph.add_node("evaluate_before", _evaluate)
    graph.add_node("converse", converse)
    graph.add_node("evaluate_after", _evaluate)
    graph.add_node("transition", transition)

    graph.set_entry_point("evaluate_before")
    graph.add_conditional_edges(
        "evaluate_before",
        route_before_reply,
        {"transition": "transition", "converse": "converse"},
    )
    graph.add_edge("converse", "evaluate_after")
    graph.add_conditional_edges(
        "evaluate_after", route_after_reply, {"transition": "transition", END: END},
    )
    graph.add_edge("transition", END)

    return graph.compile()


def run_turn(compiled_graph, history: list[ChatMessage], node_key: str, user_input: str) -> TurnOutcome:
    """Run one turn over a copy of *history* plus the new user message."""
    result = compiled_graph.invoke(
        {
            "history": [*history, ChatMessage.user(user_input)],
            "node_key": node_key,
            "user_input": user_input,
            "decision": None,
            "next_node_key": None,
            "replied": False,
        }
    )
    return TurnOutcome(
        history=list(result["history"]),
        next_node_key=result.get("next_node_key"),
        replied=bool(result.get("replied")),
    )
