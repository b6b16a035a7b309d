"""Tests for the per-turn LangGraph decision loop."""

from __future__ import annotations

import pytest

from journeyflow.errors import OracleContractError
from journeyflow.messages import ChatMessage, InteractiveReply, TransitionDecision
from journeyflow.turn_graph import create_turn_graph, run_turn
from journeyflow.workflow import AgentNode, WorkflowEdge, WorkflowGraph


def _identity(template: str) -> str:
    return template


@pytest.fixture
def two_agents():
    return WorkflowGraph(
        [AgentNode(node_key="A", system_prompt_template="persona A"), AgentNode(node_key="B")],
        [WorkflowEdge(edge_key="e", from_node_key="A", to_node_key="B", llm_prompt_template="done")],
    )


class TestTurnGraph:
    def test_stay_appends_user_and_reply(self, fake_oracle, two_agents):
        graph = create_turn_graph(fake_oracle, two_agents, _identity)
        outcome = run_turn(graph, [], "A", "hello")

        assert [m.role for m in outcome.history] == ["user", "model"]
        assert outcome.next_node_key is None
        assert outcome.replied is True
        assert fake_oracle.count("evaluate") == 2
        assert fake_oracle.count("converse") == 1

    def test_converse_gets_history_without_the_new_input(self, fake_oracle, two_agents):
        prior = [ChatMessage.from_reply(InteractiveReply(concise_text="Hi"))]
        graph = create_turn_graph(fake_oracle, two_agents, _identity)
        run_turn(graph, prior, "A", "hello")

        _, persona, history, user_input = next(c for c in fake_oracle.calls if c[0] == "converse")
        assert persona == "persona A"
        assert [m.text for m in history] == ["Hi"]
        assert user_input == "hello"

    def test_evaluate_before_sees_the_new_input(self, fake_oracle, two_agents):
        graph = create_turn_graph(fake_oracle, two_agents, _identity)
        run_turn(graph, [], "A", "hello")
        first_eval = fake_oracle.calls[0]
        assert first_eval[0] == "evaluate"
        assert first_eval[3][-1].text == "hello"

    def test_transition_after_reply(self, fake_oracle, two_agents):
        fake_oracle.decisions = [
            TransitionDecision(completed=False),
            TransitionDecision(completed=True, next_node_key="B"),
        ]
        graph = create_turn_graph(fake_oracle, two_agents, _identity)
        outcome = run_turn(graph, [], "A", "that's all")

        assert outcome.next_node_key == "B"
        assert [m.role for m in outcome.history] == ["user", "model", "system"]
        assert outcome.history[-1].text == "Transitioning to: B"

    def test_agent_target_before_reply_still_gets_a_reply(self, fake_oracle, two_agents):
        fake_oracle.decisions = [
            TransitionDecision(completed=True, next_node_key="B"),
            TransitionDecision(completed=False),
        ]
        graph = create_turn_graph(fake_oracle, two_agents, _identity)
        outcome = run_turn(graph, [], "A", "hi")

        assert outcome.replied is True
        assert outcome.next_node_key is None

    def test_completed_without_target_stays(self, fake_oracle, two_agents):
        fake_oracle.decisions = [
            TransitionDecision(completed=False),
            TransitionDecision(completed=True, next_node_key=None),
        ]
        graph = create_turn_graph(fake_oracle, two_agents, _identity)
        outcome = run_turn(graph, [], "A", "hi")
        assert outcome.next_node_key is None

    def test_form_target_short_circuits(self, fake_oracle, scenario_graph):
        fake_oracle.decisions = [TransitionDecision(completed=True, next_node_key="F")]
        graph = create_turn_graph(fake_oracle, scenario_graph, _identity)
        outcome = run_turn(graph, [], "A", "yes")

        assert outcome.replied is False
        assert outcome.next_node_key == "F"
        assert [m.role for m in outcome.history] == ["user", "system"]
        assert fake_oracle.count("converse") == 0

    def test_conditions_are_rendered(self, fake_oracle, two_agents):
        graph = create_turn_graph(fake_oracle, two_agents, lambda t: t.upper())
        run_turn(graph, [], "A", "hi")
        options = fake_oracle.calls[0][2]
        assert options[0].condition == "DONE"
        assert options[0].to_node_key == "B"

    def test_input_history_is_not_mutated_on_error(self, fake_oracle, two_agents):
        prior = [ChatMessage.user("earlier")]
        fake_oracle.decisions = [TransitionDecision(completed=False), OracleContractError("bad", "oracle_evaluate")]
        graph = create_turn_graph(fake_oracle, two_agents, _identity)
        with pytest.raises(OracleContractError):
            run_turn(graph, prior, "A", "hi")
        assert [m.text for m in prior] == ["earlier"]
