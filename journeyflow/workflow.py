"""Node/edge graph model for a single graph version.

Node categories form a closed union (``AgentNode`` / ``FormNode`` /
``ReportNode``) discriminated by ``category``.  Runtime code dispatches with
``isinstance`` over these three classes and nowhere else looks at raw
configuration dicts.

Wire format is camelCase (``nodeKey``, ``fromNodeKey`` ...) to match what the
editor and the store exchange; Python attributes are snake_case.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Annotated, Any, Literal, NamedTuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from journeyflow.errors import ConfigurationError, ValidationError
from journeyflow.messages import RuntimeVariable

DEFAULT_EDGE_PROMPT = "Route to next node"


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Form / report payloads ───────────────────────────────────────────


class FormOption(_WireModel):
    id: str
    label: str
    value: str


class FormQuestion(_WireModel):
    id: str
    text: str = ""
    type: Literal["text", "single_select", "multi_select"] = "text"
    options: list[FormOption] = Field(default_factory=list)

    def coerce_answer(self, answer: Any) -> str | list[str]:
        """Check *answer* against the question type and return it normalised."""
        allowed = {option.value for option in self.options}
        if self.type == "text":
            if not isinstance(answer, str):
                raise ValidationError(f"Question {self.id!r} expects a text answer")
            return answer
        if self.type == "single_select":
            if not isinstance(answer, str) or answer not in allowed:
                raise ValidationError(f"Question {self.id!r} expects one of {sorted(allowed)}")
            return answer
        if not isinstance(answer, list) or not all(isinstance(a, str) for a in answer):
            raise ValidationError(f"Question {self.id!r} expects a list of option values")
        unknown = [a for a in answer if a not in allowed]
        if unknown:
            raise ValidationError(f"Question {self.id!r} got unknown options {unknown}")
        return answer


class FormConfig(_WireModel):
    title: str = ""
    questions: list[FormQuestion] = Field(default_factory=list)

    def question(self, question_id: str) -> FormQuestion | None:
        return next((q for q in self.questions if q.id == question_id), None)

    def enrich_answers(self, answers: dict[str, Any]) -> dict[str, RuntimeVariable]:
        """Validate *answers* and capture each question's text right now.

        The text is copied into the variable so renaming a question later
        does not rewrite what past visitors were asked.
        """
        enriched: dict[str, RuntimeVariable] = {}
        for question_id, answer in answers.items():
            question = self.question(question_id)
            if question is None:
                raise ValidationError(f"Unknown question id: {question_id!r}")
            enriched[question_id] = RuntimeVariable(
                value=question.coerce_answer(answer),
                question_text=question.text or question_id,
            )
        return enriched


class ReportConfig(_WireModel):
    title: str = ""
    subtitle: str = ""
    system_prompt_template: str = ""


class Position(_WireModel):
    x: float = 0
    y: float = 0


# ── Nodes ────────────────────────────────────────────────────────────


class _NodeBase(_WireModel):
    node_key: str = Field(min_length=1)
    title: str = ""
    position: Position = Field(default_factory=Position)


class AgentNode(_NodeBase):
    category: Literal["agent"] = "agent"
    system_prompt_template: str = ""
    structured_output_schema: dict[str, Any] = Field(default_factory=dict)


class FormNode(_NodeBase):
    category: Literal["form"] = "form"
    form_config: FormConfig = Field(default_factory=FormConfig)


class ReportNode(_NodeBase):
    category: Literal["report"] = "report"
    report_config: ReportConfig = Field(default_factory=ReportConfig)


WorkflowNode = Annotated[Union[AgentNode, FormNode, ReportNode], Field(discriminator="category")]

_node_adapter: TypeAdapter[WorkflowNode] = TypeAdapter(WorkflowNode)


def infer_category(payload: dict[str, Any]) -> str:
    """Classify a node payload that predates the explicit ``category`` field."""
    if payload.get("category"):
        return payload["category"]
    config = payload.get("config") or {}
    if config.get("category"):
        return config["category"]
    if payload.get("reportConfig") or config.get("reportConfig"):
        return "report"
    if payload.get("formConfig") or config.get("formConfig"):
        return "form"
    return "agent"


def parse_node(payload: dict[str, Any]) -> WorkflowNode:
    """Build the right node class from a wire/store dict."""
    data = dict(payload)
    config = data.get("config") or {}
    data["category"] = infer_category(data)
    # Older rows nested the category payload under ``config``
    for key in ("formConfig", "reportConfig"):
        if not data.get(key) and config.get(key):
            data[key] = config[key]
    data = {k: v for k, v in data.items() if v is not None}
    try:
        return _node_adapter.validate_python(data)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid node {payload.get('nodeKey')!r}: {exc}") from exc


# ── Edges ────────────────────────────────────────────────────────────


class WorkflowEdge(_WireModel):
    edge_key: str = Field(min_length=1)
    from_node_key: str
    to_node_key: str
    llm_prompt_template: str = DEFAULT_EDGE_PROMPT
    # Stored for the editor; the runtime never ranks edges
    priority: int = 0
    fallback: bool = False


def parse_edge(payload: dict[str, Any]) -> WorkflowEdge:
    data = {k: v for k, v in payload.items() if v is not None}
    try:
        return WorkflowEdge.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid edge {payload.get('edgeKey')!r}: {exc}") from exc


class TransitionOption(NamedTuple):
    """An outgoing edge with its condition already rendered."""

    edge_key: str
    to_node_key: str
    condition: str


# ── Graph-shape queries ──────────────────────────────────────────────


def find_start_node(
    nodes: Sequence[WorkflowNode], edges: Iterable[WorkflowEdge]
) -> WorkflowNode | None:
    """The first node that no edge points at; else the first node.

    Returns ``None`` only for an empty node list.
    """
    if not nodes:
        return None
    targets = {edge.to_node_key for edge in edges}
    for node in nodes:
        if node.node_key not in targets:
            return node
    return nodes[0]


class WorkflowGraph:
    """An immutable snapshot of one version's nodes and edges.

    Construction enforces the referential invariant: every edge must connect
    two nodes of this snapshot, and keys must be unique.
    """

    def __init__(self, nodes: Sequence[WorkflowNode], edges: Sequence[WorkflowEdge]):
        self._nodes: tuple[WorkflowNode, ...] = tuple(nodes)
        self._edges: tuple[WorkflowEdge, ...] = tuple(edges)
        self._by_key: dict[str, WorkflowNode] = {}

        for node in self._nodes:
            if node.node_key in self._by_key:
                raise ConfigurationError(f"Duplicate node key: {node.node_key!r}")
            self._by_key[node.node_key] = node

        seen_edges: set[str] = set()
        for edge in self._edges:
            if edge.edge_key in seen_edges:
                raise ConfigurationError(f"Duplicate edge key: {edge.edge_key!r}")
            seen_edges.add(edge.edge_key)
            for endpoint in (edge.from_node_key, edge.to_node_key):
                if endpoint not in self._by_key:
                    raise ConfigurationError(
                        f"Edge {edge.edge_key!r} references unknown node {endpoint!r}"
                    )

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> WorkflowGraph:
        """Build a graph from ``{"nodes": [...], "edges": [...]}`` wire dicts."""
        nodes = [parse_node(n) for n in payload.get("nodes", [])]
        edges = [parse_edge(e) for e in payload.get("edges", [])]
        return cls(nodes, edges)

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [n.model_dump(by_alias=True) for n in self._nodes],
            "edges": [e.model_dump(by_alias=True) for e in self._edges],
        }

    @property
    def nodes(self) -> tuple[WorkflowNode, ...]:
        return self._nodes

    @property
    def edges(self) -> tuple[WorkflowEdge, ...]:
        return self._edges

    def get_node(self, node_key: str) -> WorkflowNode | None:
        return self._by_key.get(node_key)

    def start_node(self) -> WorkflowNode | None:
        return find_start_node(self._nodes, self._edges)

    def outgoing_edges(self, node_key: str) -> list[WorkflowEdge]:
        """Edges leaving *node_key*, in insertion order, unranked."""
        return [edge for edge in self._edges if edge.from_node_key == node_key]

    def is_terminal(self, node_key: str) -> bool:
        return not self.outgoing_edges(node_key)
