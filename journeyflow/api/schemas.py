"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "journeyflow"


# ── Runtime ──────────────────────────────────────────────────────────


class MessageRequest(BaseModel):
    """A visitor utterance at an agent node."""

    message: str = Field(..., min_length=1, max_length=4000, description="The visitor's message")


class FormSubmission(BaseModel):
    answers: dict[str, str | list[str]] = Field(
        ..., description="Question id -> answer (option values for select questions)",
    )


class ChoiceRequest(_CamelModel):
    next_node_key: str = Field(..., min_length=1)


class ReportRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=320)


class ButtonView(_CamelModel):
    label: str
    next_message: str


class MessageView(_CamelModel):
    role: str
    text: str
    buttons: list[ButtonView] = Field(default_factory=list)


class ChoiceView(_CamelModel):
    edge_key: str
    to_node_key: str
    title: str


class SessionView(_CamelModel):
    """Everything a visitor client needs to render the current step."""

    session_id: str
    version_id: str
    status: str
    current_node_key: str | None = None
    current_node: dict[str, Any] | None = None
    needs_opening: bool = False
    history: list[MessageView] = Field(default_factory=list)
    pending_choices: list[ChoiceView] = Field(default_factory=list)
    report_summary: str | None = None


# ── Authoring ────────────────────────────────────────────────────────


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""


class ProjectView(_CamelModel):
    id: str
    name: str
    description: str | None = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


class VersionView(_CamelModel):
    id: str
    graph_id: str
    version_number: int
    status: str
    public_token: str | None = None
    visit_count: int = 0
    created_at: datetime | None = None
    published_at: datetime | None = None


class GraphPayload(BaseModel):
    """Nodes and edges in wire (camelCase) form."""

    nodes: list[dict[str, Any]] = Field(default_factory=list)
    edges: list[dict[str, Any]] = Field(default_factory=list)


class WorkflowView(_CamelModel):
    graph_id: str
    version: VersionView
    nodes: list[dict[str, Any]]
    edges: list[dict[str, Any]]


class VariableValue(BaseModel):
    value: str = ""


class VariableRename(_CamelModel):
    new_key: str = Field(..., min_length=1)


class VariableView(_CamelModel):
    id: str
    key: str
    value: str


class PublicLinkView(_CamelModel):
    token: str | None = None


class LeadView(_CamelModel):
    id: str
    email: str
    created_at: datetime | None = None
    summary: dict[str, Any]


class AnalyticsView(_CamelModel):
    total_visits: int
    total_leads: int
    completion_rate: float
