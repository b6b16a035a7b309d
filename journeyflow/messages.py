"""Chat messages, oracle payloads and runtime variables.

``ChatMessage`` roles:

* ``user``   — something the visitor said (or a synthetic form recap).
* ``model``  — an agent reply; carries the ``interactive`` payload.
* ``system`` — a transition annotation.  Session-internal: it is sent to the
  oracle as a ``user`` turn, never as a system instruction.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "model", "system"]


class MessagePart(BaseModel):
    text: str


class Button(BaseModel):
    """A suggested quick reply: *label* is shown, *next_message* is sent."""

    label: str
    next_message: str


class InteractiveReply(BaseModel):
    """Output contract of the initiate and converse oracle calls."""

    concise_text: str
    buttons: list[Button] = Field(default_factory=list)


class TransitionDecision(BaseModel):
    """Output contract of the evaluate-transition oracle call."""

    model_config = ConfigDict(populate_by_name=True)

    completed: bool
    next_node_key: str | None = Field(default=None, alias="nextNodeKey")
    reason: str = ""

    @property
    def target(self) -> str | None:
        """The node to move to, or ``None`` when the node should stay."""
        if self.completed and self.next_node_key:
            return self.next_node_key
        return None


class SummaryPayload(BaseModel):
    """Output contract of the summarize oracle call."""

    summary: str


class ChatMessage(BaseModel):
    role: Role
    parts: list[MessagePart]
    interactive: InteractiveReply | None = None

    @property
    def text(self) -> str:
        return self.parts[0].text if self.parts else ""

    @classmethod
    def user(cls, text: str) -> ChatMessage:
        return cls(role="user", parts=[MessagePart(text=text)])

    @classmethod
    def system(cls, text: str) -> ChatMessage:
        return cls(role="system", parts=[MessagePart(text=text)])

    @classmethod
    def from_reply(cls, reply: InteractiveReply) -> ChatMessage:
        return cls(
            role="model",
            parts=[MessagePart(text=reply.concise_text)],
            interactive=reply,
        )


class RuntimeVariable(BaseModel):
    """A form answer plus the question text as it read when answered."""

    model_config = ConfigDict(populate_by_name=True)

    value: str | list[str]
    question_text: str = Field(alias="questionText")

    @property
    def display_value(self) -> str:
        if isinstance(self.value, list):
            return ", ".join(self.value)
        return self.value

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
