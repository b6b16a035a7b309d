"""Fixed instructions wrapped around every oracle call."""

from __future__ import annotations

from collections.abc import Sequence

from journeyflow.messages import ChatMessage
from journeyflow.workflow import TransitionOption

INTERACTIVE_INSTRUCTION = """
Response Format (JSON):
{
  "concise_text": "A brief, punchy version of the response",
  "buttons": [
    { "label": "Button Label", "next_message": "What the user would say if they clicked this" }
  ]
}
Maintain your persona but be extremely concise in 'concise_text'.
"""

INITIATE_CONVERSATION_PROMPT = (
    "Please start the conversation and greet the user based on your persona."
)

# Anthropic requires the first turn to come from the user
LEADING_USER_TURN = (
    "System context established. Please introduce yourself and begin the "
    "conversation based on your persona."
)

EVALUATE_TRANSITION_TEMPLATE = """
Analyze the following conversation and decide if the current task/node is completed.
If completed, decide which node to transition to based on the available next steps.

Current Node: {current_node_key}
Available Transitions:
{transitions}

Recent Conversation History:
{conversation}

Respond with a JSON object:
{{
  "completed": boolean,
  "nextNodeKey": string | null (the node key if completed, else null),
  "reason": string
}}
"""

SUMMARY_PROMPT_BASE = """
Analyze the following conversation between an AI Agent and a Visitor.
Generate a concise, professional, and useful summary of the interaction.
Focus on:
1. The visitor's primary intent or needs.
2. Key information provided by the visitor (including form data if present).
3. The overall outcome or next steps discussed.

Keep the summary structured with bullet points and under 200 words.
"""

JSON_SAFETY_REMINDER = (
    "CRITICAL: Ensure the response is a valid JSON object. Escape all double "
    "quotes and newlines within the summary string."
)

SUMMARY_PROMPT_TEMPLATE = """
{instructions}

Conversation History:
{conversation}

Respond with a JSON object:
{{
  "summary": "string"
}}
"""

FALLBACK_SUMMARY = (
    "### Conversation Recap\n\n"
    "*   **Intent**: The visitor engaged with the agent to explore available options.\n"
    "*   **Key Points**: Several topics were discussed throughout the session.\n"
    "*   **Outcome**: The conversation provided initial context for the visitor's needs.\n\n"
    "*(Note: Automated summary generation encountered a temporary issue. "
    "Full chat remains available for review.)*"
)


def build_persona_instruction(system_prompt: str) -> str:
    """Persona text plus the JSON reply contract."""
    return f"{system_prompt}\n{INTERACTIVE_INSTRUCTION}"


def build_evaluation_prompt(
    current_node_key: str,
    transitions: Sequence[TransitionOption],
    recent_messages: Sequence[ChatMessage],
) -> str:
    """Render the evaluate-transition request."""
    return EVALUATE_TRANSITION_TEMPLATE.format(
        current_node_key=current_node_key,
        transitions="\n".join(f"- To {t.to_node_key}: {t.condition}" for t in transitions),
        conversation="\n".join(f"{m.role}: {m.text}" for m in recent_messages),
    )


def build_summary_prompt(history: Sequence[ChatMessage], instructions: str | None = None) -> str:
    """Render the summarize request; system annotations are left out."""
    body = instructions.strip() if instructions and instructions.strip() else SUMMARY_PROMPT_BASE
    clean = [m for m in history if m.role != "system"]
    return SUMMARY_PROMPT_TEMPLATE.format(
        instructions=f"{body}\n\n{JSON_SAFETY_REMINDER}",
        conversation="\n".join(f"{m.role.upper()}: {m.text}" for m in clean),
    )
