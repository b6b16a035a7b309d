"""Client for the text-completion oracle (Claude via LangChain).

Four request shapes, each asking for a single JSON object:

==============  =========================================  =====================
call            input                                      output contract
==============  =========================================  =====================
initiate        persona                                    ``InteractiveReply``
converse        persona + history + new utterance          ``InteractiveReply``
evaluate        node key + outgoing conditions + recent    ``TransitionDecision``
summarize       history (no system turns) + instructions   ``SummaryPayload``
==============  =========================================  =====================

Failure policy
--------------
* initiate / converse / evaluate raise ``OracleContractError`` when the text
  holds no valid object of the right shape, and ``OracleUnavailableError``
  when the call itself fails or times out.  Neither is ever turned into a
  default decision.
* summarize never raises: any failure yields ``FALLBACK_SUMMARY`` so the
  visitor can always finish their journey.
* evaluate with no outgoing transitions returns "not completed" without
  calling the model; a terminal node never moves.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from typing import TypeVar

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, AnyMessage, HumanMessage, SystemMessage
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from journeyflow.config import (
    ANTHROPIC_API_KEY,
    EVALUATOR_MODEL_NAME,
    MODEL_NAME,
    ORACLE_HISTORY_WINDOW,
    ORACLE_MAX_RETRIES,
    ORACLE_TIMEOUT_SECONDS,
)
from journeyflow.errors import OracleContractError, OracleError, OracleUnavailableError
from journeyflow.json_extract import JSONExtractionError, extract_json_object
from journeyflow.messages import ChatMessage, InteractiveReply, SummaryPayload, TransitionDecision
from journeyflow.prompts import (
    FALLBACK_SUMMARY,
    INITIATE_CONVERSATION_PROMPT,
    LEADING_USER_TURN,
    build_evaluation_prompt,
    build_persona_instruction,
    build_summary_prompt,
)
from journeyflow.services.metrics import metrics
from journeyflow.workflow import TransitionOption

logger = logging.getLogger(__name__)

ContractT = TypeVar("ContractT", bound=BaseModel)


# ── LLM builders ────────────────────────────────────────────────────


def _build_chat_llm() -> ChatAnthropic:
    """LLM for persona replies and summaries."""
    return ChatAnthropic(
        model=MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.4,
        max_tokens=1024,
        timeout=ORACLE_TIMEOUT_SECONDS,
        max_retries=ORACLE_MAX_RETRIES,
    )


def _build_evaluator_llm() -> ChatAnthropic:
    """Cheap deterministic LLM for transition decisions."""
    return ChatAnthropic(
        model=EVALUATOR_MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.0,
        max_tokens=512,
        timeout=ORACLE_TIMEOUT_SECONDS,
        max_retries=ORACLE_MAX_RETRIES,
    )


# ── Helpers ──────────────────────────────────────────────────────────


def _content_text(message) -> str:
    """Flatten an LLM response into plain text."""
    content = getattr(message, "content", message)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            block.get("text", "") if isinstance(block, dict) else str(block)
            for block in content
        )
    return str(content)


def to_langchain_history(history: Sequence[ChatMessage]) -> list[AnyMessage]:
    """Map session history onto LangChain messages.

    ``system`` annotations travel as user turns.  If the history opens with a
    model turn a synthetic user turn is put in front of it.
    """
    mapped: list[AnyMessage] = [
        AIMessage(content=m.text) if m.role == "model" else HumanMessage(content=m.text)
        for m in history
    ]
    if mapped and isinstance(mapped[0], AIMessage):
        mapped.insert(0, HumanMessage(content=LEADING_USER_TURN))
    return mapped


# ── Client ───────────────────────────────────────────────────────────


class TransitionOracle:
    """The four oracle jobs behind one object.

    Both LLMs are injectable so tests can pass mocks; by default they are
    built from ``journeyflow.config``.
    """

    def __init__(self, chat_llm=None, evaluator_llm=None):
        self._chat_llm = chat_llm or _build_chat_llm()
        self._evaluator_llm = evaluator_llm or _build_evaluator_llm()

    def _call(
        self,
        llm,
        messages: list[AnyMessage],
        operation: str,
        contract: type[ContractT],
    ) -> ContractT:
        """Invoke *llm* and validate the reply against *contract*."""
        t0 = time.perf_counter()
        try:
            response = llm.invoke(messages)
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "anthropic", operation, error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise OracleUnavailableError(
                f"Oracle call {operation} failed: {type(exc).__name__}", operation,
            ) from exc

        elapsed = (time.perf_counter() - t0) * 1000
        text = _content_text(response)
        try:
            parsed = contract.model_validate(extract_json_object(text))
        except (JSONExtractionError, PydanticValidationError) as exc:
            metrics.record_failure(
                "anthropic", operation, error_type="ContractViolation", latency_ms=elapsed,
            )
            logger.warning("Oracle %s returned unusable output: %r", operation, text[:500])
            raise OracleContractError(
                f"Invalid oracle response for {operation}", operation, raw_text=text,
            ) from exc

        metrics.record_success("anthropic", operation, latency_ms=elapsed)
        logger.debug("Oracle %s answered in %.0fms", operation, elapsed)
        return parsed

    # ── Public API ────────────────────────────────────────────────────

    def initiate(self, system_prompt: str) -> InteractiveReply:
        """Produce a node's opening line."""
        messages = [
            SystemMessage(content=build_persona_instruction(system_prompt)),
            HumanMessage(content=INITIATE_CONVERSATION_PROMPT),
        ]
        return self._call(self._chat_llm, messages, "oracle_initiate", InteractiveReply)

    def converse(
        self,
        system_prompt: str,
        history: Sequence[ChatMessage],
        user_input: str,
    ) -> InteractiveReply:
        """Reply to *user_input* given the *history* that preceded it."""
        messages: list[AnyMessage] = [SystemMessage(content=build_persona_instruction(system_prompt))]
        messages.extend(to_langchain_history(history))
        messages.append(HumanMessage(content=user_input))
        return self._call(self._chat_llm, messages, "oracle_converse", InteractiveReply)

    def evaluate_transition(
        self,
        current_node_key: str,
        transitions: Sequence[TransitionOption],
        history: Sequence[ChatMessage],
    ) -> TransitionDecision:
        """Decide whether the node is done and, if so, where to go."""
        if not transitions:
            return TransitionDecision(
                completed=False, next_node_key=None, reason="No outgoing transitions",
            )

        recent = list(history)[-ORACLE_HISTORY_WINDOW:]
        prompt = build_evaluation_prompt(current_node_key, transitions, recent)
        decision = self._call(
            self._evaluator_llm, [HumanMessage(content=prompt)], "oracle_evaluate", TransitionDecision,
        )

        allowed = {t.to_node_key for t in transitions}
        if decision.target is not None and decision.target not in allowed:
            logger.warning(
                "Evaluator picked %r from %s, which is not reachable from %s",
                decision.target, sorted(allowed), current_node_key,
            )
            raise OracleContractError(
                f"Oracle chose unknown transition target {decision.target!r}",
                "oracle_evaluate",
                raw_text=decision.model_dump_json(by_alias=True),
            )
        return decision

    def summarize(self, history: Sequence[ChatMessage], instructions: str | None = None) -> str:
        """Summarise the conversation; falls back to a canned recap on any failure."""
        prompt = build_summary_prompt(history, instructions)
        try:
            payload = self._call(
                self._chat_llm, [HumanMessage(content=prompt)], "oracle_summarize", SummaryPayload,
            )
        except OracleError as exc:
            logger.warning("Summary generation failed (%s); using fallback summary", exc)
            return FALLBACK_SUMMARY
        return payload.summary
