"""CLI runner for journeyflow.

Walks one visitor session in the terminal, for testing graphs during
development.  For production, use the FastAPI server (journeyflow/server.py).

Usage:
    python -m journeyflow.main --token <public-token>     # published link, journeys stored
    python -m journeyflow.main --graph graph.json         # local file, dry run
    python -m journeyflow.main --graph graph.json --debug # show oracle calls
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from journeyflow.db.database import SessionLocal
from journeyflow.db.repositories.journeys import JourneyRepository
from journeyflow.errors import JourneyFlowError, OracleError
from journeyflow.services.oracle_client import TransitionOracle
from journeyflow.services.public_access import PublicAccessGateway
from journeyflow.session import ConversationSession, SessionStatus
from journeyflow.workflow import AgentNode, FormNode, FormQuestion, ReportNode, WorkflowGraph

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    root_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=root_level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        # Silence chatty HTTP loggers even if root is WARNING
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("journeyflow").setLevel(logging.DEBUG if debug else logging.INFO)


class DryRunJourneys:
    """Journey writer for local graphs: logs instead of storing."""

    def save(self, version_id: str, email: str, summary: dict[str, Any]) -> None:
        logger.info(
            "Dry run: journey for %s not stored (%d messages, %d variables)",
            email, len(summary["history"]), len(summary["variables"]),
        )


# ── Terminal rendering ───────────────────────────────────────────────


def _print_new_messages(session: ConversationSession, shown: int) -> int:
    for message in session.history[shown:]:
        if message.role == "model":
            print(f"\nAgent: {message.text}")
            buttons = message.interactive.buttons if message.interactive else []
            for button in buttons:
                print(f"   [{button.label}]")
        elif message.role == "system":
            print(f"\n-- {message.text} --")
    return len(session.history)


def _ask_question(question: FormQuestion) -> str | list[str]:
    print(f"\n{question.text or question.id}")
    if question.type == "text":
        return input("> ").strip()

    for index, option in enumerate(question.options, start=1):
        print(f"  {index}. {option.label}")
    while True:
        raw = input("> ").strip()
        try:
            picks = [int(p) for p in raw.replace(" ", "").split(",") if p]
            values = [question.options[p - 1].value for p in picks if p >= 1]
        except (ValueError, IndexError):
            print("  Please enter option numbers.")
            continue
        if question.type == "single_select" and len(values) == 1:
            return values[0]
        if question.type == "multi_select" and values:
            return values
        print("  Please pick " + ("one option." if question.type == "single_select" else "at least one option."))


def _run_form(session: ConversationSession, node: FormNode) -> None:
    if session.pending_choices:
        print("\nWhere to next?")
        for index, edge in enumerate(session.pending_choices, start=1):
            target = session.workflow.get_node(edge.to_node_key)
            print(f"  {index}. {(target.title if target else '') or edge.to_node_key}")
        raw = input("> ").strip()
        if raw.isdigit() and 1 <= int(raw) <= len(session.pending_choices):
            session.choose_transition(session.pending_choices[int(raw) - 1].to_node_key)
        return

    print(f"\n== {node.form_config.title or node.title or node.node_key} ==")
    answers = {q.id: _ask_question(q) for q in node.form_config.questions}
    session.submit_form(answers)


def _run_report(session: ConversationSession, node: ReportNode, journeys) -> None:
    print(f"\n== {node.report_config.title or node.title or 'Your report'} ==")
    if node.report_config.subtitle:
        print(node.report_config.subtitle)
    email = input("Email: ").strip()
    summary = session.submit_report(email, journeys)
    print(f"\n{summary}\n")


def run_session(session: ConversationSession, journeys) -> None:
    """Drive *session* from stdin until it ends or the user quits.

    A session that is not started yet is started here.
    """
    if session.status is SessionStatus.NOT_STARTED:
        session.start()
    shown = 0
    while session.status is SessionStatus.ACTIVE:
        shown = _print_new_messages(session, shown)
        node = session.current_node
        try:
            if isinstance(node, AgentNode):
                if session.needs_opening:
                    input("\n(The agent did not answer. Press Enter to retry.) ")
                    session.open()
                    continue
                user_input = input("\nYou: ").strip()
                if user_input.lower() in ("exit", "quit", "q"):
                    break
                if user_input:
                    session.send_message(user_input)
            elif isinstance(node, FormNode):
                _run_form(session, node)
            elif isinstance(node, ReportNode):
                _run_report(session, node, journeys)
        except OracleError as exc:
            logger.debug("Oracle error", exc_info=True)
            print(f"\n!! The assistant could not respond ({exc.operation}). Please try again.")
        except JourneyFlowError as exc:
            print(f"\n!! {exc}")

    _print_new_messages(session, shown)
    print("\nGoodbye!")


def main():
    """Parse arguments and run one interactive session."""
    parser = argparse.ArgumentParser(description="journeyflow CLI session runner")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--token", help="Public link token of a shared version")
    source.add_argument("--graph", type=Path, help="Local graph JSON file (dry run)")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including oracle calls",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    oracle = TransitionOracle()
    try:
        if args.graph:
            workflow = WorkflowGraph.from_dict(json.loads(args.graph.read_text(encoding="utf-8")))
            session = ConversationSession(workflow, oracle, version_id=f"local:{args.graph.name}")
            run_session(session, DryRunJourneys())
            return

        db = SessionLocal()
        try:
            session = PublicAccessGateway(db).start_session(args.token, oracle)
            run_session(session, JourneyRepository(db))
        finally:
            db.close()
    except (KeyboardInterrupt, EOFError):
        print("\n\nGoodbye!")
    except JourneyFlowError as exc:
        print(f"\nCannot run session: {exc}")


if __name__ == "__main__":
    main()
