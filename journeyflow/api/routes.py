"""FastAPI routes for the visitor-facing runtime.

Oracle calls are synchronous and slow, so every session action runs in a
worker thread via ``asyncio.to_thread`` and the event loop stays free for
other visitors.  Domain errors propagate to the handlers in ``server.py``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from journeyflow.api.schemas import (
    ButtonView,
    ChoiceRequest,
    ChoiceView,
    FormSubmission,
    HealthResponse,
    MessageRequest,
    MessageView,
    ReportRequest,
    SessionView,
)
from journeyflow.db.database import get_db
from journeyflow.db.repositories.journeys import JourneyRepository
from journeyflow.services.oracle_client import TransitionOracle
from journeyflow.services.public_access import PublicAccessGateway
from journeyflow.services.session_store import SessionStore
from journeyflow.session import ConversationSession

logger = logging.getLogger(__name__)

router = APIRouter()


def _app_state(request: Request, name: str):
    """Fetch a lifespan-managed resource from app state."""
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=503,
            detail="The service is still starting up. Please try again in a moment.",
        )
    return value


def get_sessions(request: Request) -> SessionStore:
    return _app_state(request, "sessions")


def get_oracle(request: Request) -> TransitionOracle:
    return _app_state(request, "oracle")


def session_view(session: ConversationSession) -> SessionView:
    node = session.current_node
    history = [
        MessageView(
            role=m.role,
            text=m.text,
            buttons=[
                ButtonView(label=b.label, next_message=b.next_message)
                for b in (m.interactive.buttons if m.interactive else [])
            ],
        )
        for m in session.history
    ]
    choices = []
    for edge in session.pending_choices:
        target = session.workflow.get_node(edge.to_node_key)
        choices.append(
            ChoiceView(
                edge_key=edge.edge_key,
                to_node_key=edge.to_node_key,
                title=(target.title if target else "") or edge.to_node_key,
            )
        )
    return SessionView(
        session_id=session.session_id,
        version_id=session.version_id,
        status=session.status.value,
        current_node_key=session.current_node_key,
        current_node=node.model_dump(by_alias=True) if node else None,
        needs_opening=session.needs_opening,
        history=history,
        pending_choices=choices,
        report_summary=session.report_summary,
    )


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.get("/public/{token}")
def public_snapshot(token: str, db: Session = Depends(get_db)) -> dict[str, Any]:
    """The shared version with prompts and conditions resolved.  No visit is counted."""
    return PublicAccessGateway(db).load_snapshot(token).to_dict()


@router.post("/public/{token}/sessions", response_model=SessionView, status_code=201)
async def start_session(
    token: str,
    request: Request,
    db: Session = Depends(get_db),
):
    """Start a visitor session on the shared version (counts one visit)."""
    oracle = get_oracle(request)
    sessions = get_sessions(request)
    session = await asyncio.to_thread(PublicAccessGateway(db).start_session, token, oracle)
    sessions.put(session)
    logger.info(
        "[%s] Session %s started on version %s",
        getattr(request.state, "request_id", "?"), session.session_id, session.version_id,
    )
    return session_view(session)


@router.get("/sessions/{session_id}", response_model=SessionView)
async def get_session(session_id: str, request: Request):
    return session_view(get_sessions(request).get(session_id))


@router.post("/sessions/{session_id}/messages", response_model=SessionView)
async def send_message(session_id: str, body: MessageRequest, request: Request):
    """Run one visitor turn at an agent node.

    If the oracle fails the session is untouched and the client may resend
    the same message.
    """
    session = get_sessions(request).get(session_id)
    await asyncio.to_thread(session.send_message, body.message)
    return session_view(session)


@router.post("/sessions/{session_id}/open", response_model=SessionView)
async def open_node(session_id: str, request: Request):
    """Retry the current agent node's opening line (no-op when already greeted)."""
    session = get_sessions(request).get(session_id)
    await asyncio.to_thread(session.open)
    return session_view(session)


@router.post("/sessions/{session_id}/form", response_model=SessionView)
async def submit_form(session_id: str, body: FormSubmission, request: Request):
    session = get_sessions(request).get(session_id)
    await asyncio.to_thread(session.submit_form, body.answers)
    return session_view(session)


@router.post("/sessions/{session_id}/choice", response_model=SessionView)
async def choose_transition(session_id: str, body: ChoiceRequest, request: Request):
    session = get_sessions(request).get(session_id)
    await asyncio.to_thread(session.choose_transition, body.next_node_key)
    return session_view(session)


@router.post("/sessions/{session_id}/report", response_model=SessionView)
async def submit_report(
    session_id: str,
    body: ReportRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """Summarise and save the journey.  A failed save can be resubmitted."""
    session = get_sessions(request).get(session_id)
    await asyncio.to_thread(session.submit_report, body.email, JourneyRepository(db))
    return session_view(session)
