"""FastAPI routes for authors: projects, versions, nodes/edges, variables, links, leads.

The caller's identity arrives in the ``X-User-ID`` header, set by the
authenticating proxy in front of this service.  A missing header is a 401.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, Header, Request, Response
from sqlalchemy.orm import Session

from journeyflow.api.routes import get_oracle, get_sessions, session_view
from journeyflow.api.schemas import (
    AnalyticsView,
    GraphPayload,
    LeadView,
    ProjectCreate,
    ProjectView,
    PublicLinkView,
    SessionView,
    VariableRename,
    VariableValue,
    VariableView,
    VersionView,
    WorkflowView,
)
from journeyflow.db.database import get_db
from journeyflow.db.repositories.workflows import WorkflowData
from journeyflow.services.authoring import AuthoringService
from journeyflow.workflow import WorkflowGraph, parse_edge, parse_node

logger = logging.getLogger(__name__)

router = APIRouter()


def get_authoring(
    x_user_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> AuthoringService:
    return AuthoringService(db, x_user_id)


def _workflow_view(data: WorkflowData) -> WorkflowView:
    wire = data.workflow.to_dict()
    return WorkflowView(
        graph_id=data.graph.id,
        version=VersionView.model_validate(data.version),
        nodes=wire["nodes"],
        edges=wire["edges"],
    )


def _parse_payload(payload: GraphPayload):
    return [parse_node(n) for n in payload.nodes], [parse_edge(e) for e in payload.edges]


# ── Projects ─────────────────────────────────────────────────────────


@router.get("/projects", response_model=list[ProjectView])
def list_projects(service: AuthoringService = Depends(get_authoring)):
    return service.list_projects()


@router.post("/projects", response_model=ProjectView, status_code=201)
def create_project(body: ProjectCreate, service: AuthoringService = Depends(get_authoring)):
    return service.create_project(body.name, body.description)


@router.delete("/projects/{project_id}", status_code=204)
def delete_project(project_id: str, service: AuthoringService = Depends(get_authoring)):
    service.delete_project(project_id)
    return Response(status_code=204)


# ── Workflow and versions ────────────────────────────────────────────


@router.get("/projects/{project_id}/workflow", response_model=WorkflowView)
def get_workflow(
    project_id: str,
    version_id: str | None = None,
    service: AuthoringService = Depends(get_authoring),
):
    """The requested version, else the newest draft (created if none exists)."""
    return _workflow_view(service.get_workflow(project_id, version_id))


@router.get("/projects/{project_id}/versions", response_model=list[VersionView])
def list_versions(project_id: str, service: AuthoringService = Depends(get_authoring)):
    return service.list_versions(project_id)


@router.post("/projects/{project_id}/versions", response_model=VersionView, status_code=201)
def create_next_version(
    project_id: str,
    body: GraphPayload,
    service: AuthoringService = Depends(get_authoring),
):
    nodes, edges = _parse_payload(body)
    return service.create_next_version(project_id, nodes, edges)


@router.put("/versions/{version_id}/nodes")
def save_node(version_id: str, body: dict, service: AuthoringService = Depends(get_authoring)):
    node = parse_node(body)
    service.save_node(version_id, node)
    return node.model_dump(by_alias=True)


@router.delete("/versions/{version_id}/nodes/{node_key}", status_code=204)
def delete_node(version_id: str, node_key: str, service: AuthoringService = Depends(get_authoring)):
    service.delete_node(version_id, node_key)
    return Response(status_code=204)


@router.put("/versions/{version_id}/edges")
def save_edge(version_id: str, body: dict, service: AuthoringService = Depends(get_authoring)):
    edge = parse_edge(body)
    service.save_edge(version_id, edge)
    return edge.model_dump(by_alias=True)


@router.delete("/versions/{version_id}/edges/{edge_key}", status_code=204)
def delete_edge(version_id: str, edge_key: str, service: AuthoringService = Depends(get_authoring)):
    service.delete_edge(version_id, edge_key)
    return Response(status_code=204)


@router.put("/versions/{version_id}/sync", response_model=GraphPayload)
def sync_workflow(
    version_id: str,
    body: GraphPayload,
    service: AuthoringService = Depends(get_authoring),
):
    """Replace the draft's nodes and edges wholesale."""
    nodes, edges = _parse_payload(body)
    workflow: WorkflowGraph = service.sync_workflow(version_id, nodes, edges)
    return workflow.to_dict()


@router.post("/versions/{version_id}/publish", response_model=VersionView)
def publish(version_id: str, service: AuthoringService = Depends(get_authoring)):
    return service.publish(version_id)


@router.post("/versions/{version_id}/unpublish", response_model=VersionView)
def unpublish(version_id: str, service: AuthoringService = Depends(get_authoring)):
    return service.unpublish(version_id)


@router.post("/versions/{version_id}/archive", response_model=VersionView)
def archive(version_id: str, service: AuthoringService = Depends(get_authoring)):
    return service.archive(version_id)


# ── Project variables ────────────────────────────────────────────────


@router.get("/projects/{project_id}/variables", response_model=list[VariableView])
def list_variables(project_id: str, service: AuthoringService = Depends(get_authoring)):
    return service.list_variables(project_id)


@router.put("/projects/{project_id}/variables/{key}", response_model=VariableView)
def set_variable(
    project_id: str,
    key: str,
    body: VariableValue,
    service: AuthoringService = Depends(get_authoring),
):
    return service.set_variable(project_id, key, body.value)


@router.post("/projects/{project_id}/variables/{key}/rename", response_model=VariableView)
def rename_variable(
    project_id: str,
    key: str,
    body: VariableRename,
    service: AuthoringService = Depends(get_authoring),
):
    return service.rename_variable(project_id, key, body.new_key)


@router.delete("/projects/{project_id}/variables/{key}", status_code=204)
def delete_variable(project_id: str, key: str, service: AuthoringService = Depends(get_authoring)):
    service.delete_variable(project_id, key)
    return Response(status_code=204)


# ── Public links ─────────────────────────────────────────────────────


@router.get("/versions/{version_id}/public-link", response_model=PublicLinkView)
def get_public_link(version_id: str, service: AuthoringService = Depends(get_authoring)):
    return PublicLinkView(token=service.get_public_link(version_id))


@router.post("/versions/{version_id}/public-link", response_model=PublicLinkView)
def create_public_link(
    version_id: str,
    force: bool = False,
    service: AuthoringService = Depends(get_authoring),
):
    """Return the active token; ``force=true`` replaces it and resets the visit count."""
    return PublicLinkView(token=service.get_or_create_public_link(version_id, force=force))


@router.delete("/versions/{version_id}/public-link", status_code=204)
def revoke_public_link(version_id: str, service: AuthoringService = Depends(get_authoring)):
    service.revoke_public_link(version_id)
    return Response(status_code=204)


# ── Preview ──────────────────────────────────────────────────────────


@router.post("/projects/{project_id}/preview-sessions", response_model=SessionView, status_code=201)
async def start_preview(
    project_id: str,
    request: Request,
    version_id: str | None = None,
    service: AuthoringService = Depends(get_authoring),
):
    """Run the requested version (default: newest draft) without a share link.

    The session is served by the visitor session endpoints; no visit is counted.
    """
    oracle = get_oracle(request)
    sessions = get_sessions(request)
    session = await asyncio.to_thread(service.start_preview, project_id, oracle, version_id)
    sessions.put(session)
    return session_view(session)


# ── Leads ────────────────────────────────────────────────────────────


@router.get("/versions/{version_id}/leads", response_model=list[LeadView])
def list_leads(version_id: str, service: AuthoringService = Depends(get_authoring)):
    return service.list_leads(version_id)


@router.get("/versions/{version_id}/analytics", response_model=AnalyticsView)
def analytics(version_id: str, service: AuthoringService = Depends(get_authoring)):
    stats = service.analytics(version_id)
    return AnalyticsView(
        total_visits=stats.total_visits,
        total_leads=stats.total_leads,
        completion_rate=stats.completion_rate,
    )


@router.get("/versions/{version_id}/leads.csv")
def export_leads(version_id: str, service: AuthoringService = Depends(get_authoring)):
    return Response(
        content=service.export_leads_csv(version_id),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="leads-{version_id}.csv"'},
    )
