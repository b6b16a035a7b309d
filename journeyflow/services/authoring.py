"""Owner-scoped facade over the authoring repositories.

Every operation needs a user id.  It is checked before any query runs, and
ownership is checked next: someone else's project or version is reported as
not found.  Destructive operations take an optional ``confirm`` callback;
the HTTP layer treats the DELETE request itself as confirmation and passes
none.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from sqlalchemy.orm import Session

from journeyflow.db.models import GraphVersion, Project, ProjectVariable, UserJourney
from journeyflow.db.repositories.journeys import JourneyRepository, LeadAnalytics
from journeyflow.db.repositories.projects import ProjectRepository
from journeyflow.db.repositories.public_links import PublicLinkRepository
from journeyflow.db.repositories.variables import VariableRepository
from journeyflow.db.repositories.workflows import WorkflowData, WorkflowRepository
from journeyflow.errors import NotFoundError, UnauthorizedError, ValidationError
from journeyflow.services.export import leads_to_csv
from journeyflow.services.oracle_client import TransitionOracle
from journeyflow.session import ConversationSession
from journeyflow.workflow import WorkflowEdge, WorkflowGraph, WorkflowNode

logger = logging.getLogger(__name__)

ConfirmCallback = Callable[[str], bool]


class AuthoringService:
    def __init__(self, db: Session, user_id: str | None):
        self.user_id = (user_id or "").strip() or None
        self._projects = ProjectRepository(db)
        self._workflows = WorkflowRepository(db)
        self._variables = VariableRepository(db)
        self._links = PublicLinkRepository(db)
        self._journeys = JourneyRepository(db)

    # ── Guards ───────────────────────────────────────────────────────

    def _require_user(self) -> str:
        if not self.user_id:
            raise UnauthorizedError("Sign in to manage projects.")
        return self.user_id

    def _owned_project(self, project_id: str) -> Project:
        user_id = self._require_user()
        project = self._projects.get_project(project_id)
        if project is None or project.user_id != user_id:
            raise NotFoundError(f"Project {project_id} not found")
        return project

    def _owned_version(self, version_id: str) -> GraphVersion:
        user_id = self._require_user()
        version = self._workflows.get_version(version_id)
        project = version.graph.project
        if project is None or project.deleted_at is not None or project.user_id != user_id:
            raise NotFoundError(f"Version {version_id} not found")
        return version

    def _touch(self, version: GraphVersion) -> None:
        self._projects.touch(version.graph.project)

    @staticmethod
    def _confirmed(confirm: ConfirmCallback | None, message: str) -> bool:
        if confirm is None:
            return True
        if not confirm(message):
            logger.info("Cancelled: %s", message)
            return False
        return True

    # ── Projects ─────────────────────────────────────────────────────

    def list_projects(self) -> list[Project]:
        return self._projects.list_projects(self._require_user())

    def create_project(self, name: str, description: str = "") -> Project:
        user_id = self._require_user()
        name = (name or "").strip()
        if not name:
            raise ValidationError("Project name is required.")
        project = self._projects.create_project(user_id, name, description)
        logger.info("User %s created project %s", user_id, project.id)
        return project

    def delete_project(self, project_id: str, confirm: ConfirmCallback | None = None) -> bool:
        project = self._owned_project(project_id)
        if not self._confirmed(confirm, f"Delete project {project.name!r}?"):
            return False
        return self._projects.soft_delete(project.id)

    # ── Workflow and versions ────────────────────────────────────────

    def get_workflow(self, project_id: str, version_id: str | None = None) -> WorkflowData:
        project = self._owned_project(project_id)
        return self._workflows.get_workflow(project.id, version_id)

    def list_versions(self, project_id: str) -> list[GraphVersion]:
        project = self._owned_project(project_id)
        graph = self._workflows.get_or_create_graph(project.id)
        return self._workflows.list_versions(graph.id)

    def create_next_version(
        self,
        project_id: str,
        nodes: Iterable[WorkflowNode],
        edges: Iterable[WorkflowEdge],
    ) -> GraphVersion:
        project = self._owned_project(project_id)
        graph = self._workflows.get_or_create_graph(project.id)
        version = self._workflows.create_next_version(graph.id, nodes, edges)
        self._projects.touch(project)
        return version

    def save_node(self, version_id: str, node: WorkflowNode):
        version = self._owned_version(version_id)
        row = self._workflows.save_node(version.id, node)
        self._touch(version)
        return row

    def save_edge(self, version_id: str, edge: WorkflowEdge):
        version = self._owned_version(version_id)
        row = self._workflows.save_edge(version.id, edge)
        self._touch(version)
        return row

    def delete_node(
        self, version_id: str, node_key: str, confirm: ConfirmCallback | None = None
    ) -> bool:
        version = self._owned_version(version_id)
        if not self._confirmed(confirm, f"Delete node {node_key!r} and its connections?"):
            return False
        return self._workflows.delete_node(version.id, node_key)

    def delete_edge(self, version_id: str, edge_key: str) -> bool:
        version = self._owned_version(version_id)
        return self._workflows.delete_edge(version.id, edge_key)

    def sync_workflow(
        self,
        version_id: str,
        nodes: Iterable[WorkflowNode],
        edges: Iterable[WorkflowEdge],
    ) -> WorkflowGraph:
        version = self._owned_version(version_id)
        workflow = self._workflows.sync_workflow(version.id, nodes, edges)
        self._touch(version)
        return workflow

    def publish(self, version_id: str) -> GraphVersion:
        version = self._owned_version(version_id)
        published = self._workflows.publish(version.id)
        self._touch(published)
        return published

    def unpublish(self, version_id: str) -> GraphVersion:
        return self._workflows.unpublish(self._owned_version(version_id).id)

    def archive(self, version_id: str) -> GraphVersion:
        return self._workflows.archive(self._owned_version(version_id).id)

    # ── Project variables ────────────────────────────────────────────

    def list_variables(self, project_id: str) -> list[ProjectVariable]:
        return self._variables.list_variables(self._owned_project(project_id).id)

    def set_variable(self, project_id: str, key: str, value: str) -> ProjectVariable:
        return self._variables.upsert(self._owned_project(project_id).id, key, value)

    def rename_variable(self, project_id: str, old_key: str, new_key: str) -> ProjectVariable:
        return self._variables.rename(self._owned_project(project_id).id, old_key, new_key)

    def delete_variable(self, project_id: str, key: str) -> bool:
        return self._variables.delete(self._owned_project(project_id).id, key)

    # ── Public links ─────────────────────────────────────────────────

    def get_or_create_public_link(self, version_id: str, force: bool = False) -> str:
        return self._links.get_or_create(self._owned_version(version_id).id, force=force)

    def get_public_link(self, version_id: str) -> str | None:
        return self._links.get(self._owned_version(version_id).id)

    def revoke_public_link(self, version_id: str) -> bool:
        return self._links.revoke(self._owned_version(version_id).id)

    # ── Preview ──────────────────────────────────────────────────────

    def start_preview(
        self,
        project_id: str,
        oracle: TransitionOracle,
        version_id: str | None = None,
    ) -> ConversationSession:
        """Start a session on any of the author's versions, drafts included.

        No share token is needed and no visit is counted.  A report submitted
        in a preview is saved like any other journey.
        """
        data = self.get_workflow(project_id, version_id)
        session = ConversationSession(
            data.workflow,
            oracle,
            version_id=data.version.id,
            project_variables=self._variables.as_map(data.graph.project_id),
        )
        session.start()
        logger.info(
            "User %s previewing version %s as session %s",
            self.user_id, data.version.id, session.session_id,
        )
        return session

    # ── Leads ────────────────────────────────────────────────────────

    def list_leads(self, version_id: str) -> list[UserJourney]:
        return self._journeys.list_leads(self._owned_version(version_id).id)

    def analytics(self, version_id: str) -> LeadAnalytics:
        return self._journeys.analytics(self._owned_version(version_id).id)

    def export_leads_csv(self, version_id: str) -> str:
        version = self._owned_version(version_id)
        return leads_to_csv(
            self._journeys.list_leads(version.id),
            self._journeys.question_mapping(version.id),
        )
