"""Public share-token gateway.

A token is the only thing an anonymous visitor holds.  It resolves to one
graph version; unknown and revoked tokens both surface as the same
``NotFoundError`` so a caller cannot tell whether a token ever existed.

* ``load_snapshot`` returns the version's graph with every agent/report
  prompt and edge condition already resolved against project variables.
  It does not count a visit.
* ``start_session`` builds a ``ConversationSession`` on that snapshot,
  starts it and counts one visit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from journeyflow.db.repositories.public_links import PublicLinkRepository
from journeyflow.db.repositories.variables import VariableRepository
from journeyflow.db.repositories.workflows import WorkflowRepository
from journeyflow.resolvers import resolve_template
from journeyflow.services.oracle_client import TransitionOracle
from journeyflow.session import ConversationSession
from journeyflow.workflow import AgentNode, ReportNode, WorkflowGraph

logger = logging.getLogger(__name__)


@dataclass
class PublicSnapshot:
    version_id: str
    workflow: WorkflowGraph
    project_variables: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Wire form: nodes carry ``resolvedSystemPrompt``, edges ``resolvedLlmPrompt``."""
        nodes = []
        for node in self.workflow.nodes:
            wire = node.model_dump(by_alias=True)
            if isinstance(node, AgentNode):
                template = node.system_prompt_template
            elif isinstance(node, ReportNode):
                template = node.report_config.system_prompt_template
            else:
                template = ""
            wire["resolvedSystemPrompt"] = resolve_template(template, self.project_variables)
            nodes.append(wire)

        edges = []
        for edge in self.workflow.edges:
            wire = edge.model_dump(by_alias=True)
            wire["resolvedLlmPrompt"] = resolve_template(edge.llm_prompt_template, self.project_variables)
            edges.append(wire)

        return {
            "versionId": self.version_id,
            "nodes": nodes,
            "edges": edges,
            "variables": dict(self.project_variables),
        }


class PublicAccessGateway:
    def __init__(self, db: Session):
        self.db = db
        self._links = PublicLinkRepository(db)

    def resolve_token(self, token: str) -> str:
        """Version id behind *token*, or ``NotFoundError``."""
        return self._links.resolve(token).id

    def record_visit(self, token: str) -> None:
        """Count a visit.  Best effort: a failed increment is logged, not raised."""
        try:
            if not self._links.record_visit(token):
                logger.warning("Visit not recorded: token no longer resolves")
        except SQLAlchemyError:
            self.db.rollback()
            logger.warning("Visit counter update failed", exc_info=True)

    def load_snapshot(self, token: str) -> PublicSnapshot:
        version = self._links.resolve(token)
        workflow = WorkflowRepository(self.db).load_workflow_graph(version.id)
        variables = VariableRepository(self.db).as_map(version.graph.project_id)
        return PublicSnapshot(version.id, workflow, variables)

    def start_session(self, token: str, oracle: TransitionOracle) -> ConversationSession:
        """Resolve, start a session at the start node and count the visit."""
        snapshot = self.load_snapshot(token)
        session = ConversationSession(
            snapshot.workflow,
            oracle,
            version_id=snapshot.version_id,
            project_variables=snapshot.project_variables,
        )
        session.start()
        self.record_visit(token)
        return session
