"""Graph, version, node and edge persistence.

Rows are converted to and from the runtime types in ``journeyflow.workflow``
here and nowhere else.  A published version is read-only: every write path
goes through ``_mutable_version`` first.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any, NamedTuple

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from journeyflow.db.models import (
    VERSION_ARCHIVED,
    VERSION_DRAFT,
    VERSION_PUBLISHED,
    Graph,
    GraphEdge,
    GraphNode,
    GraphVersion,
)
from journeyflow.errors import (
    ConfigurationError,
    ConflictError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from journeyflow.workflow import (
    DEFAULT_EDGE_PROMPT,
    WorkflowEdge,
    WorkflowGraph,
    WorkflowNode,
    parse_node,
)

logger = logging.getLogger(__name__)

DEFAULT_GRAPH_NAME = "Main graph"

# Wire fields stored in ``GraphNode.configs`` per category
_PAYLOAD_FIELDS = {
    "agent": ("systemPromptTemplate", "structuredOutputSchema"),
    "form": ("formConfig",),
    "report": ("reportConfig",),
}


# ── Row conversion ───────────────────────────────────────────────────


def node_to_row_values(node: WorkflowNode) -> dict[str, Any]:
    wire = node.model_dump(by_alias=True)
    return {
        "node_key": node.node_key,
        "title": node.title,
        "category": node.category,
        "position": wire["position"],
        "configs": {field: wire[field] for field in _PAYLOAD_FIELDS[node.category]},
    }


def node_from_row(row: GraphNode) -> WorkflowNode:
    configs = row.configs or {}
    return parse_node(
        {
            **configs,
            "nodeKey": row.node_key,
            "title": row.title,
            "position": row.position or None,
            "category": row.category,
            "config": configs,
        }
    )


def edge_to_row_values(edge: WorkflowEdge) -> dict[str, Any]:
    return {
        "edge_key": edge.edge_key,
        "from_node_key": edge.from_node_key,
        "to_node_key": edge.to_node_key,
        "llm_prompt_template": edge.llm_prompt_template,
        "priority": edge.priority,
        "fallback": edge.fallback,
    }


def edge_from_row(row: GraphEdge) -> WorkflowEdge:
    return WorkflowEdge(
        edge_key=row.edge_key,
        from_node_key=row.from_node_key,
        to_node_key=row.to_node_key,
        llm_prompt_template=row.llm_prompt_template or DEFAULT_EDGE_PROMPT,
        priority=row.priority or 0,
        fallback=bool(row.fallback),
    )


def _validated_graph(
    nodes: Iterable[WorkflowNode], edges: Iterable[WorkflowEdge]
) -> WorkflowGraph:
    """De-duplicate by key (last one wins) and check every edge's endpoints."""
    unique_nodes = {node.node_key: node for node in nodes}
    unique_edges = {edge.edge_key: edge for edge in edges}
    try:
        return WorkflowGraph(list(unique_nodes.values()), list(unique_edges.values()))
    except ConfigurationError as exc:
        raise ValidationError(str(exc)) from exc


class WorkflowData(NamedTuple):
    graph: Graph
    version: GraphVersion
    workflow: WorkflowGraph


class WorkflowRepository:
    """Repository for graphs and their versions."""

    def __init__(self, db: Session):
        self.db = db

    # ── Graphs and versions ──────────────────────────────────────────

    def get_or_create_graph(self, project_id: str) -> Graph:
        graph = self.db.query(Graph).filter(Graph.project_id == project_id).first()
        if graph is None:
            graph = Graph(project_id=project_id, name=DEFAULT_GRAPH_NAME)
            self.db.add(graph)
            self.db.commit()
            self.db.refresh(graph)
            logger.info("Created graph %s for project %s", graph.id, project_id)
        return graph

    def get_version(self, version_id: str) -> GraphVersion:
        version = self.db.query(GraphVersion).filter(GraphVersion.id == version_id).first()
        if version is None:
            raise NotFoundError(f"Version {version_id} not found")
        return version

    def list_versions(self, graph_id: str) -> list[GraphVersion]:
        return (
            self.db.query(GraphVersion)
            .filter(GraphVersion.graph_id == graph_id)
            .order_by(GraphVersion.version_number.desc())
            .all()
        )

    def _next_version_number(self, graph_id: str) -> int:
        current = (
            self.db.query(func.max(GraphVersion.version_number))
            .filter(GraphVersion.graph_id == graph_id)
            .scalar()
        )
        return (current or 0) + 1

    def _new_version(self, graph_id: str) -> GraphVersion:
        version = GraphVersion(
            graph_id=graph_id,
            version_number=self._next_version_number(graph_id),
            status=VERSION_DRAFT,
        )
        self.db.add(version)
        self.db.flush()
        return version

    def get_workflow(self, project_id: str, version_id: str | None = None) -> WorkflowData:
        """Load the editable workflow of a project.

        Picks *version_id* when given, else the newest draft; a graph with
        no draft at all gets a fresh one.
        """
        graph = self.get_or_create_graph(project_id)
        if version_id:
            version = (
                self.db.query(GraphVersion)
                .filter(GraphVersion.id == version_id, GraphVersion.graph_id == graph.id)
                .first()
            )
            if version is None:
                raise NotFoundError(f"Version {version_id} not found")
        else:
            version = (
                self.db.query(GraphVersion)
                .filter(GraphVersion.graph_id == graph.id, GraphVersion.status == VERSION_DRAFT)
                .order_by(GraphVersion.version_number.desc())
                .first()
            )
            if version is None:
                version = self._new_version(graph.id)
                self.db.commit()
                self.db.refresh(version)
        return WorkflowData(graph, version, self.load_workflow_graph(version.id))

    def load_workflow_graph(self, version_id: str) -> WorkflowGraph:
        """Build the runtime snapshot of a version.

        Rows without a stored category are classified here and the result is
        written back, so the inference runs once per row.
        """
        node_rows = (
            self.db.query(GraphNode)
            .filter(GraphNode.version_id == version_id)
            .order_by(GraphNode.ordinal, GraphNode.created_at)
            .all()
        )
        edge_rows = (
            self.db.query(GraphEdge)
            .filter(GraphEdge.version_id == version_id)
            .order_by(GraphEdge.ordinal, GraphEdge.created_at)
            .all()
        )

        nodes: list[WorkflowNode] = []
        classified = 0
        for row in node_rows:
            node = node_from_row(row)
            if row.category is None:
                row.category = node.category
                classified += 1
            nodes.append(node)
        if classified:
            self.db.commit()
            logger.info("Classified %d legacy node(s) in version %s", classified, version_id)

        return WorkflowGraph(nodes, [edge_from_row(row) for row in edge_rows])

    def _mutable_version(self, version_id: str) -> GraphVersion:
        version = self.get_version(version_id)
        if version.status == VERSION_PUBLISHED:
            raise ConflictError(
                f"Version {version.version_number} is published; create a new version to edit it"
            )
        return version

    # ── Nodes and edges ──────────────────────────────────────────────

    def _count(self, model, version_id: str) -> int:
        return self.db.query(model).filter(model.version_id == version_id).count()

    def save_node(self, version_id: str, node: WorkflowNode) -> GraphNode:
        """Insert or update a node by ``(version, nodeKey)``."""
        self._mutable_version(version_id)
        row = (
            self.db.query(GraphNode)
            .filter(GraphNode.version_id == version_id, GraphNode.node_key == node.node_key)
            .first()
        )
        values = node_to_row_values(node)
        if row is None:
            row = GraphNode(version_id=version_id, ordinal=self._count(GraphNode, version_id), **values)
            self.db.add(row)
        else:
            for field, value in values.items():
                setattr(row, field, value)
        self.db.commit()
        self.db.refresh(row)
        return row

    def save_edge(self, version_id: str, edge: WorkflowEdge) -> GraphEdge:
        """Insert or update an edge by ``(version, edgeKey)``; both ends must exist."""
        self._mutable_version(version_id)
        existing_keys = {
            key for (key,) in
            self.db.query(GraphNode.node_key).filter(GraphNode.version_id == version_id)
        }
        for endpoint in (edge.from_node_key, edge.to_node_key):
            if endpoint not in existing_keys:
                raise ValidationError(
                    f"Edge {edge.edge_key!r} references unknown node {endpoint!r}"
                )

        row = (
            self.db.query(GraphEdge)
            .filter(GraphEdge.version_id == version_id, GraphEdge.edge_key == edge.edge_key)
            .first()
        )
        values = edge_to_row_values(edge)
        if row is None:
            row = GraphEdge(version_id=version_id, ordinal=self._count(GraphEdge, version_id), **values)
            self.db.add(row)
        else:
            for field, value in values.items():
                setattr(row, field, value)
        self.db.commit()
        self.db.refresh(row)
        return row

    def delete_node(self, version_id: str, node_key: str) -> bool:
        """Delete a node together with every edge touching it."""
        self._mutable_version(version_id)
        row = (
            self.db.query(GraphNode)
            .filter(GraphNode.version_id == version_id, GraphNode.node_key == node_key)
            .first()
        )
        if row is None:
            return False

        removed_edges = (
            self.db.query(GraphEdge)
            .filter(
                GraphEdge.version_id == version_id,
                or_(GraphEdge.from_node_key == node_key, GraphEdge.to_node_key == node_key),
            )
            .delete(synchronize_session=False)
        )
        self.db.delete(row)
        self.db.commit()
        logger.info("Deleted node %s (and %d edge(s)) from version %s", node_key, removed_edges, version_id)
        return True

    def delete_edge(self, version_id: str, edge_key: str) -> bool:
        self._mutable_version(version_id)
        removed = (
            self.db.query(GraphEdge)
            .filter(GraphEdge.version_id == version_id, GraphEdge.edge_key == edge_key)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return removed > 0

    def _insert_graph(self, version_id: str, workflow: WorkflowGraph) -> None:
        for ordinal, node in enumerate(workflow.nodes):
            self.db.add(GraphNode(version_id=version_id, ordinal=ordinal, **node_to_row_values(node)))
        for ordinal, edge in enumerate(workflow.edges):
            self.db.add(GraphEdge(version_id=version_id, ordinal=ordinal, **edge_to_row_values(edge)))

    def sync_workflow(
        self,
        version_id: str,
        nodes: Iterable[WorkflowNode],
        edges: Iterable[WorkflowEdge],
    ) -> WorkflowGraph:
        """Replace every node and edge of a draft in one transaction."""
        self._mutable_version(version_id)
        workflow = _validated_graph(nodes, edges)
        try:
            self.db.query(GraphEdge).filter(GraphEdge.version_id == version_id).delete(
                synchronize_session=False
            )
            self.db.query(GraphNode).filter(GraphNode.version_id == version_id).delete(
                synchronize_session=False
            )
            self._insert_graph(version_id, workflow)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Sync of version %s failed", version_id)
            raise PersistenceError("Could not save the workflow; nothing was changed.") from exc
        return workflow

    def create_next_version(
        self,
        graph_id: str,
        nodes: Iterable[WorkflowNode],
        edges: Iterable[WorkflowEdge],
    ) -> GraphVersion:
        """Copy the given nodes and edges into a new draft numbered max + 1."""
        workflow = _validated_graph(nodes, edges)
        try:
            version = self._new_version(graph_id)
            self._insert_graph(version.id, workflow)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Creating a new version of graph %s failed", graph_id)
            raise PersistenceError("Could not create the new version.") from exc
        self.db.refresh(version)
        logger.info("Created version %d of graph %s", version.version_number, graph_id)
        return version

    # ── Publication ──────────────────────────────────────────────────

    def publish(self, version_id: str) -> GraphVersion:
        """Make *version_id* the graph's only published version.

        The graph row is locked while the currently published sibling is
        reverted to draft and this version is activated, so two concurrent
        publishes cannot both win.
        """
        version = self.get_version(version_id)
        try:
            self.db.query(Graph).filter(Graph.id == version.graph_id).with_for_update().one()
            self.db.query(GraphVersion).filter(
                GraphVersion.graph_id == version.graph_id,
                GraphVersion.id != version.id,
                GraphVersion.status == VERSION_PUBLISHED,
            ).update({GraphVersion.status: VERSION_DRAFT}, synchronize_session=False)
            version.status = VERSION_PUBLISHED
            version.published_at = datetime.now(UTC)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Publishing version %s failed", version_id)
            raise PersistenceError("Could not publish the version.") from exc

        self.db.refresh(version)
        logger.info("Published version %d of graph %s", version.version_number, version.graph_id)
        return version

    def unpublish(self, version_id: str) -> GraphVersion:
        version = self.get_version(version_id)
        if version.status != VERSION_PUBLISHED:
            raise ConflictError(f"Version {version.version_number} is not published")
        version.status = VERSION_DRAFT
        self.db.commit()
        self.db.refresh(version)
        return version

    def archive(self, version_id: str) -> GraphVersion:
        version = self.get_version(version_id)
        version.status = VERSION_ARCHIVED
        self.db.commit()
        self.db.refresh(version)
        return version
