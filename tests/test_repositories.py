"""Tests for the SQLAlchemy repositories."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from journeyflow.db.models import GraphNode, GraphVersion, UserJourney
from journeyflow.db.repositories.journeys import JourneyRepository, completion_rate
from journeyflow.db.repositories.projects import ProjectRepository
from journeyflow.db.repositories.public_links import PublicLinkRepository
from journeyflow.db.repositories.variables import VariableRepository
from journeyflow.db.repositories.workflows import WorkflowRepository
from journeyflow.errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from journeyflow.workflow import AgentNode, FormNode, WorkflowEdge


@pytest.fixture
def project(db):
    return ProjectRepository(db).create_project("user-1", "Demo")


@pytest.fixture
def workflows(db):
    return WorkflowRepository(db)


@pytest.fixture
def draft(workflows, project, scenario_graph):
    """A draft version holding the A -> F -> R scenario graph."""
    data = workflows.get_workflow(project.id)
    workflows.sync_workflow(data.version.id, scenario_graph.nodes, scenario_graph.edges)
    return data.version


# ── Projects ─────────────────────────────────────────────────────────


class TestProjectRepository:
    def test_list_excludes_other_users_and_deleted(self, db):
        repo = ProjectRepository(db)
        keep = repo.create_project("u1", "Keep")
        gone = repo.create_project("u1", "Gone")
        repo.create_project("u2", "Other")

        assert repo.soft_delete(gone.id) is True
        assert [p.id for p in repo.list_projects("u1")] == [keep.id]
        assert repo.get_project(gone.id) is None

    def test_soft_delete_unknown(self, db):
        assert ProjectRepository(db).soft_delete("missing") is False


# ── Workflows ────────────────────────────────────────────────────────


class TestWorkflowLoading:
    def test_first_load_creates_graph_and_draft_v1(self, workflows, project):
        data = workflows.get_workflow(project.id)
        assert data.version.version_number == 1
        assert data.version.status == "draft"
        assert data.workflow.nodes == ()

    def test_second_load_reuses_the_draft(self, workflows, project):
        first = workflows.get_workflow(project.id)
        second = workflows.get_workflow(project.id)
        assert first.version.id == second.version.id

    def test_requested_version_must_belong_to_the_project(self, workflows, project, db):
        other = ProjectRepository(db).create_project("user-1", "Other")
        foreign = workflows.get_workflow(other.id).version
        with pytest.raises(NotFoundError):
            workflows.get_workflow(project.id, foreign.id)

    def test_sync_round_trip_preserves_order_and_payload(self, workflows, draft, scenario_graph):
        loaded = workflows.load_workflow_graph(draft.id)
        assert loaded.nodes == scenario_graph.nodes
        assert loaded.edges == scenario_graph.edges
        assert loaded.start_node().node_key == "A"

    def test_legacy_rows_are_classified_once(self, workflows, draft, db):
        db.add(
            GraphNode(
                version_id=draft.id,
                node_key="legacy",
                ordinal=99,
                category=None,
                configs={"formConfig": {"title": "Old form", "questions": []}},
            )
        )
        db.commit()

        loaded = workflows.load_workflow_graph(draft.id)
        assert isinstance(loaded.get_node("legacy"), FormNode)
        row = db.query(GraphNode).filter(GraphNode.node_key == "legacy").one()
        assert row.category == "form"


class TestNodeAndEdgeEditing:
    def test_save_node_upserts_by_key(self, workflows, draft):
        workflows.save_node(draft.id, AgentNode(node_key="A", title="Renamed"))
        loaded = workflows.load_workflow_graph(draft.id)
        assert loaded.get_node("A").title == "Renamed"
        assert len(loaded.nodes) == 3

    def test_save_edge_requires_both_endpoints(self, workflows, draft):
        with pytest.raises(ValidationError, match="unknown node 'Z'"):
            workflows.save_edge(draft.id, WorkflowEdge(edge_key="bad", from_node_key="A", to_node_key="Z"))

    def test_delete_node_cascades_edges(self, workflows, draft):
        assert workflows.delete_node(draft.id, "F") is True
        loaded = workflows.load_workflow_graph(draft.id)
        assert loaded.get_node("F") is None
        assert loaded.edges == ()

    def test_delete_missing_node(self, workflows, draft):
        assert workflows.delete_node(draft.id, "nope") is False

    def test_delete_edge(self, workflows, draft):
        assert workflows.delete_edge(draft.id, "e2") is True
        assert workflows.delete_edge(draft.id, "e2") is False

    def test_sync_dedupes_last_wins(self, workflows, draft):
        workflows.sync_workflow(
            draft.id,
            [AgentNode(node_key="A", title="first"), AgentNode(node_key="A", title="second")],
            [],
        )
        loaded = workflows.load_workflow_graph(draft.id)
        assert [n.title for n in loaded.nodes] == ["second"]

    def test_sync_rejects_dangling_edges_and_keeps_old_graph(self, workflows, draft):
        with pytest.raises(ValidationError):
            workflows.sync_workflow(
                draft.id,
                [AgentNode(node_key="A")],
                [WorkflowEdge(edge_key="e", from_node_key="A", to_node_key="gone")],
            )
        assert len(workflows.load_workflow_graph(draft.id).nodes) == 3

    def test_published_version_is_read_only(self, workflows, draft):
        workflows.publish(draft.id)
        with pytest.raises(ConflictError):
            workflows.save_node(draft.id, AgentNode(node_key="new"))
        with pytest.raises(ConflictError):
            workflows.sync_workflow(draft.id, [], [])
        with pytest.raises(ConflictError):
            workflows.delete_edge(draft.id, "e1")


class TestVersions:
    def test_create_next_version_copies_graph(self, workflows, draft, scenario_graph):
        v2 = workflows.create_next_version(draft.graph_id, scenario_graph.nodes, scenario_graph.edges)
        assert v2.version_number == 2
        assert v2.status == "draft"
        assert workflows.load_workflow_graph(v2.id).nodes == scenario_graph.nodes
        assert [v.version_number for v in workflows.list_versions(draft.graph_id)] == [2, 1]

    def test_publish_keeps_exactly_one_published(self, workflows, draft, scenario_graph, db):
        v2 = workflows.create_next_version(draft.graph_id, scenario_graph.nodes, scenario_graph.edges)
        workflows.publish(draft.id)
        workflows.publish(v2.id)

        published = (
            db.query(GraphVersion)
            .filter(GraphVersion.graph_id == draft.graph_id, GraphVersion.status == "published")
            .all()
        )
        assert [v.id for v in published] == [v2.id]
        assert workflows.get_version(draft.id).status == "draft"

    def test_publish_leaves_archived_siblings_alone(self, workflows, draft, scenario_graph):
        v2 = workflows.create_next_version(draft.graph_id, scenario_graph.nodes, scenario_graph.edges)
        workflows.archive(draft.id)
        workflows.publish(v2.id)
        assert workflows.get_version(draft.id).status == "archived"

    def test_publish_failure_rolls_back(self, workflows, draft, db):
        with patch.object(db, "commit", side_effect=OperationalError("UPDATE", {}, Exception("locked"))):
            with pytest.raises(PersistenceError):
                workflows.publish(draft.id)
        assert workflows.get_version(draft.id).status == "draft"

    def test_unpublish(self, workflows, draft):
        workflows.publish(draft.id)
        assert workflows.unpublish(draft.id).status == "draft"
        with pytest.raises(ConflictError):
            workflows.unpublish(draft.id)

    def test_draft_recreated_when_only_published_exists(self, workflows, project, draft):
        workflows.publish(draft.id)
        data = workflows.get_workflow(project.id)
        assert data.version.id != draft.id
        assert data.version.version_number == 2


# ── Variables ────────────────────────────────────────────────────────


class TestVariableRepository:
    def test_upsert_and_map(self, db, project):
        repo = VariableRepository(db)
        repo.upsert(project.id, "brand", "Acme")
        repo.upsert(project.id, "brand", "Acme Ltd")
        repo.upsert(project.id, "city", "Lisbon")
        assert repo.as_map(project.id) == {"brand": "Acme Ltd", "city": "Lisbon"}
        assert [v.key for v in repo.list_variables(project.id)] == ["brand", "city"]

    @pytest.mark.parametrize("key", ["", "has space", "dash-key", "@brand"])
    def test_rejects_keys_that_cannot_be_referenced(self, db, project, key):
        with pytest.raises(ValidationError):
            VariableRepository(db).upsert(project.id, key, "x")

    def test_rename(self, db, project):
        repo = VariableRepository(db)
        repo.upsert(project.id, "old", "v")
        repo.upsert(project.id, "taken", "w")
        assert repo.rename(project.id, "old", "new").key == "new"
        with pytest.raises(ConflictError):
            repo.rename(project.id, "new", "taken")
        with pytest.raises(NotFoundError):
            repo.rename(project.id, "missing", "x")

    def test_delete(self, db, project):
        repo = VariableRepository(db)
        repo.upsert(project.id, "k", "v")
        assert repo.delete(project.id, "k") is True
        assert repo.delete(project.id, "k") is False


# ── Public links ─────────────────────────────────────────────────────


class TestPublicLinkRepository:
    def test_get_or_create_is_stable(self, db, draft):
        links = PublicLinkRepository(db)
        token = links.get_or_create(draft.id)
        assert links.get_or_create(draft.id) == token
        assert links.get(draft.id) == token
        assert links.resolve(token).id == draft.id

    def test_force_replaces_token_and_resets_visits(self, db, draft):
        links = PublicLinkRepository(db)
        old = links.get_or_create(draft.id)
        links.record_visit(old)
        links.record_visit(old)

        new = links.get_or_create(draft.id, force=True)

        assert new != old
        assert db.get(GraphVersion, draft.id).visit_count == 0
        with pytest.raises(NotFoundError, match="Invalid or expired preview link"):
            links.resolve(old)

    def test_revoke(self, db, draft):
        links = PublicLinkRepository(db)
        token = links.get_or_create(draft.id)
        assert links.revoke(draft.id) is True
        assert links.revoke(draft.id) is False
        with pytest.raises(NotFoundError):
            links.resolve(token)

    def test_record_visit_increments(self, db, draft):
        links = PublicLinkRepository(db)
        token = links.get_or_create(draft.id)
        assert links.record_visit(token) is True
        assert links.record_visit(token) is True
        db.expire_all()
        assert db.get(GraphVersion, draft.id).visit_count == 2

    def test_record_visit_unknown_token(self, db):
        assert PublicLinkRepository(db).record_visit("nope") is False


# ── Journeys ─────────────────────────────────────────────────────────


class TestJourneyRepository:
    def test_save_is_append_only(self, db, draft):
        repo = JourneyRepository(db)
        repo.save(draft.id, "a@x.com", {"aiReport": "one"})
        repo.save(draft.id, "a@x.com", {"aiReport": "two"})
        assert len(repo.list_leads(draft.id)) == 2

    def test_leads_newest_first(self, db, draft):
        repo = JourneyRepository(db)
        first = repo.save(draft.id, "a@x.com", {})
        second = repo.save(draft.id, "b@x.com", {})
        first.created_at = second.created_at.replace(year=second.created_at.year - 1)
        db.commit()
        assert [j.id for j in repo.list_leads(draft.id)] == [second.id, first.id]

    def test_failed_insert_leaves_no_row(self, db, draft):
        repo = JourneyRepository(db)
        with patch.object(db, "commit", side_effect=OperationalError("INSERT", {}, Exception("disk full"))):
            with pytest.raises(PersistenceError):
                repo.save(draft.id, "a@x.com", {})
        assert db.query(UserJourney).count() == 0

    def test_analytics_without_visits_is_zero(self, db, draft):
        stats = JourneyRepository(db).analytics(draft.id)
        assert stats == (0, 0, 0.0)

    def test_analytics_rate(self, db, draft):
        links = PublicLinkRepository(db)
        token = links.get_or_create(draft.id)
        for _ in range(3):
            links.record_visit(token)
        JourneyRepository(db).save(draft.id, "a@x.com", {})
        db.expire_all()

        stats = JourneyRepository(db).analytics(draft.id)
        assert stats.total_visits == 3
        assert stats.total_leads == 1
        assert stats.completion_rate == 33.3

    def test_analytics_unknown_version(self, db):
        with pytest.raises(NotFoundError):
            JourneyRepository(db).analytics("missing")

    @pytest.mark.parametrize(
        "leads, visits, expected",
        [(0, 0, 0.0), (1, 3, 33.3), (2, 3, 66.7), (1, 8, 12.5), (1, 16, 6.3), (5, 5, 100.0)],
    )
    def test_completion_rate_rounds_half_up(self, leads, visits, expected):
        assert completion_rate(leads, visits) == expected

    def test_question_mapping(self, db, draft):
        assert JourneyRepository(db).question_mapping(draft.id) == {"q1": "What is your name?"}
